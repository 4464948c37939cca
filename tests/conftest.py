from pathlib import Path

import pytest

from settings import Settings
from utils.store import InMemoryStore


@pytest.fixture
def tmp_settings(tmp_path: Path) -> Settings:
    """Settings pointing at a fresh temp directory for tests that write output.

    Directory layout mirrors the real project:
        data/uploads/   photos named by image id
        data/.cache/    stage artifacts
        data/output/    rendered report
    """
    (tmp_path / "uploads").mkdir()
    return Settings(
        openai_api_key=None,
        project_dir=tmp_path,
        narrative_enabled=False,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
