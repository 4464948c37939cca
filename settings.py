from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    openai_api_key: str | None = None

    project_dir: Path = Path("./data")
    model_name: str = "openai"
    brand_name: str = "iShip Inspection AI"
    text_model: str = "gpt-5"
    narrative_enabled: bool = True
    asset_base_url: str | None = None
    photos_per_block: int = 4
    max_defect_actions: int = 4
    top_critical_rows: int = 8
    asset_timeout_s: float = 10.0
    asset_workers: int = 8
    log_level: str = "INFO"

    results_key: str = "iship_results"
    overrides_key: str = "iship_defects_v1"
    meta_key: str = "iship_report_meta_v1"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="IRG_",
        env_file_encoding="utf-8",
    )

    @field_validator("photos_per_block", "max_defect_actions", "asset_workers")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("top_critical_rows")
    @classmethod
    def must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("top_critical_rows must not be negative")
        return v

    @field_validator("asset_timeout_s")
    @classmethod
    def timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("asset_timeout_s must be greater than 0")
        return v

    @property
    def uploads_dir(self) -> Path:
        return self.project_dir / "uploads"

    @property
    def seed_results_path(self) -> Path:
        return self.project_dir / "results.json"

    @property
    def cache_dir(self) -> Path:
        return self.project_dir / ".cache"

    @property
    def store_dir(self) -> Path:
        return self.cache_dir / "store"

    @property
    def output_dir(self) -> Path:
        return self.project_dir / "output"
