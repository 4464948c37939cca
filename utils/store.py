"""Key/value persistence for review state.

The review UI keeps three JSON blobs: the classifier batch result, the
finding override map and the report metadata. The pipeline only needs
`get(key)` / `set(key, value)`, so the store is injected; tests use
`InMemoryStore`, the CLI uses `JsonFileStore`.

Reads are snapshots. Every mutating helper here is read-merge-write
without locking: two edits racing on the same key resolve as
last-write-wins, and no conflict is detected.
"""
import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from models.findings import FindingOverride
from models.report_meta import ReportMeta

logger = logging.getLogger(__name__)

# Fields of a stored image record that may be edited after ingestion
_EDITABLE_IMAGE_FIELDS = frozenset({"location", "comment", "recommendations_high_severity_only", "recommendations"})


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...


class InMemoryStore:
    """Dict-backed store; values are JSON round-tripped like the real thing."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def set_raw(self, key: str, raw: str) -> None:
        """Store an unparsed string (used to simulate corrupted blobs)."""
        self._data[key] = raw


class JsonFileStore:
    """One `<key>.json` file per key inside `directory`.

    An unreadable or unparsable file reads as missing (None).
    """

    def __init__(self, directory: Path):
        self.directory = directory

    def _path(self, key: str) -> Path:
        return self.directory / f"{re.sub(r'[^A-Za-z0-9_.-]+', '_', key)}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read store key %s (%s); treating as empty.", key, exc)
            return None

    def set(self, key: str, value: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(json.dumps(value, indent=2, ensure_ascii=False), encoding="utf-8")


def _safe_get(store: KeyValueStore, key: str) -> Any | None:
    try:
        return store.get(key)
    except ValueError as exc:  # json.JSONDecodeError
        logger.warning("Stored blob %s is malformed (%s); using defaults.", key, exc)
        return None


# ---------------------------------------------------------------------------
# Finding overrides
# ---------------------------------------------------------------------------

def load_overrides(store: KeyValueStore, key: str) -> dict[str, FindingOverride]:
    """Read the override map in stored (insertion) order.

    A missing or malformed blob yields an empty map; malformed entries are
    skipped individually.
    """
    raw = _safe_get(store, key)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        logger.warning("Override blob %s is not an object; ignoring it.", key)
        return {}

    overrides: dict[str, FindingOverride] = {}
    for finding_id, entry in raw.items():
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed override for %s.", finding_id)
            continue
        try:
            overrides[str(finding_id)] = FindingOverride.model_validate(entry)
        except ValidationError as exc:
            logger.warning("Skipping invalid override for %s: %s", finding_id, exc.error_count())
    return overrides


def _write_overrides(store: KeyValueStore, key: str, overrides: dict[str, FindingOverride]) -> None:
    store.set(key, {fid: o.patch() for fid, o in overrides.items()})


def update_finding(store: KeyValueStore, key: str, finding_id: str, patch: dict) -> FindingOverride:
    """Shallow-merge `patch` into the stored override for `finding_id`."""
    overrides = load_overrides(store, key)
    current = overrides.get(finding_id)
    incoming = FindingOverride.model_validate(patch).patch()
    merged = {**(current.patch() if current else {}), **incoming}
    updated = FindingOverride.model_validate(merged)
    overrides[finding_id] = updated
    _write_overrides(store, key, overrides)
    return updated


def delete_finding(store: KeyValueStore, key: str, finding_id: str, manual: bool) -> None:
    """Delete a manual finding; hide a derived one so it can be restored."""
    overrides = load_overrides(store, key)
    if manual:
        overrides.pop(finding_id, None)
        _write_overrides(store, key, overrides)
        return
    update_finding(store, key, finding_id, {"hidden": True})


def restore_finding(store: KeyValueStore, key: str, finding_id: str) -> None:
    update_finding(store, key, finding_id, {"hidden": False})


def add_manual_finding(
    store: KeyValueStore,
    key: str,
    *,
    area: str = "",
    condition: str = "attention",
    description_text: str = "",
    assigned_to: str = "",
    deadline: str = "",
    photo_id: str = "",
    now_ms: int | None = None,
) -> str:
    """Append a manual finding and return its id (`manual-<epoch ms>`)."""
    overrides = load_overrides(store, key)
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    finding_id = f"manual-{stamp}"
    suffix = 2
    while finding_id in overrides:
        finding_id = f"manual-{stamp}-{suffix}"
        suffix += 1

    overrides[finding_id] = FindingOverride(
        id=finding_id,
        manual=True,
        photo_id=photo_id.strip(),
        area=area or "—",
        condition=condition or "attention",
        description_text=description_text,
        assigned_to=assigned_to,
        deadline=deadline,
    )
    _write_overrides(store, key, overrides)
    return finding_id


# ---------------------------------------------------------------------------
# Report metadata
# ---------------------------------------------------------------------------

def load_report_meta(store: KeyValueStore, key: str) -> ReportMeta:
    """Stored metadata layered over defaults.

    A section that fails validation falls back to its default on its own;
    the remaining sections are kept.
    """
    raw = _safe_get(store, key)
    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning("Report metadata blob %s is not an object; using defaults.", key)
        return ReportMeta()
    try:
        return ReportMeta.model_validate(raw)
    except ValidationError as exc:
        bad = {err["loc"][0] for err in exc.errors() if err["loc"]}
        logger.warning("Report metadata sections invalid (%s); using their defaults.",
                       ", ".join(sorted(map(str, bad))))
    for name, info in ReportMeta.model_fields.items():
        if name in bad or info.alias in bad:
            bad |= {name, info.alias}
    try:
        return ReportMeta.model_validate({k: v for k, v in raw.items() if k not in bad})
    except ValidationError as exc:
        logger.warning("Report metadata invalid (%d errors); using defaults.", exc.error_count())
        return ReportMeta()


def save_report_meta(store: KeyValueStore, key: str, meta: ReportMeta) -> None:
    store.set(key, meta.model_dump(mode="json", by_alias=True))


# ---------------------------------------------------------------------------
# Batch results (post-hoc image edits)
# ---------------------------------------------------------------------------

def patch_image_record(
    store: KeyValueStore,
    key: str,
    ref: str | int,
    patch: dict,
    model_name: str | None = None,
) -> bool:
    """Edit one stored per-image record in place.

    `ref` is the image id (str) or its 0-based ordinal (int). Only location,
    comment and recommendations are editable; a recommendations string is
    split on ';'. Returns False when the record cannot be found.
    """
    blob = _safe_get(store, key)
    if not isinstance(blob, dict):
        return False

    bucket = blob
    if model_name is not None and isinstance(blob.get("results"), dict):
        bucket = blob["results"].get(model_name)
    per_image = bucket.get("per_image") if isinstance(bucket, dict) else None
    if not isinstance(per_image, list):
        return False

    position = _find_position(per_image, ref)
    if position is None:
        return False

    updates = {k: v for k, v in patch.items() if k in _EDITABLE_IMAGE_FIELDS}
    for field in ("recommendations_high_severity_only", "recommendations"):
        if isinstance(updates.get(field), str):
            updates[field] = [s.strip() for s in updates[field].split(";") if s.strip()]

    per_image[position] = {**per_image[position], **updates}
    store.set(key, blob)
    return True


def _find_position(per_image: list, ref: str | int) -> int | None:
    if isinstance(ref, int) and not isinstance(ref, bool):
        if 0 <= ref < len(per_image) and isinstance(per_image[ref], dict):
            return ref
        return None
    for i, item in enumerate(per_image):
        if isinstance(item, dict) and str(item.get("id", "")) == ref:
            return i
    return None
