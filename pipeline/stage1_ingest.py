"""Stage 1: Ingest — read the classifier batch result and produce batch.json.

Reads:  store[results_key] (optionally bucketed per model), else data/results.json
Writes: data/.cache/batch.json
"""
import json
import logging
from collections import Counter

from models.batch import BatchSummary, ImageRecord, InspectionBatch
from settings import Settings
from utils.conditions import is_known_condition, is_known_priority, is_known_severity
from utils.store import KeyValueStore

logger = logging.getLogger(__name__)


def run(settings: Settings, store: KeyValueStore) -> InspectionBatch:
    """Load the stored batch result and write batch.json to the cache.

    Returns the parsed InspectionBatch (empty when nothing usable is stored).
    """
    _ensure_dirs(settings)

    raw = _read_stored_result(settings, store)
    batch = load_batch(raw, settings.model_name)

    artifact_path = settings.cache_dir / "batch.json"
    artifact_path.write_text(batch.model_dump_json(indent=2), encoding="utf-8")

    conditions = Counter(img.raw_condition for img in batch.images)
    logger.info("Stage 1 complete → %s", artifact_path)
    logger.info("  Images:        %d", len(batch.images))
    logger.info("  Fire hazards:  %d", batch.batch_summary.fire_hazard_count)
    logger.info("  Trip / fall:   %d", batch.batch_summary.trip_fall_count)
    for condition, count in sorted(conditions.items()):
        logger.debug("  %-14s %d", condition + ":", count)

    unknown = _unknown_tags(batch.images)
    if unknown:
        logger.warning("  Unrecognised classifier tags (shown as-is): %s", ", ".join(unknown))

    return batch


def load_batch(raw, model_name: str | None = None) -> InspectionBatch:
    """Parse a batch result blob into an InspectionBatch.

    Accepts the plain `{batch_summary, per_image}` shape or the bucketed
    `{results: {<model>: {...}}}` shape. Malformed parts are skipped with a
    warning; this never raises.
    """
    result = _select_bucket(raw, model_name)
    if result is None:
        return InspectionBatch()

    summary = result.get("batch_summary")
    batch_summary = BatchSummary.model_validate(summary) if isinstance(summary, dict) else BatchSummary()

    per_image = result.get("per_image")
    if per_image is None:
        per_image = []
    if not isinstance(per_image, list):
        logger.warning("per_image is not a list (%s); ignoring it.", type(per_image).__name__)
        per_image = []

    images: list[ImageRecord] = []
    for index, item in enumerate(per_image):
        if not isinstance(item, dict):
            logger.warning("Skipping malformed image record at position %d.", index)
            continue
        images.append(ImageRecord.from_raw(index, item))

    return InspectionBatch(batch_summary=batch_summary, images=images)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _select_bucket(raw, model_name: str | None) -> dict | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Batch result is not an object; using an empty batch.")
        return None

    results = raw.get("results")
    if isinstance(results, dict):
        bucket = results.get(model_name) if model_name else None
        if bucket is None and len(results) == 1:
            bucket = next(iter(results.values()))
        if not isinstance(bucket, dict):
            logger.warning("No batch result stored for model %r.", model_name)
            return None
        return bucket
    return raw


def _read_stored_result(settings: Settings, store: KeyValueStore):
    try:
        raw = store.get(settings.results_key)
    except ValueError as exc:
        logger.warning("Stored batch result is malformed (%s).", exc)
        raw = None
    if raw is not None:
        return raw

    seed = settings.seed_results_path
    if not seed.exists():
        logger.warning("No batch result in the store and no seed file at %s.", seed)
        return None
    try:
        return json.loads(seed.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Could not read seed results %s: %s", seed.name, exc)
        return None


def _ensure_dirs(settings: Settings) -> None:
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    settings.output_dir.mkdir(parents=True, exist_ok=True)


def _unknown_tags(images: list[ImageRecord]) -> list[str]:
    """Distinct condition/severity/priority values outside the known vocabulary."""
    unknown: dict[str, None] = {}
    for img in images:
        if not is_known_condition(img.raw_condition):
            unknown[f"condition={img.raw_condition}"] = None
        if not is_known_severity(img.severity):
            unknown[f"severity={img.severity}"] = None
        if not is_known_priority(img.priority):
            unknown[f"priority={img.priority}"] = None
    return list(unknown)
