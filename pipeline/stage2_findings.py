"""Stage 2: Findings — merge derived findings, manual findings and overrides.

One derived finding per flagged image (source order), then the manual
findings from the override store (insertion order). Overrides are applied at
read time: a hidden derived finding is dropped here and reappears at its
original position once un-hidden.

Reads:  data/.cache/batch.json      (InspectionBatch)
        store[overrides_key]        (override map)
Writes: data/.cache/findings.json   (FindingSet)
"""
import logging

from models.batch import ImageRecord, InspectionBatch
from models.findings import DerivedFinding, Finding, FindingOverride, FindingSet, RollupCounts
from settings import Settings
from utils.conditions import ROLLUP_CONDITIONS, resolve_effective_condition
from utils.store import KeyValueStore, load_overrides

logger = logging.getLogger(__name__)


def run(settings: Settings, batch: InspectionBatch, store: KeyValueStore) -> FindingSet:
    """Build the visible finding list and write findings.json.

    Returns the completed FindingSet.
    """
    overrides = load_overrides(store, settings.overrides_key)
    findings = build_findings(batch.images, overrides)
    finding_set = FindingSet(findings=findings, rollup=rollup_counts(findings, batch.images))

    artifact_path = settings.cache_dir / "findings.json"
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    artifact_path.write_text(finding_set.model_dump_json(indent=2), encoding="utf-8")

    rollup = finding_set.rollup
    manual_count = sum(1 for f in findings if f.origin == "manual")
    logger.info("Stage 2 complete → %s", artifact_path)
    logger.info("  Findings:      %d (%d manual)", len(findings), manual_count)
    logger.info("  Fire hazard:   %d", rollup.fire_hazard)
    logger.info("  Trip / fall:   %d", rollup.trip_fall)
    logger.info("  Rust:          %d", rollup.rust)
    logger.info("  Attention:     %d", rollup.attention)
    if rollup.missing_timestamps:
        logger.info("  No timestamp:  %d image(s)", rollup.missing_timestamps)

    return finding_set


def build_findings(
    images: list[ImageRecord],
    overrides: dict[str, FindingOverride],
) -> list[Finding]:
    """Derived findings in image order, then visible manual findings.

    A derived finding is numbered by its photo's position in the batch, so
    its `#n` matches the gallery and appendix badges. Manual findings are
    numbered on from the last derived number.

    Overrides keyed by an id with no matching image and no `manual` flag
    are ignored.
    """
    findings: list[Finding] = []

    for image in images:
        derived = _derive_finding(image)
        if derived is None:
            continue
        override = overrides.get(image.id)
        if override is not None and not override.manual:
            if override.hidden:
                continue
            derived = derived.merge(override)
        findings.append(derived.model_copy(update={"index": image.source_index + 1}))

    next_index = max((f.index for f in findings), default=0) + 1
    for finding_id, override in overrides.items():
        if override.manual and not override.hidden:
            findings.append(override.to_manual_finding(finding_id, next_index))
            next_index += 1

    return findings


def rollup_counts(findings: list[Finding], images: list[ImageRecord]) -> RollupCounts:
    """Per-condition totals over the visible findings."""
    counts = {tag: 0 for tag in ROLLUP_CONDITIONS}
    for finding in findings:
        if finding.condition in counts:
            counts[finding.condition] += 1
    return RollupCounts(
        **counts,
        missing_timestamps=sum(1 for img in images if img.capture_timestamp is None),
        total=len(findings),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _derive_finding(image: ImageRecord) -> DerivedFinding | None:
    condition = resolve_effective_condition(image)
    if condition == "none" and not image.recommendations:
        return None
    return DerivedFinding(
        id=image.id,
        photo_id=image.id,
        area=image.location.strip() or "—",
        condition=condition,
        severity=image.severity,
        priority=image.priority,
        comment=image.comment,
        recommendations=image.recommendations,
    )
