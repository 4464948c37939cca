"""Stage 3: Assessment — overall rating, commercial impact, executive summary.

The rating is derived from the area scorecard average and the critical/high
findings unless the report metadata carries a manual override. When the
stored summary blurb is (nearly) empty, a narrative is generated first and
written back to the report metadata.

Reads:  data/.cache/batch.json, data/.cache/findings.json, store[meta_key]
Writes: data/.cache/assessment.json   (Assessment)
        store[meta_key]               (generated blurb, rating and score)
"""
import logging
import math

from models.assessment import Assessment, ImpactSummary, RatingResult
from models.batch import InspectionBatch
from models.findings import Finding, FindingSet, RollupCounts
from models.report_meta import RatingOverride, ReportMeta
from settings import Settings
from utils.conditions import condition_label, is_critical, is_high, round_half_up
from utils.narrative import build_request, generate_narrative
from utils.store import KeyValueStore, save_report_meta

logger = logging.getLogger(__name__)

_SEED_SCORE = 80
_CRITICAL_PENALTY = 8
_HIGH_PENALTY = 3
_MIN_BLURB_LENGTH = 20
_MAX_HIGHLIGHTS = 5
_MAX_HIGHLIGHT_ACTIONS = 2

_IMPACT_CRITICAL = "High risk of operational disruption / off-hire / detention for critical items."
_IMPACT_HIGH = "Elevated maintenance and compliance exposure for high-severity items."
_IMPACT_NONE = "No critical/high items flagged; impacts are primarily routine maintenance and housekeeping."

_NARRATIVE_NONE = (
    "No critical/high impact findings were identified in the sampled set. Continue routine "
    "inspections and preventive maintenance, and close out minor observations through standard "
    "planned maintenance."
)
_NARRATIVE_FIRE = (
    "Fire hazards can increase operational risk and may impact compliance outcomes if not "
    "addressed. Immediate corrective actions are recommended for any fire-related findings, "
    "including housekeeping improvements, removal of ignition sources, and verification of "
    "firefighting readiness."
)
_NARRATIVE_TRIP = (
    "Trip/fall hazards may lead to crew injury and lost time incidents, increasing operational "
    "disruption and liability exposure. Prioritize housekeeping, route clearance, and signage "
    "where applicable."
)
_NARRATIVE_ATTENTION = (
    "Items marked 'Attention' may increase maintenance cost and reduce operational efficiency if "
    "left unaddressed. Prioritize corrective actions in the next maintenance window and monitor "
    "for recurrence."
)
_NARRATIVE_RUST = (
    "Rust/corrosion findings typically increase maintenance scope and may reduce equipment life. "
    "Schedule surface preparation, coating renewal, and follow-up inspections to prevent "
    "progression."
)


def run(
    settings: Settings,
    batch: InspectionBatch,
    finding_set: FindingSet,
    meta: ReportMeta,
    store: KeyValueStore,
    narrative: bool = True,
) -> Assessment:
    """Compute the rating and summaries and write assessment.json.

    Returns the completed Assessment.
    """
    generated_source = None
    if narrative and len(meta.summary_blurb.strip()) < _MIN_BLURB_LENGTH:
        result = generate_narrative(
            build_request(meta, batch.batch_summary, batch.images),
            batch.images,
            settings,
        )
        meta = meta.model_copy(update={
            "summary_blurb": result.summary,
            "overall_rating": result.overall_rating,
            "score": result.score,
        })
        save_report_meta(store, settings.meta_key, meta)
        generated_source = result.source

    rating = compute_rating(meta.average_area_score(), finding_set.findings, meta.rating_override)
    impact = summarize_impact(finding_set.findings)
    summary = build_executive_summary(meta, rating, impact, settings.model_name)

    if summary == meta.summary_blurb:
        source = generated_source or "manual"
    else:
        source = "auto"

    assessment = Assessment(
        rating=rating,
        impact=impact,
        impact_narrative=impact_narrative(finding_set.rollup),
        executive_summary=summary,
        summary_source=source,
    )

    artifact_path = settings.cache_dir / "assessment.json"
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    artifact_path.write_text(assessment.model_dump_json(indent=2), encoding="utf-8")

    logger.info("Stage 3 complete → %s", artifact_path)
    logger.info("  Rating:        %s (%s)%s", rating.label, rating.score_text,
                " [override]" if rating.is_override else "")
    logger.info("  Critical:      %d", len(impact.critical))
    logger.info("  High:          %d", len(impact.high))
    logger.info("  Summary:       %s", source)

    return assessment


# ---------------------------------------------------------------------------
# Rating
# ---------------------------------------------------------------------------

def compute_rating(
    avg_score,
    findings: list[Finding],
    override: RatingOverride | None = None,
) -> RatingResult:
    """Overall 0-100 score and label.

    An average on a 0-5 scale (0 < avg <= 5.5) is rescaled by 20; without a
    finite average the seed is 80. Each critical finding costs 8 points and
    each high-severity finding 3. The formula never yields "Satisfactory";
    that label only arrives through a manual override.
    """
    if override is not None and override.use_override:
        return RatingResult(
            score=_finite_or_none(override.score),
            label=override.label.strip() or "Override",
            is_override=True,
            override_rationale=override.rationale,
        )

    avg = _finite_or_none(avg_score)
    if avg is None:
        seed = _SEED_SCORE
    elif 0 < avg <= 5.5:
        seed = avg * 20
    else:
        seed = avg

    critical_count = sum(1 for f in findings if is_critical(f.severity, f.priority))
    high_count = sum(1 for f in findings if is_high(f.severity))

    score = seed - _CRITICAL_PENALTY * critical_count - _HIGH_PENALTY * high_count
    score = round_half_up(min(100, max(0, score)))

    return RatingResult(
        score=score,
        label=_rating_label(score),
        critical_count=critical_count,
        high_count=high_count,
    )


def _rating_label(score: int) -> str:
    if score >= 85:
        return "Excellent"
    if score >= 70:
        return "Good"
    if score >= 55:
        return "Fair"
    return "Poor"


def _finite_or_none(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


# ---------------------------------------------------------------------------
# Commercial impact
# ---------------------------------------------------------------------------

def summarize_impact(findings: list[Finding]) -> ImpactSummary:
    """Partition findings into critical/high and pick impact statements."""
    critical = [f for f in findings if is_critical(f.severity, f.priority)]
    high = [f for f in findings if is_high(f.severity)]

    statements: list[str] = []
    if critical:
        statements.append(_IMPACT_CRITICAL)
    if high:
        statements.append(_IMPACT_HIGH)
    if not critical and not high:
        statements.append(_IMPACT_NONE)

    return ImpactSummary(critical=critical, high=high, statements=statements)


def impact_narrative(rollup: RollupCounts) -> str:
    """One paragraph for the "at a glance" block, chosen by the worst category."""
    if rollup.fire_hazard + rollup.trip_fall + rollup.rust + rollup.attention == 0:
        return _NARRATIVE_NONE
    if rollup.fire_hazard:
        return _NARRATIVE_FIRE
    if rollup.trip_fall:
        return _NARRATIVE_TRIP
    if rollup.attention:
        return _NARRATIVE_ATTENTION
    return _NARRATIVE_RUST


# ---------------------------------------------------------------------------
# Executive summary
# ---------------------------------------------------------------------------

def build_executive_summary(
    meta: ReportMeta,
    rating: RatingResult,
    impact: ImpactSummary,
    model_name: str,
) -> str:
    """Manual blurb when selected, otherwise a generated headline block."""
    if meta.use_manual_summary and meta.summary_blurb.strip():
        return meta.summary_blurb

    score_part = f" ({rating.score:g}/100)" if rating.score is not None else ""
    headline = [
        f"Inspection summary generated from model: {model_name or 'N/A'}.",
        f"Overall vessel rating: {rating.label}{score_part}.",
        f"Critical items identified: {len(impact.critical)}."
        if impact.critical else "No critical items identified.",
        f"High-severity items identified: {len(impact.high)}."
        if impact.high else "No high-severity items identified.",
    ]

    highlights = [_highlight(f) for f in impact.critical[:_MAX_HIGHLIGHTS]]
    if not highlights:
        highlights = ["• No critical highlights available."]

    return "\n".join([*headline, "", "Key Highlights:", *highlights])


def _highlight(finding: Finding) -> str:
    area = finding.area.strip() if finding.area != "—" else ""
    line = f"• {condition_label(finding.condition)}"
    if area:
        line += f" @ {area}"
    line += f": {finding.notes.strip() or 'Issue flagged'}"
    actions = "; ".join(finding.actions[:_MAX_HIGHLIGHT_ACTIONS])
    if actions:
        line += f" (Action: {actions})"
    return line
