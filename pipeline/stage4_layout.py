"""Stage 4: Layout Planning — arrange metadata, findings and photos into pages.

Page order:
  cover → disclaimer → distribution → terms → references + particulars →
  movement + crew + executive summary → overall rating + commercial impact →
  defects gallery → location galleries → appendix

Blocking:
  - Defects gallery:   one page, every visible finding (not chunked)
  - Location gallery:  per location, blocks of ``photos_per_block``;
                       "Part i of n" only when a location needs several pages
  - Appendix:          the full image list in blocks of ``photos_per_block``;
                       always at least one page, even without images

Photo cells whose photo id has no backing image become placeholders
(no image URL). Pagination never fails on an unresolvable reference.

Reads:  data/.cache/batch.json, findings.json, assessment.json, store[meta_key]
Writes: data/.cache/page_plan.json       (PagePlan)
"""
import logging
from collections import Counter
from typing import Callable, Sequence, TypeVar

from models.assessment import Assessment, ImpactSummary, RatingResult
from models.batch import ImageRecord, InspectionBatch
from models.findings import Finding, FindingSet
from models.page_plan import (
    UNSPECIFIED_AREA,
    FieldRow,
    LocationGroup,
    PagePlan,
    PhotoCell,
    ReportPage,
    Section,
    Table,
    TextBlock,
)
from models.report_meta import DEFAULT_ABBREVIATIONS, ReportMeta
from settings import Settings
from utils.conditions import condition_label, resolve_effective_condition

logger = logging.getLogger(__name__)

T = TypeVar("T")

UrlResolver = Callable[[str], str]

_DASH = "—"

_INDEX_ENTRIES = (
    "Disclaimer",
    "Distribution List",
    "Terms and Abbreviations",
    "References",
    "Vessel Particulars",
    "Inspector's Particulars",
    "Vessel Movement",
    "Crew Particulars",
    "Executive Summary",
    "Overall Rating of the Vessel",
    "Summary of Findings and Commercial Impact",
    "Photo Gallery",
)


def run(
    settings: Settings,
    batch: InspectionBatch,
    finding_set: FindingSet,
    assessment: Assessment,
    meta: ReportMeta,
    url_for: UrlResolver,
) -> PagePlan:
    """Build the PagePlan and write page_plan.json.

    Returns the completed PagePlan.
    """
    pages = paginate(
        finding_set.findings,
        group_by_location(batch.images),
        meta,
        images=batch.images,
        rating=assessment.rating,
        impact=assessment.impact,
        executive_summary=assessment.executive_summary,
        url_for=url_for,
        settings=settings,
    )
    plan = PagePlan(pages=pages)

    artifact_path = settings.cache_dir / "page_plan.json"
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    artifact_path.write_text(plan.model_dump_json(indent=2), encoding="utf-8")

    logger.info("Stage 4 complete → %s", artifact_path)
    logger.info("  Total pages: %d", len(pages))
    _log_page_summary(pages)

    return plan


# ---------------------------------------------------------------------------
# Grouping and blocking
# ---------------------------------------------------------------------------

def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Split into consecutive blocks of at most `size` items."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def group_by_location(images: list[ImageRecord]) -> list[LocationGroup]:
    """Group images by location in first-seen order; blank → "Unspecified area"."""
    groups: dict[str, list[ImageRecord]] = {}
    for image in images:
        location = image.location.strip() or UNSPECIFIED_AREA
        groups.setdefault(location, []).append(image)
    return [LocationGroup(location=loc, items=items) for loc, items in groups.items()]


def merged_abbreviations(meta: ReportMeta) -> list[str]:
    """Default and custom abbreviations, de-duplicated, sorted case-insensitively."""
    unique = dict.fromkeys([*DEFAULT_ABBREVIATIONS, *meta.custom_abbreviations])
    return sorted(unique, key=str.casefold)


# ---------------------------------------------------------------------------
# Paginator
# ---------------------------------------------------------------------------

def paginate(
    findings: list[Finding],
    groups: list[LocationGroup],
    meta: ReportMeta,
    *,
    images: list[ImageRecord],
    rating: RatingResult,
    impact: ImpactSummary,
    executive_summary: str,
    url_for: UrlResolver,
    settings: Settings,
) -> list[ReportPage]:
    """Lay out the whole report as an ordered list of pages numbered from 1."""
    footer = (
        f"Generated by {settings.brand_name} • {meta.vessel.name or 'Vessel'} "
        f"• Model: {settings.model_name or _DASH}"
    )
    pages: list[ReportPage] = []

    def add(**fields) -> None:
        pages.append(ReportPage(page_number=len(pages) + 1, footer=footer, **fields))

    add(**_cover(meta, rating, impact, findings, images, settings))
    add(kind="disclaimer", title="Disclaimer",
        sections=[Section(kind="disclaimer", title="Disclaimer",
                          text_blocks=[TextBlock(content=meta.disclaimer_text or _DASH)])])
    add(kind="distribution", title="Distribution List", sections=[_distribution_section(meta)])
    add(kind="terms", title="Terms and Abbreviations", sections=_terms_sections(meta))
    add(kind="references", title="References and Particulars", sections=_reference_sections(meta))
    add(kind="movement", title="Vessel Movement, Crew and Executive Summary",
        sections=_movement_sections(meta, executive_summary))
    add(kind="overallRating", title="Overall Rating of the Vessel",
        sections=_rating_sections(rating, impact, findings, settings))

    images_by_id = {img.id: img for img in images}
    add(
        kind="defectsGallery",
        title="Defects & Non-Conformities (Photos)",
        subtitle="Derived + manual defects with actions & assignments (where available).",
        photo_cells=[_defect_cell(f, images_by_id, url_for, settings) for f in findings],
        totals={"total": len(findings), "critical": len(impact.critical), "high": len(impact.high)},
    )

    header_meta = [
        FieldRow(label="Vessel", value=meta.vessel.name or _DASH),
        FieldRow(label="Date", value=meta.inspection_date or _DASH),
        FieldRow(label="Port", value=meta.inspector.inspection_location or _DASH),
    ]
    for group in groups:
        blocks = chunk(group.items, settings.photos_per_block)
        multi = len(blocks) > 1
        for i, block in enumerate(blocks, start=1):
            subtitle = f"Area: {group.location}"
            if multi:
                subtitle += f" • Part {i} of {len(blocks)}"
            add(
                kind="locationGallery",
                title="Photo Gallery — Location-wise Findings",
                subtitle=subtitle,
                header_meta=header_meta,
                photo_cells=[_gallery_cell(img, url_for) for img in block],
                part_index=i if multi else None,
                part_count=len(blocks) if multi else None,
            )

    blocks = chunk(images, settings.photos_per_block) or [[]]
    for i, block in enumerate(blocks, start=1):
        add(
            kind="appendix",
            title="Appendix: All Photos",
            subtitle="Flat list in inspection order.",
            photo_cells=[_appendix_cell(img, url_for) for img in block],
            part_index=i,
            part_count=len(blocks),
            totals={"photos": len(images)},
        )

    return pages


# ---------------------------------------------------------------------------
# Fixed pages
# ---------------------------------------------------------------------------

def _cover(meta, rating, impact, findings, images, settings) -> dict:
    vessel = meta.vessel
    return dict(
        kind="cover",
        title="Vessel Inspection Report",
        subtitle=f"Generated by {settings.brand_name} • Model: {settings.model_name or _DASH}",
        header_meta=[
            FieldRow(label="Inspection Date", value=meta.inspection_date or _DASH),
            FieldRow(label="Location", value=meta.inspector.inspection_location or _DASH),
            FieldRow(label="Inspector", value=meta.inspector.name or _DASH),
            FieldRow(label="Report Ref", value=meta.report_ref or _DASH),
        ],
        sections=[
            Section(kind="cover", title="Vessel", fields=_rows([
                ("Vessel Name", vessel.name),
                ("IMO", vessel.imo),
                ("Flag", vessel.flag),
                ("Call Sign", vessel.call_sign),
            ])),
            Section(kind="cover", title="At a Glance", fields=[
                FieldRow(label="Overall Rating", value=rating.label or _DASH),
                FieldRow(label="Score", value=rating.score_text),
                FieldRow(label="Defects", value=str(len(findings))),
                FieldRow(label="Critical / High", value=f"{len(impact.critical)} / {len(impact.high)}"),
                FieldRow(label="Photos Analyzed", value=str(len(images))),
            ]),
            Section(
                kind="cover",
                title="Index",
                bullets=list(_INDEX_ENTRIES),
                note="Printed page numbers may vary based on printer/PDF settings.",
            ),
        ],
        totals={
            "defects": len(findings),
            "critical": len(impact.critical),
            "high": len(impact.high),
            "photos": len(images),
        },
    )


def _distribution_section(meta: ReportMeta) -> Section:
    section = Section(kind="distribution", title="Distribution List")
    if not meta.distribution_list:
        section.note = "No distribution entries provided."
        return section
    section.table = Table(
        columns=["Role", "Name", "Email"],
        rows=[[e.role or _DASH, e.name or _DASH, e.email or _DASH] for e in meta.distribution_list],
    )
    return section


def _terms_sections(meta: ReportMeta) -> list[Section]:
    return [
        Section(kind="terms", title="Abbreviations", bullets=merged_abbreviations(meta)),
        Section(kind="terms", title="Terms", bullets=meta.terms),
    ]


def _reference_sections(meta: ReportMeta) -> list[Section]:
    references = Section(kind="references", title="References", bullets=meta.references)
    if not references.bullets:
        references.note = "No references provided."

    vessel = meta.vessel
    inspector = meta.inspector
    return [
        references,
        Section(kind="particulars", title="Vessel Particulars", fields=_rows([
            ("Vessel Name", vessel.name),
            ("IMO", vessel.imo),
            ("Flag", vessel.flag),
            ("Call Sign", vessel.call_sign),
            ("Type", vessel.type),
            ("Class", vessel.vessel_class),
            ("DWT", vessel.dwt),
            ("GT", vessel.gt),
            ("LOA", vessel.loa),
            ("Beam", vessel.beam),
            ("Year Built", vessel.year_built),
            ("Port of Registry", vessel.port_of_registry),
        ])),
        Section(kind="particulars", title="Inspector's Particulars", fields=_rows([
            ("Name", inspector.name),
            ("Company", inspector.company),
            ("Email", inspector.email),
            ("Phone", inspector.phone),
            ("Credentials", inspector.credentials),
            ("Inspection Date", meta.inspection_date),
            ("Inspection Location", inspector.inspection_location),
        ])),
    ]


def _movement_sections(meta: ReportMeta, executive_summary: str) -> list[Section]:
    movement = meta.movement
    crew = meta.crew
    return [
        Section(kind="movement", title="Vessel Movement", fields=_rows([
            ("Last Port", movement.last_port),
            ("Current Port", movement.current_port),
            ("Next Port", movement.next_port),
            ("ETA", movement.eta),
            ("ETD", movement.etd),
            ("Berth / Anchorage", movement.berth_or_anchorage),
            ("Voyage Notes", movement.voyage_notes),
        ])),
        Section(kind="crew", title="Crew Particulars", fields=_rows([
            ("Total Crew", crew.total),
            ("Officers", crew.officers),
            ("Ratings", crew.ratings),
            ("Nationalities", crew.nationalities),
            ("Key Officers", crew.key_officers),
        ])),
        Section(kind="executiveSummary", title="Executive Summary",
                text_blocks=[TextBlock(content=executive_summary or _DASH)]),
    ]


def _rating_sections(
    rating: RatingResult,
    impact: ImpactSummary,
    findings: list[Finding],
    settings: Settings,
) -> list[Section]:
    rating_section = Section(kind="overallRating", title="Overall Rating of the Vessel", fields=[
        FieldRow(label="Rating", value=rating.label or _DASH),
        FieldRow(label="Score", value=rating.score_text),
        FieldRow(label="Method", value="Manual" if rating.is_override else "Auto"),
    ])
    if not rating.is_override:
        rating_section.fields += [
            FieldRow(label="Critical items", value=str(rating.critical_count)),
            FieldRow(label="High-severity items", value=str(rating.high_count)),
        ]
    elif rating.override_rationale.strip():
        rating_section.text_blocks = [
            TextBlock(content="Override Rationale", role="heading"),
            TextBlock(content=rating.override_rationale),
        ]

    # Input order, not re-sorted by severity
    top = impact.critical[:settings.top_critical_rows]
    impact_section = Section(
        kind="findingsImpact",
        title="Summary of Findings and Commercial Impact",
        bullets=list(impact.statements),
        text_blocks=[TextBlock(
            content=(
                f"Total defects shown: {len(findings)} • Critical: {len(impact.critical)} "
                f"• High: {len(impact.high)}"
            ),
            role="caption",
        )],
    )
    if top:
        impact_section.table = Table(
            columns=["Location", "Condition", "Severity/Priority", "Notes", "Actions"],
            rows=[
                [
                    f.area or _DASH,
                    f.condition.upper(),
                    f"{f.severity or _DASH} / {f.priority or _DASH}",
                    f.notes or _DASH,
                    "\n".join(f.actions[:3]) or _DASH,
                ]
                for f in top
            ],
        )
    else:
        impact_section.note = "No critical findings identified."

    return [rating_section, impact_section]


def _rows(pairs: list[tuple[str, str]]) -> list[FieldRow]:
    return [FieldRow(label=label, value=(value or "").strip() or _DASH) for label, value in pairs]


# ---------------------------------------------------------------------------
# Photo cells
# ---------------------------------------------------------------------------

def _badge_suffix(number: int, severity: str, priority: str) -> str:
    return " • ".join(part for part in (f"#{number}", severity, priority) if part)


def _defect_cell(
    finding: Finding,
    images_by_id: dict[str, ImageRecord],
    url_for: UrlResolver,
    settings: Settings,
) -> PhotoCell:
    image = images_by_id.get(finding.photo_id) if finding.photo_id else None
    return PhotoCell(
        key=finding.id,
        photo_id=finding.photo_id,
        image_url=url_for(image.id) if image is not None else None,
        source_index=image.source_index if image is not None else None,
        condition=finding.condition,
        condition_label=condition_label(finding.condition),
        badge_suffix=_badge_suffix(finding.index, finding.severity, finding.priority),
        location=finding.area,
        severity=finding.severity,
        priority=finding.priority,
        notes=finding.notes,
        recommendations=finding.actions[:settings.max_defect_actions],
        assigned_to=finding.assigned_to,
        deadline=finding.deadline,
        origin=finding.origin,
    )


def _gallery_cell(image: ImageRecord, url_for: UrlResolver) -> PhotoCell:
    condition = resolve_effective_condition(image)
    return PhotoCell(
        key=image.id,
        photo_id=image.id,
        image_url=url_for(image.id),
        source_index=image.source_index,
        condition=condition,
        condition_label=condition_label(condition),
        badge_suffix=_badge_suffix(image.source_index + 1, image.severity, image.priority),
        location=image.location.strip() or UNSPECIFIED_AREA,
        severity=image.severity,
        priority=image.priority,
        notes=image.comment,
        recommendations=list(image.recommendations),
    )


def _appendix_cell(image: ImageRecord, url_for: UrlResolver) -> PhotoCell:
    condition = resolve_effective_condition(image)
    return PhotoCell(
        key=f"appendix-{image.id}",
        photo_id=image.id,
        image_url=url_for(image.id),
        source_index=image.source_index,
        condition=condition,
        condition_label=condition_label(condition),
        badge_suffix=f"#{image.source_index + 1}",
        location=image.location.strip() or UNSPECIFIED_AREA,
        notes=image.comment,
    )


# ---------------------------------------------------------------------------
# Logging helpers
# ---------------------------------------------------------------------------

def _log_page_summary(pages: list[ReportPage]) -> None:
    kinds = Counter(p.kind for p in pages)
    for kind, count in kinds.items():
        logger.info("  %-16s %d page(s)", kind + ":", count)
    placeholders = sum(
        1 for p in pages for c in p.photo_cells if c.photo_id and c.image_url is None
    )
    if placeholders:
        logger.warning("  %d photo cell(s) reference images that are not in the batch.", placeholders)
