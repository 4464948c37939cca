from typing import Literal

from pydantic import BaseModel, Field

from models.batch import ImageRecord

UNSPECIFIED_AREA = "Unspecified area"

PageKind = Literal[
    "cover", "disclaimer", "distribution", "terms", "references", "particulars",
    "movement", "crew", "executiveSummary", "overallRating", "findingsImpact",
    "defectsGallery", "locationGallery", "appendix",
]


class LocationGroup(BaseModel):
    """Images sharing one location, in source order."""

    location: str
    items: list[ImageRecord] = Field(default_factory=list)


class FieldRow(BaseModel):
    label: str
    value: str


class TextBlock(BaseModel):
    content: str
    role: Literal["heading", "body", "caption", "footer"] = "body"


class Table(BaseModel):
    columns: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)


class Section(BaseModel):
    """One titled block on a page (a page can hold several)."""

    kind: PageKind
    title: str
    text_blocks: list[TextBlock] = Field(default_factory=list)
    fields: list[FieldRow] = Field(default_factory=list)  # two-column key/value table
    bullets: list[str] = Field(default_factory=list)
    table: Table | None = None
    note: str = ""


class PhotoCell(BaseModel):
    """One photo plus its caption fields.

    `image_url` is None for a placeholder (no bound photo, or the photo id
    has no backing image record). The renderer clears it and sets
    `image_missing` when the asset fails to load.
    """

    key: str
    photo_id: str | None = None
    image_url: str | None = None
    image_missing: bool = False
    source_index: int | None = None
    condition: str = "none"
    condition_label: str = ""
    badge_suffix: str = ""  # "#3 • high • critical"
    location: str = ""
    severity: str = ""
    priority: str = ""
    notes: str = ""
    recommendations: list[str] = Field(default_factory=list)
    assigned_to: str = ""
    deadline: str = ""
    origin: Literal["derived", "manual", "photo"] = "photo"


class ReportPage(BaseModel):
    page_number: int = Field(ge=1)
    kind: PageKind
    title: str
    subtitle: str = ""
    header_meta: list[FieldRow] = Field(default_factory=list)
    sections: list[Section] = Field(default_factory=list)
    photo_cells: list[PhotoCell] = Field(default_factory=list)
    part_index: int | None = None  # 1-based
    part_count: int | None = None
    totals: dict[str, int] = Field(default_factory=dict)
    footer: str = ""


class PagePlan(BaseModel):
    pages: list[ReportPage] = Field(default_factory=list)

    def by_kind(self, kind: str) -> list[ReportPage]:
        return [p for p in self.pages if p.kind == kind]
