"""Findings contract: derived/manual findings, stored overrides, rollups.

A finding is either derived from one flagged ImageRecord or authored by
hand. The two lifecycles differ: derived findings are only ever hidden
(so they can be restored), manual ones are deleted outright.

Overrides are stored per finding id and layered over the derived base with
`Finding.merge()`, which returns a new model and never mutates the base.
"""
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from utils.conditions import canonical_condition, canonical_priority, canonical_severity, to_text_list

# Override fields that may be layered over a derived finding
_EDITABLE_FIELDS = frozenset({
    "area", "assigned_to", "condition", "deadline", "comment",
    "recommendations", "severity", "priority", "description_text",
})


class _FindingBase(BaseModel):
    id: str
    index: int = Field(default=0, ge=0)
    photo_id: str | None = None
    area: str = "—"
    condition: str = "attention"
    severity: str = ""
    priority: str = ""
    assigned_to: str = ""
    deadline: str = ""

    @field_validator("condition", mode="before")
    @classmethod
    def _canonical_condition(cls, v) -> str:
        return canonical_condition(v)

    @field_validator("severity", mode="before")
    @classmethod
    def _canonical_severity(cls, v) -> str:
        return canonical_severity(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _canonical_priority(cls, v) -> str:
        return canonical_priority(v)

    def merge(self, override: "FindingOverride") -> "Finding":
        """Return a copy with the override's edited fields layered on top."""
        patch = {
            k: v for k, v in override.model_dump(exclude_unset=True).items()
            if k in _EDITABLE_FIELDS and k in type(self).model_fields and v is not None
        }
        if not patch:
            return self
        return type(self).model_validate({**self.model_dump(), **patch})


class DerivedFinding(_FindingBase):
    """Finding computed from a flagged image; `photo_id` is the image id."""

    origin: Literal["derived"] = "derived"
    comment: str = ""
    recommendations: str = ""  # "; "-joined; the edit form works on the joined text

    @field_validator("recommendations", mode="before")
    @classmethod
    def _join_recommendations(cls, v) -> str:
        if isinstance(v, (list, tuple)):
            return "; ".join(to_text_list(v))
        return v if v is not None else ""

    @property
    def notes(self) -> str:
        return self.comment

    @property
    def actions(self) -> list[str]:
        return to_text_list(self.recommendations)


class ManualFinding(_FindingBase):
    """Hand-authored finding. Description and actions share one text block."""

    origin: Literal["manual"] = "manual"
    description_text: str = ""

    @property
    def notes(self) -> str:
        return self.description_text

    @property
    def actions(self) -> list[str]:
        return [line.strip() for line in self.description_text.splitlines() if line.strip()]


Finding = Annotated[DerivedFinding | ManualFinding, Field(discriminator="origin")]


class FindingOverride(BaseModel):
    """One entry of the override store, keyed by finding id.

    For derived findings this is a patch (edits and `hidden`); for manual
    findings (`manual=True`) it is the finding's own record. The client
    stores camelCase keys, and `combined` is its name for the manual
    description block; both spellings are accepted.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str | None = None
    manual: bool = False
    hidden: bool = False
    photo_id: str | None = None
    area: str | None = None
    assigned_to: str | None = None
    condition: str | None = None
    deadline: str | None = None
    comment: str | None = None
    recommendations: str | list[str] | None = None
    severity: str | None = None
    priority: str | None = None
    description_text: str | None = Field(default=None, alias="combined")

    @field_validator("description_text", mode="before")
    @classmethod
    def _coerce_text(cls, v):
        return v if v is None or isinstance(v, str) else str(v)

    def patch(self) -> dict:
        """Fields explicitly set on this override, in store (camelCase) form."""
        return self.model_dump(by_alias=True, exclude_unset=True)

    def to_manual_finding(self, finding_id: str, index: int) -> ManualFinding:
        return ManualFinding(
            id=self.id or finding_id,
            index=index,
            photo_id=(self.photo_id or "").strip() or None,
            area=self.area or "—",
            condition=self.condition or "attention",
            severity=self.severity or "",
            priority=self.priority or "",
            assigned_to=self.assigned_to or "",
            deadline=self.deadline or "",
            description_text=self.description_text or "",
        )


class RollupCounts(BaseModel):
    """Per-condition totals over the visible findings."""

    fire_hazard: int = 0
    trip_fall: int = 0
    rust: int = 0
    attention: int = 0
    missing_timestamps: int = 0
    total: int = 0


class FindingSet(BaseModel):
    findings: list[Finding] = Field(default_factory=list)
    rollup: RollupCounts = Field(default_factory=RollupCounts)
