from typing import Literal

from pydantic import BaseModel, Field

from models.findings import Finding


class RatingResult(BaseModel):
    """Overall vessel score (0-100) and label.

    `score` is None when an override carries no usable number. Automatic
    labels are Excellent/Good/Fair/Poor; an override label is free text.
    """

    score: int | float | None = None
    label: str
    critical_count: int = 0
    high_count: int = 0
    is_override: bool = False
    override_rationale: str = ""

    @property
    def score_text(self) -> str:
        return f"{self.score:g}/100" if self.score is not None else "—"


class ImpactSummary(BaseModel):
    critical: list[Finding] = Field(default_factory=list)
    high: list[Finding] = Field(default_factory=list)
    statements: list[str] = Field(default_factory=list)


class Assessment(BaseModel):
    rating: RatingResult
    impact: ImpactSummary = Field(default_factory=ImpactSummary)
    impact_narrative: str = ""
    executive_summary: str = ""
    summary_source: Literal["manual", "narrative", "heuristic", "auto"] = "auto"
