"""Report metadata persisted alongside the review (vessel, inspector, crew ...).

Every field has a default so the model is usable when nothing has been
stored yet. The client stores camelCase keys; unknown keys are ignored.
"""
import math
from datetime import date
from statistics import mean

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from utils.conditions import round_half_up

DEFAULT_DISCLAIMER = (
    "This report is based on a visual inspection conducted at the stated time and location. "
    "Findings reflect conditions observed at the time of inspection and are subject to change. "
    "No dismantling, intrusive testing, or statutory verification was undertaken unless explicitly stated. "
    "This report is provided for informational purposes only and should not be construed as a warranty or guarantee."
)

DEFAULT_TERMS = (
    "Observation: A recorded condition noted during inspection (may or may not require action).\n"
    "Defect / Non-conformity: A condition requiring attention or corrective action.\n"
    "Severity: Indicative impact level (low/medium/high/critical).\n"
    "Priority: Urgency for action (low/medium/high/critical)."
)

DEFAULT_ABBREVIATIONS = (
    "IMO = International Maritime Organization",
    "ISM = International Safety Management",
    "PSC = Port State Control",
    "PPE = Personal Protective Equipment",
    "NCR = Non-Conformity Report",
    "SMS = Safety Management System",
    "ETA = Estimated Time of Arrival",
    "ETD = Estimated Time of Departure",
    "LOA = Length Overall",
    "GT = Gross Tonnage",
    "DWT = Deadweight Tonnage",
    "SOP = Standard Operating Procedure",
)


class _CamelModel(BaseModel):
    # form inputs may arrive as numbers ("imo": 9321483)
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", coerce_numbers_to_str=True
    )


class VesselParticulars(_CamelModel):
    name: str = ""
    imo: str = ""
    flag: str = ""
    call_sign: str = ""
    type: str = ""
    vessel_class: str = Field(default="", alias="class")
    dwt: str = ""
    gt: str = ""
    loa: str = ""
    beam: str = ""
    year_built: str = ""
    port_of_registry: str = ""


class InspectorParticulars(_CamelModel):
    name: str = ""
    company: str = ""
    email: str = ""
    phone: str = ""
    credentials: str = ""
    inspection_location: str = ""


class VesselMovement(_CamelModel):
    last_port: str = ""
    current_port: str = ""
    next_port: str = ""
    eta: str = ""
    etd: str = ""
    berth_or_anchorage: str = ""
    voyage_notes: str = ""


class CrewParticulars(_CamelModel):
    total: str = ""
    officers: str = ""
    ratings: str = ""
    nationalities: str = ""
    key_officers: str = ""


class DistributionEntry(_CamelModel):
    role: str = ""
    name: str = ""
    email: str = ""


class RatingOverride(_CamelModel):
    use_override: bool = False
    score: float | str | None = None
    label: str = ""
    rationale: str = ""


class AreaRating(_CamelModel):
    score: float = 0.0
    rating: str = ""
    remarks: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, v):
        # a cleared or non-numeric score counts as 0
        try:
            number = float(v)
        except (TypeError, ValueError):
            return 0.0
        return number if math.isfinite(number) else 0.0


def _default_distribution() -> list[DistributionEntry]:
    return [DistributionEntry(role=role) for role in ("Owner", "Manager", "Charterer")]


def _default_area_ratings() -> dict[str, AreaRating]:
    return {
        "Accommodation": AreaRating(score=90, rating="Excellent"),
        "Bridge": AreaRating(score=85, rating="Good"),
        "Engine Room": AreaRating(score=80, rating="Good"),
        "Hull Area": AreaRating(score=70, rating="Satisfactory"),
        "Cargo Control Room": AreaRating(score=75, rating="Satisfactory"),
    }


class ReportMeta(_CamelModel):
    inspection_date: str = Field(default_factory=lambda: date.today().isoformat())
    report_ref: str = ""
    vessel: VesselParticulars = Field(default_factory=VesselParticulars)
    inspector: InspectorParticulars = Field(default_factory=InspectorParticulars)
    movement: VesselMovement = Field(default_factory=VesselMovement)
    crew: CrewParticulars = Field(default_factory=CrewParticulars)

    disclaimer_text: str = DEFAULT_DISCLAIMER
    distribution_list: list[DistributionEntry] = Field(default_factory=_default_distribution)
    terms_text: str = DEFAULT_TERMS
    abbreviations_text: str = ""
    references_text: str = ""

    summary_blurb: str = ""
    use_manual_summary: bool = True
    overall_rating: str = ""
    score: int | None = None
    rating_override: RatingOverride = Field(default_factory=RatingOverride)
    area_ratings: dict[str, AreaRating] = Field(default_factory=_default_area_ratings)

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, v):
        if v is None or v == "":
            return None
        try:
            return max(0, min(100, round_half_up(float(v))))
        except (TypeError, ValueError, OverflowError):
            return None

    def average_area_score(self) -> float | None:
        """Mean of the area scorecard, one decimal; None without areas."""
        if not self.area_ratings:
            return None
        return round_half_up(mean(a.score for a in self.area_ratings.values()) * 10) / 10

    @property
    def custom_abbreviations(self) -> list[str]:
        return _lines(self.abbreviations_text)

    @property
    def references(self) -> list[str]:
        return _lines(self.references_text)

    @property
    def terms(self) -> list[str]:
        return _lines(self.terms_text)


def _lines(text: str) -> list[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]
