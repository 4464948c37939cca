"""Executive-summary narrative.

Primary path: send the inspection counts and per-image hazards to GPT
(structured output) and read back a summary, an overall rating and a score.

Fallback path: a deterministic summary built from the batch counts and the
two busiest locations. Used when no API key is configured, narrative
generation is disabled, or the request fails in any way. Callers never see
an exception from this module.
"""
import json
import logging
import random
import time as time_module
from collections import Counter

from openai import OpenAI, RateLimitError
from pydantic import BaseModel, ConfigDict, Field

from models.batch import BatchSummary, ImageRecord
from models.report_meta import ReportMeta
from settings import Settings
from utils.conditions import resolve_effective_condition, round_half_up

logger = logging.getLogger(__name__)

_MAX_RETRIES = 6

_SYSTEM_PROMPT = """\
You are a marine surveyor writing the executive summary of a vessel inspection report.
You receive inspection metadata, batch counts and one entry per photographed hazard
(location, condition, tags, inspector comment, recommended actions).
Write a concise, factual summary (3-6 sentences) in English, give an overall rating
(Excellent, Good, Satisfactory, Fair or Poor) and a score from 0 to 100.
Answer strictly in the given JSON schema.
"""


def _strict_schema(schema: dict) -> dict:
    """OpenAI strict mode: every property required, no additional properties."""
    schema["required"] = list(schema.get("properties", {}).keys())
    schema["additionalProperties"] = False
    return schema


class Hazard(BaseModel):
    id: str
    location: str = ""
    condition: str = "none"
    tags: dict[str, bool] = Field(default_factory=dict)
    comment: str = ""
    recs: str = ""


class NarrativeRequest(BaseModel):
    meta: dict[str, str]
    counts: BatchSummary
    hazards: list[Hazard] = Field(default_factory=list)


class NarrativeResponse(BaseModel):
    model_config = ConfigDict(json_schema_extra=_strict_schema)

    summary: str | None = None
    overall_rating: str | None = None
    score: float | None = None


class Narrative(BaseModel):
    summary: str
    overall_rating: str
    score: int
    source: str  # "narrative" | "heuristic"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_request(meta: ReportMeta, counts: BatchSummary, images: list[ImageRecord]) -> NarrativeRequest:
    hazards = [
        Hazard(
            id=img.id,
            location=img.location,
            condition=resolve_effective_condition(img),
            tags=img.tags,
            comment=img.comment,
            recs="; ".join(img.recommendations),
        )
        for img in images
    ]
    return NarrativeRequest(
        meta={
            "vesselName": meta.vessel.name,
            "date": meta.inspection_date,
            "location": meta.inspector.inspection_location,
            "inspector": meta.inspector.name,
        },
        counts=counts,
        hazards=hazards,
    )


def generate_narrative(
    request: NarrativeRequest,
    images: list[ImageRecord],
    settings: Settings,
) -> Narrative:
    """Ask the model for a narrative; fall back to the local heuristic."""
    if settings.narrative_enabled and settings.openai_api_key:
        try:
            response = _request_via_llm(request, settings)
            if not response or not (response.summary or "").strip():
                raise ValueError("empty narrative response")
            fallback = heuristic_narrative(request, images)
            logger.info("Executive summary generated via LLM (%s).", settings.text_model)
            return Narrative(
                summary=response.summary.strip(),
                overall_rating=(response.overall_rating or "").strip() or fallback.overall_rating,
                score=_clamp_score(response.score) if response.score is not None else fallback.score,
                source="narrative",
            )
        except Exception as exc:
            logger.warning("Narrative generation failed (%s); using heuristic summary.", exc)
    else:
        logger.info("Narrative generation unavailable; using heuristic summary.")
    return heuristic_narrative(request, images)


# ---------------------------------------------------------------------------
# LLM request
# ---------------------------------------------------------------------------

def _request_via_llm(request: NarrativeRequest, settings: Settings) -> NarrativeResponse | None:
    client = OpenAI(api_key=settings.openai_api_key)
    payload = json.dumps(request.model_dump(mode="json"), ensure_ascii=False)
    for attempt in range(_MAX_RETRIES):
        try:
            response = client.beta.chat.completions.parse(
                model=settings.text_model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": payload[:16000]},
                ],
                response_format=NarrativeResponse,
            )
            return response.choices[0].message.parsed
        except RateLimitError:
            if attempt == _MAX_RETRIES - 1:
                raise
            delay = 2 ** attempt + random.uniform(0, 1)
            logger.debug(
                "Rate limited; retrying in %.1fs (attempt %d/%d).",
                delay, attempt + 1, _MAX_RETRIES,
            )
            time_module.sleep(delay)

    raise RuntimeError("Unreachable")  # pragma: no cover


# ---------------------------------------------------------------------------
# Heuristic fallback
# ---------------------------------------------------------------------------

def heuristic_narrative(request: NarrativeRequest, images: list[ImageRecord]) -> Narrative:
    counts = request.counts
    location_counts = Counter(img.location or "unspecified area" for img in images)
    # most_common keeps first-seen order among ties
    top_locations = " & ".join(loc for loc, _ in location_counts.most_common(2))

    date_text = request.meta.get("date") or "the stated date"
    place = request.meta.get("location") or "the reported location"
    parts = [
        f"The inspection on {date_text} at {place} covered {len(images)} photos "
        f"across {len(location_counts)} area(s)."
    ]
    if counts.fire_hazard_count:
        parts.append(f"{counts.fire_hazard_count} fire hazard(s) were flagged.")
    if counts.trip_fall_count:
        parts.append(f"{counts.trip_fall_count} trip/fall issue(s) noted.")
    if not counts.fire_hazard_count and not counts.trip_fall_count:
        parts.append("No critical hazards were detected in the sampled set.")
    parts.append(f"Most photos came from {top_locations or 'varied areas'}.")

    score = max(0, 100 - (counts.fire_hazard_count + counts.trip_fall_count) * 10)
    return Narrative(
        summary=" ".join(parts),
        overall_rating=heuristic_label(score),
        score=score,
        source="heuristic",
    )


def heuristic_label(score: float) -> str:
    if score >= 90:
        return "Excellent"
    if score >= 75:
        return "Good"
    if score >= 60:
        return "Satisfactory"
    if score >= 40:
        return "Fair"
    return "Poor"


def _clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))
