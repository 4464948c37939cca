"""Canonical vocabulary for condition, severity and priority tags.

The classifier emits free text. Everything downstream compares canonical
tags, so every call site goes through these functions. Values outside the
known vocabulary pass through (lower-cased, trimmed) instead of being
coerced, which keeps unexpected classifier output visible in the report.

`resolve_effective_condition` is the single escalation rule shared by the
findings aggregator, the narrative payload and the report paginator.
"""
import math
from typing import Literal, Protocol

ConditionTag = Literal["none", "fire_hazard", "trip_fall", "rust", "attention", "defect"]
SeverityTag = Literal["low", "medium", "high", "critical", ""]
PriorityTag = Literal["low", "medium", "high", "critical", ""]

KNOWN_CONDITIONS: frozenset[str] = frozenset(
    {"none", "fire_hazard", "trip_fall", "rust", "attention", "defect"}
)
KNOWN_LEVELS: frozenset[str] = frozenset({"low", "medium", "high", "critical", ""})

# Tags counted in the "at a glance" rollup
ROLLUP_CONDITIONS = ("fire_hazard", "trip_fall", "rust", "attention")

RUST_STAINS_TAG = "rust_stains"

_NEUTRAL = frozenset({"", "none", "na", "n/a", "ok", "satisfactory", "good"})

_CONDITION_SYNONYMS = {
    "rust": "rust",
    "corrosion": "rust",
    "rusting": "rust",
    "attention": "attention",
    "issue": "attention",
    "problem": "attention",
    "concern": "attention",
    "nonconformity": "attention",
    "non-conformity": "attention",
    "defect": "defect",
    "defective": "defect",
    "fire_hazard": "fire_hazard",
    "fire hazard": "fire_hazard",
    "fire": "fire_hazard",
    "trip_fall": "trip_fall",
    "trip/fall": "trip_fall",
    "trip / fall": "trip_fall",
    "trip hazard": "trip_fall",
}

_SEVERITY_SYNONYMS = {
    "low": "low",
    "minor": "low",
    "medium": "medium",
    "moderate": "medium",
    "high": "high",
    "major": "high",
    "extreme": "critical",
    "critical": "critical",
}

_PRIORITY_SYNONYMS = {
    "low": "low",
    "medium": "medium",
    "normal": "medium",
    "high": "high",
    "urgent": "high",
    "critical": "critical",
    "immediate": "critical",
    "immediate action required": "critical",
}

_CONDITION_LABELS = {
    "fire_hazard": "Fire hazard",
    "trip_fall": "Trip / fall",
    "none": "Satisfactory",
    "rust": "Rust",
    "attention": "Attention",
    "defect": "Defect",
}


class ConditionSource(Protocol):
    """Anything carrying the fields the resolver looks at (e.g. ImageRecord)."""

    raw_condition: str
    severity: str
    priority: str
    tags: dict[str, bool]
    recommendations: list[str]


# ---------------------------------------------------------------------------
# Canonicalizer
# ---------------------------------------------------------------------------

def safe_string(value) -> str:
    """Coerce scalars to str; None and containers become ''."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 upwards (72.5 -> 73)."""
    return math.floor(value + 0.5)


def _clean(raw) -> str:
    return safe_string(raw).strip().lower()


def canonical_condition(raw) -> str:
    s = _clean(raw)
    if s in _NEUTRAL:
        return "none"
    return _CONDITION_SYNONYMS.get(s, s)


def canonical_severity(raw) -> str:
    s = _clean(raw)
    if s in _NEUTRAL:
        return ""
    return _SEVERITY_SYNONYMS.get(s, s)


def canonical_priority(raw) -> str:
    s = _clean(raw)
    if s in _NEUTRAL:
        return ""
    return _PRIORITY_SYNONYMS.get(s, s)


def is_known_condition(tag: str) -> bool:
    return tag in KNOWN_CONDITIONS


def is_known_severity(tag: str) -> bool:
    return tag in KNOWN_LEVELS


def is_known_priority(tag: str) -> bool:
    return tag in KNOWN_LEVELS


def condition_label(tag) -> str:
    """Human label for a condition tag; unknown tags are shown upper-cased."""
    c = canonical_condition(tag)
    return _CONDITION_LABELS.get(c, c.upper())


def is_critical(severity, priority) -> bool:
    return canonical_severity(severity) == "critical" or canonical_priority(priority) == "critical"


def is_high(severity) -> bool:
    return canonical_severity(severity) == "high"


def to_text_list(value) -> list[str]:
    """Normalise a recommendation field to a list of non-empty strings.

    Lists are cleaned item by item. A single string is split on newlines
    when it has any, otherwise on semicolons.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [s for s in (safe_string(x).strip() for x in value) if s]
    s = safe_string(value).strip()
    if not s:
        return []
    separator = "\n" if "\n" in s else ";"
    return [part.strip() for part in s.split(separator) if part.strip()]


# ---------------------------------------------------------------------------
# Effective-condition resolver
# ---------------------------------------------------------------------------

def resolve_effective_condition(record: ConditionSource) -> str:
    """Condition actually shown for an image.

    A classifier "none" is escalated when secondary signals disagree:
    a rust-stains tag yields "rust"; any recommendation, a high/critical
    severity or a critical priority yields "attention".
    """
    stored = canonical_condition(record.raw_condition)
    if stored != "none":
        return stored

    if (record.tags or {}).get(RUST_STAINS_TAG):
        return "rust"

    if record.recommendations:
        return "attention"
    if canonical_severity(record.severity) in ("high", "critical"):
        return "attention"
    if canonical_priority(record.priority) == "critical":
        return "attention"
    return "none"
