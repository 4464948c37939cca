from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from utils.conditions import (
    canonical_condition,
    canonical_priority,
    canonical_severity,
    safe_string,
    to_text_list,
)

_EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


class BatchSummary(BaseModel):
    """Counts reported by the classification service for the whole batch."""

    fire_hazard_count: int = 0
    trip_fall_count: int = 0
    none_count: int = 0

    @field_validator("fire_hazard_count", "trip_fall_count", "none_count", mode="before")
    @classmethod
    def coerce_count(cls, v):
        try:
            return max(0, int(v))
        except (TypeError, ValueError):
            return 0


class ImageRecord(BaseModel):
    """One inspected photograph with canonicalised classifier fields.

    `raw_condition`, `severity` and `priority` are canonicalised on
    construction, so `raw_condition` is never empty ("none" at worst).
    `source_index` is the 0-based position in the batch and is the
    alternative address for post-hoc edits.
    """

    id: str
    source_index: int = Field(ge=0)
    location: str = ""
    raw_condition: str = "none"
    severity: str = ""
    priority: str = ""
    tags: dict[str, bool] = Field(default_factory=dict)
    comment: str = ""
    recommendations: list[str] = Field(default_factory=list)
    capture_timestamp: datetime | None = None

    @field_validator("raw_condition", mode="before")
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

    @field_validator("recommendations", mode="before")
    @classmethod
    def _split_recommendations(cls, v) -> list[str]:
        return to_text_list(v)

    @field_validator("tags", mode="before")
    @classmethod
    def _truthy_tags(cls, v) -> dict[str, bool]:
        if not isinstance(v, dict):
            return {}
        return {str(k): bool(flag) for k, flag in v.items()}

    @field_validator("capture_timestamp", mode="before")
    @classmethod
    def ensure_utc(cls, v):
        if isinstance(v, str):
            v = _parse_timestamp(v)
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def from_raw(cls, index: int, data: dict) -> "ImageRecord":
        """Build from one `per_image` entry, accepting the classifier's field aliases."""
        exif = data.get("exif") if isinstance(data.get("exif"), dict) else {}
        recs = data.get("recommendations_high_severity_only")
        if not to_text_list(recs):
            recs = data.get("recommendations")
        return cls(
            id=safe_string(data.get("id")).strip() or f"image_{index + 1:03d}",
            source_index=index,
            location=safe_string(data.get("location") or data.get("area")).strip(),
            raw_condition=data.get("condition") or data.get("condition_type"),
            severity=data.get("severity_level") or data.get("severity"),
            priority=data.get("priority"),
            tags=data.get("tags") or {},
            comment=safe_string(data.get("comment") or data.get("comments")),
            recommendations=recs,
            capture_timestamp=_parse_timestamp(
                data.get("timestamp") or data.get("capture_time") or exif.get("DateTimeOriginal")
            ),
        )


class InspectionBatch(BaseModel):
    batch_summary: BatchSummary = Field(default_factory=BatchSummary)
    images: list[ImageRecord] = Field(default_factory=list)

    def by_id(self, image_id: str) -> ImageRecord | None:
        return next((i for i in self.images if i.id == image_id), None)


def _parse_timestamp(value) -> datetime | None:
    if isinstance(value, datetime):
        return value
    s = safe_string(value).strip()
    if not s:
        return None
    try:
        return datetime.strptime(s, _EXIF_DATETIME_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
