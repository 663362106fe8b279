"""
Tenant Dashboard — traffic analytics schemas.

``StandardizedTrafficData`` is the single shape returned to the dashboard,
whether it came from GA4, the cache or the synthetic fallback.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

TRAFFIC_SOURCE = "google_analytics"


class Provenance(str, Enum):
    FRESH = "fresh"
    CACHE_HIT = "cache-hit"
    SYNTHETIC = "synthetic"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def share_percentages(counts: list[int]) -> list[int]:
    """Integer share of each count in the total, summing to exactly 100.

    Largest-remainder rounding: floor every share, then hand the leftover
    points to the entries with the biggest fractional parts (earlier
    entries win ties).  An all-zero list gets all zeros.
    """
    total = sum(counts)
    if total <= 0:
        return [0] * len(counts)

    raw = [c * 100 / total for c in counts]
    floors = [int(r) for r in raw]
    leftover = 100 - sum(floors)
    order = sorted(range(len(counts)), key=lambda i: (-(raw[i] - floors[i]), i))
    for i in order[:leftover]:
        floors[i] += 1
    return floors


class DateRange(BaseModel):
    """Closed interval [start, end] of UTC instants. Hashable."""

    start: datetime
    end: datetime

    model_config = {"frozen": True}

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def _ordered(self):
        if self.start > self.end:
            raise ValueError("date range start must not be after end")
        return self

    def contains(self, other: "DateRange") -> bool:
        return self.start <= other.start and self.end >= other.end

    def whole_days(self) -> "DateRange":
        """Widen to full UTC days; GA4 reports at day granularity."""
        start = self.start.replace(hour=0, minute=0, second=0, microsecond=0)
        end = self.end.replace(hour=23, minute=59, second=59, microsecond=999999)
        return DateRange(start=start, end=end)

    @property
    def days(self) -> int:
        """Inclusive number of calendar days touched by the range."""
        return (self.end.date() - self.start.date()).days + 1

    @classmethod
    def trailing(cls, days: int, now: datetime) -> "DateRange":
        now = as_utc(now)
        return cls(start=now - timedelta(days=days), end=now)


class TrafficMetrics(BaseModel):
    page_views: int = 0
    sessions: int = 0
    visitors: int = 0
    bounce_rate: float | None = None


class TrafficSource(BaseModel):
    source: str
    medium: str | None = None
    sessions: int
    percentage: int = 0


class TopPage(BaseModel):
    path: str
    page_views: int
    visitors: int | None = None


class DeviceShare(BaseModel):
    device: str
    sessions: int
    percentage: int = 0


class StandardizedTrafficData(BaseModel):
    source: Literal["google_analytics"] = TRAFFIC_SOURCE
    date_range: DateRange
    metrics: TrafficMetrics
    traffic_sources: list[TrafficSource] = []
    top_pages: list[TopPage] = []
    device_distribution: list[DeviceShare] = []
    last_updated: datetime
    provenance: Provenance

    @computed_field
    @property
    def is_from_cache(self) -> bool:
        return self.provenance == Provenance.CACHE_HIT

    def with_provenance(self, provenance: Provenance) -> "StandardizedTrafficData":
        return self.model_copy(update={"provenance": provenance}, deep=True)


def empty_traffic_data(date_range: DateRange, now: datetime) -> StandardizedTrafficData:
    """Valid zero-metrics data for a range the provider had no rows for."""
    return StandardizedTrafficData(
        date_range=date_range,
        metrics=TrafficMetrics(page_views=0, sessions=0, visitors=0, bounce_rate=0.0),
        last_updated=now,
        provenance=Provenance.FRESH,
    )


# ── API envelopes ─────────────────────────────────────────

class TrafficMeta(BaseModel):
    source: str = TRAFFIC_SOURCE
    is_from_cache: bool
    provenance: Provenance
    last_updated: datetime
    date_range: DateRange


class TrafficAnalyticsResponse(BaseModel):
    success: bool = True
    data: StandardizedTrafficData
    meta: TrafficMeta

    @classmethod
    def wrap(cls, data: StandardizedTrafficData) -> "TrafficAnalyticsResponse":
        return cls(
            data=data,
            meta=TrafficMeta(
                is_from_cache=data.is_from_cache,
                provenance=data.provenance,
                last_updated=data.last_updated,
                date_range=data.date_range,
            ),
        )


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    source: str = TRAFFIC_SOURCE


class CacheClearData(BaseModel):
    deleted_count: int
    source: str = TRAFFIC_SOURCE


class CacheClearResult(BaseModel):
    success: bool = True
    message: str
    data: CacheClearData


class AnalyticsSourceConfig(BaseModel):
    enabled: bool
    configured: bool
    display_name: str = "Google Analytics 4"
    description: str = "Comprehensive web analytics from Google"


class SourceRecommendation(BaseModel):
    suggested: Literal["google_analytics"] | None = None
    reason: str


class AnalyticsSourcesResponse(BaseModel):
    current_source: str
    available_sources: dict[str, AnalyticsSourceConfig]
    recommendations: SourceRecommendation


class SourcePreferenceRequest(BaseModel):
    source: str = Field(TRAFFIC_SOURCE, max_length=30)


class ProviderConfigUpdate(BaseModel):
    enabled: bool = True
    account_id: str | None = Field(None, alias="accountId", max_length=64)
    property_id: str | None = Field(None, alias="propertyId", max_length=64)

    model_config = {"populate_by_name": True}
