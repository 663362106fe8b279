"""
Tenant Dashboard — Pydantic request/response schemas.
"""

from pydantic import BaseModel

from dashboard_api.schemas.traffic import (  # noqa: F401
    AnalyticsSourceConfig,
    AnalyticsSourcesResponse,
    CacheClearData,
    CacheClearResult,
    ConnectionTestResult,
    DateRange,
    DeviceShare,
    Provenance,
    ProviderConfigUpdate,
    SourcePreferenceRequest,
    SourceRecommendation,
    StandardizedTrafficData,
    TopPage,
    TrafficAnalyticsResponse,
    TrafficMetrics,
    TrafficSource,
)

API_VERSION = "1.0.0"


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = API_VERSION
    timestamp: str | None = None
    inflight_fetches: int = 0
