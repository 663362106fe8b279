"""
Tenant Dashboard — Traffic analytics API routes.

The tenant is named by the ``X-Tenant-ID`` header (or ``?tenant=``), either
as the 24-hex tenant id or the legacy numeric id.  Authentication happens
upstream.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from dashboard_api.schemas.traffic import (
    TRAFFIC_SOURCE,
    AnalyticsSourcesResponse,
    CacheClearData,
    CacheClearResult,
    ConnectionTestResult,
    SourcePreferenceRequest,
    TrafficAnalyticsResponse,
)
from dashboard_api.services.analytics_errors import (
    AnalyticsError,
    InvalidDateRange,
    InvalidTenantReference,
    UnknownTenant,
)
from dashboard_api.services.tenant_identity import TenantRef, parse_tenant_ref
from dashboard_api.services.traffic_analytics import TrafficAnalyticsService, get_traffic_service

logger = logging.getLogger(__name__)
traffic_router = APIRouter(prefix="/traffic/analytics", tags=["traffic"])


async def get_tenant_ref(
    x_tenant_id: str | None = Header(None),
    tenant: str | None = Query(None, description="Tenant id (if no X-Tenant-ID header)"),
) -> TenantRef:
    raw = x_tenant_id or tenant
    if not raw:
        raise HTTPException(400, "Tenant reference required (X-Tenant-ID header or ?tenant=)")
    try:
        return parse_tenant_ref(raw)
    except InvalidTenantReference as e:
        raise HTTPException(400, str(e))


@traffic_router.get("", response_model=TrafficAnalyticsResponse)
async def get_traffic_analytics(
    date_from: datetime | None = Query(None, alias="from"),
    date_to: datetime | None = Query(None, alias="to"),
    force_refresh: bool = Query(False, alias="forceRefresh"),
    tenant_ref: TenantRef = Depends(get_tenant_ref),
    service: TrafficAnalyticsService = Depends(get_traffic_service),
):
    """Traffic data for the dashboard. Falls back to synthetic data, never 5xx for GA4 issues."""
    try:
        data = await service.get_traffic_data(
            tenant_ref, date_from=date_from, date_to=date_to, force_refresh=force_refresh
        )
    except InvalidDateRange as e:
        raise HTTPException(400, str(e))
    return TrafficAnalyticsResponse.wrap(data)


@traffic_router.post("/test-connection", response_model=ConnectionTestResult)
async def test_connection(
    tenant_ref: TenantRef = Depends(get_tenant_ref),
    service: TrafficAnalyticsService = Depends(get_traffic_service),
):
    return await service.test_connection(tenant_ref)


@traffic_router.get("/sources", response_model=AnalyticsSourcesResponse)
async def get_sources(
    tenant_ref: TenantRef = Depends(get_tenant_ref),
    service: TrafficAnalyticsService = Depends(get_traffic_service),
):
    try:
        return await service.get_sources(tenant_ref)
    except UnknownTenant:
        raise HTTPException(404, "Tenant not found")
    except AnalyticsError as e:
        logger.error("Analytics sources lookup failed: %s", e)
        raise HTTPException(503, "Tenant settings temporarily unavailable")


@traffic_router.post("/preferences")
async def set_preferences(
    req: SourcePreferenceRequest,
    tenant_ref: TenantRef = Depends(get_tenant_ref),
    service: TrafficAnalyticsService = Depends(get_traffic_service),
):
    try:
        source = await service.set_preferred_source(tenant_ref, req.source)
    except UnknownTenant:
        raise HTTPException(404, "Tenant not found")
    except ValueError as e:
        raise HTTPException(400, str(e))
    except AnalyticsError as e:
        logger.error("Traffic source preference update failed: %s", e)
        raise HTTPException(503, "Tenant settings temporarily unavailable")

    return {
        "success": True,
        "message": "Traffic data source preferences updated successfully",
        "data": {"source": source},
    }


@traffic_router.delete("/cache", response_model=CacheClearResult)
async def clear_cache(
    tenant_ref: TenantRef = Depends(get_tenant_ref),
    service: TrafficAnalyticsService = Depends(get_traffic_service),
):
    try:
        deleted = await service.invalidate(tenant_ref)
    except UnknownTenant:
        raise HTTPException(404, "Tenant not found")
    except AnalyticsError as e:
        logger.error("Analytics cache clear failed: %s", e)
        raise HTTPException(503, "Analytics cache temporarily unavailable")

    return CacheClearResult(
        message="Google Analytics cache cleared successfully",
        data=CacheClearData(deleted_count=deleted, source=TRAFFIC_SOURCE),
    )
