"""
Tenant Dashboard — Tenant GA4 settings route.

Changing credentials clears the tenant's cached analytics so the next
dashboard load fetches with the new property.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from dashboard_api.schemas.traffic import ProviderConfigUpdate
from dashboard_api.services.analytics_errors import (
    AnalyticsError,
    InvalidTenantReference,
    UnknownTenant,
)
from dashboard_api.services.tenant_identity import parse_tenant_ref
from dashboard_api.services.tenant_store import TenantProviderConfig
from dashboard_api.services.traffic_analytics import TrafficAnalyticsService, get_traffic_service

logger = logging.getLogger(__name__)
tenant_router = APIRouter(prefix="/tenants", tags=["tenants"])


@tenant_router.put("/{tenant_ref}/analytics")
async def update_analytics_config(
    tenant_ref: str,
    req: ProviderConfigUpdate,
    service: TrafficAnalyticsService = Depends(get_traffic_service),
):
    try:
        ref = parse_tenant_ref(tenant_ref)
    except InvalidTenantReference as e:
        raise HTTPException(400, str(e))

    config = TenantProviderConfig(
        enabled=req.enabled,
        account_id=(req.account_id or "").strip() or None,
        property_id=(req.property_id or "").strip() or None,
    )
    try:
        record = await service.update_provider_config(ref, config)
    except UnknownTenant:
        raise HTTPException(404, f"Tenant {tenant_ref} not found")
    except AnalyticsError as e:
        logger.error("GA4 settings update for %s failed: %s", tenant_ref, e)
        raise HTTPException(503, "Tenant settings temporarily unavailable")

    return {
        "success": True,
        "tenant_id": record.canonical_id.value,
        "legacy_id": record.legacy_id,
        "analytics": {
            "enabled": record.provider_config.enabled,
            "configured": record.provider_config.is_configured,
            "account_id": record.provider_config.account_id,
            "property_id": record.provider_config.property_id,
        },
    }
