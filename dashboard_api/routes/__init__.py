"""
API Routes — health.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from dashboard_api.schemas import API_VERSION, HealthResponse
from dashboard_api.services.traffic_analytics import TrafficAnalyticsService, get_traffic_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health(service: TrafficAnalyticsService = Depends(get_traffic_service)):
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=API_VERSION,
        inflight_fetches=service.coordinator.in_flight,
    )
