"""
FastAPI Application — entry point.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard_api.config import settings
from dashboard_api.database import init_db, close_db
from dashboard_api.routes import router
from dashboard_api.routes.tenants import tenant_router
from dashboard_api.routes.traffic import traffic_router
from dashboard_api.schemas import API_VERSION
from dashboard_api.services.analytics_errors import CacheUnavailable
from dashboard_api.services.traffic_analytics import (
    build_traffic_service,
    get_traffic_service,
    set_traffic_service,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)


async def periodic_cache_sweep(interval: int = 900) -> None:
    """Purge expired analytics snapshots every ``interval`` seconds."""
    while True:
        try:
            await asyncio.sleep(interval)
            removed = await get_traffic_service().purge_expired()
            if removed:
                logger.info("🧹 Purged %d expired analytics cache entries", removed)
        except asyncio.CancelledError:
            break
        except CacheUnavailable as e:
            logger.error("Analytics cache sweep failed: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hook."""
    logger.info("🚀 Starting Tenant Dashboard API v%s", API_VERSION)
    await init_db()
    logger.info("✅ Database ready")

    set_traffic_service(build_traffic_service())
    logger.info(
        "✅ Traffic analytics ready (cache=%s, ttl=%ss)",
        settings.analytics_cache_backend,
        settings.analytics_cache_ttl_seconds,
    )

    sweep_task = asyncio.create_task(
        periodic_cache_sweep(interval=settings.analytics_cache_sweep_interval)
    )

    yield

    # Shutdown
    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass
    set_traffic_service(None)
    await close_db()
    logger.info("👋 Shutdown complete")


app = FastAPI(
    title="Tenant Dashboard API",
    description="Per-tenant traffic analytics backed by Google Analytics 4.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")
app.include_router(traffic_router, prefix="/api/v1")
app.include_router(tenant_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Tenant Dashboard API",
        "version": API_VERSION,
        "docs": "/docs",
    }
