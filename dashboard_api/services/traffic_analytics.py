"""
Traffic analytics facade — the one entry point the routes use.

Per request:

    resolve tenant → load GA4 config → cache check
        hit  → return cached copy (provenance cache-hit)
        miss → coordinated fetch (timeout-bounded) → cache write → fresh
        any AnalyticsError along the way → synthetic fallback

The dashboard always gets displayable data; the only error that escapes
``get_traffic_data`` is caller misuse (bad tenant reference, from > to).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from dashboard_api.config import settings
from dashboard_api.schemas.traffic import (
    TRAFFIC_SOURCE,
    AnalyticsSourceConfig,
    AnalyticsSourcesResponse,
    ConnectionTestResult,
    DateRange,
    SourceRecommendation,
    StandardizedTrafficData,
    as_utc,
)
from dashboard_api.services.analytics_cache import (
    AnalyticsCache,
    Clock,
    MemoryAnalyticsCache,
    SqlAnalyticsCache,
    utcnow,
)
from dashboard_api.services.analytics_errors import (
    AnalyticsError,
    CacheUnavailable,
    InvalidDateRange,
    ProviderEmptyResult,
    ProviderMisconfigured,
    ProviderUnavailable,
    TenantStoreUnavailable,
    UnknownTenant,
)
from dashboard_api.services.fetch_coordinator import FetchCoordinator
from dashboard_api.services.ga4_fetcher import GA4Fetcher
from dashboard_api.services.tenant_identity import (
    CanonicalTenantId,
    IdentityResolver,
    parse_tenant_ref,
)
from dashboard_api.services.tenant_store import (
    SqlTenantConfigStore,
    TenantConfigStore,
    TenantProviderConfig,
    TenantRecord,
)
from dashboard_api.services.traffic_fallback import fallback_traffic_data

logger = logging.getLogger("analytics.traffic")

NOT_CONFIGURED_MESSAGE = (
    "Google Analytics is not properly configured. Please check your GA4 key and property ID."
)


class TrafficAnalyticsService:
    def __init__(
        self,
        store: TenantConfigStore,
        cache: AnalyticsCache,
        fetcher: GA4Fetcher,
        coordinator: Optional[FetchCoordinator] = None,
        ttl_seconds: int = 3600,
        fetch_timeout: float = 12.0,
        default_window_days: int = 30,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._resolver = IdentityResolver(store)
        self._cache = cache
        self._fetcher = fetcher
        self._coordinator = coordinator or FetchCoordinator()
        self._ttl_seconds = ttl_seconds
        self._fetch_timeout = fetch_timeout
        self._default_window_days = default_window_days
        self._clock = clock
        # bumped on invalidate; part of the coordination key, and a fetch
        # that started under an older generation must not write back.
        # One int per tenant ever invalidated; never pruned.
        self._generations: dict[CanonicalTenantId, int] = {}

    @property
    def cache(self) -> AnalyticsCache:
        return self._cache

    @property
    def coordinator(self) -> FetchCoordinator:
        return self._coordinator

    # ── date range ──

    def resolve_date_range(
        self, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None
    ) -> DateRange:
        """Apply defaults, validate ordering, widen to whole days."""
        end = as_utc(date_to) if date_to else as_utc(self._clock())
        if date_from is None:
            return DateRange.trailing(self._default_window_days, end).whole_days()
        start = as_utc(date_from)
        if start > end:
            raise InvalidDateRange(
                f"'from' ({start.isoformat()}) must not be after 'to' ({end.isoformat()})"
            )
        return DateRange(start=start, end=end).whole_days()

    # ── retrieval ──

    async def get_traffic_data(
        self,
        tenant_ref,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        force_refresh: bool = False,
    ) -> StandardizedTrafficData:
        ref = parse_tenant_ref(tenant_ref)
        date_range = self.resolve_date_range(date_from, date_to)

        try:
            record = await self._load_record(ref)
            config = record.provider_config
            if not config.is_ready:
                raise ProviderMisconfigured(
                    f"Google Analytics is not configured for tenant {record.canonical_id}"
                )
            tenant_id = record.canonical_id

            if not force_refresh:
                cached = await self._lookup(tenant_id, date_range)
                if cached is not None:
                    logger.info("📦 Returning cached GA4 data for tenant %s", tenant_id)
                    return cached

            generation = self._generations.get(tenant_id, 0)
            return await self._coordinator.fetch_once(
                tenant_id,
                (date_range, generation),
                lambda: self._fetch_and_store(tenant_id, config, date_range, generation),
            )
        except AnalyticsError as e:
            logger.warning("⚠️  Serving synthetic traffic data for tenant %s: %s", ref, e)
            return fallback_traffic_data(date_range)

    async def _load_record(self, ref) -> TenantRecord:
        tenant_id = await self._resolver.resolve(ref)
        record = await self._store.find_by_canonical_id(tenant_id)
        if record is None:
            raise UnknownTenant(tenant_id)
        return record

    async def _lookup(
        self, tenant_id: CanonicalTenantId, date_range: DateRange
    ) -> Optional[StandardizedTrafficData]:
        try:
            return await self._cache.lookup(tenant_id, date_range)
        except CacheUnavailable as e:
            logger.warning("Cache lookup failed for tenant %s — treating as miss: %s", tenant_id, e)
            return None

    async def _fetch_and_store(
        self,
        tenant_id: CanonicalTenantId,
        config: TenantProviderConfig,
        date_range: DateRange,
        generation: int,
    ) -> StandardizedTrafficData:
        """Runs once per coordination key; finishes even if every caller left."""
        try:
            data = await asyncio.wait_for(
                self._fetcher.fetch(config, date_range), timeout=self._fetch_timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(
                f"GA4 fetch timed out after {self._fetch_timeout:g}s"
            ) from e
        except ProviderEmptyResult as empty:
            logger.info("GA4 returned no rows for tenant %s — caching zero metrics", tenant_id)
            data = empty.data
        except AnalyticsError:
            raise
        except Exception as e:
            logger.exception("Unexpected GA4 fetch failure for tenant %s", tenant_id)
            raise ProviderUnavailable(f"GA4 fetch failed: {e!r}") from e

        if self._generations.get(tenant_id, 0) != generation:
            logger.info("Cache for tenant %s was invalidated mid-fetch — not storing", tenant_id)
            return data

        try:
            await self._cache.store(tenant_id, date_range, data, self._ttl_seconds)
        except CacheUnavailable as e:
            logger.warning("Cache write failed for tenant %s: %s", tenant_id, e)
        logger.info("✅ Fetched fresh GA4 data for tenant %s", tenant_id)
        return data

    # ── diagnostics / management ──

    async def test_connection(self, tenant_ref) -> ConnectionTestResult:
        """Provider round-trip for the settings UI. Never touches the cache."""
        ref = parse_tenant_ref(tenant_ref)
        try:
            record = await self._load_record(ref)
        except UnknownTenant:
            return ConnectionTestResult(success=False, message="Tenant not found")
        except TenantStoreUnavailable as e:
            return ConnectionTestResult(success=False, message=f"Connection test failed: {e}")

        if not record.provider_config.is_ready:
            return ConnectionTestResult(success=False, message=NOT_CONFIGURED_MESSAGE)

        try:
            return await asyncio.wait_for(
                self._fetcher.test_connection(record.provider_config),
                timeout=self._fetch_timeout,
            )
        except asyncio.TimeoutError:
            return ConnectionTestResult(
                success=False,
                message=f"GA4 did not respond within {self._fetch_timeout:g}s",
            )
        except (ProviderMisconfigured, ProviderUnavailable) as e:
            logger.warning("GA4 connection test failed for tenant %s: %s", record.canonical_id, e)
            return ConnectionTestResult(success=False, message=str(e))

    async def invalidate(self, tenant_ref) -> int:
        """Drop every cached snapshot for the tenant. Returns the count removed."""
        tenant_id = await self._resolver.resolve(parse_tenant_ref(tenant_ref))
        self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1
        deleted = await self._cache.invalidate(tenant_id)
        logger.info("🧹 Cleared %d cached GA4 entries for tenant %s", deleted, tenant_id)
        return deleted

    async def get_sources(self, tenant_ref) -> AnalyticsSourcesResponse:
        record = await self._load_record(parse_tenant_ref(tenant_ref))
        config = record.provider_config
        return AnalyticsSourcesResponse(
            current_source=record.traffic_data_source or TRAFFIC_SOURCE,
            available_sources={
                TRAFFIC_SOURCE: AnalyticsSourceConfig(
                    enabled=config.is_ready,
                    configured=config.is_configured,
                ),
            },
            recommendations=SourceRecommendation(
                suggested=TRAFFIC_SOURCE if config.is_configured else None,
                reason=(
                    "Google Analytics provides comprehensive web analytics"
                    if config.is_configured
                    else "Google Analytics is not configured"
                ),
            ),
        )

    async def set_preferred_source(self, tenant_ref, source: str) -> str:
        if source != TRAFFIC_SOURCE:
            raise ValueError(f"Invalid source. Must be '{TRAFFIC_SOURCE}'")
        tenant_id = await self._resolver.resolve(parse_tenant_ref(tenant_ref))
        await self._store.set_traffic_data_source(tenant_id, source)
        return source

    async def update_provider_config(
        self, tenant_ref, config: TenantProviderConfig
    ) -> TenantRecord:
        """Persist new GA4 settings; cached data for the old ones is dropped."""
        tenant_id = await self._resolver.resolve(parse_tenant_ref(tenant_ref))
        record = await self._store.update_provider_config(tenant_id, config)
        try:
            await self.invalidate(tenant_id)
        except CacheUnavailable as e:
            logger.warning("Could not clear cache after GA4 config change for %s: %s", tenant_id, e)
        return record

    async def purge_expired(self) -> int:
        return await self._cache.purge_expired()


# ─────────────────────────────────────────────────────────────────────
# wiring
# ─────────────────────────────────────────────────────────────────────

_service: Optional[TrafficAnalyticsService] = None


def build_traffic_service(session_factory=None) -> TrafficAnalyticsService:
    """Assemble the service from settings."""
    if session_factory is None:
        from dashboard_api.database import async_session_factory as session_factory

    if settings.analytics_cache_backend == "memory":
        cache: AnalyticsCache = MemoryAnalyticsCache()
    else:
        cache = SqlAnalyticsCache(session_factory)

    return TrafficAnalyticsService(
        store=SqlTenantConfigStore(session_factory),
        cache=cache,
        fetcher=GA4Fetcher.from_settings(settings),
        ttl_seconds=settings.analytics_cache_ttl_seconds,
        fetch_timeout=settings.analytics_fetch_timeout_seconds,
        default_window_days=settings.analytics_default_window_days,
    )


def get_traffic_service() -> TrafficAnalyticsService:
    """FastAPI dependency — process-wide service (one coordinator per process)."""
    global _service
    if _service is None:
        _service = build_traffic_service()
    return _service


def set_traffic_service(service: Optional[TrafficAnalyticsService]) -> None:
    global _service
    _service = service
