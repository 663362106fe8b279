"""
Shared test fixtures — async DB, fake tenant store and GA4 fetcher, FastAPI test client.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from dashboard_api.database import Base
from dashboard_api.main import app
from dashboard_api.schemas.traffic import (
    ConnectionTestResult,
    DateRange,
    DeviceShare,
    Provenance,
    StandardizedTrafficData,
    TopPage,
    TrafficMetrics,
    TrafficSource,
    share_percentages,
)
from dashboard_api.services.analytics_cache import MemoryAnalyticsCache
from dashboard_api.services.analytics_errors import TenantStoreUnavailable, UnknownTenant
from dashboard_api.services.fetch_coordinator import FetchCoordinator
from dashboard_api.services.tenant_identity import CanonicalTenantId
from dashboard_api.services.tenant_store import TenantProviderConfig, TenantRecord
from dashboard_api.services.traffic_analytics import TrafficAnalyticsService, get_traffic_service


# ── Test Database (SQLite in-memory) ────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


# ── Sample Tenants ──────────────────────────────────────

TENANT_ID = "a1b2c3d4e5f6a1b2c3d4e5f6"
LEGACY_ID = 7
OTHER_TENANT_ID = "0123456789abcdef01234567"
UNKNOWN_TENANT_ID = "ffffffffffffffffffffffff"

READY_CONFIG = TenantProviderConfig(enabled=True, account_id="G-TEST123", property_id="123456789")
DISABLED_CONFIG = replace(READY_CONFIG, enabled=False)

NOW = datetime(2024, 2, 10, 9, 30, tzinfo=timezone.utc)

JANUARY = DateRange(
    start=datetime(2024, 1, 1, tzinfo=timezone.utc),
    end=datetime(2024, 1, 31, tzinfo=timezone.utc),
).whole_days()


def make_record(
    tenant_id=TENANT_ID, legacy_id=LEGACY_ID, config=READY_CONFIG, name="Sunrise Bakery"
) -> TenantRecord:
    return TenantRecord(
        canonical_id=CanonicalTenantId(tenant_id),
        name=name,
        legacy_id=legacy_id,
        provider_config=config,
    )


def make_traffic_data(date_range: DateRange, sessions: int = 1200) -> StandardizedTrafficData:
    """Realistic fresh GA4 result; ``sessions`` lets tests tell results apart."""
    source_counts = [sessions // 2, sessions // 3, sessions - sessions // 2 - sessions // 3]
    device_counts = [sessions * 3 // 5, sessions - sessions * 3 // 5]
    return StandardizedTrafficData(
        date_range=date_range,
        metrics=TrafficMetrics(
            page_views=sessions * 2, sessions=sessions, visitors=sessions * 3 // 4, bounce_rate=0.41
        ),
        traffic_sources=[
            TrafficSource(source=s, medium=m, sessions=n, percentage=p)
            for (s, m), n, p in zip(
                [("google", "organic"), ("(direct)", "(none)"), ("facebook.com", "referral")],
                source_counts,
                share_percentages(source_counts),
            )
        ],
        top_pages=[
            TopPage(path="/", page_views=sessions, visitors=sessions // 2),
            TopPage(path="/menu", page_views=sessions // 2, visitors=sessions // 4),
        ],
        device_distribution=[
            DeviceShare(device=d, sessions=n, percentage=p)
            for d, n, p in zip(["desktop", "mobile"], device_counts, share_percentages(device_counts))
        ],
        last_updated=NOW,
        provenance=Provenance.FRESH,
    )


# ── Fakes ───────────────────────────────────────────────

class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTenantStore:
    """In-memory TenantConfigStore; ``fail`` simulates a database outage."""

    def __init__(self, *records: TenantRecord):
        self.records = {r.canonical_id: r for r in records}
        self.legacy_lookups = 0
        self.fail = False

    def _check(self):
        if self.fail:
            raise TenantStoreUnavailable("connection refused")

    async def find_by_legacy_id(self, legacy_id):
        self._check()
        self.legacy_lookups += 1
        return next((r for r in self.records.values() if r.legacy_id == legacy_id), None)

    async def find_by_canonical_id(self, tenant_id):
        self._check()
        return self.records.get(tenant_id)

    async def update_provider_config(self, tenant_id, config):
        self._check()
        if tenant_id not in self.records:
            raise UnknownTenant(tenant_id.value)
        self.records[tenant_id] = replace(self.records[tenant_id], provider_config=config)
        return self.records[tenant_id]

    async def set_traffic_data_source(self, tenant_id, source):
        self._check()
        if tenant_id not in self.records:
            raise UnknownTenant(tenant_id.value)
        self.records[tenant_id] = replace(self.records[tenant_id], traffic_data_source=source)


class FakeFetcher:
    """Counts GA4 calls. Set ``gate`` to hold fetches open, ``error`` to fail them."""

    def __init__(self):
        self.calls = []
        self.gate: asyncio.Event | None = None
        self.delay = 0.0
        self.error: Exception | None = None
        self.sessions = 1200
        self.connection_result = ConnectionTestResult(
            success=True, message="Successfully connected to Google Analytics 4"
        )

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def fetch(self, config, date_range):
        self.calls.append((config, date_range))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_traffic_data(date_range, sessions=self.sessions)

    async def test_connection(self, config):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.connection_result


# ── Service fixtures ────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeTenantStore(
        make_record(),
        make_record(tenant_id=OTHER_TENANT_ID, legacy_id=8, name="Harbor Books"),
    )


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def memory_cache(clock):
    return MemoryAnalyticsCache(clock=clock)


@pytest.fixture
def service(store, memory_cache, fetcher, clock):
    return TrafficAnalyticsService(
        store=store,
        cache=memory_cache,
        fetcher=fetcher,
        coordinator=FetchCoordinator(),
        ttl_seconds=3600,
        fetch_timeout=1.0,
        default_window_days=30,
        clock=clock,
    )


@pytest_asyncio.fixture()
async def client(service):
    """FastAPI test client with the traffic service injected."""
    app.dependency_overrides[get_traffic_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Mock Settings ───────────────────────────────────────

@pytest.fixture(autouse=True)
def mock_settings():
    """Override settings for tests — patches at ALL import points."""
    mock_s = MagicMock()
    mock_s.database_url = TEST_DB_URL
    mock_s.analytics_cache_backend = "memory"
    mock_s.analytics_cache_ttl_seconds = 3600
    mock_s.analytics_cache_sweep_interval = 900
    mock_s.analytics_fetch_timeout_seconds = 12.0
    mock_s.analytics_default_window_days = 30
    mock_s.ga4_api_base = "https://analyticsdata.test/v1beta"
    mock_s.ga4_service_account_info = None
    mock_s.ga4_credentials_path = ""
    mock_s.ga4_top_pages_limit = 10
    mock_s.ga4_traffic_sources_limit = 10

    with patch("dashboard_api.config.settings", mock_s), \
         patch("dashboard_api.services.traffic_analytics.settings", mock_s), \
         patch("dashboard_api.main.settings", mock_s):
        yield mock_s
