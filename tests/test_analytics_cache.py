"""
Tests for the analytics cache — both backends share one behaviour suite.

Verifies:
- containment: a stored range serves any sub-range, partial overlap misses
- TTL expiry at read time, purge of dead entries
- upsert replaces instead of merging
- tenant scoping and invalidation counts
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from dashboard_api.models.analytics_cache import AnalyticsCacheEntry
from dashboard_api.schemas.traffic import DateRange, Provenance
from dashboard_api.services.analytics_cache import MemoryAnalyticsCache, SqlAnalyticsCache
from dashboard_api.services.analytics_errors import CacheUnavailable
from dashboard_api.services.tenant_identity import CanonicalTenantId

from tests.conftest import (
    JANUARY,
    OTHER_TENANT_ID,
    TENANT_ID,
    TEST_DB_URL,
    FakeClock,
    make_traffic_data,
)

TENANT = CanonicalTenantId(TENANT_ID)
OTHER = CanonicalTenantId(OTHER_TENANT_ID)


def days(start: tuple, end: tuple) -> DateRange:
    return DateRange(
        start=datetime(*start, tzinfo=timezone.utc),
        end=datetime(*end, tzinfo=timezone.utc),
    ).whole_days()


MID_JANUARY = days((2024, 1, 10), (2024, 1, 20))
FEBRUARY = days((2024, 2, 1), (2024, 2, 29))


@pytest.fixture(params=["memory", "sql"])
def cache(request, clock, session_factory):
    if request.param == "memory":
        return MemoryAnalyticsCache(clock=clock)
    return SqlAnalyticsCache(session_factory, clock=clock)


class TestLookup:
    async def test_empty_cache_misses(self, cache):
        assert await cache.lookup(TENANT, JANUARY) is None

    async def test_exact_range_hit(self, cache):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)

        hit = await cache.lookup(TENANT, JANUARY)
        assert hit is not None
        assert hit.provenance == Provenance.CACHE_HIT
        assert hit.is_from_cache is True
        assert hit.metrics == make_traffic_data(JANUARY).metrics
        assert hit.traffic_sources == make_traffic_data(JANUARY).traffic_sources

    async def test_sub_range_hit_returns_stored_range(self, cache):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)

        hit = await cache.lookup(TENANT, MID_JANUARY)
        assert hit is not None
        assert hit.date_range == JANUARY

    async def test_partial_overlap_misses(self, cache):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)

        assert await cache.lookup(TENANT, days((2023, 12, 15), (2024, 1, 15))) is None
        assert await cache.lookup(TENANT, days((2024, 1, 20), (2024, 2, 5))) is None

    async def test_wider_range_misses(self, cache):
        await cache.store(TENANT, MID_JANUARY, make_traffic_data(MID_JANUARY), 3600)
        assert await cache.lookup(TENANT, JANUARY) is None

    async def test_entries_are_tenant_scoped(self, cache):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)
        assert await cache.lookup(OTHER, JANUARY) is None

    async def test_newest_containing_entry_wins(self, cache, clock):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY, sessions=100), 3600)
        clock.advance(minutes=5)
        wide = days((2023, 12, 1), (2024, 1, 31))
        await cache.store(TENANT, wide, make_traffic_data(wide, sessions=200), 3600)

        hit = await cache.lookup(TENANT, MID_JANUARY)
        assert hit.metrics.sessions == 200

    async def test_returned_copy_does_not_alter_entry(self, cache):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)

        first = await cache.lookup(TENANT, JANUARY)
        first.metrics.sessions = 0
        first.top_pages.clear()

        second = await cache.lookup(TENANT, JANUARY)
        assert second.metrics.sessions == 1200
        assert len(second.top_pages) == 2


class TestExpiry:
    async def test_live_before_ttl(self, cache, clock):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)
        clock.advance(seconds=3599)
        assert await cache.lookup(TENANT, JANUARY) is not None

    async def test_expired_at_ttl(self, cache, clock):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)
        clock.advance(seconds=3600)
        assert await cache.lookup(TENANT, JANUARY) is None

    async def test_purge_removes_only_dead_entries(self, cache, clock):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 60)
        await cache.store(TENANT, FEBRUARY, make_traffic_data(FEBRUARY), 3600)
        clock.advance(seconds=120)

        assert await cache.purge_expired() == 1
        assert await cache.lookup(TENANT, FEBRUARY) is not None
        assert await cache.purge_expired() == 0


class TestStoreAndInvalidate:
    async def test_store_replaces_existing_entry(self, cache, clock):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY, sessions=100), 3600)
        clock.advance(seconds=10)
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY, sessions=250), 3600)

        hit = await cache.lookup(TENANT, JANUARY)
        assert hit.metrics.sessions == 250
        assert len(hit.top_pages) == 2

    async def test_replace_resets_ttl(self, cache, clock):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)
        clock.advance(seconds=3000)
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)
        clock.advance(seconds=3000)

        assert await cache.lookup(TENANT, JANUARY) is not None

    async def test_invalidate_returns_count(self, cache):
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)
        await cache.store(TENANT, FEBRUARY, make_traffic_data(FEBRUARY), 3600)
        await cache.store(OTHER, JANUARY, make_traffic_data(JANUARY), 3600)

        assert await cache.invalidate(TENANT) == 2
        assert await cache.lookup(TENANT, JANUARY) is None
        assert await cache.lookup(OTHER, JANUARY) is not None
        assert await cache.invalidate(TENANT) == 0


class TestMemoryBackend:
    async def test_len_counts_entries(self):
        cache = MemoryAnalyticsCache(clock=FakeClock())
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)
        await cache.store(OTHER, JANUARY, make_traffic_data(JANUARY), 3600)
        assert len(cache) == 2

        await cache.invalidate(OTHER)
        assert len(cache) == 1


class TestSqlBackend:
    async def test_upsert_keeps_one_row(self, session_factory, clock):
        cache = SqlAnalyticsCache(session_factory, clock=clock)
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY, sessions=100), 3600)
        await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY, sessions=300), 3600)

        async with session_factory() as session:
            count = (await session.execute(select(func.count(AnalyticsCacheEntry.id)))).scalar()
            row = (await session.execute(select(AnalyticsCacheEntry))).scalar_one()
        assert count == 1
        assert row.payload["metrics"]["sessions"] == 300
        assert row.payload["provenance"] == "fresh"
        assert row.range_start == datetime(2024, 1, 1)
        assert row.expires_at == datetime(2024, 2, 10, 10, 30)

    async def test_unreadable_payload_is_cache_unavailable(self, session_factory, clock):
        async with session_factory() as session:
            session.add(AnalyticsCacheEntry(
                tenant_id=TENANT_ID,
                range_start=datetime(2024, 1, 1),
                range_end=datetime(2024, 1, 31, 23, 59, 59, 999999),
                payload={"metrics": "corrupted"},
                created_at=datetime(2024, 2, 10, 9, 0),
                expires_at=datetime(2024, 2, 10, 10, 0),
            ))
            await session.commit()

        cache = SqlAnalyticsCache(session_factory, clock=clock)
        with pytest.raises(CacheUnavailable):
            await cache.lookup(TENANT, MID_JANUARY)

    async def test_backend_failure_is_cache_unavailable(self, clock):
        engine = create_async_engine(TEST_DB_URL)
        cache = SqlAnalyticsCache(async_sessionmaker(engine, expire_on_commit=False), clock=clock)
        try:
            with pytest.raises(CacheUnavailable):
                await cache.lookup(TENANT, JANUARY)
            with pytest.raises(CacheUnavailable):
                await cache.store(TENANT, JANUARY, make_traffic_data(JANUARY), 3600)
            with pytest.raises(CacheUnavailable):
                await cache.invalidate(TENANT)
        finally:
            await engine.dispose()
