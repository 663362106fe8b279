"""
Analytics cache — tenant + date-range keyed GA4 snapshots.

An entry satisfies a request only when its stored range contains the
requested range *and* it has not expired.  Partial overlap is a miss.
Entries are written only after a successful fetch; fallback data is never
cached.  Expiry is checked at read time; ``purge_expired`` exists for the
periodic sweep.

Two backends:

- ``MemoryAnalyticsCache`` — per-process dict guarded by an asyncio.Lock.
- ``SqlAnalyticsCache`` — ``analytics_cache_entries`` table; each upsert
  runs in one transaction so readers never see half an entry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dashboard_api.models.analytics_cache import AnalyticsCacheEntry
from dashboard_api.schemas.traffic import (
    DateRange,
    Provenance,
    StandardizedTrafficData,
    as_utc,
)
from dashboard_api.services.analytics_errors import CacheUnavailable
from dashboard_api.services.tenant_identity import CanonicalTenantId

logger = logging.getLogger("analytics.cache")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    tenant_id: CanonicalTenantId
    date_range: DateRange
    data: StandardizedTrafficData
    created_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at

    def satisfies(self, requested: DateRange, now: datetime) -> bool:
        return self.is_live(now) and self.date_range.contains(requested)


class AnalyticsCache:
    """Interface shared by both backends."""

    async def lookup(
        self, tenant_id: CanonicalTenantId, date_range: DateRange
    ) -> Optional[StandardizedTrafficData]:
        raise NotImplementedError

    async def store(
        self,
        tenant_id: CanonicalTenantId,
        date_range: DateRange,
        data: StandardizedTrafficData,
        ttl_seconds: int,
    ) -> None:
        raise NotImplementedError

    async def invalidate(self, tenant_id: CanonicalTenantId) -> int:
        raise NotImplementedError

    async def purge_expired(self) -> int:
        raise NotImplementedError


# ─────────────────────────────────────────────────────────────────────
# in-process backend
# ─────────────────────────────────────────────────────────────────────

class MemoryAnalyticsCache(AnalyticsCache):
    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._entries: dict[CanonicalTenantId, dict[DateRange, CacheEntry]] = {}
        self._lock = asyncio.Lock()

    async def lookup(self, tenant_id, date_range):
        now = self._clock()
        async with self._lock:
            candidates = [
                e for e in self._entries.get(tenant_id, {}).values()
                if e.satisfies(date_range, now)
            ]
        if not candidates:
            return None
        newest = max(candidates, key=lambda e: e.created_at)
        return newest.data.with_provenance(Provenance.CACHE_HIT)

    async def store(self, tenant_id, date_range, data, ttl_seconds):
        now = self._clock()
        entry = CacheEntry(
            tenant_id=tenant_id,
            date_range=date_range,
            data=data.with_provenance(Provenance.FRESH),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        async with self._lock:
            self._entries.setdefault(tenant_id, {})[date_range] = entry
        logger.debug("Cached %s %s (ttl=%ds)", tenant_id, _fmt(date_range), ttl_seconds)

    async def invalidate(self, tenant_id):
        async with self._lock:
            removed = self._entries.pop(tenant_id, {})
        return len(removed)

    async def purge_expired(self):
        now = self._clock()
        purged = 0
        async with self._lock:
            for tenant_id in list(self._entries):
                bucket = self._entries[tenant_id]
                for key in [k for k, e in bucket.items() if not e.is_live(now)]:
                    del bucket[key]
                    purged += 1
                if not bucket:
                    del self._entries[tenant_id]
        return purged

    def __len__(self) -> int:
        return sum(len(b) for b in self._entries.values())


# ─────────────────────────────────────────────────────────────────────
# database backend
# ─────────────────────────────────────────────────────────────────────

def _naive(value: datetime) -> datetime:
    """Aware → naive UTC for storage."""
    return as_utc(value).replace(tzinfo=None)


def _fmt(date_range: DateRange) -> str:
    return f"{date_range.start:%Y-%m-%d}..{date_range.end:%Y-%m-%d}"


class SqlAnalyticsCache(AnalyticsCache):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    async def lookup(self, tenant_id, date_range):
        now = _naive(self._clock())
        stmt = (
            select(AnalyticsCacheEntry)
            .where(
                AnalyticsCacheEntry.tenant_id == tenant_id.value,
                AnalyticsCacheEntry.range_start <= _naive(date_range.start),
                AnalyticsCacheEntry.range_end >= _naive(date_range.end),
                AnalyticsCacheEntry.expires_at > now,
            )
            .order_by(AnalyticsCacheEntry.created_at.desc())
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"cache lookup failed: {e}") from e

        if row is None:
            return None
        try:
            data = StandardizedTrafficData.model_validate(row.payload)
        except ValidationError as e:
            raise CacheUnavailable(f"unreadable cache entry {row.id}: {e}") from e
        return data.with_provenance(Provenance.CACHE_HIT)

    async def store(self, tenant_id, date_range, data, ttl_seconds):
        now = self._clock()
        start, end = _naive(date_range.start), _naive(date_range.end)
        row = AnalyticsCacheEntry(
            tenant_id=tenant_id.value,
            source=data.source,
            range_start=start,
            range_end=end,
            payload=data.with_provenance(Provenance.FRESH).model_dump(mode="json"),
            created_at=_naive(now),
            expires_at=_naive(now + timedelta(seconds=ttl_seconds)),
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    # replace, never merge
                    await session.execute(
                        delete(AnalyticsCacheEntry).where(
                            AnalyticsCacheEntry.tenant_id == tenant_id.value,
                            AnalyticsCacheEntry.range_start == start,
                            AnalyticsCacheEntry.range_end == end,
                        )
                    )
                    session.add(row)
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"cache write failed: {e}") from e
        logger.debug("Cached %s %s (ttl=%ds)", tenant_id, _fmt(date_range), ttl_seconds)

    async def invalidate(self, tenant_id):
        return await self._delete(AnalyticsCacheEntry.tenant_id == tenant_id.value)

    async def purge_expired(self):
        return await self._delete(AnalyticsCacheEntry.expires_at <= _naive(self._clock()))

    async def _delete(self, condition) -> int:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(delete(AnalyticsCacheEntry).where(condition))
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"cache delete failed: {e}") from e
        return result.rowcount or 0
