"""
Tenant configuration store — per-tenant GA4 settings.

The analytics layer reads tenants through ``TenantConfigStore``; the SQL
implementation below backs it with the ``tenants`` table.  Database errors
are wrapped as ``TenantStoreUnavailable`` so the facade can fall back
instead of failing the dashboard request.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dashboard_api.models.tenant import Tenant
from dashboard_api.schemas.traffic import TRAFFIC_SOURCE
from dashboard_api.services.analytics_errors import TenantStoreUnavailable, UnknownTenant
from dashboard_api.services.tenant_identity import CanonicalTenantId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantProviderConfig:
    enabled: bool = False
    account_id: Optional[str] = None
    property_id: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.account_id and self.property_id)

    @property
    def is_ready(self) -> bool:
        """Only a ready config may trigger a GA4 call."""
        return self.enabled and self.is_configured


@dataclass(frozen=True)
class TenantRecord:
    canonical_id: CanonicalTenantId
    name: str = ""
    legacy_id: Optional[int] = None
    provider_config: TenantProviderConfig = field(default_factory=TenantProviderConfig)
    traffic_data_source: str = TRAFFIC_SOURCE


class TenantConfigStore(Protocol):
    async def find_by_legacy_id(self, legacy_id: int) -> Optional[TenantRecord]: ...

    async def find_by_canonical_id(self, tenant_id: CanonicalTenantId) -> Optional[TenantRecord]: ...

    async def update_provider_config(
        self, tenant_id: CanonicalTenantId, config: TenantProviderConfig
    ) -> TenantRecord: ...

    async def set_traffic_data_source(self, tenant_id: CanonicalTenantId, source: str) -> None: ...


def _to_record(row: Tenant) -> TenantRecord:
    return TenantRecord(
        canonical_id=CanonicalTenantId(row.id),
        name=row.name,
        legacy_id=row.legacy_id,
        provider_config=TenantProviderConfig(
            enabled=bool(row.ga4_enabled),
            account_id=row.ga4_key or None,
            property_id=row.ga4_property_id or None,
        ),
        traffic_data_source=row.traffic_data_source or TRAFFIC_SOURCE,
    )


class SqlTenantConfigStore:
    """``TenantConfigStore`` over the ``tenants`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_legacy_id(self, legacy_id: int) -> Optional[TenantRecord]:
        return await self._find_one(select(Tenant).where(Tenant.legacy_id == legacy_id))

    async def find_by_canonical_id(self, tenant_id: CanonicalTenantId) -> Optional[TenantRecord]:
        return await self._find_one(select(Tenant).where(Tenant.id == tenant_id.value))

    async def _find_one(self, stmt) -> Optional[TenantRecord]:
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Tenant lookup failed: %s", e)
            raise TenantStoreUnavailable(str(e)) from e
        return _to_record(row) if row else None

    async def create_tenant(
        self,
        name: str,
        legacy_id: Optional[int] = None,
        tenant_id: Optional[str] = None,
        config: Optional[TenantProviderConfig] = None,
    ) -> TenantRecord:
        config = config or TenantProviderConfig()
        row = Tenant(
            name=name,
            legacy_id=legacy_id,
            ga4_enabled=config.enabled,
            ga4_key=config.account_id,
            ga4_property_id=config.property_id,
        )
        if tenant_id:
            row.id = tenant_id
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
        except SQLAlchemyError as e:
            logger.error("Tenant create failed: %s", e)
            raise TenantStoreUnavailable(str(e)) from e
        logger.info("🏢 Created tenant %s (%s)", row.id, name)
        return _to_record(row)

    async def update_provider_config(
        self, tenant_id: CanonicalTenantId, config: TenantProviderConfig
    ) -> TenantRecord:
        try:
            async with self._session_factory() as session:
                row = await session.get(Tenant, tenant_id.value)
                if row is None:
                    raise UnknownTenant(tenant_id.value)
                row.ga4_enabled = config.enabled
                row.ga4_key = config.account_id
                row.ga4_property_id = config.property_id
                await session.commit()
                await session.refresh(row)
        except SQLAlchemyError as e:
            logger.error("Tenant GA4 config update failed: %s", e)
            raise TenantStoreUnavailable(str(e)) from e
        logger.info(
            "🔧 Tenant %s GA4 config → enabled=%s property=%s",
            tenant_id, config.enabled, config.property_id,
        )
        return _to_record(row)

    async def set_traffic_data_source(self, tenant_id: CanonicalTenantId, source: str) -> None:
        try:
            async with self._session_factory() as session:
                row = await session.get(Tenant, tenant_id.value)
                if row is None:
                    raise UnknownTenant(tenant_id.value)
                row.traffic_data_source = source
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Tenant source update failed: %s", e)
            raise TenantStoreUnavailable(str(e)) from e
