"""
Tenant Dashboard — Tenant model.

Only the columns the analytics layer reads are mapped here: identity
(canonical 24-hex id + optional legacy integer) and the GA4 settings.
"""

import secrets

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from dashboard_api.database import Base


def new_tenant_id() -> str:
    """Opaque 24-hex identifier, same shape as the document-store ids."""
    return secrets.token_hex(12)


class Tenant(Base):
    """One row per dashboard tenant."""
    __tablename__ = "tenants"

    id = Column(String(24), primary_key=True, default=new_tenant_id)

    # Numeric id from before the document-store migration. Unique, so a
    # legacy integer can never resolve to two tenants.
    legacy_id = Column(Integer, unique=True, nullable=True)

    name = Column(String(255), nullable=False)

    # GA4 provider settings
    ga4_enabled = Column(Boolean, default=True, nullable=False)
    ga4_key = Column(String(64), nullable=True)            # measurement / account id
    ga4_property_id = Column(String(64), nullable=True)    # numeric GA4 property
    traffic_data_source = Column(String(30), default="google_analytics")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        legacy = f" legacy={self.legacy_id}" if self.legacy_id is not None else ""
        return f"<Tenant {self.id}{legacy} {self.name!r}>"
