"""
Tenant Dashboard — Analytics cache model.

One row per (tenant, date range) GA4 snapshot. Rows are written only after
a successful fetch and are considered dead once ``expires_at`` passes; the
periodic sweep in main.py deletes them.

All timestamps are stored as naive UTC so range comparisons behave the same
on SQLite and PostgreSQL.
"""

import uuid

from sqlalchemy import Column, DateTime, Index, JSON, String

from dashboard_api.database import Base


class AnalyticsCacheEntry(Base):
    """Serialized StandardizedTrafficData for one tenant + date range."""
    __tablename__ = "analytics_cache_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(String(24), nullable=False)
    source = Column(String(30), nullable=False, default="google_analytics")

    range_start = Column(DateTime, nullable=False)
    range_end = Column(DateTime, nullable=False)

    # StandardizedTrafficData.model_dump(mode="json")
    payload = Column(JSON, nullable=False)

    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_analytics_cache_key", "tenant_id", "range_start", "range_end", unique=True),
        Index("ix_analytics_cache_expires", "expires_at"),
    )

    def __repr__(self):
        return (
            f"<AnalyticsCacheEntry {self.tenant_id} "
            f"{self.range_start:%Y-%m-%d}..{self.range_end:%Y-%m-%d} "
            f"expires={self.expires_at:%Y-%m-%d %H:%M}>"
        )
