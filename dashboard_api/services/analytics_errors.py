"""
Traffic analytics — error taxonomy.

Everything deriving from ``AnalyticsError`` is absorbed by the traffic
facade and turned into synthetic fallback data.  ``ValueError`` subclasses
are caller mistakes and are surfaced as HTTP 400.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dashboard_api.schemas.traffic import StandardizedTrafficData


class AnalyticsError(Exception):
    """Base for provider- and infrastructure-side analytics failures."""


class UnknownTenant(AnalyticsError):
    def __init__(self, reference):
        self.reference = reference
        super().__init__(f"Tenant not found: {reference}")


class ProviderMisconfigured(AnalyticsError):
    """Credentials absent or malformed, or the provider rejected the request shape."""


class ProviderUnavailable(AnalyticsError):
    """Network, authentication or timeout failure talking to the provider."""


class ProviderEmptyResult(AnalyticsError):
    """The provider answered but had no rows for the range.

    Not a failure: ``data`` holds valid zero-metrics traffic data.
    """

    def __init__(self, data: "StandardizedTrafficData"):
        self.data = data
        super().__init__("Provider returned no rows for the requested range")


class TenantStoreUnavailable(AnalyticsError):
    """The tenant configuration store could not be read."""


class CacheUnavailable(AnalyticsError):
    """The analytics cache backend failed."""


class InvalidDateRange(ValueError):
    """``from`` is after ``to``."""


class InvalidTenantReference(ValueError):
    """Tenant reference is neither a 24-hex id nor a positive integer."""
