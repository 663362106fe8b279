"""
Tenant identity — one canonical id per request.

Dashboard requests can name a tenant two ways: the opaque 24-hex document
id, or the small integer it had before the document-store migration.  The
reference is parsed into a tagged value here and resolved exactly once at
the facade boundary; the cache, coordinator and GA4 fetcher only ever see
``CanonicalTenantId``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from dashboard_api.services.analytics_errors import InvalidTenantReference, UnknownTenant

if TYPE_CHECKING:
    from dashboard_api.services.tenant_store import TenantConfigStore

logger = logging.getLogger(__name__)

_CANONICAL_RE = re.compile(r"^[0-9a-f]{24}$")


@dataclass(frozen=True)
class CanonicalTenantId:
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LegacyTenantId:
    value: int

    def __str__(self) -> str:
        return str(self.value)


TenantRef = Union[CanonicalTenantId, LegacyTenantId]


def parse_tenant_ref(raw) -> TenantRef:
    """Turn a header / query / int value into a tagged tenant reference."""
    if isinstance(raw, (CanonicalTenantId, LegacyTenantId)):
        return raw
    if isinstance(raw, bool):
        raise InvalidTenantReference(f"Invalid tenant reference: {raw!r}")
    if isinstance(raw, int):
        if raw <= 0:
            raise InvalidTenantReference(f"Legacy tenant id must be positive: {raw}")
        return LegacyTenantId(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.isascii() and text.isdigit():
            return parse_tenant_ref(int(text))
        if _CANONICAL_RE.match(text.lower()):
            return CanonicalTenantId(text.lower())
    raise InvalidTenantReference(f"Invalid tenant reference: {raw!r}")


class IdentityResolver:
    """Maps a tenant reference to its canonical id with at most one store read."""

    def __init__(self, store: "TenantConfigStore"):
        self._store = store

    async def resolve(self, ref: TenantRef) -> CanonicalTenantId:
        if isinstance(ref, CanonicalTenantId):
            return ref

        record = await self._store.find_by_legacy_id(ref.value)
        if record is None:
            raise UnknownTenant(ref.value)
        logger.debug("Resolved legacy tenant %d → %s", ref.value, record.canonical_id)
        return record.canonical_id
