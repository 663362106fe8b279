"""
GA4 fetcher — Google Analytics Data API v1beta over REST.

One ``batchRunReports`` call per fetch carries the four reports the
dashboard needs (summary, traffic sources, top pages, devices), which keeps
us well inside GA4's per-property quota.  Authentication is a shared
service account; access tokens are refreshed with google-auth in the
default executor so the event loop never blocks on the token endpoint.

Failures are classified into the analytics taxonomy:

- ``ProviderMisconfigured`` — missing/unparsable service account, bad
  property id, HTTP 400/404
- ``ProviderUnavailable`` — network, auth, quota (429) or 5xx
- ``ProviderEmptyResult`` — no summary rows; carries zero-metrics data

Timeouts are the caller's job (see traffic_analytics).
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import aiohttp
import google.auth.exceptions
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from dashboard_api.config import Settings
from dashboard_api.schemas.traffic import (
    ConnectionTestResult,
    DateRange,
    DeviceShare,
    Provenance,
    StandardizedTrafficData,
    TopPage,
    TrafficMetrics,
    TrafficSource,
    empty_traffic_data,
    share_percentages,
)
from dashboard_api.services.analytics_errors import (
    AnalyticsError,
    ProviderEmptyResult,
    ProviderMisconfigured,
    ProviderUnavailable,
)
from dashboard_api.services.tenant_store import TenantProviderConfig

logger = logging.getLogger("analytics.ga4")

ANALYTICS_SCOPE = "https://www.googleapis.com/auth/analytics.readonly"
DEFAULT_API_BASE = "https://analyticsdata.googleapis.com/v1beta"

# transport-level guard only; the facade enforces the real deadline
HTTP_TIMEOUT = aiohttp.ClientTimeout(total=60)


# ─────────────────────────────────────────────────────────────────────
# helpers
# ─────────────────────────────────────────────────────────────────────

def format_date(value: datetime) -> str:
    """GA4 wants YYYY-MM-DD."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d")


def property_path(property_id: Optional[str]) -> str:
    """Normalise '123' / 'properties/123' → 'properties/123'."""
    pid = (property_id or "").strip()
    if pid.startswith("properties/"):
        pid = pid[len("properties/"):]
    if not pid.isdigit():
        raise ProviderMisconfigured(f"GA4 property id must be numeric, got {property_id!r}")
    return f"properties/{pid}"


def _int(cell: dict | None) -> int:
    try:
        return int(float((cell or {}).get("value", "0")))
    except (TypeError, ValueError):
        return 0


def _float(cell: dict | None) -> float:
    try:
        return float((cell or {}).get("value", "0"))
    except (TypeError, ValueError):
        return 0.0


def _dim(row: dict, index: int, default: str) -> str:
    values = row.get("dimensionValues") or []
    if index < len(values):
        return values[index].get("value") or default
    return default


def _metric(row: dict, index: int) -> dict | None:
    values = row.get("metricValues") or []
    return values[index] if index < len(values) else None


def classify_http_error(status: int, body: str) -> AnalyticsError:
    """Map a non-200 GA4 response to the taxonomy."""
    try:
        message = json.loads(body).get("error", {}).get("message") or body
    except (ValueError, AttributeError):
        message = body
    message = (message or "").strip()[:300]

    if status in (400, 404):
        return ProviderMisconfigured(f"GA4 API {status}: {message}")
    if status in (401, 403):
        return ProviderUnavailable(f"GA4 authentication failed ({status}): {message}")
    if status == 429:
        return ProviderUnavailable(f"GA4 quota exhausted: {message}")
    return ProviderUnavailable(f"GA4 API {status}: {message}")


def build_report_requests(
    date_range: DateRange, top_pages_limit: int = 10, traffic_sources_limit: int = 10
) -> list[dict]:
    """The four RunReportRequests sent in one batch, in mapping order."""
    ranges = [{"startDate": format_date(date_range.start), "endDate": format_date(date_range.end)}]
    by_sessions = [{"metric": {"metricName": "sessions"}, "desc": True}]
    return [
        {
            "dateRanges": ranges,
            "metrics": [
                {"name": "sessions"},
                {"name": "totalUsers"},
                {"name": "screenPageViews"},
                {"name": "bounceRate"},
            ],
        },
        {
            "dateRanges": ranges,
            "dimensions": [{"name": "sessionSource"}, {"name": "sessionMedium"}],
            "metrics": [{"name": "sessions"}],
            "orderBys": by_sessions,
            "limit": traffic_sources_limit,
        },
        {
            "dateRanges": ranges,
            "dimensions": [{"name": "pagePath"}],
            "metrics": [{"name": "screenPageViews"}, {"name": "totalUsers"}],
            "orderBys": [{"metric": {"metricName": "screenPageViews"}, "desc": True}],
            "limit": top_pages_limit,
        },
        {
            "dateRanges": ranges,
            "dimensions": [{"name": "deviceCategory"}],
            "metrics": [{"name": "sessions"}],
            "orderBys": by_sessions,
        },
    ]


def map_batch_response(
    payload: dict, date_range: DateRange, now: datetime
) -> StandardizedTrafficData:
    """Map a batchRunReports body onto StandardizedTrafficData.

    Percentages are recomputed from session counts rather than trusted.
    Raises ProviderEmptyResult (carrying zero data) when the summary report
    has no rows, and ProviderUnavailable when the body is not the shape GA4
    documents.
    """
    reports = payload.get("reports") if isinstance(payload, dict) else None
    if not isinstance(reports, list) or len(reports) != 4:
        raise ProviderUnavailable("GA4 returned an unexpected batch response")
    try:
        return _map_reports(reports, date_range, now)
    except (AttributeError, TypeError, IndexError, ValueError) as e:
        # ValueError covers pydantic's ValidationError
        raise ProviderUnavailable(f"GA4 returned an unexpected batch response: {e}") from e


def _map_reports(
    reports: list, date_range: DateRange, now: datetime
) -> StandardizedTrafficData:
    summary, sources, pages, devices = (r.get("rows") or [] for r in reports)

    if not summary:
        raise ProviderEmptyResult(empty_traffic_data(date_range, now))

    head = summary[0]
    metrics = TrafficMetrics(
        sessions=_int(_metric(head, 0)),
        visitors=_int(_metric(head, 1)),
        page_views=_int(_metric(head, 2)),
        bounce_rate=_float(_metric(head, 3)),
    )

    source_sessions = [_int(_metric(r, 0)) for r in sources]
    device_sessions = [_int(_metric(r, 0)) for r in devices]

    return StandardizedTrafficData(
        date_range=date_range,
        metrics=metrics,
        traffic_sources=[
            TrafficSource(
                source=_dim(row, 0, "unknown"),
                medium=_dim(row, 1, "unknown"),
                sessions=sessions,
                percentage=pct,
            )
            for row, sessions, pct in zip(sources, source_sessions, share_percentages(source_sessions))
        ],
        top_pages=[
            TopPage(
                path=_dim(row, 0, "/"),
                page_views=_int(_metric(row, 0)),
                visitors=_int(_metric(row, 1)),
            )
            for row in pages
        ],
        device_distribution=[
            DeviceShare(device=_dim(row, 0, "unknown"), sessions=sessions, percentage=pct)
            for row, sessions, pct in zip(devices, device_sessions, share_percentages(device_sessions))
        ],
        last_updated=now,
        provenance=Provenance.FRESH,
    )


# ─────────────────────────────────────────────────────────────────────
# fetcher
# ─────────────────────────────────────────────────────────────────────

class GA4Fetcher:
    """Calls GA4 for a tenant's property and maps the result."""

    def __init__(
        self,
        service_account_info: Optional[dict] = None,
        credentials_path: str = "",
        api_base: str = DEFAULT_API_BASE,
        top_pages_limit: int = 10,
        traffic_sources_limit: int = 10,
    ):
        self._service_account_info = service_account_info
        self._credentials_path = credentials_path
        self._api_base = api_base.rstrip("/")
        self._top_pages_limit = top_pages_limit
        self._traffic_sources_limit = traffic_sources_limit
        self._credentials = None
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, s: Settings) -> "GA4Fetcher":
        return cls(
            service_account_info=s.ga4_service_account_info,
            credentials_path=s.ga4_credentials_path,
            api_base=s.ga4_api_base,
            top_pages_limit=s.ga4_top_pages_limit,
            traffic_sources_limit=s.ga4_traffic_sources_limit,
        )

    # ── public ──

    async def fetch(
        self, config: TenantProviderConfig, date_range: DateRange
    ) -> StandardizedTrafficData:
        path = property_path(config.property_id)
        logger.info(
            "📊 Fetching GA4 %s for %s..%s",
            path, format_date(date_range.start), format_date(date_range.end),
        )
        token = await self._access_token()
        body = {
            "requests": build_report_requests(
                date_range, self._top_pages_limit, self._traffic_sources_limit
            )
        }
        payload = await self._post(f"{path}:batchRunReports", body, token)
        return map_batch_response(payload, date_range, datetime.now(timezone.utc))

    async def test_connection(self, config: TenantProviderConfig) -> ConnectionTestResult:
        """Minimal round-trip: one metric, last 7 days, one row."""
        path = property_path(config.property_id)
        token = await self._access_token()
        await self._post(
            f"{path}:runReport",
            {
                "dateRanges": [{"startDate": "7daysAgo", "endDate": "today"}],
                "metrics": [{"name": "sessions"}],
                "limit": 1,
            },
            token,
        )
        return ConnectionTestResult(
            success=True, message="Successfully connected to Google Analytics 4"
        )

    # ── auth ──

    def _load_credentials(self):
        if self._credentials is not None:
            return self._credentials
        try:
            if self._credentials_path:
                creds = service_account.Credentials.from_service_account_file(
                    self._credentials_path, scopes=[ANALYTICS_SCOPE]
                )
            elif self._service_account_info:
                creds = service_account.Credentials.from_service_account_info(
                    self._service_account_info, scopes=[ANALYTICS_SCOPE]
                )
            else:
                raise ProviderMisconfigured("Missing required GA4 service account settings")
        except (ValueError, KeyError, OSError) as e:
            raise ProviderMisconfigured(f"Invalid GA4 service account credentials: {e}") from e
        self._credentials = creds
        return creds

    async def _access_token(self) -> str:
        creds = self._load_credentials()
        async with self._token_lock:
            if not creds.valid:
                loop = asyncio.get_running_loop()
                try:
                    await loop.run_in_executor(None, creds.refresh, GoogleAuthRequest())
                except google.auth.exceptions.RefreshError as e:
                    raise ProviderUnavailable(f"GA4 authentication failed: {e}") from e
                except google.auth.exceptions.TransportError as e:
                    raise ProviderUnavailable(f"GA4 token endpoint unreachable: {e}") from e
        return creds.token

    # ── transport ──

    async def _post(self, path: str, body: dict, token: str) -> dict:
        url = f"{self._api_base}/{path}"
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async with aiohttp.ClientSession(timeout=HTTP_TIMEOUT) as session:
                async with session.post(url, json=body, headers=headers) as resp:
                    if resp.status == 200:
                        return await resp.json()
                    text = await resp.text()
                    logger.error("GA4 API %s: %s", resp.status, text[:200])
                    raise classify_http_error(resp.status, text)
        except (aiohttp.ContentTypeError, ValueError) as e:
            raise ProviderUnavailable(f"GA4 returned a non-JSON body: {e}") from e
        except aiohttp.ClientError as e:
            raise ProviderUnavailable(f"GA4 request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable("GA4 request timed out") from e
