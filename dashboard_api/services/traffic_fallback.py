"""
Synthetic traffic data shown when GA4 can't be used.

Pure function of the requested range: a fixed 30-day sample scaled by the
number of days in the range.  No clock, no I/O, never raises.  The result
is tagged ``synthetic`` so the dashboard can show a "data temporarily
unavailable" hint.
"""

from dashboard_api.schemas.traffic import (
    DateRange,
    DeviceShare,
    Provenance,
    StandardizedTrafficData,
    TopPage,
    TrafficMetrics,
    TrafficSource,
    share_percentages,
)

SAMPLE_DAYS = 30

SAMPLE_METRICS = {"page_views": 12543, "visitors": 8932, "sessions": 9876}
SAMPLE_BOUNCE_RATE = 0.45

SAMPLE_SOURCES = [
    ("google", "organic", 4500),
    ("direct", "(none)", 2800),
    ("facebook", "social", 1200),
    ("twitter", "social", 800),
    ("other", "referral", 700),
]

SAMPLE_PAGES = [
    ("/", 5600, 4200),
    ("/dashboard", 3400, 2800),
    ("/products", 2100, 1900),
    ("/about", 1443, 1200),
]

SAMPLE_DEVICES = [
    ("desktop", 5900),
    ("mobile", 2950),
    ("tablet", 985),
]


def _scale(value: int, factor: float) -> int:
    return int(round(value * factor))


def fallback_traffic_data(date_range: DateRange) -> StandardizedTrafficData:
    factor = max(date_range.days, 1) / SAMPLE_DAYS

    source_sessions = [_scale(n, factor) for _, _, n in SAMPLE_SOURCES]
    device_sessions = [_scale(n, factor) for _, n in SAMPLE_DEVICES]

    return StandardizedTrafficData(
        date_range=date_range,
        metrics=TrafficMetrics(
            page_views=_scale(SAMPLE_METRICS["page_views"], factor),
            visitors=_scale(SAMPLE_METRICS["visitors"], factor),
            sessions=_scale(SAMPLE_METRICS["sessions"], factor),
            bounce_rate=SAMPLE_BOUNCE_RATE,
        ),
        traffic_sources=[
            TrafficSource(source=name, medium=medium, sessions=sessions, percentage=pct)
            for (name, medium, _), sessions, pct in zip(
                SAMPLE_SOURCES, source_sessions, share_percentages(source_sessions)
            )
        ],
        top_pages=[
            TopPage(path=path, page_views=_scale(views, factor), visitors=_scale(visitors, factor))
            for path, views, visitors in SAMPLE_PAGES
        ],
        device_distribution=[
            DeviceShare(device=name, sessions=sessions, percentage=pct)
            for (name, _), sessions, pct in zip(
                SAMPLE_DEVICES, device_sessions, share_percentages(device_sessions)
            )
        ],
        last_updated=date_range.end,
        provenance=Provenance.SYNTHETIC,
    )
