from dashboard_api.models.tenant import Tenant  # noqa: F401
from dashboard_api.models.analytics_cache import AnalyticsCacheEntry  # noqa: F401
