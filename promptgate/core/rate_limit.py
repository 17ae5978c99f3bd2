"""Per-IP throttling of operator endpoints (slowapi).

Tenant traffic is limited by the gateway's own Rate Limiter; this limiter
only protects the admin surface, e.g. cache invalidation.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from promptgate.core.config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.admin_rate_limit_enabled)

CACHE_INVALIDATE_LIMIT = "10/minute"
