"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limits are per client IP and complement, not replace, the account-scoped
lockout in auth/lockout.py. RATE_LIMIT_ENABLED=false turns every limit off
(the test suite does this so lockout scenarios are not throttled first).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    default_limits=[_settings.default_rate_limit],
    enabled=_settings.rate_limit_enabled,
)
