"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply the login limit with @limiter.limit()).

A single shared instance keeps one in-memory counter store for every route.
The refresh endpoint is not limited here; it has its own per-IP token bucket
(auth/rate_limiter.py).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

LOGIN_RATE_LIMIT: str = get_settings().login_rate_limit
