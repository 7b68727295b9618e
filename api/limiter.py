"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py attaches it to app.state and mounts SlowAPIMiddleware; the route
modules apply per-route limits with @limiter.limit(AUTH_RATE_LIMIT).

There must be exactly one instance: a limiter per route module would give each
module its own counter store and the limits would never trigger.

Tests switch it off with `limiter.enabled = False`.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Login, register, refresh and password-reset request, per client IP.
AUTH_RATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
