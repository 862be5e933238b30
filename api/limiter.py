"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and api/routes/v1/auth.py
(per-route limit on POST /auth/login via @limiter.limit()).

One shared instance means all routes share the same in-memory counter store.
Separate instances per module would each keep an isolated counter and the
limits would never trigger.

The login limit is per client IP and complements the per-account lockout in
auth/lockout.py: the lockout stops guessing against one account, the limit
stops one address spraying many accounts.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
