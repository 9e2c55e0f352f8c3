"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Rate limiting lives in the transport only. The credential core has no notion
of request origin; throttling login and reset requests is wrapped around it.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
