"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance imported by the compliance router
for per-endpoint limits, and wired into the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Default: 60 requests/minute per client IP for all endpoints.
# Query endpoints override with @limiter.limit(settings.QUERY_RATE_LIMIT).
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
)
