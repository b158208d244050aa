"""Rate limiting configuration using slowapi.

Provides the module-level Limiter wired into the FastAPI app in main.py,
where ``SlowAPIMiddleware`` applies the default limit to every route.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Default: 120 requests/minute per client IP for all endpoints.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
)
