"""Rate limiting for write endpoints that external callers can replay."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from callgate.core.config import settings

# memory:// per process; point RATE_LIMIT_STORAGE_URI at redis:// for multi-worker
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)
