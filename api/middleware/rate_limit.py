"""
Rate Limiting

slowapi limiter shared by the routers. Counters live in Redis when it
answers a ping at startup, otherwise in process memory.
"""

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from core.config import get_settings
from core.logger import get_logger

logger = get_logger(__name__)
settings = get_settings()


def default_limit() -> str:
    """Per-client limit applied to every route without its own decorator."""
    # Step toggling fires a request per click; never throttle it locally
    if settings.is_local:
        return "10000/minute"
    return f"{settings.RATE_LIMIT_PER_MINUTE}/minute"


def _redis_available() -> bool:
    try:
        import redis
        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
    except Exception as e:
        logger.warning(f"Redis not reachable for rate limiting, using memory storage: {str(e)}")
        return False
    return True


def build_limiter() -> Limiter:
    limits = [default_limit()]
    if _redis_available():
        logger.info(f"Rate limiting backed by Redis ({limits[0]})")
        return Limiter(key_func=get_remote_address, storage_uri=settings.REDIS_URL, default_limits=limits)
    return Limiter(key_func=get_remote_address, default_limits=limits)


limiter = build_limiter()

__all__ = ['limiter', '_rate_limit_exceeded_handler', 'RateLimitExceeded']
