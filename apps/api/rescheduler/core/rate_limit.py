"""Rate limiting for the public magic-link endpoints."""

import logging
import os

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address

from rescheduler.core.config import settings

logger = logging.getLogger(__name__)

# Redis backs the limiter when several workers serve the API.
# Falls back to in-memory if Redis is not reachable (dev/test mode)
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")

PUBLIC_LIMIT = f"{max(settings.RATE_LIMIT_PUBLIC, 1)}/minute"


def _build_limiter() -> Limiter:
    if IS_TESTING:
        # No Redis dependency in tests
        return Limiter(key_func=get_remote_address, storage_uri="memory://")

    try:
        client = redis.from_url(REDIS_URL, socket_connect_timeout=1)
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis unavailable for rate limiting, using in-memory: %s", exc)
        return Limiter(key_func=get_remote_address, storage_uri="memory://")

    return Limiter(key_func=get_remote_address, storage_uri=REDIS_URL)


limiter = _build_limiter()
