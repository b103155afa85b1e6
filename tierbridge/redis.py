"""
Redis connection for webhook de-duplication.

Only the idempotency guard talks to Redis. It fails open, so calls must
time out quickly instead of holding the webhook response.
"""

from typing import Optional

import redis

from tierbridge.config import get_settings


def get_redis_client(url: Optional[str] = None) -> redis.Redis:
    """Synchronous client with string responses and short socket timeouts."""
    settings = get_settings()
    return redis.from_url(
        url or settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
    )
