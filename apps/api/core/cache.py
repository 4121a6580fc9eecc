"""
Shared Redis client for the rate limiter and the health check.

get_redis_client() returns None while Redis is down. After a failed connect
the next attempt waits RECONNECT_BACKOFF_SECONDS, so an outage costs one
connect timeout per backoff window instead of one per request.
"""
import logging
import time
from typing import Optional

import redis
from redis.exceptions import RedisError

from core.config import settings

logger = logging.getLogger(__name__)

RECONNECT_BACKOFF_SECONDS = 30

_redis_client: Optional[redis.Redis] = None
_next_attempt_at = 0.0


def get_redis_client() -> Optional[redis.Redis]:
    global _redis_client, _next_attempt_at

    if _redis_client is not None:
        return _redis_client
    if time.monotonic() < _next_attempt_at:
        return None

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        client.ping()
    except RedisError as e:
        _next_attempt_at = time.monotonic() + RECONNECT_BACKOFF_SECONDS
        logger.warning(f"Redis unavailable ({e}); retrying in {RECONNECT_BACKOFF_SECONDS}s")
        return None

    logger.info("Redis connection established")
    _redis_client = client
    return _redis_client


def reset_redis_client() -> None:
    """Forget the cached client and backoff (tests, or after a failover)."""
    global _redis_client, _next_attempt_at
    _redis_client = None
    _next_attempt_at = 0.0


def check_redis_connection() -> bool:
    client = get_redis_client()
    if client is None:
        return False
    try:
        return bool(client.ping())
    except RedisError:
        return False
