"""Lazy Redis clients shared by the cache, realtime channel and scan debounce."""

from __future__ import annotations

import logging

import redis
import redis.asyncio as aioredis

from stockroom.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def _timeouts() -> dict:
    t = settings.redis_socket_timeout_s
    return {"socket_timeout": t, "socket_connect_timeout": t}


def get_redis():
    """Lazy-load the sync Redis client; ``None`` when it cannot be created."""
    global _redis_client
    if _redis_client is None:
        try:
            _redis_client = redis.from_url(settings.redis_url, decode_responses=True, **_timeouts())
        except Exception as e:  # noqa: BLE001
            logger.warning(f"[redis] failed to create client: {e}")
            return None
    return _redis_client


def get_async_redis():
    """Fresh asyncio client (one per SSE connection)."""
    return aioredis.from_url(settings.redis_url, decode_responses=True, **_timeouts())


def set_redis(client) -> None:
    """Swap the shared client (worker bootstrap, tests)."""
    global _redis_client
    _redis_client = client
