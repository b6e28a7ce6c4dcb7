from __future__ import annotations

import logging
import threading
from typing import Optional
from urllib.parse import urlsplit

import redis
from redis import Redis

from issue_tracker.core.config import settings

logger = logging.getLogger("issue_tracker.redis")

_client: Optional[Redis] = None
_lock = threading.Lock()


def _safe_url(url: str) -> str:
    """Host/port/db part of a Redis URL, without credentials."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.hostname or ''}:{parts.port or 6379}{parts.path}"


def get_redis() -> Optional[Redis]:
    """Shared client for the redis counter backend, or None while Redis is unreachable.

    A failed ping is not remembered: the next call connects again.
    """
    global _client
    if _client is not None:
        return _client

    with _lock:
        if _client is not None:
            return _client
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
            socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
        )
        try:
            client.ping()
        except redis.exceptions.RedisError as exc:
            logger.warning("Redis at %s unavailable: %s", _safe_url(settings.REDIS_URL), exc)
            client.close()
            return None
        _client = client
        return _client
