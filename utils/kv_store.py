"""
Key-value store used for the subscription cache, customer links and rate limits.

Redis when REDIS_URL is configured, otherwise a process-local dict.
"""
import logging
import threading
import time
from typing import Dict, Optional, Protocol, Tuple

import redis

from config.settings import Settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class RedisKeyValueStore:
    """String store backed by a redis client created with decode_responses=True."""

    def __init__(self, client):
        self.client = client

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds:
            self.client.setex(key, ttl_seconds, value)
        else:
            self.client.set(key, value)

    def delete(self, key: str) -> None:
        self.client.delete(key)


class InMemoryKeyValueStore:
    """Process-local fallback. State is lost on restart."""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._data[key]
                return None
            return value

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


def build_kv_store(settings: Settings) -> KeyValueStore:
    """Connect to Redis if configured, falling back to the in-memory store."""
    if not settings.redis_url:
        logger.info("ℹ️ REDIS_URL not set. Using in-memory key-value store.")
        return InMemoryKeyValueStore()

    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
        logger.info("✅ Redis connected successfully for billing state")
        return RedisKeyValueStore(client)
    except Exception as e:
        logger.warning(f"⚠️ Redis connection failed: {e}. Falling back to in-memory key-value store.")
        return InMemoryKeyValueStore()
