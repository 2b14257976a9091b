from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import redis

from .config import load_config

logger = logging.getLogger(__name__)


class MemoryCache:
    """In-process cache with per-key expiry. Values are stored as given."""

    def __init__(self) -> None:
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def incr(self, key: str, ttl: Optional[int] = None) -> int:
        """Increment a counter; the TTL starts with the first increment."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                expires_at = time.monotonic() + ttl if ttl else None
                value = 1
            else:
                value = int(entry[0]) + 1
                expires_at = entry[1]
            self._data[key] = (value, expires_at)
            return value

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisCache:
    """Redis-backed cache; values are JSON-encoded."""

    def __init__(self, url: Optional[str] = None, prefix: str = "devai:", client: Optional[redis.Redis] = None) -> None:
        self.client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Any:
        try:
            raw = self.client.get(self._key(key))
        except redis.RedisError as exc:
            logger.warning("[CACHE] get %s failed: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        raw = json.dumps(value, default=str)
        try:
            if ttl:
                self.client.setex(self._key(key), ttl, raw)
            else:
                self.client.set(self._key(key), raw)
        except redis.RedisError as exc:
            logger.warning("[CACHE] set %s failed: %s", key, exc)

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except redis.RedisError as exc:
            logger.warning("[CACHE] delete %s failed: %s", key, exc)

    def incr(self, key: str, ttl: Optional[int] = None) -> int:
        """Counter increment; 0 when Redis is unreachable so callers fail open."""
        full_key = self._key(key)
        try:
            value = int(self.client.incr(full_key))
            if value == 1 and ttl:
                self.client.expire(full_key, ttl)
        except redis.RedisError as exc:
            logger.warning("[CACHE] incr %s failed: %s", key, exc)
            return 0
        return value

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            logger.warning("[CACHE] Redis ping failed: %s", exc)
            return False

    def clear(self) -> None:
        for key in self.client.scan_iter(f"{self.prefix}*"):
            self.client.delete(key)


_cache: Optional[Any] = None


def build_cache(redis_url: Optional[str]) -> Any:
    if redis_url:
        logger.info("[CACHE] Using Redis cache")
        return RedisCache(redis_url)
    logger.info("[CACHE] REDIS_URL not set; using in-process cache")
    return MemoryCache()


def get_cache() -> Any:
    global _cache
    if _cache is None:
        _cache = build_cache(load_config().redis_url)
    return _cache


def set_cache(cache: Any) -> None:
    global _cache
    _cache = cache
