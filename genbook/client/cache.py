"""
Storage for client-side entitlements snapshots.

An entry is the last /tenants/current payload plus the clock reading at which
it was fetched. Freshness is decided by EntitlementsClient, not the store.
"""

import json
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "genbook:entitlements:"
# Redis keys outlive the client TTL so a slow reader still sees the entry
REDIS_EXPIRY_SECONDS = 300


@dataclass(frozen=True)
class CacheEntry:
    data: Dict[str, Any]
    fetched_at: float


class EntitlementsCache:
    """Interface: get/set/delete a CacheEntry by key."""

    def get(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def set(self, key: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryEntitlementsCache(EntitlementsCache):
    """Process-local cache; the default."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class RedisEntitlementsCache(EntitlementsCache):
    """
    Redis-backed cache for clients shared across processes.

    Use a wall clock (time.time) in the client when sharing entries; a
    monotonic reading from another process is meaningless here.
    Redis failures are logged and behave as a cache miss.
    """

    def __init__(self, client=None, url: Optional[str] = None, expiry_seconds: int = REDIS_EXPIRY_SECONDS):
        if client is None:
            import redis

            client = redis.from_url(url or "redis://localhost:6379/0", decode_responses=True)
        self._client = client
        self._expiry_seconds = expiry_seconds

    @staticmethod
    def _key(key: str) -> str:
        return f"{CACHE_KEY_PREFIX}{key}"

    def get(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = self._client.get(self._key(key))
        except Exception as e:
            logger.warning("Entitlements cache get failed: %s", e)
            return None
        if not raw:
            return None
        try:
            o = json.loads(raw)
            return CacheEntry(data=o["data"], fetched_at=float(o["fetched_at"]))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed entitlements cache entry", extra={"key": key})
            return None

    def set(self, key: str, entry: CacheEntry) -> None:
        payload = json.dumps({"data": entry.data, "fetched_at": entry.fetched_at})
        try:
            self._client.setex(self._key(key), self._expiry_seconds, payload)
        except Exception as e:
            logger.warning("Entitlements cache set failed: %s", e)

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except Exception as e:
            logger.warning("Entitlements cache delete failed: %s", e)
