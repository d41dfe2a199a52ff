"""
cache/store.py -- Expiring key-value stores backing the session registry.

Two implementations of the same small surface (set/get/delete with TTL):

  RedisSessionCache   -- production. Every key carries a Redis TTL, so stale
                         sessions disappear on their own and survive process
                         restarts. The redis-py client holds a thread-safe
                         connection pool shared by all request threads.
  MemorySessionCache  -- local development and tests. Selected with the
                         "memory://" URL (same convention slowapi uses for
                         its limiter storage). Entries expire lazily on read,
                         and every few hundred writes a sweep drops expired
                         entries that were never read again.

Transport failures surface as CacheError; auth/sessions.py turns those into
CacheUnavailable so the request fails with 502 instead of silently running
without session state.

Usage:
    cache = create_session_cache(settings.redis_url)
    cache.set("session:abc", "alice@example.com", ttl=1800)
    cache.get("session:abc")    # "alice@example.com" or None
    cache.delete("session:abc")
    cache.getdel("session:abc") # read and remove in one step; None if absent

Layer rule: cache/ imports nothing from api/, auth/, or core/.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger("coinserver.cache")

MEMORY_URL = "memory://"


class CacheError(Exception):
    """The cache backend could not complete an operation."""


class RedisSessionCache:
    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0) -> None:
        self.redis_url = redis_url
        self._client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def set(self, key: str, value: str, ttl: int) -> None:
        """Store value under key, expiring after ttl seconds (minimum 1)."""
        try:
            self._client.set(key, value, ex=max(1, int(ttl)))
        except RedisError as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(key)
        except RedisError as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is not an error."""
        try:
            self._client.delete(key)
        except RedisError as exc:
            raise CacheError(f"DEL {key} failed: {exc}") from exc

    def getdel(self, key: str) -> Optional[str]:
        """Return the value and delete key atomically (Redis GETDEL, server 6.2+)."""
        try:
            return self._client.getdel(key)
        except RedisError as exc:
            raise CacheError(f"GETDEL {key} failed: {exc}") from exc

    def ping(self) -> bool:
        """Return True if the server answers, False otherwise."""
        try:
            return bool(self._client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        self._client.close()


class MemorySessionCache:
    """Process-local cache with the same semantics as RedisSessionCache.

    Not shared across workers and lost on restart -- never use it for a real
    deployment.
    """

    def __init__(self, clock=time.monotonic, *, sweep_every: int = 256) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._sweep_every = max(1, sweep_every)
        self._writes = 0

    def set(self, key: str, value: str, ttl: int) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (value, now + max(1, int(ttl)))
            self._writes += 1
            if self._writes >= self._sweep_every:
                self._writes = 0
                self._sweep(now)

    def _sweep(self, now: float) -> None:
        # Caller holds the lock.
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Swept %d expired sessions", len(expired))

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def getdel(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        return None if self._clock() >= expires_at else value

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def create_session_cache(url: str, *, socket_timeout: float = 5.0) -> RedisSessionCache | MemorySessionCache:
    """Return the cache implementation selected by url."""
    if url == MEMORY_URL:
        logger.warning("Using in-process session cache -- sessions are lost on restart")
        return MemorySessionCache()
    return RedisSessionCache(url, socket_timeout=socket_timeout)
