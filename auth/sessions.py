"""
auth/sessions.py -- Server-side session registry.

Bridges tokens and the session cache. A token's session id (sid) must be
present in the cache for the token to authorize anything; the cache entry's
value is the authoritative user id for the request.

  register  -- on login/refresh, one entry per token, TTL = token lifetime
  confirm   -- on every protected request (strict gate)
  consume   -- on refresh: read and delete the refresh sid in one step, so
               two concurrent refreshes cannot both see it
  revoke    -- on logout

Cache outages raise CacheUnavailable. Callers must abort the operation; a
login that cannot record its sessions must not hand out tokens.

Layer rule: no imports from api/. The cache backend is injected.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Protocol

from auth.errors import CacheUnavailable, SessionNotFound
from auth.models import TokenPair
from cache.store import CacheError

logger = logging.getLogger("coinserver.auth")

_KEY_PREFIX = "session:"


class SessionCache(Protocol):
    def set(self, key: str, value: str, ttl: int) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...

    def getdel(self, key: str) -> Optional[str]: ...


def _key(session_id: str) -> str:
    return f"{_KEY_PREFIX}{session_id}"


def _remaining_seconds(expires_at: datetime, now: datetime) -> int:
    # Round up and clamp so an entry never outlives its token by more than a
    # second and Redis never sees a zero or negative TTL.
    return max(1, math.ceil((expires_at - now).total_seconds()))


class SessionRegistry:
    """Records, confirms and revokes live sessions.

    Usage:
        registry = SessionRegistry(cache)
        registry.register_pair(pair)
        user_id = registry.confirm_session(claims.session_id)
        registry.revoke_session(claims.session_id)
    """

    def __init__(self, cache: SessionCache) -> None:
        self._cache = cache

    def register_session(self, session_id: str, user_id: str, ttl: int) -> None:
        try:
            self._cache.set(_key(session_id), user_id, max(1, int(ttl)))
        except CacheError as exc:
            logger.error("Could not register session: %s", exc)
            raise CacheUnavailable(str(exc)) from exc

    def register_pair(self, pair: TokenPair, user_id: str, now: datetime | None = None) -> None:
        """Register both sessions of a freshly issued pair.

        The two writes form a unit. If the refresh write fails after the
        access write succeeded, the access entry is removed again before
        CacheUnavailable propagates.
        """
        now = now or datetime.now(timezone.utc)
        self.register_session(pair.access_session_id, user_id, _remaining_seconds(pair.access_expires_at, now))
        try:
            self.register_session(pair.refresh_session_id, user_id, _remaining_seconds(pair.refresh_expires_at, now))
        except CacheUnavailable:
            try:
                self._cache.delete(_key(pair.access_session_id))
            except CacheError:
                logger.warning("Could not roll back access session after failed refresh registration")
            raise

    def confirm_session(self, session_id: str) -> str:
        """Return the user id that owns session_id, or raise SessionNotFound."""
        try:
            user_id = self._cache.get(_key(session_id))
        except CacheError as exc:
            logger.error("Could not confirm session: %s", exc)
            raise CacheUnavailable(str(exc)) from exc
        if user_id is None:
            raise SessionNotFound("session id not in cache")
        return user_id

    def consume_session(self, session_id: str) -> str:
        """Atomically remove session_id and return its owner.

        Raises SessionNotFound if the id is absent, including when a
        concurrent caller consumed it first.
        """
        try:
            user_id = self._cache.getdel(_key(session_id))
        except CacheError as exc:
            logger.error("Could not consume session: %s", exc)
            raise CacheUnavailable(str(exc)) from exc
        if user_id is None:
            raise SessionNotFound("session id not in cache or already consumed")
        return user_id

    def revoke_session(self, session_id: str) -> None:
        """Delete session_id from the cache. Missing ids are not an error."""
        try:
            self._cache.delete(_key(session_id))
        except CacheError as exc:
            logger.error("Could not revoke session: %s", exc)
            raise CacheUnavailable(str(exc)) from exc
