"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Dataclasses own
the domain shape; stores, services, and routes do the work.

Claims is the one exception: it owns the parse-or-fail step that turns a
verified JWT payload into typed fields, so no caller ever pokes at raw claim
dicts.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from auth.errors import MalformedToken

ACCESS = "access"
REFRESH = "refresh"
PURPOSES = (ACCESS, REFRESH)


@dataclass
class Bank:
    """A financial institution the user registered during account setup."""

    id: str
    name: str
    type: str
    amount: float = 0.0


@dataclass
class User:
    """A registered account.

    id and email are the same value -- the email address is the primary key.

    hashed_password is only populated on the write path (insert). Reads via
    UserStore.find_by_id() leave it None; the login path fetches the hash
    separately with get_password_hash() so it cannot leak into a response.
    """

    email: str
    name: str
    id: str | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    setup_complete: bool = False
    banks: list[Bank] = field(default_factory=list)


@dataclass(frozen=True)
class TokenPair:
    """A freshly issued access/refresh pair plus the metadata needed to
    register both sessions in the cache."""

    access_token: str
    refresh_token: str
    access_session_id: str
    refresh_session_id: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class Claims:
    """Typed view of a verified token payload."""

    purpose: str
    session_id: str
    user_id: str
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload: dict) -> Claims:
        """Build Claims from a decoded JWT payload or raise MalformedToken.

        Every field is required and type-checked. A token that verified but
        carries the wrong shape is treated exactly like a structurally broken
        one.
        """
        purpose = payload.get("purpose")
        session_id = payload.get("sid")
        user_id = payload.get("user_id")
        exp = payload.get("exp")
        if purpose not in PURPOSES:
            raise MalformedToken("missing or unknown purpose claim")
        if not isinstance(session_id, str) or not session_id:
            raise MalformedToken("missing sid claim")
        if not isinstance(user_id, str) or not user_id:
            raise MalformedToken("missing user_id claim")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise MalformedToken("missing exp claim")
        return cls(
            purpose=purpose,
            session_id=session_id,
            user_id=user_id,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )


@dataclass(frozen=True)
class AuthContext:
    """What the auth gate hands to a protected handler.

    user_id is the value stored in the session cache when the gate checked
    the session, and the token's claim otherwise.
    """

    session_id: str
    user_id: str
    claims: Claims
