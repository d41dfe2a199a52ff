"""
auth/tokens.py -- Token issuing/validation and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Every login or refresh mints a PAIR:
       - access token:  30 min, signed with ACCESS_SECRET
       - refresh token: 30 days, signed with REFRESH_SECRET
       Both carry a random session id (sid), the owning user_id, a purpose
       claim and exp. Distinct secrets keep the two namespaces apart: a
       refresh token never verifies where an access token is expected, and
       vice versa. The purpose claim is checked as well.

       A valid signature is not enough to be authorized. The sid must also
       be live in the session cache (auth/sessions.py) -- that is what makes
       logout and refresh rotation stick.

  Validation raises instead of returning None. MalformedToken,
       SignatureMismatch and Expired are all Unauthorized subclasses, so the
       route layer turns any of them into the same 401 while the log keeps
       the specific reason.

  Passwords: bcrypt, work factor from Settings.bcrypt_rounds (default 14).
       The _DUMMY_HASH constant enables timing equalization in
       authenticate_user() so response time does not reveal whether an email
       is registered.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import Expired, MalformedToken, SignatureMismatch, SigningError
from auth.models import ACCESS, REFRESH, Claims, TokenPair
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("coinserver.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt accepts at most 72 bytes of input. AuthService.register rejects
    longer passwords (counted in UTF-8 bytes) before they get here.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash, or the password is over 72 bytes.
        logger.warning("Password check rejected by bcrypt")
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("coinserver_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email:  bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    The hash is fetched on its own and compared here; the returned User never
    carries it. Returns the User on success, None on any failure.
    """
    hashed = store.get_password_hash(email)
    if hashed is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, hashed):
        return None
    return store.find_by_id(email)


# ---------------------------------------------------------------------------
# Token issuing
# ---------------------------------------------------------------------------


def _secret_for(purpose: str) -> str:
    if purpose == ACCESS:
        return _settings.access_secret
    if purpose == REFRESH:
        return _settings.refresh_secret
    raise ValueError(f"Unknown token purpose: {purpose!r}")


def _sign(purpose: str, session_id: str, user_id: str, expires_at: datetime) -> str:
    secret = _secret_for(purpose)
    if not secret:
        raise SigningError(f"{purpose} signing secret is not configured")
    payload = {
        "purpose": purpose,
        "sid": session_id,
        "user_id": user_id,
        "exp": int(expires_at.timestamp()),
    }
    try:
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)
    except JWTError as exc:
        raise SigningError(f"could not sign {purpose} token: {exc}") from exc


def issue_token_pair(user_id: str, now: datetime | None = None) -> TokenPair:
    """Mint a new access/refresh pair for user_id.

    Each token gets its own uuid4 session id. Expiries are truncated to whole
    seconds so TokenPair matches the exp claim exactly. No cache writes happen
    here -- SessionRegistry.register_pair() does that.

    Args:
        user_id: Owning user's id (email).
        now:     Issue time; defaults to the current UTC time.
    """
    issued = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    access_expires = issued + timedelta(seconds=_settings.access_token_expire_seconds)
    refresh_expires = issued + timedelta(seconds=_settings.refresh_token_expire_seconds)
    access_sid = str(uuid.uuid4())
    refresh_sid = str(uuid.uuid4())
    return TokenPair(
        access_token=_sign(ACCESS, access_sid, user_id, access_expires),
        refresh_token=_sign(REFRESH, refresh_sid, user_id, refresh_expires),
        access_session_id=access_sid,
        refresh_session_id=refresh_sid,
        access_expires_at=access_expires,
        refresh_expires_at=refresh_expires,
    )


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------


def validate_token(raw_token: str | None, expected_purpose: str) -> Claims:
    """Verify a bearer token and return its typed claims.

    Order of checks:
      1. Structure (three base64url segments, parseable header) -> MalformedToken
      2. Signature with the secret for expected_purpose         -> SignatureMismatch
      3. Expiry against the current time                        -> Expired
      4. Required claims and purpose                            -> MalformedToken /
                                                                   SignatureMismatch

    Does NOT consult the session cache; pair with
    SessionRegistry.confirm_session() for the full authorization check.
    """
    secret = _secret_for(expected_purpose)
    if not raw_token:
        raise MalformedToken("empty token")
    try:
        header = jwt.get_unverified_header(raw_token)
    except JWTError as exc:
        raise MalformedToken(f"unparseable token: {exc}") from exc
    if header.get("alg") != _ALGORITHM:
        raise MalformedToken(f"unexpected signing method: {header.get('alg')}")
    try:
        payload = jwt.decode(raw_token, secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise Expired("token has expired") from exc
    except JWTError as exc:
        raise SignatureMismatch(f"{expected_purpose} token failed verification: {exc}") from exc

    claims = Claims.from_payload(payload)
    if claims.purpose != expected_purpose:
        raise SignatureMismatch(f"expected {expected_purpose} token, got {claims.purpose}")
    return claims
