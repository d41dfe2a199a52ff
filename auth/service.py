"""
auth/service.py -- Register, login, refresh, logout and account operations.

AuthService is the orchestration layer between the HTTP handlers and the
building blocks (UserStore, token functions, SessionRegistry). It raises
CoinServerError subclasses and never builds HTTP responses itself.

Invariants kept here:
  - Tokens leave this module only after both of their sessions are
    registered in the cache.
  - Refresh tokens are single-use: the refresh sid is consumed (read and
    deleted atomically) before the replacement pair is issued.
  - The user id used for account reads/writes is the one the session
    cache returned, not the one written inside the token.
  - No User returned from here carries a password hash.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import Forbidden, InvalidCredentials, InvalidInput, UserNotFound
from auth.models import REFRESH, AuthContext, Bank, TokenPair, User
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import authenticate_user, hash_password, issue_token_pair, validate_token

logger = logging.getLogger("coinserver.auth")

# HTTP Basic splits user and password on the first colon, so an email that
# contains one could never log in.
_CREDENTIAL_DELIMITER = ":"

# bcrypt rejects (or, in older releases, truncates) input past 72 bytes.
_MAX_PASSWORD_BYTES = 72


def validate_email(email: str | None) -> str:
    """Return the normalized email or raise InvalidInput."""
    email = (email or "").strip()
    if not email:
        raise InvalidInput("email is required.")
    if _CREDENTIAL_DELIMITER in email:
        raise InvalidInput("email must not contain ':'.")
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise InvalidInput("email is not a valid address.")
    return email


class AuthService:
    """Account lifecycle and session management.

    Usage:
        service = AuthService(user_store, SessionRegistry(cache))
        service.register("alice@example.com", "Alice", "secret123")
        user, pair = service.login("alice@example.com", "secret123")
    """

    def __init__(self, store: UserStore, registry: SessionRegistry) -> None:
        self.store = store
        self.registry = registry

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, email: str, name: str, password: str) -> User:
        """Create a user with a bcrypt-hashed password.

        Raises InvalidInput for missing fields or an unusable email, and
        DuplicateUser if the email is already taken. Not safe to retry
        blindly: a retry after a lost response reports DuplicateUser.
        """
        email = validate_email(email)
        if not name or not name.strip():
            raise InvalidInput("name is required.")
        if not password:
            raise InvalidInput("password is required.")
        if len(password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            raise InvalidInput(f"password must be at most {_MAX_PASSWORD_BYTES} bytes.")

        user = User(email=email, name=name.strip(), hashed_password=hash_password(password))
        user_id = self.store.insert(user)
        logger.info("Registered user %s", user_id)
        created = self.store.find_by_id(user_id)
        if created is None:
            raise UserNotFound(f"user {user_id} missing right after insert")
        return created

    def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        """Check credentials, then issue and register a token pair.

        Unknown email and wrong password both raise InvalidCredentials with
        the same message.
        """
        user = authenticate_user(self.store, email, password)
        if user is None:
            logger.info("Failed login attempt")
            raise InvalidCredentials()
        pair = self._open_session(user.email)
        logger.info("User %s logged in", user.email)
        return user, pair

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def refresh(self, raw_refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a brand-new pair.

        The refresh sid must still be live. It is consumed in one cache step
        before the new pair is issued, so a replay, or a second refresh
        racing this one, fails with SessionNotFound. If registering the new
        pair then fails, the old refresh token stays burned.
        """
        claims = validate_token(raw_refresh_token, REFRESH)
        user_id = self.registry.consume_session(claims.session_id)
        pair = self._open_session(user_id)
        logger.info("Rotated refresh session for %s", user_id)
        return pair

    def logout(self, context: AuthContext) -> None:
        """Revoke the access session behind context. Idempotent."""
        self.registry.revoke_session(context.session_id)
        logger.info("User %s logged out", context.user_id)

    def _open_session(self, user_id: str) -> TokenPair:
        pair = issue_token_pair(user_id)
        self.registry.register_pair(pair, user_id)
        return pair

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def get_account(self, context: AuthContext) -> User:
        user = self.store.find_by_id(context.user_id)
        if user is None:
            raise UserNotFound(f"no record for {context.user_id}")
        return user

    def complete_setup(self, context: AuthContext, banks: list[Bank], name: str | None = None) -> User:
        """Store the first-time account setup (bank institutions).

        Setup runs once. A second attempt raises Forbidden.
        """
        user = self.get_account(context)
        if user.setup_complete:
            raise Forbidden(f"setup already completed for {user.email}")
        fields: dict = {"banks": banks, "setup_complete": True}
        if name and name.strip():
            fields["name"] = name.strip()
        updated = self.store.update_by_id(user.email, **fields)
        if updated is None:
            raise UserNotFound(f"no record for {user.email}")
        logger.info("Completed account setup for %s (%d institutions)", user.email, len(banks))
        return updated
