"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The auth gate for protected routes. A request goes UNCHECKED -> AUTHORIZED
or UNCHECKED -> REJECTED; a rejected request never reaches the handler.

  1. Authorization: Bearer <token> must be present and well-formed.
  2. The token must validate as an access token (signature, expiry, claims).
  3. Strict mode (Settings.auth_gate_checks_session, on by default): the
     token's session id must also be live in the session cache. Without this
     step a logged-out token keeps working until it expires on its own.

Every rejection is a 401 with the same body. The specific reason is logged.

Layer rule: no imports from api/. auth/dependencies.py may import from
fastapi (for Request) because this module is part of the FastAPI
dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.errors import TokenError, Unauthorized
from auth.models import ACCESS, AuthContext
from auth.sessions import SessionRegistry
from auth.tokens import validate_token
from core.config import get_settings

logger = logging.getLogger("coinserver.auth")


def extract_bearer_token(request: Request) -> str:
    """Return the token from 'Authorization: Bearer <token>' or raise Unauthorized."""
    header = request.headers.get("Authorization", "")
    parts = header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        raise Unauthorized("missing or malformed bearer authorization header")
    return parts[1]


class AuthGate:
    """Dependency that authorizes a request or raises 401.

    Use as a FastAPI dependency:
        @router.get("/account")
        def route(ctx: AuthContext = Depends(require_access)): ...

    Args:
        purpose:       Token purpose the route demands.
        check_session: Confirm the session id in the cache. None means
                       "use Settings.auth_gate_checks_session".
    """

    def __init__(self, purpose: str = ACCESS, check_session: bool | None = None) -> None:
        self.purpose = purpose
        self.check_session = check_session

    def __call__(self, request: Request) -> AuthContext:
        token = extract_bearer_token(request)
        try:
            claims = validate_token(token, self.purpose)
        except TokenError as exc:
            logger.info("Token couldn't be validated: %s", exc)
            raise

        check = self.check_session
        if check is None:
            check = get_settings().auth_gate_checks_session
        if not check:
            return AuthContext(session_id=claims.session_id, user_id=claims.user_id, claims=claims)

        registry: SessionRegistry = request.app.state.session_registry
        user_id = registry.confirm_session(claims.session_id)
        return AuthContext(session_id=claims.session_id, user_id=user_id, claims=claims)


require_access = AuthGate(ACCESS)
