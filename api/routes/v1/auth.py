"""
api/routes/v1/auth.py -- Registration, login and session endpoints.

Routes:
  POST /register       -- create an account (201)
  POST /login          -- HTTP Basic credentials -> user + token pair
  POST /auth/refresh   -- refresh token (Bearer) -> new token pair; old one is burned
  POST /logout         -- revoke the presented access token's session

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  Login accepts HTTP Basic credentials only. JSON body credentials are not
  read, so there is exactly one input path to validate.
  authenticate_user() provides timing equalization -- AuthService.login()
  uses it, never inline the lookup + bcrypt check.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from api.limiter import limiter
from api.models import LoginResponse, MessageResponse, RegisterRequest, TokenResponse, UserResponse
from auth.dependencies import extract_bearer_token, require_access
from auth.errors import Unauthorized
from auth.models import AuthContext
from auth.service import AuthService
from core.config import get_settings

# Auth policy:
# - POST /register:      public
# - POST /login:         public -- HTTP Basic credentials
# - POST /auth/refresh:  refresh token in Authorization: Bearer
# - POST /logout:        requires access token (require_access)
router = APIRouter()

_basic = HTTPBasic(auto_error=False)


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


@router.post("/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a new account. The password is stored only as a bcrypt hash."""
    service: AuthService = request.app.state.auth_service
    user = service.register(body.email, body.name, body.password)
    return UserResponse.from_user(user)


@limiter.limit(_login_rate_limit)  # brute-force mitigation -- must be ABOVE @router
@router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    response: Response,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> LoginResponse:
    """Authenticate with 'Authorization: Basic base64(email:password)'.

    Unknown email and wrong password produce the same 401 body.
    """
    response.headers["Cache-Control"] = "no-store"
    if credentials is None:
        raise Unauthorized("missing basic authorization header")
    service: AuthService = request.app.state.auth_service
    user, pair = service.login(credentials.username, credentials.password)
    return LoginResponse(user=UserResponse.from_user(user), tokens=TokenResponse.from_pair(pair))


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, response: Response) -> TokenResponse:
    """Trade a live refresh token for a new access/refresh pair.

    The presented refresh token stops working as soon as this succeeds.
    """
    response.headers["Cache-Control"] = "no-store"
    token = extract_bearer_token(request)
    service: AuthService = request.app.state.auth_service
    pair = service.refresh(token)
    return TokenResponse.from_pair(pair)


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request, context: AuthContext = Depends(require_access)) -> MessageResponse:
    """Revoke the current access session."""
    service: AuthService = request.app.state.auth_service
    service.logout(context)
    return MessageResponse(message="Logged out.")
