"""
api/routes/v1/account.py -- The signed-in user's own account.

Both routes sit behind the access-token gate. The user id comes from the
gate's AuthContext (the session cache's answer), never from the body.
"""

from fastapi import APIRouter, Depends, Request

from api.models import SetupRequest, UserResponse
from auth.dependencies import require_access
from auth.models import AuthContext, Bank
from auth.service import AuthService

# Auth policy:
# - GET  /account:    requires access token
# - POST /api/setup:  requires access token; 403 once setup has been done
router = APIRouter()


@router.get("/account", response_model=UserResponse)
def get_account(request: Request, context: AuthContext = Depends(require_access)) -> UserResponse:
    """Return the current user's profile without any credential fields."""
    service: AuthService = request.app.state.auth_service
    return UserResponse.from_user(service.get_account(context))


@router.post("/api/setup", response_model=UserResponse)
def setup_account(
    request: Request,
    body: SetupRequest,
    context: AuthContext = Depends(require_access),
) -> UserResponse:
    """Record the user's bank institutions and mark setup complete.

    Institutions sent without an id are numbered in request order.
    """
    service: AuthService = request.app.state.auth_service
    banks = [
        Bank(id=entry.id or str(i + 1), name=entry.name, type=entry.type, amount=entry.amount)
        for i, entry in enumerate(body.banks)
    ]
    user = service.complete_setup(context, banks, name=body.name)
    return UserResponse.from_user(user)
