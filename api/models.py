"""
API request and response models for the coin server REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire names are camelCase (accessToken, accountSetupComplete, ...) through
field aliases; Python attribute names stay snake_case. FastAPI serializes
response_model output by alias.

No response model has a password field. UserResponse.from_user() is the
only path from a User to JSON, so the hash cannot slip into a response.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Bank, TokenPair, User

# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class BankEntry(BaseModel):
    """One financial institution, as sent in setup and returned in UserResponse."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    id: Optional[str] = Field(default=None, max_length=64)
    name: str = Field(alias="institutionName", min_length=1, max_length=255)
    type: str = Field(alias="institutionType", min_length=1, max_length=64)
    amount: float = Field(default=0.0, alias="initialAmount")

    @classmethod
    def from_bank(cls, bank: Bank) -> "BankEntry":
        return cls(id=bank.id, name=bank.name, type=bank.type, amount=bank.amount)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /register.

    Unknown fields (including any client-supplied creation timestamp) are
    ignored; the server stamps created_at itself.
    """

    model_config = ConfigDict(extra="ignore")

    email: str = Field(min_length=3, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    # Character cap only. The 72-byte bcrypt limit is enforced by AuthService.register.
    password: str = Field(min_length=1, max_length=72)


class SetupRequest(BaseModel):
    """Request body for POST /api/setup."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default=None, max_length=255)
    banks: list[BankEntry] = Field(
        alias="bankInstitutionEntities",
        min_length=1,
        max_length=50,
        description="Institutions to track. Min 1, max 50.",
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Outbound user record. Never includes the password hash."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    email: str
    created: str
    setup_complete: bool = Field(alias="accountSetupComplete")
    banks: list[BankEntry] = Field(default_factory=list, alias="bankInstitutionEntities")

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id or user.email,
            name=user.name,
            email=user.email,
            created=user.created_at or "",
            setup_complete=user.setup_complete,
            banks=[BankEntry.from_bank(b) for b in user.banks],
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token)


class LoginResponse(BaseModel):
    """Response for POST /login: the sanitized user plus a fresh token pair."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    tokens: TokenResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
