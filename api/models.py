"""
API request and response models for the PimpMyPack REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints

from auth.models import Account, RefreshToken, TokenPair

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/login."""

    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    # Not stripped: leading/trailing whitespace is part of the password.
    password: str = Field(min_length=1, max_length=255, json_schema_extra={"format": "password"})
    remember_me: bool = False


class RefreshRequest(BaseModel):
    """Request body for POST /api/auth/refresh and POST /api/logout."""

    refresh_token: str = Field(min_length=1, max_length=255)


class RegisterRequest(BaseModel):
    """Request body for POST /api/register."""

    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255)]
    email: EmailStr
    firstname: str = Field(default="", max_length=255)
    lastname: str = Field(default="", max_length=255)
    password: str = Field(min_length=8, max_length=72)


class PasswordUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/mypassword."""

    current_password: str = Field(min_length=1, max_length=72)
    new_password: str = Field(min_length=8, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenPairResponse(BaseModel):
    """Response for POST /api/login.

    token duplicates access_token for clients of the single-token login.
    """

    model_config = ConfigDict(frozen=True)

    token: str
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(
            token=pair.token,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            access_expires_in=pair.access_expires_in,
            refresh_expires_in=pair.refresh_expires_in,
        )


class RefreshResponse(BaseModel):
    """Response for POST /api/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_in: int


class AccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    firstname: str
    lastname: str
    role: str
    status: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            firstname=account.firstname,
            lastname=account.lastname,
            role=account.role,
            status=account.status,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class SessionResponse(BaseModel):
    """One refresh-token session, without the token value."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: datetime
    expires_at: datetime
    last_used_at: Optional[datetime]
    revoked: bool

    @classmethod
    def from_refresh_token(cls, token: RefreshToken) -> "SessionResponse":
        return cls(
            id=token.id,
            created_at=token.created_at,
            expires_at=token.expires_at,
            last_used_at=token.last_used_at,
            revoked=token.revoked,
        )


class RevokeSessionsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    revoked: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorResponse(BaseModel):
    """Uniform error envelope. retry_after is only set on 429."""

    error: str
    retry_after: Optional[int] = None


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
