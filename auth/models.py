"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

ROLE_ADMIN = "admin"
ROLE_STANDARD = "standard"

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


@dataclass
class Account:
    """A registered account. The password hash lives in Credential, not here.

    confirmation_code is the random code mailed at registration. It is cleared
    once the account is confirmed.
    """

    username: str
    email: str
    firstname: str = ""
    lastname: str = ""
    role: str = ROLE_STANDARD  # "admin" or "standard"
    status: str = STATUS_PENDING  # "pending", "active", "inactive"
    id: Optional[int] = None
    confirmation_code: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Credential:
    """Password hash for one account, plus the immediately preceding hash."""

    user_id: int
    password: str
    last_password: Optional[str] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class LoginRecord:
    """The three columns the login path needs, fetched in one join."""

    account_id: int
    password_hash: str
    status: str


@dataclass
class RefreshToken:
    """A long-lived opaque session credential, stored server-side.

    Usable to mint a new access token iff not revoked and now < expires_at.
    One account may hold several at once (one per device/session).
    """

    token: str
    account_id: int
    expires_at: datetime
    created_at: datetime
    id: Optional[int] = None
    last_used_at: Optional[datetime] = None
    revoked: bool = False


@dataclass
class TokenPair:
    """Access + refresh token issued together at login.

    token duplicates access_token for clients written against the older
    single-token login response.
    """

    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int
    account_id: int

    @property
    def token(self) -> str:
        return self.access_token


class AuditEventType(str, Enum):
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    REFRESH_SUCCESS = "refresh_success"
    REFRESH_FAILED = "refresh_failed"
    LOGOUT = "logout"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


@dataclass
class AuditEvent:
    """One security-relevant event. Write-once; never read back by the app."""

    event_type: AuditEventType
    client_ip: str
    message: str
    timestamp: Optional[datetime] = None
    account_id: Optional[int] = None
    username: Optional[str] = None
    user_agent: Optional[str] = None
    remember_me: bool = False
