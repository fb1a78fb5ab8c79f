"""
auth/sessions.py -- Token pair orchestration: login, refresh, logout.

SessionService composes the password hasher, the access token codec and the
refresh token store into the session contract. It raises domain errors from
auth/errors.py and knows nothing about HTTP; the route layer turns those into
responses and audit events.

Anti-enumeration [login]:
  An unknown username and a wrong password both raise InvalidCredentials, and
  both run exactly one bcrypt verification (against a dummy hash of the
  configured bcrypt cost for unknown users), so neither the error nor the
  response time tells them apart.

Refresh:
  The refresh token is NOT rotated on use. The same opaque string stays valid
  until it expires or the client logs out. Rotate-on-use with reuse detection
  would be the stricter design; it is not implemented.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import NamedTuple, Optional

from auth.context import QueryContext
from auth.errors import (
    InvalidCredentials,
    MalformedHash,
    PasswordMismatch,
    PendingActivation,
    RefreshTokenNotFound,
    StoreError,
    TokenExpired,
    TokenInvalid,
    TokenRevoked,
)
from auth.models import STATUS_ACTIVE, RefreshToken, TokenPair
from auth.passwords import DEFAULT_ROUNDS, equalize_timing, verify_password
from auth.refresh_tokens import RefreshTokenStore
from auth.store import AccountStore, utcnow
from auth.tokens import AccessTokenCodec

logger = logging.getLogger("pimpmypack.auth")


class RefreshResult(NamedTuple):
    access_token: str
    expires_in: int
    account_id: int


def _seconds(delta: timedelta) -> int:
    return int(delta.total_seconds())


class SessionService:
    """Issue, renew and end sessions.

    Usage:
        sessions = SessionService(account_store, refresh_store, codec)
        pair = sessions.login("alice", "s3cret", remember_me=False)
        renewed = sessions.refresh(pair.refresh_token)
        sessions.logout(pair.refresh_token)
    """

    def __init__(
        self,
        accounts: AccountStore,
        refresh_tokens: RefreshTokenStore,
        codec: AccessTokenCodec,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        self.accounts = accounts
        self.refresh_tokens = refresh_tokens
        self.codec = codec
        # Must match the cost that account hashes are written with.
        self.bcrypt_rounds = bcrypt_rounds

    def login(
        self, username: str, password: str, remember_me: bool = False, ctx: Optional[QueryContext] = None
    ) -> TokenPair:
        """Verify credentials and issue an access + refresh token pair.

        Raises InvalidCredentials, PendingActivation, or StoreError.
        """
        record = self.accounts.get_login_record(username, ctx)
        if record is None:
            equalize_timing(password, self.bcrypt_rounds)
            raise InvalidCredentials()
        try:
            verify_password(password, record.password_hash)
        except PasswordMismatch as exc:
            raise InvalidCredentials() from exc
        except MalformedHash as exc:
            logger.error("Stored password hash for account %d is malformed", record.account_id)
            raise InvalidCredentials() from exc

        # Checked only after the password so that probing without the
        # password cannot learn that an account is pending.
        if record.status != STATUS_ACTIVE:
            raise PendingActivation()

        access_token = self.codec.mint(record.account_id)
        refresh = self.refresh_tokens.create(record.account_id, extended=remember_me, ctx=ctx)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh.token,
            access_expires_in=self.codec.expires_in,
            refresh_expires_in=_seconds(self.refresh_tokens.lifetime(remember_me)),
            account_id=record.account_id,
        )

    def refresh(self, refresh_token: str, ctx: Optional[QueryContext] = None) -> RefreshResult:
        """Mint a new access token from a valid refresh token.

        Raises TokenInvalid (unknown), TokenRevoked, TokenExpired, or StoreError.
        """
        try:
            stored = self.refresh_tokens.get(refresh_token, ctx)
        except RefreshTokenNotFound as exc:
            raise TokenInvalid() from exc
        if stored.revoked:
            raise TokenRevoked()
        if utcnow() >= stored.expires_at:
            raise TokenExpired()

        access_token = self.codec.mint(stored.account_id)
        try:
            self.refresh_tokens.touch(stored.id, ctx)
        except StoreError as exc:
            logger.warning("Could not update last_used_at for refresh token %d: %s", stored.id, exc)
        return RefreshResult(access_token=access_token, expires_in=self.codec.expires_in, account_id=stored.account_id)

    def logout(self, refresh_token: str, ctx: Optional[QueryContext] = None) -> RefreshToken:
        """Revoke refresh_token and return the record it referred to.

        Raises RefreshTokenNotFound if the token is unknown or already revoked.
        """
        stored = self.refresh_tokens.get(refresh_token, ctx)
        self.refresh_tokens.revoke(refresh_token, ctx)
        return stored
