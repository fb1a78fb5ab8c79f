"""
auth/refresh_tokens.py -- Persistence for opaque, long-lived refresh tokens.

A refresh token is a random URL-safe string (secrets.token_urlsafe(32), 256
bits of entropy). It carries no claims; everything about it lives in the
refresh_token row. It can mint new access tokens while revoked is false and
now < expires_at.

Lifecycle:
  create()  -- at login, lifetime chosen by the remember-me flag.
  touch()   -- after each successful refresh. Best-effort: callers log and
               ignore failures.
  revoke()  -- at logout. DELETEs the row; a second revoke of the same token
               raises RefreshTokenNotFound (the affected-row count decides).
  sweep()   -- periodic background DELETE of every expired row, revoked or not.

There is no in-process locking. Concurrent get()+touch() on the same token is
last-write-wins on last_used_at, which is acceptable.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.engine import Engine

from auth.context import QueryContext, scoped_connection
from auth.errors import RefreshTokenNotFound
from auth.models import RefreshToken
from auth.store import as_utc, refresh_token_table, utcnow

# 32 random bytes -> 43 URL-safe base64 characters.
TOKEN_BYTES = 32


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class RefreshTokenStore:
    """Repository for RefreshToken rows.

    Shares the engine of AccountStore so both live in one pool and the
    account foreign key is enforced.

    Usage:
        store = RefreshTokenStore(account_store.engine, default_days=1, extended_days=30)
        rt = store.create(account_id, extended=False)
        store.get(rt.token)
        store.revoke(rt.token)
    """

    def __init__(self, engine: Engine, default_days: int = 1, extended_days: int = 30) -> None:
        self.engine = engine
        self.default_lifetime = timedelta(days=default_days)
        self.extended_lifetime = timedelta(days=extended_days)

    def lifetime(self, extended: bool) -> timedelta:
        return self.extended_lifetime if extended else self.default_lifetime

    def create(self, account_id: int, extended: bool = False, ctx: Optional[QueryContext] = None) -> RefreshToken:
        """Generate, persist and return a new refresh token for account_id."""
        created_at = utcnow()
        token = RefreshToken(
            token=generate_refresh_token(),
            account_id=account_id,
            created_at=created_at,
            expires_at=created_at + self.lifetime(extended),
        )
        with scoped_connection(self.engine, ctx, "create refresh token", begin=True) as conn:
            result = conn.execute(
                refresh_token_table.insert().values(
                    token=token.token,
                    account_id=token.account_id,
                    expires_at=token.expires_at,
                    created_at=token.created_at,
                    revoked=False,
                )
            )
        token.id = result.inserted_primary_key[0]
        return token

    def get(self, token: str, ctx: Optional[QueryContext] = None) -> RefreshToken:
        """Exact-match lookup. Raises RefreshTokenNotFound if no row matches."""
        with scoped_connection(self.engine, ctx, "get refresh token") as conn:
            row = conn.execute(refresh_token_table.select().where(refresh_token_table.c.token == token)).fetchone()
        if row is None:
            raise RefreshTokenNotFound()
        return _row_to_refresh_token(row)

    def touch(self, token_id: int, ctx: Optional[QueryContext] = None) -> None:
        """Stamp last_used_at with the current UTC time."""
        with scoped_connection(self.engine, ctx, "update refresh token last used", begin=True) as conn:
            conn.execute(
                refresh_token_table.update().where(refresh_token_table.c.id == token_id).values(last_used_at=utcnow())
            )

    def revoke(self, token: str, ctx: Optional[QueryContext] = None) -> None:
        """Delete the token. Raises RefreshTokenNotFound if zero rows were affected."""
        with scoped_connection(self.engine, ctx, "delete refresh token", begin=True) as conn:
            result = conn.execute(refresh_token_table.delete().where(refresh_token_table.c.token == token))
        if result.rowcount == 0:
            raise RefreshTokenNotFound()

    def revoke_all_for_account(self, account_id: int, ctx: Optional[QueryContext] = None) -> int:
        """Flag every token of account_id as revoked. Returns how many were flagged.

        The rows are kept (until the sweep removes them once expired), so a
        later refresh with one of them fails as revoked rather than unknown.
        """
        with scoped_connection(self.engine, ctx, "revoke account refresh tokens", begin=True) as conn:
            result = conn.execute(
                refresh_token_table.update()
                .where((refresh_token_table.c.account_id == account_id) & (refresh_token_table.c.revoked.is_(False)))
                .values(revoked=True)
            )
        return result.rowcount

    def list_for_account(self, account_id: int, ctx: Optional[QueryContext] = None) -> list[RefreshToken]:
        """Return every stored token of account_id, newest first."""
        with scoped_connection(self.engine, ctx, "list refresh tokens") as conn:
            rows = conn.execute(
                refresh_token_table.select()
                .where(refresh_token_table.c.account_id == account_id)
                .order_by(refresh_token_table.c.created_at.desc(), refresh_token_table.c.id.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def sweep(self, ctx: Optional[QueryContext] = None) -> int:
        """Delete every row with expires_at < now. Returns the number deleted."""
        with scoped_connection(self.engine, ctx, "cleanup expired refresh tokens", begin=True) as conn:
            result = conn.execute(refresh_token_table.delete().where(refresh_token_table.c.expires_at < utcnow()))
        return result.rowcount


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        account_id=row.account_id,
        expires_at=as_utc(row.expires_at),
        created_at=as_utc(row.created_at),
        last_used_at=as_utc(row.last_used_at),
        revoked=bool(row.revoked),
    )
