"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and credentials.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_credential are the mappers. Route and service code
never touches SQL directly.

The schema for all three auth tables (account, password, refresh_token) lives
here so create_all() can resolve the foreign keys. RefreshTokenStore
(auth/refresh_tokens.py) shares this module's engine and table objects.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Every method takes an optional QueryContext; see auth/context.py.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.context import QueryContext, scoped_connection
from auth.errors import AccountConflict, AccountNotFound
from auth.models import STATUS_ACTIVE, STATUS_PENDING, Account, Credential, LoginRecord

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

account_table = Table(
    "account",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False),
    Column("firstname", String(255), nullable=False, server_default=""),
    Column("lastname", String(255), nullable=False, server_default=""),
    Column("role", String(20), nullable=False, server_default="standard"),  # "admin", "standard"
    Column("status", String(20), nullable=False, server_default="pending"),  # "pending", "active", "inactive"
    Column("confirmation_code", String(64)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

password_table = Table(
    "password",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("account.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("password", Text, nullable=False),
    Column("last_password", Text),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

refresh_token_table = Table(
    "refresh_token",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(255), nullable=False, unique=True),
    Column("account_id", Integer, ForeignKey("account.id", ondelete="CASCADE"), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("last_used_at", DateTime(timezone=True)),
    Column("revoked", Boolean, nullable=False, server_default="0"),
    Index("idx_refresh_token_account_id", "account_id"),
    Index("idx_refresh_token_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    PRAGMAs are per-connection, so they must be set on connect rather than
    once at startup. foreign_keys=ON is what makes ON DELETE CASCADE work.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def make_engine(db_url: str) -> Engine:
    """Create an engine for db_url and make sure the auth schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime read back from the DB to aware UTC.

    SQLite hands back naive datetimes even for timezone=True columns. Every
    value this package writes is UTC, so a naive value is UTC by construction.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account and Credential entities.

    Usage:
        store = AccountStore("sqlite:///pimpmypack.db")
        account_id = store.create_account(Account(username="alice", email="a@x.io"), hash_password("s3cret"))
        store.confirm(account_id, code)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account, password_hash: str, ctx: Optional[QueryContext] = None) -> int:
        """Insert the account and its credential in one transaction; return the account ID.

        A fresh confirmation code is generated unless the account is created
        already active. Raises AccountConflict if the username is taken.
        """
        now = utcnow()
        if account.confirmation_code is None and account.status == STATUS_PENDING:
            account.confirmation_code = secrets.token_urlsafe(24)
        try:
            with scoped_connection(self.engine, ctx, "insert account", begin=True) as conn:
                result = conn.execute(
                    account_table.insert().values(
                        username=account.username,
                        email=account.email,
                        firstname=account.firstname,
                        lastname=account.lastname,
                        role=account.role,
                        status=account.status,
                        confirmation_code=account.confirmation_code,
                        created_at=now,
                        updated_at=now,
                    )
                )
                account_id = result.inserted_primary_key[0]
                conn.execute(password_table.insert().values(user_id=account_id, password=password_hash, updated_at=now))
        except IntegrityError as exc:
            raise AccountConflict() from exc
        account.id = account_id
        account.created_at = now
        account.updated_at = now
        return account_id

    def get_by_id(self, account_id: int, ctx: Optional[QueryContext] = None) -> Optional[Account]:
        """Look up an account by primary key. Returns None if not found."""
        with scoped_connection(self.engine, ctx, "get account") as conn:
            row = conn.execute(account_table.select().where(account_table.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_username(self, username: str, ctx: Optional[QueryContext] = None) -> Optional[Account]:
        """Look up an account by exact username (case-sensitive). Returns None if not found."""
        with scoped_connection(self.engine, ctx, "get account by username") as conn:
            row = conn.execute(account_table.select().where(account_table.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_login_record(self, username: str, ctx: Optional[QueryContext] = None) -> Optional[LoginRecord]:
        """Return (account id, password hash, status) for username, or None.

        None covers both "no such account" and "account without a credential
        row"; the login path must treat them identically.
        """
        query = (
            select(password_table.c.user_id, password_table.c.password, account_table.c.status)
            .select_from(password_table.join(account_table, password_table.c.user_id == account_table.c.id))
            .where(account_table.c.username == username)
        )
        with scoped_connection(self.engine, ctx, "query login record") as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        return LoginRecord(account_id=row.user_id, password_hash=row.password, status=row.status)

    def get_role(self, account_id: int, ctx: Optional[QueryContext] = None) -> str:
        """Return the account's role. Raises AccountNotFound if the account is gone."""
        with scoped_connection(self.engine, ctx, "query account role") as conn:
            role = conn.execute(select(account_table.c.role).where(account_table.c.id == account_id)).scalar()
        if role is None:
            raise AccountNotFound()
        return role

    def list_accounts(self, ctx: Optional[QueryContext] = None) -> list[Account]:
        """Return all accounts ordered by username. Admin-only operation."""
        with scoped_connection(self.engine, ctx, "list accounts") as conn:
            rows = conn.execute(account_table.select().order_by(account_table.c.username)).fetchall()
        return [_row_to_account(r) for r in rows]

    def confirm(self, account_id: int, code: str, ctx: Optional[QueryContext] = None) -> bool:
        """Activate a pending account if code matches. Returns True if a row changed."""
        with scoped_connection(self.engine, ctx, "confirm account", begin=True) as conn:
            result = conn.execute(
                account_table.update()
                .where(
                    (account_table.c.id == account_id)
                    & (account_table.c.confirmation_code == code)
                    & (account_table.c.status == STATUS_PENDING)
                )
                .values(status=STATUS_ACTIVE, confirmation_code=None, updated_at=utcnow())
            )
        return result.rowcount > 0

    def set_role(self, account_id: int, role: str, ctx: Optional[QueryContext] = None) -> bool:
        """Change an account's role. Returns True if the account exists."""
        with scoped_connection(self.engine, ctx, "update account role", begin=True) as conn:
            result = conn.execute(
                account_table.update().where(account_table.c.id == account_id).values(role=role, updated_at=utcnow())
            )
        return result.rowcount > 0

    def delete_account(self, account_id: int, ctx: Optional[QueryContext] = None) -> bool:
        """Delete an account. Credential and refresh tokens cascade with it."""
        with scoped_connection(self.engine, ctx, "delete account", begin=True) as conn:
            result = conn.execute(account_table.delete().where(account_table.c.id == account_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def get_credential(self, account_id: int, ctx: Optional[QueryContext] = None) -> Credential:
        """Return the credential row. Raises AccountNotFound if there is none."""
        with scoped_connection(self.engine, ctx, "get credential") as conn:
            row = conn.execute(password_table.select().where(password_table.c.user_id == account_id)).fetchone()
        if row is None:
            raise AccountNotFound()
        return _row_to_credential(row)

    def update_password(self, account_id: int, new_hash: str, ctx: Optional[QueryContext] = None) -> None:
        """Store new_hash as the current password; the old one moves to last_password."""
        with scoped_connection(self.engine, ctx, "update password", begin=True) as conn:
            current = conn.execute(
                select(password_table.c.password).where(password_table.c.user_id == account_id)
            ).scalar()
            if current is None:
                raise AccountNotFound()
            conn.execute(
                password_table.update()
                .where(password_table.c.user_id == account_id)
                .values(password=new_hash, last_password=current, updated_at=utcnow())
            )

    def ping(self, ctx: Optional[QueryContext] = None) -> None:
        """Round-trip a trivial query. Raises StoreError if the database is unreachable."""
        with scoped_connection(self.engine, ctx, "ping database") as conn:
            conn.execute(select(1)).scalar()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        firstname=row.firstname,
        lastname=row.lastname,
        role=row.role,
        status=row.status,
        confirmation_code=row.confirmation_code,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        user_id=row.user_id,
        password=row.password,
        last_password=row.last_password,
        updated_at=as_utc(row.updated_at),
    )
