"""
tests/test_sessions.py -- Unit tests for SessionService (auth/sessions.py).

Coverage:
  - login issues a pair whose expiries follow remember_me (900 / 86400 / 2592000)
  - unknown username and wrong password raise the same InvalidCredentials
  - an unknown username is checked against a dummy hash of the configured cost
  - pending account with the right password raises PendingActivation
  - a malformed stored hash is reported as InvalidCredentials
  - refresh: unknown -> TokenInvalid, revoked -> TokenRevoked, expired -> TokenExpired
  - refresh does not rotate: the same refresh token keeps working
  - a failed last_used_at update does not fail the refresh
  - logout deletes the token; a second logout raises RefreshTokenNotFound
"""

from __future__ import annotations

from datetime import timedelta

import pytest

import auth.passwords as passwords
from auth.errors import (
    InvalidCredentials,
    PendingActivation,
    RefreshTokenNotFound,
    StoreError,
    TokenExpired,
    TokenInvalid,
    TokenRevoked,
)
from auth.models import STATUS_PENDING
from auth.sessions import SessionService
from auth.store import password_table, refresh_token_table, utcnow
from auth.tokens import AccessTokenCodec

SECRET = "session-test-secret-key-that-is-long-enough-000000"
PASSWORD = "userpass123"


@pytest.fixture
def codec() -> AccessTokenCodec:
    return AccessTokenCodec(SECRET, lifetime_minutes=15)


@pytest.fixture
def sessions(account_store, refresh_store, codec) -> SessionService:
    return SessionService(account_store, refresh_store, codec, bcrypt_rounds=4)


class TestLogin:
    def test_login_issues_pair(self, sessions, account_store, make_account, codec) -> None:
        account_id = make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD, remember_me=False)
        assert pair.account_id == account_id
        assert pair.access_expires_in == 900
        assert pair.refresh_expires_in == 86400
        assert pair.token == pair.access_token
        assert codec.extract_subject_id(pair.access_token) == account_id
        assert len(pair.refresh_token) == 43

    def test_remember_me_extends_refresh(self, sessions, account_store, refresh_store, make_account) -> None:
        make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD, remember_me=True)
        assert pair.refresh_expires_in == 30 * 86400
        stored = refresh_store.get(pair.refresh_token)
        assert stored.expires_at - stored.created_at == timedelta(days=30)

    def test_unknown_user_and_wrong_password_are_indistinguishable(
        self, sessions, account_store, make_account
    ) -> None:
        make_account(account_store, "alice", PASSWORD)
        with pytest.raises(InvalidCredentials) as unknown:
            sessions.login("nobody", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            sessions.login("alice", "wrong-password")
        assert unknown.value.message == wrong.value.message == "credentials are incorrect"
        assert unknown.value.status_code == wrong.value.status_code == 401

    def test_unknown_user_equalizes_at_configured_cost(
        self, account_store, refresh_store, codec, monkeypatch
    ) -> None:
        checked: list[str] = []
        monkeypatch.setattr(passwords, "verify_password", lambda plain, hashed: checked.append(hashed))
        service = SessionService(account_store, refresh_store, codec, bcrypt_rounds=5)
        with pytest.raises(InvalidCredentials):
            service.login("nobody", "guess")
        assert len(checked) == 1
        assert checked[0].startswith("$2b$05$"), f"Unexpected cost: {checked[0][:7]}"

    def test_pending_account(self, sessions, account_store, make_account) -> None:
        make_account(account_store, "pending", PASSWORD, status=STATUS_PENDING)
        with pytest.raises(PendingActivation) as exc_info:
            sessions.login("pending", PASSWORD)
        assert exc_info.value.message == "account not yet confirmed"

    def test_pending_account_wrong_password_is_invalid_credentials(
        self, sessions, account_store, make_account
    ) -> None:
        """Pending status is only revealed to callers who know the password."""
        make_account(account_store, "pending", PASSWORD, status=STATUS_PENDING)
        with pytest.raises(InvalidCredentials):
            sessions.login("pending", "wrong-password")

    def test_malformed_hash(self, sessions, account_store, make_account) -> None:
        account_id = make_account(account_store, "alice", PASSWORD)
        with account_store.engine.begin() as conn:
            conn.execute(
                password_table.update().where(password_table.c.user_id == account_id).values(password="corrupt")
            )
        with pytest.raises(InvalidCredentials):
            sessions.login("alice", PASSWORD)

    def test_login_failure_creates_no_token(self, sessions, account_store, refresh_store, make_account) -> None:
        account_id = make_account(account_store, "alice", PASSWORD)
        with pytest.raises(InvalidCredentials):
            sessions.login("alice", "wrong-password")
        assert refresh_store.list_for_account(account_id) == []


class TestRefresh:
    def test_refresh_mints_access_token(self, sessions, account_store, make_account, codec) -> None:
        account_id = make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD)
        result = sessions.refresh(pair.refresh_token)
        assert result.account_id == account_id
        assert result.expires_in == 900
        assert codec.extract_subject_id(result.access_token) == account_id

    def test_refresh_does_not_rotate(self, sessions, account_store, refresh_store, make_account) -> None:
        make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD)
        sessions.refresh(pair.refresh_token)
        sessions.refresh(pair.refresh_token)
        stored = refresh_store.get(pair.refresh_token)
        assert stored.revoked is False
        assert stored.last_used_at is not None

    def test_unknown_token(self, sessions) -> None:
        with pytest.raises(TokenInvalid) as exc_info:
            sessions.refresh("not-a-real-token")
        assert exc_info.value.message == "Invalid refresh token"

    def test_revoked_token(self, sessions, account_store, refresh_store, make_account) -> None:
        account_id = make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD)
        refresh_store.revoke_all_for_account(account_id)
        with pytest.raises(TokenRevoked):
            sessions.refresh(pair.refresh_token)

    def test_expired_token(self, sessions, account_store, make_account) -> None:
        make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD)
        with account_store.engine.begin() as conn:
            conn.execute(
                refresh_token_table.update()
                .where(refresh_token_table.c.token == pair.refresh_token)
                .values(expires_at=utcnow() - timedelta(seconds=1))
            )
        with pytest.raises(TokenExpired) as exc_info:
            sessions.refresh(pair.refresh_token)
        assert exc_info.value.message == "Refresh token has expired"

    def test_revoked_checked_before_expired(self, sessions, account_store, refresh_store, make_account) -> None:
        account_id = make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD)
        refresh_store.revoke_all_for_account(account_id)
        with account_store.engine.begin() as conn:
            conn.execute(
                refresh_token_table.update()
                .where(refresh_token_table.c.token == pair.refresh_token)
                .values(expires_at=utcnow() - timedelta(days=1))
            )
        with pytest.raises(TokenRevoked):
            sessions.refresh(pair.refresh_token)

    def test_touch_failure_is_not_fatal(self, sessions, account_store, make_account, monkeypatch) -> None:
        make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD)

        def broken_touch(token_id, ctx=None):
            raise StoreError("update refresh token last used")

        monkeypatch.setattr(sessions.refresh_tokens, "touch", broken_touch)
        result = sessions.refresh(pair.refresh_token)
        assert result.access_token


class TestLogout:
    def test_logout_then_refresh_fails(self, sessions, account_store, make_account) -> None:
        account_id = make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD)
        stored = sessions.logout(pair.refresh_token)
        assert stored.account_id == account_id
        with pytest.raises(TokenInvalid):
            sessions.refresh(pair.refresh_token)

    def test_double_logout(self, sessions, account_store, make_account) -> None:
        make_account(account_store, "alice", PASSWORD)
        pair = sessions.login("alice", PASSWORD)
        sessions.logout(pair.refresh_token)
        with pytest.raises(RefreshTokenNotFound):
            sessions.logout(pair.refresh_token)

    def test_logout_only_affects_that_session(self, sessions, account_store, make_account) -> None:
        make_account(account_store, "alice", PASSWORD)
        first = sessions.login("alice", PASSWORD)
        second = sessions.login("alice", PASSWORD)
        sessions.logout(first.refresh_token)
        assert sessions.refresh(second.refresh_token).access_token
