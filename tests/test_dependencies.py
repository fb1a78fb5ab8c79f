"""
tests/test_dependencies.py -- Unit tests for the authorization gates.

The gates only touch request.app.state, request.headers, request.query_params
and request.client, so a SimpleNamespace request exercises them without HTTP.

Coverage:
  - require_auth: valid token -> subject id; missing/expired/forged -> Unauthorized
  - require_admin: admin passes; standard -> Unauthorized; deleted account -> Unauthorized
  - require_admin: store failure -> StoreError (500, fail closed)
  - RoleCache: TTL expiry, ttl=0 disables caching
  - refresh_rate_limit: denial raises RateLimited with retry_after and is audited
"""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

from auth.dependencies import RoleCache, refresh_rate_limit, require_admin, require_auth
from auth.errors import RateLimited, StoreError, Unauthorized
from auth.models import ROLE_ADMIN
from auth.rate_limiter import IPRateLimiter
from auth.tokens import AccessTokenCodec

SECRET = "dependency-test-secret-key-that-is-long-enough-00"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _request(state, token: str | None = None, query_token: str | None = None, ip: str = "127.0.0.1"):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    query = {"token": query_token} if query_token else {}
    return SimpleNamespace(
        app=SimpleNamespace(state=state),
        state=SimpleNamespace(),
        headers=headers,
        query_params=query,
        client=SimpleNamespace(host=ip),
        url=SimpleNamespace(path="/api/auth/refresh"),
    )


@pytest.fixture
def state(account_store):
    return SimpleNamespace(
        settings=SimpleNamespace(db_query_timeout_seconds=5.0),
        codec=AccessTokenCodec(SECRET),
        account_store=account_store,
        role_cache=RoleCache(0),
        refresh_limiter=IPRateLimiter(2, window_seconds=60),
    )


class TestRequireAuth:
    def test_valid_bearer(self, state, account_store, make_account) -> None:
        account_id = make_account(account_store, "alice")
        request = _request(state, token=state.codec.mint(account_id))
        assert require_auth(request) == account_id
        assert request.state.account_id == account_id

    def test_query_token(self, state) -> None:
        assert require_auth(_request(state, query_token=state.codec.mint(5))) == 5

    def test_query_token_takes_precedence(self, state) -> None:
        request = _request(state, token=state.codec.mint(1), query_token=state.codec.mint(2))
        assert require_auth(request) == 2

    def test_missing_token(self, state) -> None:
        with pytest.raises(Unauthorized):
            require_auth(_request(state))

    def test_forged_token(self, state) -> None:
        forged = AccessTokenCodec("x" * 40).mint(1)
        with pytest.raises(Unauthorized):
            require_auth(_request(state, token=forged))

    def test_expired_token(self, state) -> None:
        expired_codec = AccessTokenCodec(SECRET, lifetime_minutes=-1)
        with pytest.raises(Unauthorized):
            require_auth(_request(state, token=expired_codec.mint(1)))


class TestRequireAdmin:
    def test_admin_passes(self, state, account_store, make_account) -> None:
        admin_id = make_account(account_store, "root", role=ROLE_ADMIN)
        assert require_admin(_request(state, token=state.codec.mint(admin_id))) == admin_id

    def test_standard_rejected(self, state, account_store, make_account) -> None:
        user_id = make_account(account_store, "alice")
        with pytest.raises(Unauthorized):
            require_admin(_request(state, token=state.codec.mint(user_id)))

    def test_deleted_account_rejected(self, state, account_store, make_account) -> None:
        admin_id = make_account(account_store, "root", role=ROLE_ADMIN)
        account_store.delete_account(admin_id)
        with pytest.raises(Unauthorized):
            require_admin(_request(state, token=state.codec.mint(admin_id)))

    def test_invalid_token_rejected_before_lookup(self, state) -> None:
        with pytest.raises(Unauthorized):
            require_admin(_request(state, token="garbage"))

    def test_store_failure_fails_closed(self, state, account_store, make_account, monkeypatch) -> None:
        admin_id = make_account(account_store, "root", role=ROLE_ADMIN)

        def broken_get_role(account_id, ctx=None):
            raise StoreError("query account role")

        monkeypatch.setattr(account_store, "get_role", broken_get_role)
        with pytest.raises(StoreError) as exc_info:
            require_admin(_request(state, token=state.codec.mint(admin_id)))
        assert exc_info.value.status_code == 500

    def test_demotion_visible_without_cache(self, state, account_store, make_account) -> None:
        admin_id = make_account(account_store, "root", role=ROLE_ADMIN)
        token = state.codec.mint(admin_id)
        require_admin(_request(state, token=token))
        account_store.set_role(admin_id, "standard")
        with pytest.raises(Unauthorized):
            require_admin(_request(state, token=token))

    def test_role_cache_serves_repeat_lookups(self, state, account_store, make_account, monkeypatch) -> None:
        admin_id = make_account(account_store, "root", role=ROLE_ADMIN)
        state.role_cache = RoleCache(30)
        token = state.codec.mint(admin_id)
        require_admin(_request(state, token=token))

        def unreachable(account_id, ctx=None):
            raise AssertionError("role should come from the cache")

        monkeypatch.setattr(account_store, "get_role", unreachable)
        assert require_admin(_request(state, token=token)) == admin_id


class TestRoleCache:
    def test_ttl_expiry(self) -> None:
        clock = FakeClock()
        cache = RoleCache(30, clock=clock)
        cache.put(1, "admin")
        clock.now = 29.9
        assert cache.get(1) == "admin"
        clock.now = 30.0
        assert cache.get(1) is None

    def test_zero_ttl_disables(self) -> None:
        cache = RoleCache(0)
        cache.put(1, "admin")
        assert cache.get(1) is None


class TestRefreshRateLimit:
    def test_allows_then_denies(self, state, caplog) -> None:
        caplog.set_level(logging.INFO, logger="pimpmypack.audit")
        refresh_rate_limit(_request(state, ip="10.1.1.1"))
        refresh_rate_limit(_request(state, ip="10.1.1.1"))
        with pytest.raises(RateLimited) as exc_info:
            refresh_rate_limit(_request(state, ip="10.1.1.1"))
        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after >= 1
        assert any("rate_limit_exceeded" in r.getMessage() for r in caplog.records if r.name == "pimpmypack.audit")

    def test_other_ip_unaffected(self, state) -> None:
        for _ in range(2):
            refresh_rate_limit(_request(state, ip="10.1.1.1"))
        with pytest.raises(RateLimited):
            refresh_rate_limit(_request(state, ip="10.1.1.1"))
        refresh_rate_limit(_request(state, ip="10.1.1.2"))
