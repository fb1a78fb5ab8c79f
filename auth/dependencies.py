"""
auth/dependencies.py -- FastAPI Depends() helpers for authorization.

Two gates, both synchronous:
  require_auth()  -- Standard. Extracts the access token (?token= first, then
                     Authorization: Bearer), verifies it, and returns the
                     subject (account) id. Any failure -> 401.
  require_admin() -- Admin. require_auth(), then looks up the caller's role:
                     no such account -> 401, store failure -> 500 (fail
                     closed), role != "admin" -> 401.

refresh_rate_limit() gates POST /auth/refresh with the per-IP token bucket
and records a rate_limit_exceeded audit event on denial.

Everything is looked up on request.app.state (codec, account_store,
role_cache, refresh_limiter), which api/main.py wires in its lifespan.

Layer rule: may import from fastapi (part of the DI system); no imports from
api/ or core/.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from fastapi import Request

from auth.audit import audit_rate_limit_exceeded, client_info
from auth.context import QueryContext
from auth.errors import AccessTokenInvalid, AccountNotFound, RateLimited, StoreError, Unauthorized
from auth.models import ROLE_ADMIN
from auth.rate_limiter import IPRateLimiter
from auth.store import AccountStore
from auth.tokens import AccessTokenCodec, extract_token

logger = logging.getLogger("pimpmypack.auth")


class RoleCache:
    """Short-TTL cache of account id -> role for the admin gate.

    A demoted admin keeps access for at most ttl_seconds. ttl_seconds=0
    disables caching entirely.
    """

    def __init__(self, ttl_seconds: float, clock=time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[int, tuple[str, float]] = {}

    def get(self, account_id: int) -> Optional[str]:
        if self.ttl_seconds <= 0:
            return None
        with self._lock:
            entry = self._entries.get(account_id)
            if entry is None:
                return None
            role, stored_at = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[account_id]
                return None
            return role

    def put(self, account_id: int, role: str) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[account_id] = (role, self._clock())


def query_context(request: Request) -> QueryContext:
    """Build the per-request store context from the configured DB timeout."""
    return QueryContext(timeout=request.app.state.settings.db_query_timeout_seconds)


def require_auth(request: Request) -> int:
    """Require a valid access token. Returns the verified account id.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account_id: int = Depends(require_auth)): ...
    """
    codec: AccessTokenCodec = request.app.state.codec
    try:
        account_id = codec.extract_subject_id(extract_token(request))
    except AccessTokenInvalid as exc:
        raise Unauthorized() from exc
    request.state.account_id = account_id
    return account_id


def require_admin(request: Request) -> int:
    """Require a valid access token belonging to an admin account."""
    account_id = require_auth(request)
    role_cache: RoleCache = request.app.state.role_cache
    role = role_cache.get(account_id)
    if role is None:
        account_store: AccountStore = request.app.state.account_store
        try:
            role = account_store.get_role(account_id, query_context(request))
        except AccountNotFound as exc:
            raise Unauthorized() from exc
        except StoreError:
            logger.exception("Role lookup failed for account %d", account_id)
            raise
        role_cache.put(account_id, role)
    if role != ROLE_ADMIN:
        raise Unauthorized()
    return account_id


def refresh_rate_limit(request: Request) -> None:
    """Per-IP token bucket in front of POST /auth/refresh."""
    limiter: IPRateLimiter = request.app.state.refresh_limiter
    client = client_info(request)
    if not limiter.allow(client.ip):
        audit_rate_limit_exceeded(client, request.url.path)
        raise RateLimited(retry_after=limiter.retry_after(client.ip))
