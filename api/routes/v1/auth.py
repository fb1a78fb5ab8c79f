"""
api/routes/v1/auth.py -- Session endpoints: login, refresh, logout.

Routes:
  POST /api/login          -- password login; returns an access + refresh token pair
  POST /api/auth/refresh   -- exchange a refresh token for a new access token
  POST /api/logout         -- revoke a refresh token

Security:
  POST /login is rate-limited per IP by slowapi (LOGIN_RATE_LIMIT).
  POST /auth/refresh is gated by the per-IP token bucket (refresh_rate_limit).
  Unknown username and wrong password produce the same 401 body.
  Cache-Control: no-store on every response that carries a token.
  Every outcome emits exactly one audit event; tokens never appear in one.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import LoginRequest, MessageResponse, RefreshRequest, RefreshResponse, TokenPairResponse
from auth.audit import (
    audit_login_failed,
    audit_login_success,
    audit_logout,
    audit_refresh_failed,
    audit_refresh_success,
    client_info,
)
from auth.dependencies import query_context, refresh_rate_limit
from auth.errors import (
    BadRequest,
    InvalidCredentials,
    PendingActivation,
    StoreError,
    TokenExpired,
    TokenInvalid,
    TokenRevoked,
)
from auth.sessions import SessionService

# Auth policy:
# - POST /api/login:         public -- rate limited by slowapi
# - POST /api/auth/refresh:  public -- possession of the refresh token is the credential
# - POST /api/logout:        public -- possession of the refresh token is the credential
router = APIRouter()


def _no_store(payload: dict) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _parse_refresh_body(payload: Any) -> RefreshRequest:
    """Validate a raw JSON body as RefreshRequest; raise BadRequest otherwise."""
    try:
        return RefreshRequest.model_validate(payload)
    except ValidationError as exc:
        raise BadRequest() from exc


@limiter.limit(LOGIN_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=TokenPairResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password and issue a token pair.

    remember_me selects the extended refresh-token lifetime.
    """
    sessions: SessionService = request.app.state.sessions
    client = client_info(request)
    try:
        pair = sessions.login(body.username, body.password, body.remember_me, query_context(request))
    except InvalidCredentials:
        audit_login_failed(client, body.username, "invalid credentials")
        raise
    except PendingActivation:
        audit_login_failed(client, body.username, "account not yet confirmed")
        raise
    except StoreError:
        audit_login_failed(client, body.username, "authentication failed")
        raise

    audit_login_success(client, pair.account_id, body.remember_me)
    return _no_store(TokenPairResponse.from_pair(pair).model_dump())


async def _refresh_body(request: Request) -> RefreshRequest:
    """Read and validate the refresh body after the rate limit has been applied.

    The route declares no Body() parameter: FastAPI would parse it before the
    route dependencies run, so unparseable JSON would skip the limiter and the
    audit trail.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    try:
        return _parse_refresh_body(payload)
    except BadRequest:
        audit_refresh_failed(client_info(request), "invalid request")
        raise


@router.post("/auth/refresh", response_model=RefreshResponse, dependencies=[Depends(refresh_rate_limit)])
def refresh(request: Request, body: RefreshRequest = Depends(_refresh_body)) -> JSONResponse:
    """Mint a new access token. The refresh token is not rotated and stays valid."""
    sessions: SessionService = request.app.state.sessions
    client = client_info(request)
    try:
        result = sessions.refresh(body.refresh_token, query_context(request))
    except (TokenInvalid, TokenRevoked, TokenExpired) as exc:
        audit_refresh_failed(client, exc.message.lower())
        raise
    except StoreError:
        audit_refresh_failed(client, "refresh failed")
        raise

    audit_refresh_success(client, result.account_id)
    return _no_store(RefreshResponse(access_token=result.access_token, expires_in=result.expires_in).model_dump())


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request, payload: Any = Body(default=None)) -> MessageResponse:
    """Revoke the given refresh token. 404 if it is unknown or already revoked."""
    sessions: SessionService = request.app.state.sessions
    body = _parse_refresh_body(payload)
    stored = sessions.logout(body.refresh_token, query_context(request))
    audit_logout(client_info(request), stored.account_id)
    return MessageResponse(message="Logged out")
