"""
api/routes/v1/accounts.py -- Registration and account management endpoints.

Routes:
  POST /api/register                                 -- create a pending account, mail the confirmation link
  GET  /api/confirmemail?id=&code=                   -- activate a pending account
  GET  /api/v1/myaccount                             -- current account (Standard)
  PUT  /api/v1/mypassword                            -- change own password (Standard)
  GET  /api/v1/mysessions                            -- own refresh-token sessions (Standard)
  GET  /api/admin/accounts                           -- list all accounts (Admin)
  POST /api/admin/accounts/{account_id}/revoke-sessions  -- revoke every refresh token of an account (Admin)

Security:
  Session listings never include the refresh token value.
  A password change re-verifies the current password first.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import (
    AccountResponse,
    MessageResponse,
    PasswordUpdateRequest,
    RegisterRequest,
    RevokeSessionsResponse,
    SessionResponse,
)
from auth.dependencies import query_context, require_admin, require_auth
from auth.errors import AccountNotFound, BadRequest, MalformedHash, PasswordMismatch, StoreError
from auth.mail import MailSender
from auth.models import Account
from auth.passwords import hash_password, verify_password
from auth.refresh_tokens import RefreshTokenStore
from auth.store import AccountStore

# Auth policy:
# - POST /api/register, GET /api/confirmemail: public
# - /api/v1/*:                                 requires auth (require_auth)
# - /api/admin/*:                              requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", response_model=MessageResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a pending account and mail its confirmation link.

    Answers 202 when the account was created but the mail could not be sent;
    the account then stays pending until an admin confirms it from the CLI.
    """
    settings = request.app.state.settings
    account_store: AccountStore = request.app.state.account_store
    mailer: MailSender = request.app.state.mailer

    account = Account(
        username=body.username,
        email=body.email,
        firstname=body.firstname,
        lastname=body.lastname,
    )
    account_id = account_store.create_account(
        account, hash_password(body.password, settings.bcrypt_rounds), query_context(request)
    )

    if not mailer.send_confirmation(body.email, account_id, account.confirmation_code, settings.public_base_url):
        return JSONResponse(
            status_code=202,
            content={"message": "Account created, but the confirmation e-mail could not be sent"},
        )
    return JSONResponse(
        status_code=201,
        content={"message": "Account created, check your e-mail to confirm it"},
    )


@router.get("/confirmemail", response_model=MessageResponse)
def confirm_email(
    request: Request,
    account_id: int = Query(alias="id"),
    code: str = Query(min_length=1, max_length=64),
) -> MessageResponse:
    account_store: AccountStore = request.app.state.account_store
    if not account_store.confirm(account_id, code, query_context(request)):
        raise BadRequest("Invalid confirmation code or user ID")
    return MessageResponse(message="Account confirmed")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/v1/myaccount", response_model=AccountResponse)
def my_account(request: Request, account_id: int = Depends(require_auth)) -> AccountResponse:
    """Return the account the access token was issued to."""
    account_store: AccountStore = request.app.state.account_store
    account = account_store.get_by_id(account_id, query_context(request))
    if account is None:
        raise AccountNotFound()
    return AccountResponse.from_account(account)


@router.put("/v1/mypassword", response_model=MessageResponse)
def update_my_password(
    request: Request,
    body: PasswordUpdateRequest,
    account_id: int = Depends(require_auth),
) -> MessageResponse:
    """Change the caller's password.

    Existing refresh tokens are left alone; revoke them separately if needed.
    """
    settings = request.app.state.settings
    account_store: AccountStore = request.app.state.account_store
    ctx = query_context(request)

    credential = account_store.get_credential(account_id, ctx)
    try:
        verify_password(body.current_password, credential.password)
    except PasswordMismatch as exc:
        raise BadRequest("Current password is incorrect") from exc
    except MalformedHash as exc:
        raise StoreError(f"malformed password hash for account {account_id}") from exc

    if body.new_password == body.current_password:
        raise BadRequest("New password must differ from the current one")

    account_store.update_password(account_id, hash_password(body.new_password, settings.bcrypt_rounds), ctx)
    return MessageResponse(message="Password updated")


@router.get("/v1/mysessions", response_model=list[SessionResponse])
def my_sessions(request: Request, account_id: int = Depends(require_auth)) -> list[SessionResponse]:
    refresh_tokens: RefreshTokenStore = request.app.state.refresh_tokens
    return [
        SessionResponse.from_refresh_token(t)
        for t in refresh_tokens.list_for_account(account_id, query_context(request))
    ]


# ---------------------------------------------------------------------------
# Account administration (admin only)
# ---------------------------------------------------------------------------


@router.get("/admin/accounts", response_model=list[AccountResponse])
def list_accounts(request: Request, _admin_id: int = Depends(require_admin)) -> list[AccountResponse]:
    """List all accounts. Admin only."""
    account_store: AccountStore = request.app.state.account_store
    return [AccountResponse.from_account(a) for a in account_store.list_accounts(query_context(request))]


@router.post("/admin/accounts/{account_id}/revoke-sessions", response_model=RevokeSessionsResponse)
def revoke_sessions(
    request: Request,
    account_id: int,
    _admin_id: int = Depends(require_admin),
) -> RevokeSessionsResponse:
    """Mark every refresh token of account_id revoked. Admin only.

    Access tokens already issued stay valid until they expire.
    """
    account_store: AccountStore = request.app.state.account_store
    refresh_tokens: RefreshTokenStore = request.app.state.refresh_tokens
    ctx = query_context(request)
    if account_store.get_by_id(account_id, ctx) is None:
        raise AccountNotFound()
    return RevokeSessionsResponse(revoked=refresh_tokens.revoke_all_for_account(account_id, ctx))
