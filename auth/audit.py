"""
auth/audit.py -- Structured security audit events.

Each event is serialized to one JSON object and written as
``[AUDIT] {...}`` to the "pimpmypack.audit" logger. Deployments route that
logger to their log stream; the application never reads events back.

Rules:
  - Never put a password, password hash, access token or refresh token in an
    event. The helper signatures below do not accept them.
  - Fire-and-forget. If serialization or the log handler fails, the failure is
    reported on the "pimpmypack.auth" logger and swallowed, so the request
    that triggered the event is unaffected.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from auth.models import AuditEvent, AuditEventType

audit_logger = logging.getLogger("pimpmypack.audit")
logger = logging.getLogger("pimpmypack.auth")


@dataclass(frozen=True)
class ClientInfo:
    ip: str
    user_agent: Optional[str] = None


def client_info(request) -> ClientInfo:
    """Build ClientInfo from a Starlette request."""
    ip = request.client.host if request.client else "unknown"
    return ClientInfo(ip=ip, user_agent=request.headers.get("user-agent") or None)


def serialize_event(event: AuditEvent) -> str:
    """Render an event as compact JSON; optional fields that are unset are omitted."""
    payload: dict = {
        "timestamp": event.timestamp.isoformat() if event.timestamp else None,
        "event_type": event.event_type.value,
        "ip": event.client_ip,
        "message": event.message,
    }
    if event.account_id is not None:
        payload["user_id"] = event.account_id
    if event.username:
        payload["username"] = event.username
    if event.user_agent:
        payload["user_agent"] = event.user_agent
    if event.remember_me:
        payload["remember_me"] = True
    return json.dumps(payload, separators=(",", ":"))


def log_audit_event(event: AuditEvent) -> None:
    """Stamp the event with the current UTC time and emit it. Never raises."""
    event.timestamp = datetime.now(timezone.utc)
    try:
        audit_logger.info("[AUDIT] %s", serialize_event(event))
    except Exception:  # noqa: BLE001 -- audit must not break the request
        logger.exception("Failed to emit audit event %s", event.event_type.value)


# ---------------------------------------------------------------------------
# One helper per event kind
# ---------------------------------------------------------------------------


def audit_login_success(client: ClientInfo, account_id: int, remember_me: bool) -> None:
    log_audit_event(
        AuditEvent(
            event_type=AuditEventType.LOGIN_SUCCESS,
            account_id=account_id,
            client_ip=client.ip,
            user_agent=client.user_agent,
            message="User logged in successfully",
            remember_me=remember_me,
        )
    )


def audit_login_failed(client: ClientInfo, username: str, reason: str) -> None:
    log_audit_event(
        AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            username=username,
            client_ip=client.ip,
            user_agent=client.user_agent,
            message=reason,
        )
    )


def audit_refresh_success(client: ClientInfo, account_id: int) -> None:
    log_audit_event(
        AuditEvent(
            event_type=AuditEventType.REFRESH_SUCCESS,
            account_id=account_id,
            client_ip=client.ip,
            user_agent=client.user_agent,
            message="Access token refreshed successfully",
        )
    )


def audit_refresh_failed(client: ClientInfo, reason: str) -> None:
    log_audit_event(
        AuditEvent(
            event_type=AuditEventType.REFRESH_FAILED,
            client_ip=client.ip,
            user_agent=client.user_agent,
            message=reason,
        )
    )


def audit_logout(client: ClientInfo, account_id: int) -> None:
    log_audit_event(
        AuditEvent(
            event_type=AuditEventType.LOGOUT,
            account_id=account_id,
            client_ip=client.ip,
            user_agent=client.user_agent,
            message="User logged out",
        )
    )


def audit_rate_limit_exceeded(client: ClientInfo, endpoint: str) -> None:
    log_audit_event(
        AuditEvent(
            event_type=AuditEventType.RATE_LIMIT_EXCEEDED,
            client_ip=client.ip,
            user_agent=client.user_agent,
            message=f"Rate limit exceeded for {endpoint}",
        )
    )
