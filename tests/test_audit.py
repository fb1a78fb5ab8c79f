"""
tests/test_audit.py -- Unit tests for the audit logger (auth/audit.py).

Coverage:
  - each helper emits one "[AUDIT] {json}" line on the pimpmypack.audit logger
  - timestamp is stamped in UTC; empty optional fields are omitted
  - remember_me only appears on a remember-me login
  - serialization failures are swallowed and reported on pimpmypack.auth
  - client_info falls back to "unknown" without a client address
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from types import SimpleNamespace

import pytest

import auth.audit as audit
from auth.audit import (
    ClientInfo,
    audit_login_failed,
    audit_login_success,
    audit_logout,
    audit_rate_limit_exceeded,
    audit_refresh_failed,
    audit_refresh_success,
    client_info,
)

CLIENT = ClientInfo(ip="192.0.2.10", user_agent="pytest-agent/1.0")


def _events(caplog) -> list[dict]:
    events = []
    for record in caplog.records:
        if record.name != "pimpmypack.audit":
            continue
        message = record.getMessage()
        assert message.startswith("[AUDIT] "), f"Unexpected audit line: {message}"
        events.append(json.loads(message[len("[AUDIT] "):]))
    return events


@pytest.fixture(autouse=True)
def _capture(caplog):
    caplog.set_level(logging.INFO, logger="pimpmypack.audit")


class TestHelpers:
    def test_login_success(self, caplog) -> None:
        audit_login_success(CLIENT, 7, remember_me=True)
        (event,) = _events(caplog)
        assert event["event_type"] == "login_success"
        assert event["user_id"] == 7
        assert event["ip"] == "192.0.2.10"
        assert event["user_agent"] == "pytest-agent/1.0"
        assert event["remember_me"] is True
        assert datetime.fromisoformat(event["timestamp"]).utcoffset().total_seconds() == 0

    def test_login_success_without_remember_me_omits_flag(self, caplog) -> None:
        audit_login_success(CLIENT, 7, remember_me=False)
        (event,) = _events(caplog)
        assert "remember_me" not in event

    def test_login_failed_carries_username_not_user_id(self, caplog) -> None:
        audit_login_failed(CLIENT, "alice", "invalid credentials")
        (event,) = _events(caplog)
        assert event["event_type"] == "login_failed"
        assert event["username"] == "alice"
        assert event["message"] == "invalid credentials"
        assert "user_id" not in event

    def test_refresh_events(self, caplog) -> None:
        audit_refresh_success(CLIENT, 3)
        audit_refresh_failed(CLIENT, "refresh token has expired")
        ok, failed = _events(caplog)
        assert ok["event_type"] == "refresh_success" and ok["user_id"] == 3
        assert failed["event_type"] == "refresh_failed"
        assert failed["message"] == "refresh token has expired"
        assert "user_id" not in failed

    def test_logout(self, caplog) -> None:
        audit_logout(CLIENT, 9)
        (event,) = _events(caplog)
        assert event["event_type"] == "logout"
        assert event["user_id"] == 9

    def test_rate_limit_exceeded_names_endpoint(self, caplog) -> None:
        audit_rate_limit_exceeded(ClientInfo(ip="198.51.100.1"), "/api/auth/refresh")
        (event,) = _events(caplog)
        assert event["event_type"] == "rate_limit_exceeded"
        assert "/api/auth/refresh" in event["message"]
        assert "user_agent" not in event

    def test_field_names(self, caplog) -> None:
        audit_login_success(CLIENT, 1, remember_me=True)
        (event,) = _events(caplog)
        assert set(event) == {"timestamp", "event_type", "user_id", "ip", "user_agent", "message", "remember_me"}


class TestFailureIsolation:
    def test_serialization_failure_is_swallowed(self, caplog, monkeypatch) -> None:
        def boom(event):
            raise TypeError("not serializable")

        monkeypatch.setattr(audit, "serialize_event", boom)
        caplog.set_level(logging.ERROR, logger="pimpmypack.auth")
        audit_logout(CLIENT, 1)  # must not raise
        assert any(r.name == "pimpmypack.auth" and "audit" in r.getMessage() for r in caplog.records)


class TestClientInfo:
    def test_from_request(self) -> None:
        request = SimpleNamespace(client=SimpleNamespace(host="203.0.113.5"), headers={"user-agent": "ua"})
        assert client_info(request) == ClientInfo(ip="203.0.113.5", user_agent="ua")

    def test_missing_client(self) -> None:
        request = SimpleNamespace(client=None, headers={})
        assert client_info(request) == ClientInfo(ip="unknown", user_agent=None)
