"""
auth/mail.py -- Outbound mail for account confirmation.

SMTP with STARTTLS when MAIL_SERVER is configured. Without a server (local
development, tests) the message is logged with the recipient redacted and
treated as sent.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

logger = logging.getLogger("pimpmypack.mail")


def _redact(address: str) -> str:
    if "@" not in address:
        return "redacted"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


class MailSender:
    def __init__(
        self,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        identity: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.identity = identity or username
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.identity)

    def send(self, to: str, subject: str, body: str) -> bool:
        """Send a plain-text message. Returns False (and logs) on failure."""
        if not self.is_configured:
            logger.info("Mail dev mode: to=%s subject=%r (not sent)", _redact(to), subject)
            return True

        msg = EmailMessage()
        msg["From"] = self.identity
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls(context=ssl.create_default_context())
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send mail to %s: %s", _redact(to), exc)
            return False
        return True

    def send_confirmation(self, to: str, account_id: int, code: str, base_url: Optional[str] = None) -> bool:
        link = f"{(base_url or '').rstrip('/')}/api/confirmemail?id={account_id}&code={code}"
        body = (
            "Hello,\n\n"
            "Please confirm your PimpMyPack account by opening the link below:\n\n"
            f"{link}\n\n"
            "If you did not create this account you can ignore this message.\n"
        )
        return self.send(to, "PimpMyPack - Confirm your account", body)
