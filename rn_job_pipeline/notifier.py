"""
Operator alert e-mails over SMTP.

Settings come from the environment: SMTP_HOST, SMTP_PORT, SMTP_USER,
SMTP_PASS, EMAIL_FROM and ADMIN_EMAIL. Port 465 uses implicit TLS; any other
port upgrades with STARTTLS.
"""

import html
import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Sends plain-text reports to the admin address"""

    def __init__(self, subject_prefix: str = "[RN Jobs]", enabled: bool = True):
        self.subject_prefix = subject_prefix
        self.enabled = enabled
        self.host = os.getenv("SMTP_HOST", "")
        self.port = int(os.getenv("SMTP_PORT", "587") or 587)
        self.user = os.getenv("SMTP_USER", "")
        self.password = os.getenv("SMTP_PASS", "")
        self.sender = os.getenv("EMAIL_FROM", "") or self.user
        self.recipient = os.getenv("ADMIN_EMAIL", "")

    @classmethod
    def from_config(cls, config) -> "EmailNotifier":
        return cls(subject_prefix=config.get_subject_prefix(), enabled=config.is_email_enabled())

    def is_configured(self) -> bool:
        return all([self.host, self.port, self.user, self.password, self.sender, self.recipient])

    def _build_message(self, subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"{self.subject_prefix} {subject}".strip()
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(f"<pre>{html.escape(body)}</pre>", "html"))
        return msg

    def send(self, subject: str, body: str, recipient: Optional[str] = None) -> bool:
        if not self.enabled:
            logger.info("E-mail alerts disabled; not sending '%s'", subject)
            return False
        if recipient:
            self.recipient = recipient
        if not self.is_configured():
            logger.warning("E-mail not configured (missing SMTP settings); not sending '%s'", subject)
            return False

        msg = self._build_message(subject, body)
        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=30) as server:
                    server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                    server.starttls()
                    server.login(self.user, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("E-mail send failed: %s", exc)
            return False

        logger.info("Sent alert e-mail to %s: %s", self.recipient, subject)
        return True
