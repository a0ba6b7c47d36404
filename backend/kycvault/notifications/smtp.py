"""SMTP notification dispatcher."""

import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

from ..config import Settings, get_settings
from .ports import NotificationDispatcher, NotificationError

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


def html_to_text(html_body: str) -> str:
    """Crude plain-text alternative for clients that do not render HTML."""
    text = _TAG_RE.sub("", html_body).replace("&nbsp;", " ")
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


class SmtpNotificationDispatcher(NotificationDispatcher):
    """Sends multipart (plain + HTML) mail through the configured relay.

    Port 465 uses implicit TLS, 587 uses STARTTLS, anything else is plain.
    """

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.SMTP_FROM_EMAIL
        self.from_name = settings.SMTP_FROM_NAME
        self.timeout = settings.SMTP_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        """Check if a relay host is configured."""
        return bool(self.smtp_host)

    def _connect(self) -> smtplib.SMTP:
        if self.smtp_port == 465:
            return smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout)
        server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
        if self.smtp_port == 587:
            server.starttls()
        return server

    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Send one message.

        Raises:
            NotificationError: If the relay is not configured or rejects the message
        """
        if not self.is_configured():
            raise NotificationError("SMTP_HOST is not configured", recipient=to)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(html_to_text(html_body), "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            server = self._connect()
            try:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, [to], msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email to {to}: {e}", recipient=to) from e

        logger.info(
            f"Email sent to {to}",
            extra={"event_type": (metadata or {}).get("eventType")},
        )
