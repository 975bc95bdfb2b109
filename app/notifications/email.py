"""
Email notifier. Sends through aiosmtplib when EMAIL_ENABLED is set; otherwise
logs the recipient and subject only (never the credentials).
"""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import DeliveryFailure
from app.notifications import templates
from app.notifications.base import GuardianCredentialsEmail

logger = logging.getLogger(__name__)


class EmailNotifier:
    def __init__(self, config: Optional[Settings] = None) -> None:
        self.config = config or default_settings

    def _build_message(self, to_email: str, subject: str, text: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.config.email_from
        msg["To"] = to_email
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    async def _deliver(self, msg: MIMEMultipart) -> None:
        if not self.config.smtp_host:
            raise DeliveryFailure("SMTP_HOST is not configured")
        try:
            await aiosmtplib.send(
                msg,
                hostname=self.config.smtp_host,
                port=self.config.smtp_port,
                username=self.config.smtp_username,
                password=self.config.smtp_password,
                start_tls=self.config.smtp_use_tls,
            )
        except aiosmtplib.SMTPException as e:
            raise DeliveryFailure(f"SMTP delivery failed: {e}") from e

    async def send_guardian_credentials(self, message: GuardianCredentialsEmail) -> bool:
        subject, text, html = templates.guardian_credentials(message, self.config.portal_url)

        if not self.config.email_enabled:
            logger.info(
                "Email disabled; guardian credentials email not sent, delivery unconfirmed (to=%s, subject=%s)",
                message.guardian_email,
                subject,
            )
            return False

        try:
            await self._deliver(self._build_message(message.guardian_email, subject, text, html))
        except DeliveryFailure as e:
            logger.error("Guardian credentials email to %s failed: %s", message.guardian_email, e.message)
            return False
        logger.info("Guardian credentials email sent to %s", message.guardian_email)
        return True


_notifier: Optional[EmailNotifier] = None


def get_notifier() -> EmailNotifier:
    """FastAPI dependency; tests override it with a fake."""
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier()
    return _notifier
