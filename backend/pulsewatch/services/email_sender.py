"""SMTP delivery for the email notification channel."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import List

from ..models.settings import NotifierConfig

logger = logging.getLogger(__name__)


def parse_recipients(to_address: str) -> List[str]:
    """Split a comma-separated address list, dropping blanks."""
    return [addr.strip() for addr in (to_address or "").split(",") if addr.strip()]


@dataclass
class SmtpSettings:
    """Connection and envelope settings for one email notifier."""
    host: str
    port: int = 587
    username: str = ""
    password: str = ""
    starttls: bool = True
    sender: str = ""
    recipients: List[str] = field(default_factory=list)
    timeout: float = 10

    @classmethod
    def from_notifier(cls, config: NotifierConfig, timeout: float) -> "SmtpSettings":
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            starttls=config.smtp_use_tls,
            sender=config.email_from or config.smtp_username,
            recipients=parse_recipients(config.email_to),
            timeout=timeout,
        )


def _describe(e: Exception) -> str:
    if isinstance(e, smtplib.SMTPAuthenticationError):
        return f"authentication failed ({e.smtp_code})"
    if isinstance(e, smtplib.SMTPRecipientsRefused):
        return f"recipients refused: {', '.join(e.recipients)}"
    if isinstance(e, smtplib.SMTPException):
        return f"{type(e).__name__}: {e}"
    return f"connection failed: {e}"


class EmailSenderService:
    """Sends plain-text messages. The SMTP exchange runs in a worker thread."""

    async def send_email(self, smtp: SmtpSettings, subject: str, body: str) -> bool:
        """Returns True if the server accepted the message."""
        if not smtp.host or not smtp.recipients:
            logger.warning("Email not sent - missing SMTP host or recipients")
            return False
        return await asyncio.to_thread(self._send_sync, smtp, subject, body)

    def _send_sync(self, smtp: SmtpSettings, subject: str, body: str) -> bool:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = smtp.sender
        msg["To"] = ", ".join(smtp.recipients)
        msg.set_content(body)

        try:
            with smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout) as server:
                if smtp.starttls:
                    server.starttls(context=ssl.create_default_context())
                if smtp.username and smtp.password:
                    server.login(smtp.username, smtp.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery via {smtp.host}:{smtp.port} failed: {_describe(e)}")
            return False

        logger.info(f"Email sent to {len(smtp.recipients)} recipient(s): {subject}")
        return True


# Global instance
email_sender_service = EmailSenderService()
