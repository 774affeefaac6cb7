"""E-mail delivery — best-effort SMTP for notification copies.

Learn: smtplib is blocking, so each send runs in a worker thread via
asyncio.to_thread and never stalls the event loop. With no SMTP host
configured the service is disabled and every send is a logged no-op.
Failures come back as a result dict; nothing here raises.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional

import structlog

from todolive.config import settings

logger = structlog.get_logger()


class EmailService:
    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
    ):
        self.host = host if host is not None else settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.sender = sender or settings.smtp_from

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(
            f"{body}\n\n"
            f"Open todolive: {settings.frontend_url}\n"
            "You can change which notifications you receive in your settings.\n"
        )
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.port == 587:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> dict:
        """Send one message. Returns {"success": bool, "error": str | None}."""
        if not self.enabled:
            logger.debug("email.disabled", to=to, subject=subject)
            return {"success": False, "error": "SMTP not configured"}

        message = self.build_message(to, subject, body)
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("email.send_failed", to=to, subject=subject, error=str(e))
            return {"success": False, "error": str(e)}

        logger.info("email.sent", to=to, subject=subject)
        return {"success": True, "error": None}
