from __future__ import annotations
import asyncio
import html
import smtplib
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Dict, Optional

from .log import get_logger

log = get_logger("mailer")


class Mailer:
    """Sends contact-form notifications over SMTP (SSL)."""

    def __init__(self, *, host: str, port: int, user: Optional[str],
                 password: Optional[str], recipient: Optional[str],
                 timeout: float = 20.0) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.recipient = recipient
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password and self.recipient)

    def _send(self, msg: MIMEText) -> None:
        with smtplib.SMTP_SSL(self.host, self.port,
                              timeout=self.timeout) as smtp:
            smtp.login(self.user, self.password)
            smtp.sendmail(self.user, [self.recipient], msg.as_string())

    async def send_contact_notification(self, data: Dict[str, Any]) -> None:
        if not self.configured:
            raise RuntimeError("email delivery is not configured")
        # fields arrive already escaped
        body = (
            "<h2>New Message from TIPAC Contact Form</h2>"
            f"<p><strong>Name:</strong> {data['name']}</p>"
            f"<p><strong>Email:</strong> {html.escape(data['email'])}</p>"
            f"<p><strong>Subject:</strong> {data['subject']}</p>"
            "<p><strong>Message:</strong></p>"
            f"<p>{data['message']}</p>"
        )
        msg = MIMEText(body, "html", "utf-8")
        msg["Subject"] = f"New Contact Form Message: {data['subject']}"
        msg["From"] = formataddr(("TIPAC Contact Form", self.user))
        msg["To"] = self.recipient
        msg["Reply-To"] = data["email"]
        await asyncio.to_thread(self._send, msg)
        log.info("contact notification sent to %s", self.recipient)
