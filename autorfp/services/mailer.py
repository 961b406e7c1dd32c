"""SMTP transport for outbound mail.

Blocking smtplib calls run in a worker thread. With MAIL_DISABLED set nothing
is sent and a "dev-skip-..." id is returned, so the rest of the pipeline
behaves as if delivery succeeded.

Called by: services/delivery.py
Depends on: config
"""

import asyncio
import smtplib
import ssl
import uuid
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

from loguru import logger

from ..config import settings


@dataclass
class OutboundEmail:
    to: str
    subject: str
    text: str
    html: str | None = None
    reply_to: str | None = None
    headers: dict = field(default_factory=dict)


class SmtpMailer:
    def __init__(self, host=None, port=None, user=None, password=None,
                 use_ssl=None, timeout=None, sender=None, disabled=None):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.user = user if user is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.use_ssl = settings.smtp_use_ssl if use_ssl is None else use_ssl
        self.timeout = timeout or settings.smtp_timeout
        self.sender = sender or settings.mail_from or settings.smtp_user
        self.disabled = settings.mail_disabled if disabled is None else disabled

    def build_message(self, email: OutboundEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = email.to
        msg["Subject"] = email.subject
        msg["Date"] = formatdate(localtime=False)
        domain = self.sender.split("@")[-1] if "@" in (self.sender or "") else None
        msg["Message-ID"] = make_msgid(domain=domain)
        if email.reply_to:
            msg["Reply-To"] = email.reply_to
        for name, value in email.headers.items():
            msg[name] = value
        msg.set_content(email.text)
        if email.html:
            msg.add_alternative(email.html, subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        if self.use_ssl:
            server = smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout, context=ssl.create_default_context()
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            if not self.use_ssl:
                server.starttls(context=ssl.create_default_context())
            if self.user:
                server.login(self.user, self.password)
            server.send_message(msg)

    async def send(self, email: OutboundEmail) -> str:
        """Send and return the Message-ID. Transport errors propagate to the caller."""
        if self.disabled:
            skip_id = f"dev-skip-{uuid.uuid4().hex[:12]}"
            logger.info("MAIL_DISABLED — not sending '{}' to {} ({})", email.subject, email.to, skip_id)
            return skip_id

        msg = self.build_message(email)
        await asyncio.to_thread(self._send_sync, msg)
        logger.info("Sent '{}' to {}", email.subject, email.to)
        return msg["Message-ID"]
