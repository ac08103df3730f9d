"""SMTP e-mail sender.

smtplib is blocking, so send() runs it in a worker thread. The SMTP
connection carries SMTP_TIMEOUT; a failure is logged and reported as False.
"""
from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr

from config import settings

logger = logging.getLogger("pumproom.email")


@dataclass(frozen=True)
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "image/jpeg"


class SmtpEmailSender:

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        from_email: str | None = None,
        from_name: str | None = None,
        *,
        use_tls: bool | None = None,
        timeout: float | None = None,
    ):
        self.host = settings.SMTP_HOST if host is None else host
        self.port = settings.SMTP_PORT if port is None else port
        self.username = settings.SMTP_USERNAME if username is None else username
        self.password = settings.SMTP_PASSWORD if password is None else password
        self.from_email = (settings.SMTP_FROM_EMAIL if from_email is None else from_email) or self.username
        self.from_name = settings.SMTP_FROM_NAME if from_name is None else from_name
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.timeout = settings.SMTP_TIMEOUT if timeout is None else timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def build_message(
        self,
        to_emails: list[str],
        subject: str,
        html_body: str,
        attachments: list[EmailAttachment] | None = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = ", ".join(to_emails)
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html_body, subtype="html")
        for att in attachments or []:
            maintype, _, subtype = att.content_type.partition("/")
            msg.add_attachment(
                att.content, maintype=maintype, subtype=subtype or "octet-stream",
                filename=att.filename,
            )
        return msg

    async def send(
        self,
        to_emails: list[str],
        subject: str,
        html_body: str,
        attachments: list[EmailAttachment] | None = None,
    ) -> bool:
        if not self.is_configured:
            logger.warning("SMTP not configured (host / from address), e-mail not sent")
            return False
        if not to_emails:
            logger.warning("E-mail without recipients not sent: %s", subject)
            return False

        msg = self.build_message(to_emails, subject, html_body, attachments)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("E-mail to %s failed: %s", ", ".join(to_emails), exc)
            return False
        logger.info(
            "E-mail sent to %d recipients (%d attachments): %s",
            len(to_emails), len(attachments or []), subject,
        )
        return True

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.ehlo()
            if self.use_tls:
                smtp.starttls(context=ssl.create_default_context())
                smtp.ehlo()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)
