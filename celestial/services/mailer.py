"""Outbound mail for verification links and one-time passcodes."""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from celestial.core.config import Settings

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """
    Plain-text SMTP mailer.

    When no host is configured (dev), the message is logged instead of sent;
    the body is never logged because it carries codes and verification links.
    Errors propagate to the caller, which decides whether they are fatal.
    """

    def __init__(
        self,
        *,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        from_address: str = "Celestial Seal <celestialseal@open.com>",
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailer":
        password = settings.MAIL_PASSWORD.get_secret_value() if settings.MAIL_PASSWORD else None
        return cls(
            host=settings.MAIL_HOST,
            port=settings.MAIL_PORT,
            username=settings.MAIL_USERNAME,
            password=password,
            use_tls=settings.MAIL_USE_TLS,
            from_address=settings.MAIL_FROM,
            timeout=settings.MAIL_TIMEOUT_SEC,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    def send(self, to_address: str, subject: str, body: str) -> None:
        if not self.is_configured:
            logger.info(
                "Mail not configured; message dropped",
                extra={"to": redact_email(to_address), "subject": subject},
            )
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to_address
        msg.set_content(body)

        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(
                self.host, self.port, context=context, timeout=self.timeout
            ) as server:
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        logger.info("Mail sent", extra={"to": redact_email(to_address), "subject": subject})


def dispatch_mail(mailer: Mailer, to_address: str, subject: str, body: str) -> bool:
    """
    Send without letting delivery failures escape. State already committed by
    the caller stays committed; the failure is logged for operators.
    """
    try:
        mailer.send(to_address, subject, body)
        return True
    except Exception:
        logger.exception(
            "Mail delivery failed",
            extra={"to": redact_email(to_address), "subject": subject},
        )
        return False
