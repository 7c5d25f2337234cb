import logging
import smtplib
import ssl
from datetime import datetime
from email.message import EmailMessage
from email.utils import format_datetime
from typing import Protocol

from rankbeam.config import Settings

logger = logging.getLogger(__name__)

LICENSE_EMAIL_SUBJECT = "Your RankBeam license key"


class MailerError(Exception):
    pass


class Mailer(Protocol):
    def send_license_email(self, to: str, license_key: str, expires_at: datetime | None) -> None:
        ...


def build_message(sender: str, to: str, license_key: str, expires_at: datetime | None) -> EmailMessage:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = to
    message["Subject"] = LICENSE_EMAIL_SUBJECT

    lines = [
        "Thank you for purchasing RankBeam.",
        "",
        f"License key: {license_key}",
    ]
    if expires_at is not None:
        lines.append(f"Valid until: {format_datetime(expires_at)}")
    lines += [
        "",
        "Paste the key into the activation window the next time you start RankBeam.",
    ]
    message.set_content("\n".join(lines) + "\n")
    return message


class SMTPMailer:
    """Delivers license keys over implicit-TLS SMTP."""

    def __init__(
        self,
        host: str,
        sender: str,
        port: int = 465,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.timeout = timeout

    def send_license_email(self, to: str, license_key: str, expires_at: datetime | None) -> None:
        message = build_message(self.sender, to, license_key, expires_at)
        context = ssl.create_default_context()
        try:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context) as smtp:
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailerError(f"send license email to {to}: {exc}") from exc
        logger.info("license email sent to %s", to)


def build_mailer(settings: Settings) -> SMTPMailer | None:
    if not settings.smtp_host or not settings.smtp_from:
        return None
    return SMTPMailer(
        host=settings.smtp_host,
        sender=settings.smtp_from,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        timeout=settings.write_timeout_seconds,
    )
