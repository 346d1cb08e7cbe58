"""Mail dispatcher - delivers one-time codes and account notices over SMTP.

Callers treat delivery as a best-effort side effect: ``send`` raises
``MailDeliveryError`` and the flows that use it catch, log and audit.
When SMTP is not configured (local development) messages are dropped; only
the subject and the redacted recipient are logged, never the body.
"""

import email.message
import email.policy
import logging

import aiosmtplib

from app.core.config import Settings, settings
from app.core.logging import redact_email

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    """Message could not be handed to the SMTP server."""

    pass


class MailDispatcher:
    """Async SMTP sender for transactional account email."""

    def __init__(
        self,
        *,
        host: str | None = None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
        start_tls: bool = True,
        timeout: float = 10.0,
        from_email: str | None = None,
        from_name: str = "No-Reply",
        app_name: str = "AuthCore",
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.start_tls = start_tls
        self.timeout = timeout
        self.from_email = from_email or username
        self.from_name = from_name
        self.app_name = app_name

    @classmethod
    def from_settings(cls, cfg: Settings) -> "MailDispatcher":
        return cls(
            host=cfg.smtp_host,
            port=cfg.smtp_port,
            username=cfg.smtp_username,
            password=cfg.smtp_password,
            use_tls=cfg.smtp_use_tls,
            start_tls=cfg.smtp_start_tls,
            timeout=cfg.smtp_timeout,
            from_email=cfg.mail_from,
            from_name=cfg.mail_from_name,
            app_name=cfg.app_name,
        )

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.host and self.from_email)

    async def send(self, to_email: str, subject: str, body: str) -> None:
        """Send a plain-text message.

        Raises:
            MailDeliveryError: if the SMTP exchange fails
        """
        if not self.is_configured:
            logger.info(f"SMTP not configured; not sending '{subject}' to {redact_email(to_email)}")
            return

        message = email.message.EmailMessage(policy=email.policy.default)
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body, charset="utf-8")

        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                use_tls=self.use_tls,
                start_tls=self.start_tls if not self.use_tls else False,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning(f"Mail to {redact_email(to_email)} failed: {e}")
            raise MailDeliveryError(str(e)) from e

        logger.info(f"Mail sent to {redact_email(to_email)}: {subject}")

    async def send_verification_code(self, to_email: str, code: str, expires_minutes: int) -> None:
        await self.send(
            to_email,
            f"{self.app_name}: verify your email",
            f"Your verification code is {code}.\n\n"
            f"It expires in {expires_minutes} minutes. "
            "If you did not create an account, you can ignore this message.",
        )

    async def send_password_reset_code(self, to_email: str, code: str, expires_minutes: int) -> None:
        await self.send(
            to_email,
            f"{self.app_name}: password reset code",
            f"Your password reset code is {code}.\n\n"
            f"It expires in {expires_minutes} minutes. "
            "If you did not request a reset, you can ignore this message.",
        )

    async def send_verified_confirmation(self, to_email: str) -> None:
        await self.send(
            to_email,
            f"{self.app_name}: email verified",
            "Your email has been successfully verified. "
            "You can now log in to your account.",
        )


_mail_dispatcher: MailDispatcher | None = None


def get_mail_dispatcher() -> MailDispatcher:
    """Get the mail dispatcher singleton."""
    global _mail_dispatcher
    if _mail_dispatcher is None:
        _mail_dispatcher = MailDispatcher.from_settings(settings)
    return _mail_dispatcher
