"""One-time code manager for email verification and password reset."""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from app.core.config import Settings
from app.models.base import utcnow
from app.models.user import OTP_COLUMNS, OTPPurpose, User
from app.services.audit import AuditEvent, AuditService
from app.services.credential_store import CredentialStore
from app.services.errors import AlreadyVerifiedError, RateLimitedError
from app.services.mail import MailDispatcher

logger = logging.getLogger(__name__)


def generate_otp() -> str:
    """Six-digit numeric code from a CSPRNG."""
    return str(100000 + secrets.randbelow(900000))


@dataclass(frozen=True)
class OTPStatus:
    valid: bool
    expires_at: datetime | None


class OTPManager:
    """Issues, re-issues and verifies short-lived numeric codes.

    All state lives on the user row: at most one pending code per purpose,
    and a new code atomically replaces the previous one.
    """

    def __init__(
        self,
        store: CredentialStore,
        mailer: MailDispatcher,
        audit: AuditService,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.mailer = mailer
        self.audit = audit
        self.ttl = timedelta(minutes=settings.otp_expire_minutes)
        self.resend_interval = timedelta(seconds=settings.otp_resend_interval_seconds)
        self.clock = clock

    async def issue(self, user: User, purpose: OTPPurpose, actor_ip: str | None = None) -> str:
        """Generate, store and mail a new code, replacing any pending one."""
        return await self._issue(user, purpose, rate_limited=False, actor_ip=actor_ip)

    async def resend(self, user: User, purpose: OTPPurpose, actor_ip: str | None = None) -> str:
        """Like ``issue`` but refuses while the pending code is younger than the resend interval.

        Raises:
            RateLimitedError: previous code was issued too recently
        """
        return await self._issue(user, purpose, rate_limited=True, actor_ip=actor_ip)

    async def verify(
        self,
        user: User,
        purpose: OTPPurpose,
        code: str,
        actor_ip: str | None = None,
        **values: Any,
    ) -> bool:
        """Consume the pending code if it matches and has not expired.

        ``values`` are written in the same statement that clears the code.
        A code verifies at most once.
        """
        ok = await self.store.consume_otp(user.id, purpose, code.strip(), self.clock(), **values)
        await self.store.commit()
        if ok:
            return True

        await self.audit.log(
            AuditEvent.OTP_VERIFY_FAILED,
            user.id,
            {"purpose": purpose.value, "reason": "INVALID_OR_EXPIRED"},
            actor_ip=actor_ip,
        )
        return False

    def status(self, user: User, purpose: OTPPurpose) -> OTPStatus:
        code_attr, expiry_attr = OTP_COLUMNS[purpose]
        code = getattr(user, code_attr)
        expires_at = getattr(user, expiry_attr)
        valid = bool(code and expires_at and self.clock() < expires_at)
        return OTPStatus(valid=valid, expires_at=expires_at)

    async def _issue(
        self,
        user: User,
        purpose: OTPPurpose,
        *,
        rate_limited: bool,
        actor_ip: str | None,
    ) -> str:
        if purpose is OTPPurpose.VERIFICATION and user.is_email_verified:
            raise AlreadyVerifiedError()

        now = self.clock()
        code = generate_otp()
        # A pending code whose expiry is beyond this point was issued
        # less than resend_interval ago
        not_after = now + self.ttl - self.resend_interval if rate_limited else None

        stored = await self.store.set_otp(
            user.id,
            purpose,
            code,
            now + self.ttl,
            pending_expiry_not_after=not_after,
        )
        await self.store.commit()
        if not stored:
            raise RateLimitedError()

        await self._deliver(user, purpose, code, actor_ip)
        return code

    async def _deliver(
        self,
        user: User,
        purpose: OTPPurpose,
        code: str,
        actor_ip: str | None,
    ) -> None:
        minutes = int(self.ttl.total_seconds() // 60)
        try:
            if purpose is OTPPurpose.PASSWORD_RESET:
                await self.mailer.send_password_reset_code(user.email, code, minutes)
            else:
                await self.mailer.send_verification_code(user.email, code, minutes)
        except Exception as e:
            # The code is stored; the user can ask for a resend
            logger.warning(f"Delivery of {purpose.value} code for user {user.id} failed: {e}")
            await self.audit.log(
                AuditEvent.OTP_SEND_FAILED,
                user.id,
                {"purpose": purpose.value, "reason": str(e) or type(e).__name__},
                actor_ip=actor_ip,
            )
            return

        event = (
            AuditEvent.PASSWORD_RESET_REQUESTED
            if purpose is OTPPurpose.PASSWORD_RESET
            else AuditEvent.OTP_SENT
        )
        await self.audit.log(event, user.id, {"purpose": purpose.value}, actor_ip=actor_ip)
