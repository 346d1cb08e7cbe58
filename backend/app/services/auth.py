"""Authentication service - registration, verification, login and session flows.

Each flow commits its primary state transition first; mail delivery and
audit writes come afterwards and are best-effort.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError

from app.core.logging import redact_email
from app.models.user import OTPPurpose, User
from app.services.audit import AuditEvent, AuditService
from app.services.credential_store import CredentialStore
from app.services.errors import (
    ConflictError,
    InvalidCodeError,
    InvalidTokenError,
    NotFoundError,
    UnauthorizedError,
)
from app.services.mail import MailDispatcher
from app.services.mfa import MFAManager, MFASetup
from app.services.otp import OTPManager, OTPStatus
from app.services.tokens import REFRESH, Identity, TokenPair, TokenService

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_OTP = "Invalid or expired OTP"

# Verified against on unknown-email logins so both failure paths cost one
# argon2 verify
_DUMMY_HASH = ph.hash("authcore-dummy-password")


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except VerifyMismatchError:
        return False


@dataclass
class LoginResult:
    user: User
    tokens: TokenPair | None = None
    temp_token: str | None = None

    @property
    def mfa_required(self) -> bool:
        return self.temp_token is not None


class AuthService:
    """Orchestrates the credential store, OTP, MFA and token services."""

    def __init__(
        self,
        store: CredentialStore,
        otp: OTPManager,
        mfa: MFAManager,
        tokens: TokenService,
        audit: AuditService,
        mailer: MailDispatcher,
    ):
        self.store = store
        self.otp = otp
        self.mfa = mfa
        self.tokens = tokens
        self.audit = audit
        self.mailer = mailer

    # --- Registration and verification ---

    async def register(
        self, name: str, email: str, password: str, actor_ip: str | None = None
    ) -> User:
        """Create an unverified Student account and mail a verification code.

        Raises ConflictError if the email is taken, including by a
        soft-deleted account.
        """
        if await self.store.email_exists(email):
            raise ConflictError()

        user = await self.store.create_user(name, email, hash_password(password))
        await self.store.commit()
        logger.info(f"Registered user {user.id} ({redact_email(user.email)})")

        await self.otp.issue(user, OTPPurpose.VERIFICATION, actor_ip=actor_ip)
        await self.audit.log(
            AuditEvent.USER_REGISTERED,
            user.id,
            {"role": user.role.value},
            actor_ip=actor_ip,
        )
        return user

    async def verify_otp(
        self, email: str, code: str, actor_ip: str | None = None
    ) -> tuple[User, str]:
        """Verify the email and sign the user in with an access token."""
        user = await self.store.get_by_email(email)
        if user is None:
            await self.audit.log(
                AuditEvent.OTP_VERIFY_FAILED,
                details={"purpose": OTPPurpose.VERIFICATION.value, "reason": "USER_NOT_FOUND"},
                actor_ip=actor_ip,
            )
            raise UnauthorizedError(INVALID_OTP)

        verified = await self.otp.verify(
            user, OTPPurpose.VERIFICATION, code, actor_ip=actor_ip, is_email_verified=True
        )
        if not verified:
            raise UnauthorizedError(INVALID_OTP)

        user = await self._reload(user)

        try:
            await self.mailer.send_verified_confirmation(user.email)
        except Exception as e:
            logger.warning(f"Verification confirmation for user {user.id} not sent: {e}")

        await self.audit.log(AuditEvent.EMAIL_VERIFIED, user.id, actor_ip=actor_ip)
        return user, self.tokens.issue_access_token(Identity.from_user(user))

    async def send_otp(self, email: str, actor_ip: str | None = None) -> None:
        user = await self.store.get_by_email(email)
        if user is None:
            logger.debug(f"send-otp for unknown email {redact_email(email)}")
            return
        await self.otp.issue(user, OTPPurpose.VERIFICATION, actor_ip=actor_ip)

    async def resend_otp(self, email: str, actor_ip: str | None = None) -> None:
        user = await self.store.get_by_email(email)
        if user is None:
            logger.debug(f"resend-otp for unknown email {redact_email(email)}")
            return
        await self.otp.resend(user, OTPPurpose.VERIFICATION, actor_ip=actor_ip)

    async def otp_status(self, email: str) -> OTPStatus:
        user = await self.store.get_by_email(email)
        if user is None:
            return OTPStatus(valid=False, expires_at=None)
        return self.otp.status(user, OTPPurpose.VERIFICATION)

    # --- Password reset ---

    async def forgot_password(self, email: str, actor_ip: str | None = None) -> None:
        user = await self.store.get_by_email(email)
        if user is None:
            logger.debug(f"forgot-password for unknown email {redact_email(email)}")
            return
        await self.otp.issue(user, OTPPurpose.PASSWORD_RESET, actor_ip=actor_ip)

    async def reset_password(
        self, email: str, code: str, new_password: str, actor_ip: str | None = None
    ) -> None:
        """Set a new password if the reset code matches.

        The new hash is written by the same statement that consumes the code.
        """
        user = await self.store.get_by_email(email)
        if user is None:
            await self.audit.log(
                AuditEvent.OTP_VERIFY_FAILED,
                details={"purpose": OTPPurpose.PASSWORD_RESET.value, "reason": "USER_NOT_FOUND"},
                actor_ip=actor_ip,
            )
            raise UnauthorizedError(INVALID_OTP)

        changed = await self.otp.verify(
            user,
            OTPPurpose.PASSWORD_RESET,
            code,
            actor_ip=actor_ip,
            password_hash=hash_password(new_password),
        )
        if not changed:
            raise UnauthorizedError(INVALID_OTP)

        await self.audit.log(AuditEvent.PASSWORD_RESET_COMPLETED, user.id, actor_ip=actor_ip)

    # --- Sessions ---

    async def login(self, email: str, password: str, actor_ip: str | None = None) -> LoginResult:
        """Check the password and either issue tokens or start step-up.

        Unknown email and wrong password fail identically.
        """
        user = await self.store.get_by_email(email)

        if user is None:
            verify_password(password, _DUMMY_HASH)
            await self._login_failed(None, "USER_NOT_FOUND", actor_ip, email=redact_email(email))
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not verify_password(password, user.password_hash):
            await self._login_failed(user, "INVALID_PASSWORD", actor_ip)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not user.is_email_verified:
            await self._login_failed(user, "EMAIL_NOT_VERIFIED", actor_ip)
            raise UnauthorizedError("Email not verified")

        identity = Identity.from_user(user)
        if user.mfa_enabled:
            return LoginResult(user=user, temp_token=self.tokens.issue_pending_mfa_token(identity))

        return LoginResult(user=user, tokens=await self._complete_login(user, actor_ip))

    async def verify_step_up_login(
        self,
        identity: Identity,
        totp_code: str | None = None,
        backup_code: str | None = None,
        actor_ip: str | None = None,
    ) -> tuple[User, TokenPair]:
        """Finish a login that is waiting for its second factor."""
        user = await self.store.get_by_id(identity.user_id)
        if user is None or not user.mfa_enabled:
            await self._login_failed(user, "invalid_mfa", actor_ip, user_id=identity.user_id)
            raise InvalidCodeError("Invalid MFA code")

        if not await self.mfa.verify_step_up(user, totp_code=totp_code, backup_code=backup_code):
            await self._login_failed(user, "invalid_mfa", actor_ip)
            raise InvalidCodeError("Invalid MFA code")

        return user, await self._complete_login(user, actor_ip, mfa=True)

    async def refresh(self, refresh_token: str) -> tuple[User, TokenPair]:
        pair, user = await self.tokens.refresh(refresh_token)
        return user, pair

    async def logout(
        self,
        identity: Identity,
        refresh_token: str | None = None,
        actor_ip: str | None = None,
    ) -> None:
        """Revoke the presented access token and, if given, a refresh token."""
        if identity.token:
            await self.tokens.revoke(identity.token, identity.user_id)
            await self.audit.log(
                AuditEvent.TOKEN_BLACKLISTED, identity.user_id, {"kind": "access"}, actor_ip=actor_ip
            )

        if refresh_token:
            try:
                owner = self.tokens.decode(refresh_token, REFRESH)
            except InvalidTokenError:
                logger.debug(f"Ignoring unusable refresh token on logout for user {identity.user_id}")
            else:
                if owner.user_id == identity.user_id:
                    await self.tokens.revoke(refresh_token, identity.user_id)
                    await self.audit.log(
                        AuditEvent.TOKEN_BLACKLISTED,
                        identity.user_id,
                        {"kind": "refresh"},
                        actor_ip=actor_ip,
                    )
                else:
                    logger.warning(f"Refresh token of another user presented on logout by {identity.user_id}")

        await self.audit.log(AuditEvent.LOGOUT, identity.user_id, actor_ip=actor_ip)

    async def get_profile(self, identity: Identity) -> User:
        user = await self.store.get_by_id(identity.user_id)
        if user is None:
            raise NotFoundError()
        return user

    # --- MFA management ---

    async def setup_mfa(self, identity: Identity) -> MFASetup:
        user = await self.get_profile(identity)
        return await self.mfa.begin_setup(user)

    async def activate_mfa(self, identity: Identity, totp_code: str) -> None:
        user = await self.get_profile(identity)
        await self.mfa.confirm_setup(user, totp_code)

    async def regenerate_backup_codes(self, identity: Identity) -> list[str]:
        user = await self.get_profile(identity)
        return await self.mfa.regenerate_backup_codes(user)

    async def disable_mfa(self, identity: Identity) -> None:
        user = await self.get_profile(identity)
        await self.mfa.disable(user)

    # --- Helpers ---

    async def _complete_login(self, user: User, actor_ip: str | None, mfa: bool = False) -> TokenPair:
        tokens = self.tokens.issue_pair(Identity.from_user(user))
        await self.store.update_fields(user.id, last_login_at=datetime.now(UTC))
        await self.store.commit()

        details = {"mfa": True} if mfa else {}
        await self.audit.log(AuditEvent.LOGIN_SUCCESS, user.id, details, actor_ip=actor_ip)
        logger.info(f"User logged in: {user.id}")
        return tokens

    async def _login_failed(
        self,
        user: User | None,
        reason: str,
        actor_ip: str | None,
        **details: object,
    ) -> None:
        user_id = details.pop("user_id", None) or (user.id if user else None)
        await self.audit.log(
            AuditEvent.LOGIN_FAILED,
            user_id,  # type: ignore[arg-type]
            {"reason": reason, **details},
            actor_ip=actor_ip,
        )

    async def _reload(self, user: User) -> User:
        fresh = await self.store.get_by_id(user.id)
        if fresh is None:
            raise NotFoundError()
        return fresh
