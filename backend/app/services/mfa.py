"""TOTP second factor and single-use backup codes.

Works with any RFC 6238 authenticator app (Google Authenticator, Authy,
1Password, ...). A newly generated secret is stored disabled; it is only
switched on after the user proves possession with a valid code.
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field

import pyotp

from app.core.config import Settings
from app.models.user import User
from app.services.audit import AuditEvent, AuditService
from app.services.credential_store import CredentialStore
from app.services.errors import InvalidCodeError, UnauthorizedError

logger = logging.getLogger(__name__)

# Accept codes from the previous and next 30s step for clock drift
TOTP_VALID_WINDOW = 1


@dataclass
class MFASetup:
    secret: str
    otpauth_url: str
    backup_codes: list[str] = field(default_factory=list)


def hash_backup_code(code: str, key: str) -> str:
    """Keyed digest of a backup code, as stored in the database.

    Codes are short, so a plain hash could be brute-forced from a database
    dump. Keying with the server secret makes the stored digests useless
    without it.
    """
    normalized = code.strip().lower().encode()
    return hmac.new(key.encode(), normalized, hashlib.sha256).hexdigest()


def generate_backup_codes(count: int) -> list[str]:
    codes: list[str] = []
    while len(codes) < count:
        code = secrets.token_hex(4)
        if code not in codes:
            codes.append(code)
    return codes


def verify_totp(secret: str, code: str) -> bool:
    code = code.strip().replace(" ", "")
    if not code.isdigit():
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=TOTP_VALID_WINDOW)


class MFAManager:
    """Setup, activation, step-up verification and removal of MFA."""

    def __init__(self, store: CredentialStore, audit: AuditService, settings: Settings):
        self.store = store
        self.audit = audit
        self.issuer = settings.mfa_issuer
        self.backup_code_count = settings.mfa_backup_code_count
        self.backup_code_key = settings.effective_jwt_secret_key

    async def begin_setup(self, user: User) -> MFASetup:
        """Generate and store a new (disabled) secret and a fresh set of backup codes.

        Any previous secret and backup codes are replaced.
        """
        secret = pyotp.random_base32()
        backup_codes = generate_backup_codes(self.backup_code_count)

        await self.store.store_mfa_setup(
            user.id, secret, [hash_backup_code(c, self.backup_code_key) for c in backup_codes]
        )
        await self.store.commit()

        await self.audit.log(AuditEvent.MFA_SETUP_STARTED, user.id, {"action": "setup_generated"})

        otpauth_url = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=self.issuer)
        return MFASetup(secret=secret, otpauth_url=otpauth_url, backup_codes=backup_codes)

    async def confirm_setup(self, user: User, totp_code: str) -> bool:
        """Enable MFA after checking a code against the stored secret.

        Raises:
            InvalidCodeError: no pending secret, or the code does not match it.
                State is left unchanged.
        """
        secret = user.mfa_secret
        if not secret:
            raise InvalidCodeError("MFA not initialized for user")

        if not verify_totp(secret, totp_code):
            await self.audit.log(
                AuditEvent.MFA_ACTIVATION_FAILED, user.id, {"reason": "invalid_setup_token"}
            )
            raise InvalidCodeError("Invalid TOTP token")

        # Conditional on the secret so a concurrent re-setup is not enabled blind
        if not await self.store.enable_mfa(user.id, secret):
            raise InvalidCodeError("Invalid TOTP token")
        await self.store.commit()

        await self.audit.log(AuditEvent.MFA_ENABLED, user.id, {"action": "enabled"})
        return True

    async def verify_step_up(
        self,
        user: User,
        totp_code: str | None = None,
        backup_code: str | None = None,
    ) -> bool:
        """Check exactly one second-factor credential.

        A matching backup code is consumed and can never match again.
        """
        if (totp_code is None) == (backup_code is None):
            raise ValueError("Provide exactly one of totp_code or backup_code")

        if not user.mfa_enabled or not user.mfa_secret:
            return False

        if totp_code is not None:
            return verify_totp(user.mfa_secret, totp_code)

        code_hash = hash_backup_code(backup_code or "", self.backup_code_key)
        consumed = await self.store.consume_backup_code(user.id, code_hash)
        await self.store.commit()
        if consumed:
            remaining = await self.store.count_backup_codes(user.id)
            logger.info(f"Backup code used for user {user.id}; {remaining} remaining")
        return consumed

    async def regenerate_backup_codes(self, user: User) -> list[str]:
        """Replace the backup codes of a user with MFA enabled."""
        if not user.mfa_enabled:
            raise UnauthorizedError("MFA not enabled")

        backup_codes = generate_backup_codes(self.backup_code_count)
        await self.store.replace_backup_codes(
            user.id, [hash_backup_code(c, self.backup_code_key) for c in backup_codes]
        )
        await self.store.commit()

        await self.audit.log(AuditEvent.MFA_BACKUP_CODES_REGENERATED, user.id, {})
        return backup_codes

    async def disable(self, user: User) -> None:
        """Remove secret and backup codes. Safe to call repeatedly."""
        await self.store.clear_mfa(user.id)
        await self.store.commit()
        await self.audit.log(AuditEvent.MFA_DISABLED, user.id, {"action": "disabled"})
