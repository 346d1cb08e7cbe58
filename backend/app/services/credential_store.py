"""Credential store - data access for users and their second-factor state.

No business rules live here. Every multi-field transition is a single
conditional UPDATE/DELETE so that concurrent requests against the same user
row cannot interleave a read-modify-write (e.g. a verify racing a re-issue).
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.mfa_backup_code import MFABackupCode
from app.models.user import OTP_COLUMNS, OTPPurpose, User, UserRole
from app.services.errors import ConflictError

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookups."""
    return email.strip().lower()


class CredentialStore:
    """Async repository over the ``users`` and ``mfa_backup_codes`` tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def refresh(self, user: User) -> User:
        await self.session.refresh(user)
        return user

    # --- Lookups ---

    async def get_by_id(self, user_id: UUID) -> User | None:
        """Get an active (not soft-deleted) user by id."""
        result = await self.session.execute(
            select(User)
            .where(User.id == user_id, User.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        """Get an active user by (normalized) email."""
        result = await self.session.execute(
            select(User)
            .where(User.email == normalize_email(email), User.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def email_exists(self, email: str) -> bool:
        """True if any account, including soft-deleted ones, owns the email."""
        result = await self.session.execute(
            select(func.count(User.id)).where(User.email == normalize_email(email))
        )
        return (result.scalar() or 0) > 0

    # --- Writes ---

    async def create_user(
        self,
        name: str,
        email: str,
        password_hash: str,
        role: UserRole = UserRole.STUDENT,
        is_email_verified: bool = False,
    ) -> User:
        user = User(
            name=name.strip(),
            email=normalize_email(email),
            password_hash=password_hash,
            role=role,
            is_email_verified=is_email_verified,
        )
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent registration for the same email
            await self.session.rollback()
            raise ConflictError() from e
        await self.session.refresh(user)
        return user

    async def update_fields(self, user_id: UUID, **values: Any) -> None:
        await self._update(User.id == user_id, values=values)

    async def set_otp(
        self,
        user_id: UUID,
        purpose: OTPPurpose,
        code: str,
        expires_at: datetime,
        *,
        pending_expiry_not_after: datetime | None = None,
    ) -> bool:
        """Store a new code, overwriting whatever was pending.

        With ``pending_expiry_not_after`` the write only happens when no code
        is pending or the pending code expires at or before that instant.
        Returns False when that condition blocked the write.
        """
        code_col, expiry_col = self._otp_columns(purpose)
        criteria = [User.id == user_id]
        if pending_expiry_not_after is not None:
            criteria.append(
                or_(expiry_col.is_(None), expiry_col <= pending_expiry_not_after)
            )
        return await self._update(
            *criteria,
            values={code_col.key: code, expiry_col.key: expires_at},
        )

    async def consume_otp(
        self,
        user_id: UUID,
        purpose: OTPPurpose,
        code: str,
        now: datetime,
        **values: Any,
    ) -> bool:
        """Clear a matching, unexpired code; apply ``values`` in the same statement."""
        code_col, expiry_col = self._otp_columns(purpose)
        return await self._update(
            User.id == user_id,
            code_col == code,
            expiry_col.is_not(None),
            expiry_col >= now,
            values={code_col.key: None, expiry_col.key: None, **values},
        )

    # --- MFA ---

    async def store_mfa_setup(self, user_id: UUID, secret: str, code_hashes: Iterable[str]) -> None:
        """Store a fresh secret (not yet enabled) and replace the backup codes."""
        await self._update(
            User.id == user_id,
            values={"mfa_secret": secret, "mfa_enabled": False},
        )
        await self.replace_backup_codes(user_id, code_hashes)

    async def enable_mfa(self, user_id: UUID, secret: str) -> bool:
        """Enable MFA only if ``secret`` is still the stored secret."""
        return await self._update(
            User.id == user_id,
            User.mfa_secret == secret,
            values={"mfa_enabled": True},
        )

    async def clear_mfa(self, user_id: UUID) -> None:
        await self._update(
            User.id == user_id,
            values={"mfa_secret": None, "mfa_enabled": False},
        )
        await self.session.execute(delete(MFABackupCode).where(MFABackupCode.user_id == user_id))

    async def replace_backup_codes(self, user_id: UUID, code_hashes: Iterable[str]) -> None:
        await self.session.execute(delete(MFABackupCode).where(MFABackupCode.user_id == user_id))
        self.session.add_all(
            MFABackupCode(user_id=user_id, position=i, code_hash=code_hash)
            for i, code_hash in enumerate(code_hashes)
        )
        await self.session.flush()

    async def consume_backup_code(self, user_id: UUID, code_hash: str) -> bool:
        """Delete a matching backup code. True exactly once per code."""
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(MFABackupCode).where(
                MFABackupCode.user_id == user_id,
                MFABackupCode.code_hash == code_hash,
            )
        )
        return result.rowcount == 1

    async def count_backup_codes(self, user_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(MFABackupCode.id)).where(MFABackupCode.user_id == user_id)
        )
        return result.scalar() or 0

    # --- Helpers ---

    @staticmethod
    def _otp_columns(purpose: OTPPurpose):
        code_name, expiry_name = OTP_COLUMNS[purpose]
        return getattr(User, code_name), getattr(User, expiry_name)

    async def _update(self, *criteria: Any, values: dict[str, Any]) -> bool:
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            update(User)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
