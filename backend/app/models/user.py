"""User model - identity, credentials and second-factor state."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, UTCDateTime


class UserRole(str, enum.Enum):
    """Platform roles carried in every token."""

    STUDENT = "Student"
    INSTRUCTOR = "Instructor"
    ADMIN = "Admin"


class User(BaseModel):
    """A platform account.

    Each OTP purpose has its own (code, expiry) pair: either both are NULL
    (nothing pending) or both are set. ``mfa_secret`` is populated with
    ``mfa_enabled`` still false between MFA setup and activation.
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            name="user_role",
            values_callable=lambda roles: [r.value for r in roles],
            create_constraint=True,
        ),
        nullable=False,
        default=UserRole.STUDENT,
        index=True,
    )

    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Email verification OTP
    otp_code: Mapped[str | None] = mapped_column(String(12), nullable=True)
    otp_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Password reset OTP
    password_reset_otp_code: Mapped[str | None] = mapped_column(String(12), nullable=True)
    password_reset_otp_expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )

    # Second factor
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mfa_secret: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Tracking
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    backup_codes = relationship(
        "MFABackupCode",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MFABackupCode.position",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"


class OTPPurpose(str, enum.Enum):
    """Which (code, expiry) pair a one-time code lives in."""

    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"


OTP_COLUMNS: dict[OTPPurpose, tuple[str, str]] = {
    OTPPurpose.VERIFICATION: ("otp_code", "otp_expires_at"),
    OTPPurpose.PASSWORD_RESET: ("password_reset_otp_code", "password_reset_otp_expires_at"),
}
