"""Pydantic schemas for authentication API.

Request bodies accept both camelCase and snake_case field names.
"""

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, model_validator

from app.models.user import UserRole


class RegisterRequest(BaseModel):
    """Request for account registration."""

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="Password (minimum 8 characters)",
    )


class EmailRequest(BaseModel):
    """Request carrying only an email (send-otp, resend-otp, forgot-password)."""

    email: EmailStr


class VerifyOTPRequest(BaseModel):
    """Request for email verification."""

    email: EmailStr
    otp: str = Field(
        ...,
        min_length=1,
        max_length=12,
        validation_alias=AliasChoices("otp", "otpCode", "otp_code", "code"),
    )


class ResetPasswordRequest(BaseModel):
    """Request for completing a password reset."""

    email: EmailStr
    otp_code: str = Field(
        ...,
        min_length=1,
        max_length=12,
        validation_alias=AliasChoices("otpCode", "otp_code", "otp"),
    )
    new_password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        validation_alias=AliasChoices("newPassword", "new_password"),
        description="New password (minimum 8 characters)",
    )


class LoginRequest(BaseModel):
    """Request for login."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    """Request for token refresh."""

    refresh_token: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("refreshToken", "refresh_token"),
    )


class LogoutRequest(BaseModel):
    """Request for logout with optional refresh token revocation."""

    refresh_token: str | None = Field(
        None,
        validation_alias=AliasChoices("refreshToken", "refresh_token"),
        description="Refresh token to revoke. If provided, the refresh token is blacklisted to prevent reuse.",
    )


class UserResponse(BaseModel):
    """Sanitized user projection - never includes hashes, codes or secrets."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: UserRole
    is_email_verified: bool
    mfa_enabled: bool
    last_login_at: datetime | None = None
    created_at: datetime | None = None


class RegisterResponse(BaseModel):
    """Response after successful registration."""

    message: str
    user: UserResponse


class VerifyOTPResponse(BaseModel):
    """Response after successful email verification."""

    message: str
    token: str
    user: UserResponse


class TokenResponse(BaseModel):
    """Response with JWT tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiry in seconds")
    user: UserResponse | None = None


class MFARequiredResponse(BaseModel):
    """Login response when a second factor is still required."""

    model_config = ConfigDict(populate_by_name=True)

    mfa_required: bool = Field(default=True, alias="mfaRequired")
    temp_token: str = Field(
        alias="tempToken",
        description="Short-lived token accepted only by /auth/mfa/verify-login",
    )


class OTPStatusResponse(BaseModel):
    """Whether a verification code is currently pending."""

    model_config = ConfigDict(populate_by_name=True)

    valid: bool
    expires_at: datetime | None = Field(default=None, alias="expiresAt")


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


# --- MFA ---


class MFASetupResponse(BaseModel):
    """New (not yet active) TOTP secret and backup codes."""

    model_config = ConfigDict(populate_by_name=True)

    otpauth_url: str = Field(alias="otpauthUrl")
    base32: str
    backup_codes: list[str] = Field(alias="backupCodes")


class MFAActivateRequest(BaseModel):
    """TOTP code proving possession of the new secret."""

    token: str = Field(..., min_length=6, max_length=10, validation_alias=AliasChoices("token", "code"))


class MFAActivateResponse(BaseModel):
    enabled: bool = True


class MFADisableResponse(BaseModel):
    disabled: bool = True


class BackupCodesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    backup_codes: list[str] = Field(alias="backupCodes")


class VerifyLoginRequest(BaseModel):
    """Second factor for a pending login: a TOTP code or a backup code, not both."""

    token: str | None = Field(None, max_length=10)
    backup: str | None = Field(
        None,
        max_length=32,
        validation_alias=AliasChoices("backup", "backupCode", "backup_code"),
    )

    @model_validator(mode="after")
    def exactly_one_credential(self) -> "VerifyLoginRequest":
        if (self.token is None) == (self.backup is None):
            raise ValueError("Provide exactly one of token or backup")
        return self


# --- Audit trail ---


class AuditLogResponse(BaseModel):
    """Single audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event: str
    level: str
    user_id: UUID | None
    actor_ip: str | None
    details: dict | None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: list[AuditLogResponse]
    total: int
    limit: int
    offset: int
