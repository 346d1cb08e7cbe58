# AuthCore Pydantic Schemas
from app.schemas.auth import (
    AuditLogListResponse,
    AuditLogResponse,
    BackupCodesResponse,
    EmailRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    MFAActivateRequest,
    MFAActivateResponse,
    MFADisableResponse,
    MFARequiredResponse,
    MFASetupResponse,
    OTPStatusResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
    VerifyLoginRequest,
    VerifyOTPRequest,
    VerifyOTPResponse,
)

__all__ = [
    "AuditLogListResponse",
    "AuditLogResponse",
    "BackupCodesResponse",
    "EmailRequest",
    "LoginRequest",
    "LogoutRequest",
    "MessageResponse",
    "MFAActivateRequest",
    "MFAActivateResponse",
    "MFADisableResponse",
    "MFARequiredResponse",
    "MFASetupResponse",
    "OTPStatusResponse",
    "RefreshRequest",
    "RegisterRequest",
    "RegisterResponse",
    "ResetPasswordRequest",
    "TokenResponse",
    "UserResponse",
    "VerifyLoginRequest",
    "VerifyOTPRequest",
    "VerifyOTPResponse",
]
