# AuthCore Models
from app.models.audit_log import AuditLog
from app.models.base import BaseModel
from app.models.mfa_backup_code import MFABackupCode
from app.models.revoked_token import RevokedToken
from app.models.user import OTPPurpose, User, UserRole

__all__ = [
    "AuditLog",
    "BaseModel",
    "OTPPurpose",
    "MFABackupCode",
    "RevokedToken",
    "User",
    "UserRole",
]
