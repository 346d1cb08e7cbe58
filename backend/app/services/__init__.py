# AuthCore Services
from app.services.audit import AuditEvent, AuditService, get_audit_service
from app.services.auth import AuthService, hash_password, verify_password
from app.services.credential_store import CredentialStore
from app.services.mail import MailDispatcher, get_mail_dispatcher
from app.services.mfa import MFAManager
from app.services.otp import OTPManager
from app.services.tokens import Identity, TokenService

__all__ = [
    "AuditEvent",
    "AuditService",
    "AuthService",
    "CredentialStore",
    "Identity",
    "MailDispatcher",
    "MFAManager",
    "OTPManager",
    "TokenService",
    "get_audit_service",
    "get_mail_dispatcher",
    "hash_password",
    "verify_password",
]
