"""Composition root - builds the auth services for a request.

Everything is constructed explicitly from the request's database session,
the settings, the audit sink and the mail dispatcher. Tests swap the latter
two (and ``get_db``) through ``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import get_db
from app.core.config import Settings, get_settings
from app.services.audit import AuditService, get_audit_service
from app.services.auth import AuthService
from app.services.credential_store import CredentialStore
from app.services.mail import MailDispatcher, get_mail_dispatcher
from app.services.mfa import MFAManager
from app.services.otp import OTPManager
from app.services.tokens import TokenService


def get_credential_store(db: AsyncSession = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


def get_token_service(
    store: CredentialStore = Depends(get_credential_store),
    cfg: Settings = Depends(get_settings),
) -> TokenService:
    return TokenService(store, cfg)


def get_auth_service(
    store: CredentialStore = Depends(get_credential_store),
    tokens: TokenService = Depends(get_token_service),
    audit: AuditService = Depends(get_audit_service),
    mailer: MailDispatcher = Depends(get_mail_dispatcher),
    cfg: Settings = Depends(get_settings),
) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(
        store=store,
        otp=OTPManager(store, mailer, audit, cfg),
        mfa=MFAManager(store, audit, cfg),
        tokens=tokens,
        audit=audit,
        mailer=mailer,
    )
