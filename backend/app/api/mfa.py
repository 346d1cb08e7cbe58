"""MFA (TOTP) API endpoints.

Setup is two-step: ``/setup`` returns a new secret that stays inactive until
``/activate`` receives a valid code for it.
"""

import logging

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_auth_service
from app.api.guard import get_identity
from app.core.request_utils import get_client_ip
from app.schemas.auth import (
    BackupCodesResponse,
    MFAActivateRequest,
    MFAActivateResponse,
    MFADisableResponse,
    MFASetupResponse,
    TokenResponse,
    UserResponse,
    VerifyLoginRequest,
)
from app.services.auth import AuthService
from app.services.tokens import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/mfa", tags=["mfa"])


@router.post("/setup", response_model=MFASetupResponse)
async def setup_mfa(
    identity: Identity = Depends(get_identity),
    auth_service: AuthService = Depends(get_auth_service),
) -> MFASetupResponse:
    """Generate a new TOTP secret and backup codes.

    Replaces any previous secret; MFA is disabled until activated.
    The backup codes are shown only once.
    """
    setup = await auth_service.setup_mfa(identity)
    return MFASetupResponse(
        otpauth_url=setup.otpauth_url,
        base32=setup.secret,
        backup_codes=setup.backup_codes,
    )


@router.post("/activate", response_model=MFAActivateResponse)
async def activate_mfa(
    body: MFAActivateRequest,
    identity: Identity = Depends(get_identity),
    auth_service: AuthService = Depends(get_auth_service),
) -> MFAActivateResponse:
    """Enable MFA by proving possession of the secret from /setup."""
    await auth_service.activate_mfa(identity, body.token)
    return MFAActivateResponse(enabled=True)


@router.post("/verify-login", response_model=TokenResponse)
async def verify_login(
    body: VerifyLoginRequest,
    request: Request,
    identity: Identity = Depends(get_identity),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Complete a login with a TOTP code or a backup code.

    Requires the temp token returned by /auth/login as Bearer credential.
    """
    user, pair = await auth_service.verify_step_up_login(
        identity,
        totp_code=body.token,
        backup_code=body.backup,
        actor_ip=get_client_ip(request),
    )
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
        user=UserResponse.model_validate(user),
    )


@router.post("/backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    identity: Identity = Depends(get_identity),
    auth_service: AuthService = Depends(get_auth_service),
) -> BackupCodesResponse:
    """Replace all backup codes. Previous codes stop working immediately."""
    codes = await auth_service.regenerate_backup_codes(identity)
    return BackupCodesResponse(backup_codes=codes)


@router.post("/disable", response_model=MFADisableResponse)
async def disable_mfa(
    identity: Identity = Depends(get_identity),
    auth_service: AuthService = Depends(get_auth_service),
) -> MFADisableResponse:
    """Turn MFA off and discard the secret and backup codes."""
    await auth_service.disable_mfa(identity)
    logger.info(f"MFA disabled for user {identity.user_id}")
    return MFADisableResponse(disabled=True)
