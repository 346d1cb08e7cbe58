"""Authentication API endpoints."""

import logging
import time
from collections import defaultdict

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status

from app.api.deps import get_auth_service
from app.api.guard import get_identity, get_optional_identity
from app.core import settings
from app.core.request_utils import get_client_ip
from app.models.user import User
from app.schemas.auth import (
    EmailRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    MFARequiredResponse,
    OTPStatusResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
    VerifyOTPRequest,
    VerifyOTPResponse,
)
from app.services.auth import AuthService
from app.services.errors import UnauthorizedError
from app.services.tokens import Identity, TokenPair

logger = logging.getLogger(__name__)

# Rate limiting for login attempts
_login_attempts: dict[str, list[float]] = defaultdict(list)

OTP_SENT_MESSAGE = "If an account exists for this email, a code has been sent."


def _check_login_rate_limit(client_ip: str) -> None:
    """Check if a client IP has exceeded the login attempt rate limit."""
    now = time.monotonic()
    window = settings.login_rate_limit_window_seconds
    attempts = _login_attempts[client_ip]
    _login_attempts[client_ip] = [t for t in attempts if now - t < window]
    if len(_login_attempts[client_ip]) >= settings.login_rate_limit_attempts:
        logger.warning("Login rate limit exceeded for %s", client_ip)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
        )


def _record_login_attempt(client_ip: str) -> None:
    """Record a failed login attempt for rate limiting."""
    _login_attempts[client_ip].append(time.monotonic())


def reset_login_attempts() -> None:
    _login_attempts.clear()


def _token_response(pair: TokenPair, user: User) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
        user=UserResponse.model_validate(user),
    )


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    body: RegisterRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    """Create an account and send an email verification code.

    Returns 409 Conflict if the email is already registered.
    """
    user = await auth_service.register(
        name=body.name,
        email=body.email,
        password=body.password,
        actor_ip=get_client_ip(request),
    )
    return RegisterResponse(
        message="Registration successful. Check your email for the verification code.",
        user=UserResponse.model_validate(user),
    )


@router.post("/verify-otp", response_model=VerifyOTPResponse)
async def verify_otp(
    body: VerifyOTPRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> VerifyOTPResponse:
    """Verify the email with the emailed code.

    Verification doubles as the first login: an access token is returned.
    """
    user, token = await auth_service.verify_otp(body.email, body.otp, actor_ip=get_client_ip(request))
    return VerifyOTPResponse(
        message="Email verified successfully",
        token=token,
        user=UserResponse.model_validate(user),
    )


@router.post("/send-otp", response_model=MessageResponse)
async def send_otp(
    body: EmailRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send a new verification code, replacing any pending one."""
    await auth_service.send_otp(body.email, actor_ip=get_client_ip(request))
    return MessageResponse(message=OTP_SENT_MESSAGE)


@router.post("/resend-otp", response_model=MessageResponse)
async def resend_otp(
    body: EmailRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Re-send a verification code.

    Returns 429 if the pending code was issued less than the resend
    interval ago.
    """
    await auth_service.resend_otp(body.email, actor_ip=get_client_ip(request))
    return MessageResponse(message=OTP_SENT_MESSAGE)


@router.get("/otp-status/{email}", response_model=OTPStatusResponse)
async def otp_status(
    email: str,
    auth_service: AuthService = Depends(get_auth_service),
) -> OTPStatusResponse:
    """Whether a verification code is pending and when it expires."""
    result = await auth_service.otp_status(email)
    return OTPStatusResponse(valid=result.valid, expires_at=result.expires_at)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: EmailRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Email a password reset code. Unknown emails get the same response."""
    await auth_service.forgot_password(body.email, actor_ip=get_client_ip(request))
    return MessageResponse(message=OTP_SENT_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Set a new password using the emailed reset code."""
    await auth_service.reset_password(
        body.email,
        body.otp_code,
        body.new_password,
        actor_ip=get_client_ip(request),
    )
    return MessageResponse(message="Password reset successfully")


@router.post("/login", response_model=TokenResponse | MFARequiredResponse)
async def login(
    body: LoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse | MFARequiredResponse:
    """Authenticate and get JWT tokens.

    Users with MFA enabled get a short-lived temp token instead, to be
    exchanged at /auth/mfa/verify-login.
    Rate limited per client IP.
    """
    client_ip = get_client_ip(request)
    _check_login_rate_limit(client_ip)

    try:
        result = await auth_service.login(body.email, body.password, actor_ip=client_ip)
    except UnauthorizedError:
        _record_login_attempt(client_ip)
        raise

    if result.tokens is None:
        return MFARequiredResponse(temp_token=str(result.temp_token))
    return _token_response(result.tokens, result.user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    body: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Exchange a refresh token for a new token pair.

    The presented refresh token is not revoked by this call.
    """
    user, pair = await auth_service.refresh(body.refresh_token)
    return _token_response(pair, user)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    body: LogoutRequest | None = Body(default=None),
    identity: Identity | None = Depends(get_optional_identity),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Log out the current user.

    Revokes the presented access token (and the refresh token, if one is
    given in the body) until its natural expiry. Without credentials this
    is a no-op.
    """
    if identity is None:
        return MessageResponse(message="Logged out successfully")

    await auth_service.logout(
        identity,
        refresh_token=body.refresh_token if body else None,
        actor_ip=get_client_ip(request),
    )
    logger.info(f"User logged out: {identity.user_id}")
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    identity: Identity = Depends(get_identity),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Get the current user's information."""
    user = await auth_service.get_profile(identity)
    return UserResponse.model_validate(user)
