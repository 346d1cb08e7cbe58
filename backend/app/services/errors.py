"""Authentication error taxonomy.

Every error carries the HTTP status it maps to and a deliberately coarse,
user-facing message. The precise reason only ever goes to the audit trail.
"""


class AuthError(Exception):
    """Base authentication error."""

    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConflictError(AuthError):
    """Resource already exists (e.g. email already registered)."""

    status_code = 409
    default_message = "Email already in use"


class UnauthorizedError(AuthError):
    """Bad credentials, unverified email, or an unusable token."""

    status_code = 401
    default_message = "Unauthorized"


class InvalidTokenError(UnauthorizedError):
    """Token failed signature, expiry or shape checks.

    Expired and tampered tokens are deliberately indistinguishable.
    """

    default_message = "Invalid or expired token"


class TokenRevokedError(UnauthorizedError):
    """Token was revoked (logout) before its natural expiry."""

    default_message = "Session expired. Please sign in again."


class InvalidCodeError(UnauthorizedError):
    """A submitted OTP, TOTP or backup code did not match."""

    default_message = "Invalid code"


class ForbiddenError(AuthError):
    """Authenticated, but the role is not allowed on this route."""

    status_code = 403
    default_message = "Forbidden"


class RateLimitedError(AuthError):
    """Request repeated too soon."""

    status_code = 429
    default_message = "Please wait before requesting a new code"


class NotFoundError(AuthError):
    """A token refers to a user that no longer exists."""

    status_code = 404
    default_message = "User not found"


class AlreadyVerifiedError(AuthError):
    """Verification code requested for an already-verified email."""

    status_code = 400
    default_message = "Email is already verified"
