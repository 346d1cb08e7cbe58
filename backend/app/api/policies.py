"""Per-route access policy table consulted by the auth guard.

Keys are ``(method, route path template)``. A route that is not listed is
treated as "authenticated, any role".
"""

from dataclasses import dataclass

from app.models.user import UserRole


@dataclass(frozen=True)
class RoutePolicy:
    """Access rule for one route.

    public: no credentials checked at all
    optional: credentials checked only when an Authorization header is sent
    allowed_roles: if set, the caller's role must be one of these
    mfa_pending: accept only pending-MFA tokens (and reject full tokens)
    """

    public: bool = False
    optional: bool = False
    allowed_roles: frozenset[UserRole] | None = None
    mfa_pending: bool = False


PUBLIC = RoutePolicy(public=True)
OPTIONAL = RoutePolicy(optional=True)
AUTHENTICATED = RoutePolicy()
ADMIN_ONLY = RoutePolicy(allowed_roles=frozenset({UserRole.ADMIN}))
PENDING_MFA = RoutePolicy(mfa_pending=True)


ROUTE_POLICIES: dict[tuple[str, str], RoutePolicy] = {
    # Health
    ("GET", "/health"): PUBLIC,
    # Registration and verification
    ("POST", "/auth/register"): PUBLIC,
    ("POST", "/auth/verify-otp"): PUBLIC,
    ("POST", "/auth/send-otp"): PUBLIC,
    ("POST", "/auth/resend-otp"): PUBLIC,
    ("GET", "/auth/otp-status/{email}"): PUBLIC,
    # Password reset
    ("POST", "/auth/forgot-password"): PUBLIC,
    ("POST", "/auth/reset-password"): PUBLIC,
    # Sessions
    ("POST", "/auth/login"): PUBLIC,
    ("POST", "/auth/refresh"): PUBLIC,
    ("POST", "/auth/logout"): OPTIONAL,
    ("GET", "/auth/me"): AUTHENTICATED,
    # Second factor
    ("POST", "/auth/mfa/setup"): AUTHENTICATED,
    ("POST", "/auth/mfa/activate"): AUTHENTICATED,
    ("POST", "/auth/mfa/backup-codes"): AUTHENTICATED,
    ("POST", "/auth/mfa/disable"): AUTHENTICATED,
    ("POST", "/auth/mfa/verify-login"): PENDING_MFA,
    # Operator audit trail
    ("GET", "/admin/audit-logs"): ADMIN_ONLY,
}


def policy_for(method: str, path: str) -> RoutePolicy:
    """Look up the policy for a route, defaulting to authenticated."""
    return ROUTE_POLICIES.get((method.upper(), path), AUTHENTICATED)
