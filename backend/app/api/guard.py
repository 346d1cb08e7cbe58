"""Auth guard - the single enforcement point for every API route.

Installed as an application-wide dependency. For each request it looks up
the route's policy and then runs, in order:

    extract_bearer_token -> decode -> check_revocation -> attach -> authorize_role

Every rejection is audited before the error propagates.
"""

import logging

from fastapi import Depends, Request

from app.api.deps import get_token_service
from app.api.policies import RoutePolicy, policy_for
from app.core.request_utils import get_client_ip, get_request_path
from app.services.audit import AuditEvent, AuditService, get_audit_service
from app.services.errors import (
    ForbiddenError,
    InvalidTokenError,
    TokenRevokedError,
    UnauthorizedError,
)
from app.services.tokens import ACCESS, Identity, TokenService

logger = logging.getLogger(__name__)


def route_policy(request: Request) -> RoutePolicy:
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    return policy_for(request.method, path)


def extract_bearer_token(request: Request) -> str | None:
    """Return the token from ``Authorization: Bearer <token>``, if any."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def check_revocation(identity: Identity, tokens: TokenService) -> Identity:
    if identity.token and await tokens.is_revoked(identity.token):
        raise TokenRevokedError()
    return identity


def attach_identity(request: Request, identity: Identity) -> Identity:
    request.state.identity = identity
    return identity


def authorize_role(identity: Identity, policy: RoutePolicy) -> None:
    if policy.allowed_roles is not None and identity.role not in policy.allowed_roles:
        raise ForbiddenError()


async def auth_guard(
    request: Request,
    tokens: TokenService = Depends(get_token_service),
    audit: AuditService = Depends(get_audit_service),
) -> Identity | None:
    """Authenticate and authorize the request according to its route policy.

    Returns the caller's identity, or None for public routes and for
    optional routes called without credentials.
    """
    request.state.identity = None
    policy = route_policy(request)
    if policy.public:
        return None

    client_ip = get_client_ip(request)
    context = {"method": request.method, "path": get_request_path(request)}

    token = extract_bearer_token(request)
    if token is None:
        if policy.optional and "authorization" not in request.headers:
            return None
        await audit.log(
            AuditEvent.UNAUTHORIZED_ACCESS,
            details={"reason": "NO_USER", **context},
            actor_ip=client_ip,
        )
        raise UnauthorizedError("Authentication required")

    try:
        identity = tokens.decode(token, ACCESS, mfa_pending=policy.mfa_pending)
    except InvalidTokenError:
        await audit.log(
            AuditEvent.UNAUTHORIZED_ACCESS,
            details={"reason": "TOKEN_INVALID", **context},
            actor_ip=client_ip,
        )
        raise

    try:
        await check_revocation(identity, tokens)
    except TokenRevokedError:
        await audit.log(
            AuditEvent.UNAUTHORIZED_ACCESS,
            identity.user_id,
            {"reason": "BLACKLISTED_TOKEN", **context},
            actor_ip=client_ip,
        )
        raise

    attach_identity(request, identity)

    try:
        authorize_role(identity, policy)
    except ForbiddenError:
        await audit.log(
            AuditEvent.RBAC_DENIED,
            identity.user_id,
            {
                "role": identity.role.value,
                "allowed_roles": sorted(r.value for r in policy.allowed_roles or ()),
                **context,
            },
            actor_ip=client_ip,
        )
        raise

    return identity


async def get_identity(identity: Identity | None = Depends(auth_guard)) -> Identity:
    """Dependency for handlers that always need a caller."""
    if identity is None:
        raise UnauthorizedError("Authentication required")
    return identity


async def get_optional_identity(identity: Identity | None = Depends(auth_guard)) -> Identity | None:
    return identity
