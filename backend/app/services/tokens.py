"""Token service - JWT issuance, validation and revocation.

Validation of a token that was never revoked is a pure signature/expiry
check plus one lookup; revocation is an exception list (``revoked_tokens``)
rather than a session table. A small in-process cache of revoked digests
sits in front of the table and is only ever a positive accelerator: a miss
always falls through to the database.
"""

import hashlib
import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt
from jwt.exceptions import PyJWTError
from sqlalchemy import delete, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.models.revoked_token import RevokedToken
from app.models.user import User, UserRole
from app.services.credential_store import CredentialStore
from app.services.errors import InvalidTokenError

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class Identity:
    """The subject asserted by a validated token."""

    user_id: UUID
    email: str
    role: UserRole
    token: str | None = None
    mfa_pending: bool = False

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.id, email=user.email, role=UserRole(user.role))


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


# --- In-memory revocation cache ---
# digest -> token expiry (unix timestamp). Entries drop out once the token
# would be rejected on expiry anyway.
_revoked_cache: dict[str, float] = {}
_revoked_cache_lock = threading.Lock()


def _cache_revoked(digest: str, exp: float) -> None:
    with _revoked_cache_lock:
        _revoked_cache[digest] = exp


def _is_cached_revoked(digest: str) -> bool:
    with _revoked_cache_lock:
        exp = _revoked_cache.get(digest)
        if exp is None:
            return False
        if time.time() > exp:
            del _revoked_cache[digest]
            return False
        return True


def cleanup_expired_revocation_cache() -> int:
    """Remove expired entries from the in-memory cache. Returns count removed."""
    now = time.time()
    with _revoked_cache_lock:
        expired = [d for d, exp in _revoked_cache.items() if now > exp]
        for d in expired:
            del _revoked_cache[d]
        return len(expired)


def clear_revocation_cache() -> None:
    with _revoked_cache_lock:
        _revoked_cache.clear()


def token_digest(token: str) -> str:
    """Storage key for a raw token string."""
    return hashlib.sha256(token.encode()).hexdigest()


def create_token(
    identity: Identity,
    token_type: str,
    lifetime: timedelta,
    cfg: Settings,
    *,
    mfa_pending: bool = False,
    now: datetime | None = None,
) -> str:
    """Sign a token for ``identity``.

    Every token gets a random ``jti`` so two tokens minted in the same second
    for the same user are still distinct strings.
    """
    issued_at = now or datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": str(identity.user_id),
        "email": identity.email,
        "role": identity.role.value,
        "type": token_type,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "jti": secrets.token_hex(16),
    }
    if mfa_pending:
        payload["mfa"] = True
    token = jwt.encode(payload, cfg.effective_jwt_secret_key, algorithm=cfg.jwt_algorithm)
    # PyJWT 2.x returns str; older type stubs may declare bytes
    return str(token)


def decode_token(token: str, cfg: Settings) -> dict[str, Any]:
    """Verify signature and expiry.

    Expired, tampered and malformed tokens all raise the same
    ``InvalidTokenError``; the underlying reason is only logged.
    """
    try:
        return jwt.decode(
            token,
            cfg.effective_jwt_secret_key,
            algorithms=[cfg.jwt_algorithm],
            options={"require": ["exp", "sub", "type"]},
        )
    except PyJWTError as e:
        logger.debug(f"Token rejected: {e}")
        raise InvalidTokenError() from e


def identity_from_claims(payload: dict[str, Any], token: str) -> Identity:
    try:
        return Identity(
            user_id=UUID(str(payload["sub"])),
            email=str(payload.get("email", "")),
            role=UserRole(payload.get("role")),
            token=token,
            mfa_pending=bool(payload.get("mfa", False)),
        )
    except (KeyError, ValueError) as e:
        raise InvalidTokenError() from e


class TokenService:
    """Mints, validates, refreshes and revokes bearer tokens."""

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.store = store
        self.settings = settings
        self.clock = clock
        self.access_lifetime = timedelta(minutes=settings.jwt_access_token_expire_minutes)
        self.refresh_lifetime = timedelta(days=settings.jwt_refresh_token_expire_days)
        self.pending_lifetime = timedelta(minutes=settings.jwt_mfa_pending_expire_minutes)

    @property
    def session(self) -> AsyncSession:
        return self.store.session

    # --- Issuance ---

    def issue_access_token(self, identity: Identity) -> str:
        return create_token(identity, ACCESS, self.access_lifetime, self.settings, now=self.clock())

    def issue_refresh_token(self, identity: Identity) -> str:
        return create_token(identity, REFRESH, self.refresh_lifetime, self.settings, now=self.clock())

    def issue_pending_mfa_token(self, identity: Identity) -> str:
        """Short-lived token accepted only by the step-up login endpoint."""
        return create_token(
            identity,
            ACCESS,
            self.pending_lifetime,
            self.settings,
            mfa_pending=True,
            now=self.clock(),
        )

    def issue_pair(self, identity: Identity) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(identity),
            refresh_token=self.issue_refresh_token(identity),
            expires_in=int(self.access_lifetime.total_seconds()),
        )

    # --- Validation ---

    def decode(self, token: str, expected_type: str = ACCESS, mfa_pending: bool = False) -> Identity:
        """Validate ``token`` and return its identity.

        A pending-MFA token is only accepted when ``mfa_pending`` is set, and
        a full token only when it is not.
        """
        payload = decode_token(token, self.settings)
        if payload.get("type") != expected_type:
            raise InvalidTokenError()
        identity = identity_from_claims(payload, token)
        if identity.mfa_pending != mfa_pending:
            raise InvalidTokenError()
        return identity

    async def refresh(self, refresh_token: str) -> tuple[TokenPair, User]:
        """Mint a new pair from a refresh token, reloading the user.

        The presented refresh token stays valid until it expires or is revoked.
        """
        identity = self.decode(refresh_token, REFRESH)
        if await self.is_revoked(refresh_token):
            raise InvalidTokenError()

        user = await self.store.get_by_id(identity.user_id)
        if user is None:
            raise InvalidTokenError()

        return self.issue_pair(Identity.from_user(user)), user

    # --- Revocation ---

    async def revoke(self, raw_token: str, user_id: UUID | None = None) -> None:
        """Add a token to the revocation list until its own expiry.

        Only a structural decode is done here; the caller decides whether
        the signature had to be valid.

        Raises:
            InvalidTokenError: token has no decodable ``exp`` claim
        """
        try:
            claims = jwt.decode(raw_token, options={"verify_signature": False, "verify_exp": False})
            exp = float(claims["exp"])
        except (PyJWTError, KeyError, TypeError, ValueError) as e:
            raise InvalidTokenError() from e

        digest = token_digest(raw_token)
        expires_at = datetime.fromtimestamp(exp, tz=UTC)

        existing = await self.session.get(RevokedToken, digest)
        if existing is None:
            self.session.add(
                RevokedToken(
                    token_digest=digest,
                    user_id=user_id,
                    expires_at=expires_at,
                    revoked_at=self.clock(),
                )
            )
            try:
                await self.session.commit()
            except IntegrityError:
                # Revoked concurrently by another request
                await self.session.rollback()

        _cache_revoked(digest, exp)

    async def is_revoked(self, raw_token: str) -> bool:
        digest = token_digest(raw_token)
        if _is_cached_revoked(digest):
            return True

        result = await self.session.execute(
            select(RevokedToken.expires_at).where(
                RevokedToken.token_digest == digest,
                RevokedToken.expires_at > self.clock(),
            )
        )
        expires_at = result.scalar_one_or_none()
        if expires_at is None:
            return False

        _cache_revoked(digest, expires_at.timestamp())
        return True


async def cleanup_expired_revocations(db: AsyncSession) -> int:
    """Remove expired entries from the revocation list. Returns count removed."""
    now = datetime.now(UTC)
    result: CursorResult[Any] = await db.execute(  # type: ignore[assignment]
        delete(RevokedToken).where(RevokedToken.expires_at <= now)
    )
    cleanup_expired_revocation_cache()
    return result.rowcount
