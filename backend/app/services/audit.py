"""Security Audit Logging Service.

Logs security-relevant events for operators:
- Registration, verification and one-time code delivery
- Login success/failure and logout
- Token revocation and rejected requests
- MFA state changes

Audit writes use their own session so that a request which is about to be
rejected (and rolled back) still leaves its audit row behind. Writing is
best-effort: a failure is logged and never replaces the caller's outcome.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditEvent(str, Enum):
    """Security audit event types."""

    # Registration and verification
    USER_REGISTERED = "USER_REGISTERED"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    OTP_SENT = "OTP_SENT"
    OTP_SEND_FAILED = "OTP_SEND_FAILED"
    OTP_VERIFY_FAILED = "OTP_VERIFY_FAILED"

    # Sessions
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    TOKEN_BLACKLISTED = "TOKEN_BLACKLISTED"

    # Password reset
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"

    # Second factor
    MFA_SETUP_STARTED = "MFA_SETUP_STARTED"
    MFA_ENABLED = "MFA_ENABLED"
    MFA_ACTIVATION_FAILED = "MFA_ACTIVATION_FAILED"
    MFA_DISABLED = "MFA_DISABLED"
    MFA_BACKUP_CODES_REGENERATED = "MFA_BACKUP_CODES_REGENERATED"

    # Access control
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    RBAC_DENIED = "RBAC_DENIED"


_WARNING_EVENTS = {
    AuditEvent.LOGIN_FAILED,
    AuditEvent.OTP_SEND_FAILED,
    AuditEvent.OTP_VERIFY_FAILED,
    AuditEvent.UNAUTHORIZED_ACCESS,
    AuditEvent.RBAC_DENIED,
}

SENSITIVE_KEYS = {
    "password",
    "secret",
    "token",
    "otp",
    "code",
    "backup",
    "authorization",
}


class AuditService:
    """Service for writing and reading security audit events."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def log(
        self,
        event: AuditEvent,
        user_id: UUID | str | None = None,
        details: dict[str, Any] | None = None,
        actor_ip: str | None = None,
        level: str | None = None,
    ) -> AuditLog | None:
        """Record a security audit event.

        Args:
            event: The audit event type
            user_id: Actor, when known
            details: Additional context (sensitive keys are redacted)
            actor_ip: IP address of the actor
            level: Log level override (info, warning, error)

        Returns:
            The stored entry, or None if it could not be written
        """
        level = level or ("warning" if event in _WARNING_EVENTS else "info")
        safe_details = self._sanitize_details(details or {})
        actor = _coerce_uuid(user_id)

        logger.log(
            logging.WARNING if level == "warning" else logging.INFO,
            "audit %s user=%s details=%s",
            event.value,
            actor,
            safe_details,
        )

        try:
            async with self._session_factory() as session:
                entry = AuditLog(
                    user_id=actor,
                    event=event.value,
                    level=level,
                    actor_ip=actor_ip,
                    details=safe_details,
                )
                session.add(entry)
                await session.commit()
                return entry
        except Exception:
            logger.exception(f"Failed to write audit event {event.value}")
            return None

    def _sanitize_details(self, details: dict[str, Any]) -> dict[str, Any]:
        """Remove sensitive data from audit details.

        Redacts passwords, tokens, one-time codes, MFA secrets, etc.
        """
        sanitized: dict[str, Any] = {}
        for key, value in details.items():
            key_lower = key.lower()
            if any(s in key_lower for s in SENSITIVE_KEYS):
                # Mark as redacted but indicate if value was set/unset
                if value is not None:
                    sanitized[key] = "[REDACTED - set]"
                else:
                    sanitized[key] = "[REDACTED - unset]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_details(value)
            elif isinstance(value, (str, int, float, bool)) or value is None:
                sanitized[key] = value
            else:
                sanitized[key] = str(value)

        return sanitized

    async def list_events(
        self,
        db: AsyncSession,
        *,
        event: str | None = None,
        user_id: UUID | None = None,
        level: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        """Page through audit events, newest first."""
        filters = []
        if event:
            filters.append(AuditLog.event == event)
        if user_id:
            filters.append(AuditLog.user_id == user_id)
        if level:
            filters.append(AuditLog.level == level)

        total = (
            await db.execute(select(func.count(AuditLog.id)).where(*filters))
        ).scalar() or 0
        result = await db.execute(
            select(AuditLog)
            .where(*filters)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def cleanup_older_than(self, days: int) -> int:
        """Delete audit events older than ``days``. Returns count removed."""
        cutoff = datetime.now(UTC) - timedelta(days=days)
        async with self._session_factory() as session:
            result: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                delete(AuditLog).where(AuditLog.created_at < cutoff)
            )
            await session.commit()
            return result.rowcount


def _coerce_uuid(value: UUID | str | None) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


# Dependency injection helper
_audit_service: AuditService | None = None


def get_audit_service() -> AuditService:
    """Get the audit service singleton bound to the application database."""
    global _audit_service
    if _audit_service is None:
        from app.core.database import async_session_maker

        _audit_service = AuditService(async_session_maker)
    return _audit_service
