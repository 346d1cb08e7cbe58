"""AuditLog model - durable trail of security-relevant events."""

from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class AuditLog(BaseModel):
    """One security event, keyed by actor and timestamp (``created_at``)."""

    __tablename__ = "audit_logs"

    # NULL when the actor is unknown (e.g. failed login for an unknown email)
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    event: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    level: Mapped[str] = mapped_column(String(16), nullable=False, default="info")
    actor_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_audit_logs_user_event_created", "user_id", "event", "created_at"),
        Index("ix_audit_logs_event_created", "event", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.event} user={self.user_id}>"
