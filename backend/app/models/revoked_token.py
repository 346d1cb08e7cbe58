"""Revoked bearer tokens - survives process restarts."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.base import UTCDateTime, utcnow


class RevokedToken(Base):
    """A token invalidated before its natural expiry (e.g. on logout).

    Keyed by the SHA-256 digest of the raw token string. ``expires_at`` is
    copied from the token's own ``exp`` claim; once it has passed the token
    fails signature-expiry validation anyway, so the row can be purged.
    """

    __tablename__ = "revoked_tokens"

    token_digest: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    revoked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<RevokedToken {self.token_digest[:12]} until {self.expires_at.isoformat()}>"
