"""Single-use MFA backup codes."""

from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel


class MFABackupCode(BaseModel):
    """One backup code belonging to a user.

    Only the SHA-256 digest of the code is stored. Consuming a code deletes
    its row, so a code can match at most once.
    """

    __tablename__ = "mfa_backup_codes"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    user = relationship("User", back_populates="backup_codes")

    __table_args__ = (UniqueConstraint("user_id", "code_hash", name="uq_mfa_backup_codes_user_code"),)

    def __repr__(self) -> str:
        return f"<MFABackupCode user={self.user_id} #{self.position}>"
