from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.constants.errors import CloudStorageErrorType
from app.constants.recovery import RecoveryStrategy

from .base import Base, timestamp_column
from .decorators.types import EnumStringType


class RecoveryAttempt(Base):
    """Outcome of one automatic recovery run."""

    __tablename__ = "recovery_attempts"

    user_id: Mapped[int] = mapped_column(sa.ForeignKey("users.id"), nullable=False)
    provider: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    strategy: Mapped[RecoveryStrategy] = mapped_column(EnumStringType(RecoveryStrategy), nullable=False)
    error_type: Mapped[CloudStorageErrorType | None] = mapped_column(
        EnumStringType(CloudStorageErrorType, missing_fails_on_load=False), nullable=True
    )
    successful: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)
    message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = timestamp_column(nullable=False, server_default=sa.func.now())

    __table_args__ = (sa.Index("ix_recovery_attempts_user_provider_created", "user_id", "provider", "created_at"),)

    def __repr__(self) -> str:
        return f"<RecoveryAttempt(user_id={self.user_id}, strategy='{self.strategy.value}', ok={self.successful})>"
