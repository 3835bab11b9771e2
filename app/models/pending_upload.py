from datetime import UTC, datetime, timedelta
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.constants.errors import CloudStorageErrorType

from .base import Base, TimestampMixin, timestamp_column
from .decorators.types import EnumStringType


class UploadStatus(Enum):
    pending = "pending"
    retry_queued = "retry_queued"
    uploaded = "uploaded"
    failed = "failed"


class PendingUpload(Base, TimestampMixin):
    """A file waiting to reach cloud storage."""

    __tablename__ = "file_uploads"

    user_id: Mapped[int] = mapped_column(sa.ForeignKey("users.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    filename: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    local_path: Mapped[str | None] = mapped_column(sa.String(1000), nullable=True)
    status: Mapped[UploadStatus] = mapped_column(
        EnumStringType(UploadStatus), nullable=False, default=UploadStatus.pending
    )
    cloud_storage_error_type: Mapped[CloudStorageErrorType | None] = mapped_column(
        EnumStringType(CloudStorageErrorType, missing_fails_on_load=False), nullable=True
    )
    retry_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    recovery_attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    last_recovery_attempt_at: Mapped[datetime | None] = timestamp_column()
    retry_available_at: Mapped[datetime | None] = timestamp_column()

    __table_args__ = (sa.Index("ix_file_uploads_user_provider_status", "user_id", "provider", "status"),)

    @property
    def has_recoverable_error(self) -> bool:
        return self.cloud_storage_error_type is None or self.cloud_storage_error_type.is_recoverable

    def can_be_retried(self, max_attempts: int, cooldown: timedelta, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        if self.status != UploadStatus.pending or not self.has_recoverable_error:
            return False
        if (self.recovery_attempts or 0) >= max_attempts:
            return False
        return self.last_recovery_attempt_at is None or now - self.last_recovery_attempt_at >= cooldown

    def mark_retry_queued(self, available_at: datetime, now: datetime | None = None) -> None:
        self.status = UploadStatus.retry_queued
        self.recovery_attempts = (self.recovery_attempts or 0) + 1
        self.last_recovery_attempt_at = now or datetime.now(UTC)
        self.retry_available_at = available_at

    def mark_failed(self, now: datetime | None = None) -> None:
        self.status = UploadStatus.failed
        self.last_recovery_attempt_at = now or datetime.now(UTC)
        self.retry_available_at = None

    def __repr__(self) -> str:
        return f"<PendingUpload(id={self.id}, filename='{self.filename}', status='{self.status.value}')>"
