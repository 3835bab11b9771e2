from datetime import datetime
from typing import Sequence

from sqlalchemy import or_
from sqlalchemy.sql.selectable import Select

from app.constants.errors import CloudStorageErrorType
from app.models import PendingUpload, UploadStatus
from app.repos.base import BaseRepo


class PendingUploadRepo(BaseRepo[PendingUpload]):
    """Repository for uploads that have not reached cloud storage yet."""

    def __init__(self) -> None:
        super().__init__(PendingUpload)

    def retryable_stmt(
        self, user_id: int, provider: str, limit: int, max_attempts: int, retried_before: datetime
    ) -> Select[tuple[PendingUpload]]:
        """
        Pending uploads of one user/provider pair that may be retried now, oldest first.

        Uploads without an error or with a recoverable one qualify. Attempts and cool-down are filtered here too, so
        a page never fills up with rows `can_be_retried` would reject.
        """
        return (
            self.base_stmt.where(
                PendingUpload.user_id == user_id,
                PendingUpload.provider == provider,
                PendingUpload.status == UploadStatus.pending,
                PendingUpload.recovery_attempts < max_attempts,
                or_(
                    PendingUpload.cloud_storage_error_type.is_(None),
                    PendingUpload.cloud_storage_error_type.in_(CloudStorageErrorType.recoverable()),
                ),
                or_(
                    PendingUpload.last_recovery_attempt_at.is_(None),
                    PendingUpload.last_recovery_attempt_at <= retried_before,
                ),
            )
            .order_by(PendingUpload.created_at, PendingUpload.id)
            .limit(limit)
        )

    async def find_retryable(
        self, user_id: int, provider: str, limit: int, max_attempts: int, retried_before: datetime
    ) -> Sequence[PendingUpload]:
        return await self.all(self.retryable_stmt(user_id, provider, limit, max_attempts, retried_before))

    async def enqueue_retry(self, upload: PendingUpload, available_at: datetime, now: datetime) -> None:
        upload.mark_retry_queued(available_at, now)
        await self.flush()

    async def mark_failed(self, upload: PendingUpload, now: datetime) -> None:
        upload.mark_failed(now)
        await self.flush()

    async def last_error_type_for(self, user_id: int, provider: str) -> CloudStorageErrorType | None:
        """Error type of the most recently failed upload, used as a fallback recovery hint."""
        query = (
            self.base_stmt.where(
                PendingUpload.user_id == user_id,
                PendingUpload.provider == provider,
                PendingUpload.cloud_storage_error_type.is_not(None),
            )
            .order_by(PendingUpload.updated_at.desc())
            .limit(1)
        )
        upload = (await self.execute(query)).first()
        return upload.cloud_storage_error_type if upload else None
