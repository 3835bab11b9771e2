from datetime import datetime

from sqlalchemy import func, select

from app.constants.errors import CloudStorageErrorType
from app.constants.recovery import RecoveryStrategy
from app.models import RecoveryAttempt
from app.repos.base import BaseRepo


class RecoveryAttemptRepo(BaseRepo[RecoveryAttempt]):
    """Repository for the recovery audit trail."""

    def __init__(self) -> None:
        super().__init__(RecoveryAttempt)

    async def record(
        self,
        user_id: int,
        provider: str,
        strategy: RecoveryStrategy,
        error_type: CloudStorageErrorType | None,
        successful: bool,
        message: str | None = None,
    ) -> RecoveryAttempt:
        attempt = RecoveryAttempt(
            user_id=user_id,
            provider=provider,
            strategy=strategy,
            error_type=error_type,
            successful=successful,
            message=message,
        )
        await self.add(attempt, commit=True)
        return attempt

    async def count_recent_failures(self, user_id: int, provider: str, since: datetime) -> int:
        query = select(func.count(RecoveryAttempt.id)).where(
            RecoveryAttempt.user_id == user_id,
            RecoveryAttempt.provider == provider,
            RecoveryAttempt.successful.is_(False),
            RecoveryAttempt.created_at >= since,
        )
        return int((await self.execute_statement(query)).scalar_one())
