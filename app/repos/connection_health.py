from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, func
from sqlalchemy.dialects.postgresql import insert

from app.constants.health import ConnectionState
from app.models import ConnectionHealthRecord
from app.repos.base import BaseRepo

UPSERT_COLUMNS = (
    "status",
    "consolidated_status",
    "consecutive_failures",
    "last_error_type",
    "last_error_message",
    "last_error_context",
    "requires_reconnection",
    "token_expires_at",
    "last_successful_operation_at",
    "last_live_validation_at",
    "live_validation_result",
    "api_connectivity_last_tested_at",
    "api_connectivity_result",
    "provider_specific_data",
)


class ConnectionHealthRepo(BaseRepo[ConnectionHealthRecord]):
    """Repository for ConnectionHealthRecord model operations."""

    def __init__(self) -> None:
        super().__init__(ConnectionHealthRecord)

    async def get_by_user_and_provider(self, user_id: int, provider: str) -> ConnectionHealthRecord | None:
        result = await self.execute(
            self.base_stmt.where(
                ConnectionHealthRecord.user_id == user_id, ConnectionHealthRecord.provider == provider
            )
        )
        return result.one_or_none()

    async def get_or_build(self, user_id: int, provider: str) -> ConnectionHealthRecord:
        """The stored record, or an unsaved one with defaults applied."""
        record = await self.get_by_user_and_provider(user_id, provider)
        return record if record is not None else ConnectionHealthRecord.build(user_id, provider)

    async def upsert(self, record: ConnectionHealthRecord) -> ConnectionHealthRecord:
        """Insert or update the single record for the record's (user, provider) pair."""
        values = {column: getattr(record, column) for column in UPSERT_COLUMNS}
        if values["provider_specific_data"] is None:
            values["provider_specific_data"] = {}
        if values["status"] is None:
            values["status"] = ConnectionState.healthy

        stmt = insert(ConnectionHealthRecord).values(user_id=record.user_id, provider=record.provider, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "provider"],
            set_={**values, "updated_at": func.now()},
        )

        await self.execute_statement(stmt)
        await self.flush()

        result = await self.execute(
            self.base_stmt.where(
                ConnectionHealthRecord.user_id == record.user_id,
                ConnectionHealthRecord.provider == record.provider,
            ).execution_options(populate_existing=True)
        )
        health = result.one_or_none()
        if health is None:
            raise ValueError(f"Failed to create/update connection health for {record.user_id}/{record.provider}")
        await self.commit()
        return health

    async def get_all(self, provider: str | None = None) -> Sequence[ConnectionHealthRecord]:
        query = self.base_stmt
        if provider:
            query = query.where(ConnectionHealthRecord.provider == provider)
        return await self.all(query.order_by(ConnectionHealthRecord.id))

    async def get_unhealthy(self, min_failures: int) -> Sequence[ConnectionHealthRecord]:
        """Connections with at least `min_failures` consecutive failures that still await reconnection."""
        return await self.all(
            self.base_stmt.where(
                ConnectionHealthRecord.consecutive_failures >= min_failures,
                ConnectionHealthRecord.requires_reconnection.is_(True),
            ).order_by(ConnectionHealthRecord.id)
        )

    async def cleanup_older_than(self, cutoff: datetime) -> int:
        """Delete healthy records untouched since `cutoff`; unhealthy history is kept."""
        result = await self.execute_statement(
            delete(ConnectionHealthRecord).where(
                ConnectionHealthRecord.updated_at < cutoff,
                ConnectionHealthRecord.status == ConnectionState.healthy,
            ),
            commit=True,
        )
        return int(result.rowcount or 0)
