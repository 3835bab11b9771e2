from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConnectionState, ConsolidatedStatus

from .base import Base, TimestampMixin, timestamp_column
from .decorators.types import EnumStringType

RECONNECTION_ERROR_TYPES = frozenset(
    {
        CloudStorageErrorType.TOKEN_EXPIRED,
        CloudStorageErrorType.INVALID_CREDENTIALS,
        CloudStorageErrorType.INSUFFICIENT_PERMISSIONS,
    }
)


class ConnectionHealthRecord(Base, TimestampMixin):
    """Model for tracking connection health per user/provider combination."""

    __tablename__ = "cloud_storage_health_statuses"

    user_id: Mapped[int] = mapped_column(sa.ForeignKey("users.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    status: Mapped[ConnectionState] = mapped_column(
        EnumStringType(ConnectionState), nullable=False, default=ConnectionState.healthy
    )
    consolidated_status: Mapped[ConsolidatedStatus | None] = mapped_column(
        EnumStringType(ConsolidatedStatus), nullable=True
    )
    consecutive_failures: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    last_error_type: Mapped[CloudStorageErrorType | None] = mapped_column(
        EnumStringType(CloudStorageErrorType, missing_fails_on_load=False), nullable=True
    )
    last_error_message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    last_error_context: Mapped[dict[str, Any] | None] = mapped_column(JSONB(), nullable=True)
    requires_reconnection: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    token_expires_at: Mapped[datetime | None] = timestamp_column()
    last_successful_operation_at: Mapped[datetime | None] = timestamp_column()
    last_live_validation_at: Mapped[datetime | None] = timestamp_column()
    live_validation_result: Mapped[dict[str, Any] | None] = mapped_column(JSONB(), nullable=True)
    api_connectivity_last_tested_at: Mapped[datetime | None] = timestamp_column()
    api_connectivity_result: Mapped[dict[str, Any] | None] = mapped_column(JSONB(), nullable=True)
    provider_specific_data: Mapped[dict[str, Any]] = mapped_column(
        JSONB(), nullable=False, default=dict, server_default=sa.text("'{}'")
    )

    __table_args__ = (sa.UniqueConstraint("user_id", "provider", name="uq_health_statuses_user_provider"),)

    @classmethod
    def build(cls, user_id: int, provider: str) -> "ConnectionHealthRecord":
        """A fresh record with every default applied, before it is ever persisted."""
        return cls(
            user_id=user_id,
            provider=provider,
            status=ConnectionState.healthy,
            consolidated_status=None,
            consecutive_failures=0,
            requires_reconnection=False,
            provider_specific_data={},
        )

    def apply_failure(
        self,
        error_type: CloudStorageErrorType,
        error_message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Record one failed operation; status escalates only through the failure count."""
        self.consecutive_failures = (self.consecutive_failures or 0) + 1
        self.status = ConnectionState.from_failures(self.consecutive_failures)
        self.last_error_type = error_type
        self.last_error_message = error_message
        self.last_error_context = context
        self.requires_reconnection = error_type in RECONNECTION_ERROR_TYPES

    def apply_success(self, provider_data: dict[str, Any] | None = None, now: datetime | None = None) -> None:
        self.consecutive_failures = 0
        self.status = ConnectionState.healthy
        self.last_error_type = None
        self.last_error_message = None
        self.last_error_context = None
        self.requires_reconnection = False
        self.last_successful_operation_at = now or datetime.now(UTC)
        if provider_data:
            self.provider_specific_data = {**(self.provider_specific_data or {}), **provider_data}

    def __repr__(self) -> str:
        return (
            f"<ConnectionHealthRecord(user_id={self.user_id}, provider='{self.provider}', "
            f"status='{self.status.value}', failures={self.consecutive_failures})>"
        )
