from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, timestamp_column

if TYPE_CHECKING:
    from app.controllers.interfaces import TokenGrant
    from app.utils.crypto import TokenCipher


class TokenRecord(Base, TimestampMixin):
    """OAuth credentials for one user/provider pair. Secrets are stored encrypted."""

    __tablename__ = "cloud_storage_tokens"

    user_id: Mapped[int] = mapped_column(sa.ForeignKey("users.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    access_token: Mapped[str] = mapped_column(sa.Text, nullable=False, comment="Encrypted access token")
    refresh_token: Mapped[str | None] = mapped_column(sa.Text, nullable=True, comment="Encrypted refresh token")
    expires_at: Mapped[datetime | None] = timestamp_column()
    refresh_failure_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    requires_user_intervention: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    last_refresh_attempt_at: Mapped[datetime | None] = timestamp_column()
    last_successful_refresh_at: Mapped[datetime | None] = timestamp_column()
    last_notification_sent_at: Mapped[datetime | None] = timestamp_column()
    proactive_refresh_scheduled_at: Mapped[datetime | None] = timestamp_column()

    __table_args__ = (sa.UniqueConstraint("user_id", "provider", name="uq_cloud_storage_tokens_user_provider"),)

    @classmethod
    def from_grant(cls, user_id: int, provider: str, grant: "TokenGrant", cipher: "TokenCipher") -> "TokenRecord":
        """Build the record created by a successful OAuth exchange (or a reconnection)."""
        record = cls(
            user_id=user_id,
            provider=provider,
            access_token="",
            refresh_token=None,
            refresh_failure_count=0,
            requires_user_intervention=False,
        )
        record.apply_grant(grant, cipher)
        return record

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))

    def expires_within(self, threshold: timedelta, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC)) + threshold

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def apply_grant(self, grant: "TokenGrant", cipher: "TokenCipher", now: datetime | None = None) -> None:
        now = now or datetime.now(UTC)
        self.access_token = cipher.encrypt(grant.access_token)
        if grant.refresh_token:
            self.refresh_token = cipher.encrypt(grant.refresh_token)
        self.expires_at = now + timedelta(seconds=grant.expires_in) if grant.expires_in else None

    def mark_refresh_attempt(self, now: datetime | None = None) -> None:
        self.last_refresh_attempt_at = now or datetime.now(UTC)

    def mark_refresh_success(self, now: datetime | None = None) -> None:
        # Only a reconnection (from_grant) clears requires_user_intervention.
        now = now or datetime.now(UTC)
        self.refresh_failure_count = 0
        self.last_successful_refresh_at = now
        self.proactive_refresh_scheduled_at = None

    def mark_refresh_failure(self, requires_user_intervention: bool) -> None:
        self.refresh_failure_count = (self.refresh_failure_count or 0) + 1
        if requires_user_intervention:
            self.requires_user_intervention = True

    def __repr__(self) -> str:
        return f"<TokenRecord(user_id={self.user_id}, provider='{self.provider}', expires_at={self.expires_at})>"
