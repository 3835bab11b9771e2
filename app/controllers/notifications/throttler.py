import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from app.cache import CacheService
from app.constants.notifications import NotificationType
from settings import settings


def throttle_key(user_id: int, provider: str, notification_type: NotificationType) -> str:
    return f"notification_throttle_{user_id}_{provider}_{notification_type.value}"


def failure_key(user_id: int, provider: str, notification_type: NotificationType) -> str:
    return f"notification_failure_{user_id}_{provider}_{notification_type.value}"


class NotificationThrottler:
    """
    Per (user, provider, notification type) cool-down, kept in Redis.

    Every key carries all three parts so a send for one provider or type never suppresses another.
    """

    def __init__(self, cache: CacheService) -> None:
        self._logger = logging.getLogger(__name__)
        self._cache = cache

    async def should_send(self, user_id: int, provider: str, notification_type: NotificationType) -> bool:
        last_sent = await self._cache.get(throttle_key(user_id, provider, notification_type))
        if last_sent is not None:
            self._logger.info(
                f"Notification {notification_type.value} throttled for user_id={user_id} provider={provider}, "
                f"last sent at {last_sent}"
            )
            return False
        return True

    async def record_sent(
        self, user_id: int, provider: str, notification_type: NotificationType, now: datetime | None = None
    ) -> None:
        sent_at = now or datetime.now(UTC)
        await self._cache.set(
            throttle_key(user_id, provider, notification_type),
            sent_at.isoformat(),
            int(notification_type.cooldown.total_seconds()),
        )

    async def claim(
        self, user_id: int, provider: str, notification_type: NotificationType, now: datetime | None = None
    ) -> bool:
        """
        Atomically reserve the send slot for this cool-down window.

        Only one caller across processes gets `True`; it must `release` the slot if delivery then fails.
        """
        sent_at = now or datetime.now(UTC)
        claimed = await self._cache.set_if_absent(
            throttle_key(user_id, provider, notification_type),
            sent_at.isoformat(),
            int(notification_type.cooldown.total_seconds()),
        )
        if not claimed:
            self._logger.info(
                f"Notification {notification_type.value} throttled for user_id={user_id} provider={provider}"
            )
        return claimed

    async def release(self, user_id: int, provider: str, notification_type: NotificationType) -> None:
        await self._cache.delete(throttle_key(user_id, provider, notification_type))

    async def clear(self, user_id: int, provider: str, notification_type: NotificationType | None = None) -> None:
        types = [notification_type] if notification_type else list(NotificationType)
        await self._cache.delete(*(throttle_key(user_id, provider, t) for t in types))

    async def record_failure(self, user_id: int, provider: str, notification_type: NotificationType) -> int:
        """Count one failed delivery; returns the number of consecutive failures in the current window."""
        return await self._cache.incr(
            failure_key(user_id, provider, notification_type), settings.notifications.failure_counter_ttl
        )

    async def reset_failures(self, user_id: int, provider: str, notification_type: NotificationType) -> None:
        await self._cache.delete(failure_key(user_id, provider, notification_type))

    async def status(self, user_id: int, provider: str) -> dict[str, dict[str, Any]]:
        result: dict[str, dict[str, Any]] = {}
        for notification_type in NotificationType:
            last_sent = await self._cache.get(throttle_key(user_id, provider, notification_type))
            last_sent_at = datetime.fromisoformat(last_sent) if last_sent else None
            throttled_until = last_sent_at + notification_type.cooldown if last_sent_at else None
            result[notification_type.value] = {
                "last_sent": last_sent_at.isoformat() if last_sent_at else None,
                "can_send": last_sent_at is None,
                "throttled_until": throttled_until.isoformat() if throttled_until else None,
                "cooldown_hours": notification_type.cooldown / timedelta(hours=1),
            }
        return result
