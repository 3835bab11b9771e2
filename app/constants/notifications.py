from datetime import timedelta
from enum import Enum


class NotificationType(Enum):
    token_expired = "token_expired"
    refresh_failure = "refresh_failure"
    connection_restored = "connection_restored"
    unhealthy_connection = "unhealthy_connection"
    token_expiring = "token_expiring"
    notification_failure_alert = "notification_failure_alert"

    @property
    def cooldown(self) -> timedelta:
        return _COOLDOWNS[self]


_COOLDOWNS = {
    NotificationType.token_expired: timedelta(hours=24),
    NotificationType.refresh_failure: timedelta(hours=6),
    NotificationType.connection_restored: timedelta(hours=1),
    NotificationType.unhealthy_connection: timedelta(hours=12),
    NotificationType.token_expiring: timedelta(hours=6),
    NotificationType.notification_failure_alert: timedelta(hours=1),
}
