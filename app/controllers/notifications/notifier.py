import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from app.constants.errors import CloudStorageErrorType, TokenRefreshErrorType
from app.constants.health import UNHEALTHY_FAILURE_THRESHOLD
from app.constants.notifications import NotificationType
from app.constants.providers import provider_display_name
from app.controllers.errors.classifier import to_cloud_storage_error
from app.controllers.interfaces import NotificationSink
from app.controllers.messages.catalog import ErrorMessageCatalog
from app.controllers.notifications.throttler import NotificationThrottler
from app.repos.connection_health import ConnectionHealthRepo
from app.repos.token import TokenRepo
from app.repos.user import UserRepo
from settings import settings


class ConnectionNotifier:
    """Sends throttled connection notifications and escalates repeated delivery failures to admins."""

    def __init__(
        self,
        throttler: NotificationThrottler,
        sink: NotificationSink,
        user_repo: UserRepo,
        token_repo: TokenRepo,
        connection_health_repo: ConnectionHealthRepo,
        catalog: ErrorMessageCatalog,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._throttler = throttler
        self._sink = sink
        self._user_repo = user_repo
        self._token_repo = token_repo
        self._connection_health_repo = connection_health_repo
        self._catalog = catalog

    async def send_token_expired(self, user_id: int, provider: str) -> bool:
        payload = self._base_payload(provider)
        payload["message"] = self._catalog.actionable_message(
            CloudStorageErrorType.TOKEN_EXPIRED, {"provider": provider}
        )
        return await self._deliver(user_id, provider, NotificationType.token_expired, payload)

    async def send_refresh_failure(
        self, user_id: int, provider: str, error_type: TokenRefreshErrorType, attempt_count: int
    ) -> bool:
        cloud_error_type = to_cloud_storage_error(error_type)
        payload = self._base_payload(provider)
        payload.update(
            {
                "error_type": error_type.value,
                "attempt_count": attempt_count,
                "requires_user_intervention": error_type.requires_user_intervention,
                "message": self._catalog.actionable_message(cloud_error_type, {"provider": provider}),
                "instructions": self._catalog.recovery_instructions(cloud_error_type, {"provider": provider}),
            }
        )
        return await self._deliver(user_id, provider, NotificationType.refresh_failure, payload)

    async def send_connection_restored(self, user_id: int, provider: str) -> bool:
        payload = self._base_payload(provider)
        payload["message"] = f"Your {payload['provider_name']} connection has been restored."
        return await self._deliver(user_id, provider, NotificationType.connection_restored, payload)

    async def send_unhealthy_connection(
        self,
        user_id: int,
        provider: str,
        consecutive_failures: int,
        error_type: CloudStorageErrorType | None = None,
    ) -> bool:
        payload = self._base_payload(provider)
        payload.update(
            {
                "consecutive_failures": consecutive_failures,
                "multiple_failures": consecutive_failures >= UNHEALTHY_FAILURE_THRESHOLD,
                "error_type": error_type.value if error_type else None,
                "message": self._catalog.status_display_message(
                    "connection_issues",
                    {"provider": provider, "error_type": error_type},
                ),
            }
        )
        return await self._deliver(user_id, provider, NotificationType.unhealthy_connection, payload)

    async def send_token_expiring(self, user_id: int, provider: str, expires_at: datetime) -> bool:
        payload = self._base_payload(provider)
        payload.update(
            {
                "expires_at": expires_at.isoformat(),
                "message": (
                    f"Your {payload['provider_name']} connection expires soon and will be renewed automatically."
                ),
            }
        )
        return await self._deliver(user_id, provider, NotificationType.token_expiring, payload)

    async def handle_token_refresh_failure(
        self, user_id: int, provider: str, error_type: TokenRefreshErrorType, attempt_count: int
    ) -> bool:
        """
        Decide whether a refresh failure is worth telling the user about yet.

        Errors that need the user notify at once. Recoverable errors wait until their retries run out.
        """
        self._logger.info(
            f"Handling refresh failure notification for user_id={user_id} provider={provider} "
            f"({error_type.value}, attempt {attempt_count})"
        )
        if error_type.should_notify_immediately:
            if error_type == TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN:
                return await self.send_token_expired(user_id, provider)
            return await self.send_refresh_failure(user_id, provider, error_type, attempt_count)

        if error_type.is_recoverable and attempt_count < error_type.max_retry_attempts:
            self._logger.info(
                f"Recoverable refresh error for user_id={user_id} provider={provider}, "
                f"not notifying before {error_type.max_retry_attempts} attempts"
            )
            return False

        return await self.send_refresh_failure(user_id, provider, error_type, attempt_count)

    async def notify_users_with_expiring_tokens(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        before = now + timedelta(hours=settings.notifications.expiring_token_lookahead_hours)
        sent = 0
        for token in await self._token_repo.get_expiring(before=before, after=now):
            if token.expires_at and await self.send_token_expiring(token.user_id, token.provider, token.expires_at):
                sent += 1
        self._logger.info(f"Sent {sent} expiring token notifications")
        return sent

    async def notify_users_with_unhealthy_connections(self) -> int:
        sent = 0
        records = await self._connection_health_repo.get_unhealthy(settings.notifications.unhealthy_failure_threshold)
        for record in records:
            if await self.send_unhealthy_connection(
                record.user_id, record.provider, record.consecutive_failures, record.last_error_type
            ):
                sent += 1
        self._logger.info(f"Sent {sent} unhealthy connection notifications")
        return sent

    async def _deliver(
        self, user_id: int, provider: str, notification_type: NotificationType, payload: dict[str, Any]
    ) -> bool:
        if not await self._throttler.claim(user_id, provider, notification_type):
            return False

        try:
            await self._sink.send(user_id, notification_type.value, payload)
        except Exception as e:
            self._logger.error(
                f"Failed to send {notification_type.value} notification to user_id={user_id} "
                f"provider={provider}: {e}"
            )
            await self._handle_failure(user_id, provider, notification_type, e)
            return False

        await self._throttler.reset_failures(user_id, provider, notification_type)
        await self._mark_token_notified(user_id, provider)
        self._logger.info(f"Sent {notification_type.value} notification to user_id={user_id} provider={provider}")
        return True

    async def _handle_failure(
        self, user_id: int, provider: str, notification_type: NotificationType, error: Exception
    ) -> None:
        try:
            await self._throttler.release(user_id, provider, notification_type)
            failures = await self._throttler.record_failure(user_id, provider, notification_type)
        except Exception as e:
            self._logger.error(
                f"Could not record notification failure for user_id={user_id} provider={provider} "
                f"type={notification_type.value}: {e}"
            )
            return

        self._logger.warning(
            f"Notification failure {failures} recorded for user_id={user_id} provider={provider} "
            f"type={notification_type.value}"
        )
        if failures >= settings.notifications.escalation_threshold:
            await self._escalate_to_admins(user_id, provider, notification_type, failures, error)

    async def _escalate_to_admins(
        self, user_id: int, provider: str, notification_type: NotificationType, failures: int, error: Exception
    ) -> None:
        try:
            admins = await self._user_repo.get_admins()
        except Exception as e:
            self._logger.error(f"Could not load admins for notification escalation: {e}")
            return

        if not admins:
            self._logger.critical(
                f"No admin users found for notification escalation (user_id={user_id}, provider={provider}, "
                f"type={notification_type.value}, failures={failures})"
            )
            return

        payload = {
            "user_id": user_id,
            "provider": provider,
            "notification_type": notification_type.value,
            "failure_count": failures,
            "error": str(error),
        }
        for admin in admins:
            try:
                await self._sink.send(admin.id, NotificationType.notification_failure_alert.value, payload)
                self._logger.info(f"Notification failure for user_id={user_id} escalated to admin_id={admin.id}")
            except Exception as e:
                self._logger.error(f"Failed to escalate notification failure to admin_id={admin.id}: {e}")

    async def _mark_token_notified(self, user_id: int, provider: str) -> None:
        try:
            token = await self._token_repo.get_by_user_and_provider(user_id, provider)
            if token is not None:
                token.last_notification_sent_at = datetime.now(UTC)
                await self._token_repo.save(token)
        except Exception as e:
            self._logger.warning(f"Could not record notification time for user_id={user_id} provider={provider}: {e}")

    @staticmethod
    def _base_payload(provider: str) -> dict[str, Any]:
        return {"provider": provider, "provider_name": provider_display_name(provider)}
