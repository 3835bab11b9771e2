import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConsolidatedStatus
from app.constants.recovery import RecoveryStrategy
from app.controllers.errors.classifier import ErrorClassifier
from app.controllers.health.status import HealthStatus
from app.controllers.health.validator import RealTimeHealthValidator
from app.controllers.messages.catalog import ErrorMessageCatalog
from app.controllers.notifications.notifier import ConnectionNotifier
from app.controllers.token.refresh_coordinator import TokenRefreshCoordinator
from app.repos.connection_health import ConnectionHealthRepo
from app.repos.pending_upload import PendingUploadRepo
from app.repos.recovery_attempt import RecoveryAttemptRepo
from app.repos.token import TokenRepo
from settings import settings

_STRATEGY_BY_ERROR_TYPE = {
    CloudStorageErrorType.TOKEN_EXPIRED: RecoveryStrategy.TOKEN_REFRESH,
    CloudStorageErrorType.INVALID_CREDENTIALS: RecoveryStrategy.TOKEN_REFRESH,
    CloudStorageErrorType.NETWORK_ERROR: RecoveryStrategy.NETWORK_RETRY,
    CloudStorageErrorType.TIMEOUT: RecoveryStrategy.NETWORK_RETRY,
    CloudStorageErrorType.API_QUOTA_EXCEEDED: RecoveryStrategy.QUOTA_WAIT,
    CloudStorageErrorType.STORAGE_QUOTA_EXCEEDED: RecoveryStrategy.QUOTA_WAIT,
    CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED: RecoveryStrategy.QUOTA_WAIT,
    CloudStorageErrorType.SERVICE_UNAVAILABLE: RecoveryStrategy.SERVICE_RETRY,
    CloudStorageErrorType.INSUFFICIENT_PERMISSIONS: RecoveryStrategy.USER_INTERVENTION_REQUIRED,
}


def determine_recovery_strategy(error_type: CloudStorageErrorType | None) -> RecoveryStrategy:
    if error_type is None or error_type == CloudStorageErrorType.UNKNOWN_ERROR:
        return RecoveryStrategy.HEALTH_CHECK_RETRY
    if error_type in _STRATEGY_BY_ERROR_TYPE:
        return _STRATEGY_BY_ERROR_TYPE[error_type]
    if error_type.requires_user_intervention:
        return RecoveryStrategy.USER_INTERVENTION_REQUIRED
    return RecoveryStrategy.HEALTH_CHECK_RETRY


@dataclass
class RecoveryResult:
    strategy: RecoveryStrategy
    successful: bool
    message: str
    error_type: CloudStorageErrorType | None = None
    recommended_actions: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "successful": self.successful,
            "message": self.message,
            "error_type": self.error_type.value if self.error_type else None,
            "recommended_actions": self.recommended_actions,
            "details": self.details,
        }


class RecoveryOrchestrator:
    """Chooses and runs an automatic recovery strategy for one user/provider pair."""

    def __init__(
        self,
        connection_health_repo: ConnectionHealthRepo,
        token_repo: TokenRepo,
        pending_upload_repo: PendingUploadRepo,
        recovery_attempt_repo: RecoveryAttemptRepo,
        validator: RealTimeHealthValidator,
        refresh_coordinator: TokenRefreshCoordinator,
        notifier: ConnectionNotifier,
        classifier: ErrorClassifier,
        catalog: ErrorMessageCatalog,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._connection_health_repo = connection_health_repo
        self._token_repo = token_repo
        self._pending_upload_repo = pending_upload_repo
        self._recovery_attempt_repo = recovery_attempt_repo
        self._validator = validator
        self._refresh_coordinator = refresh_coordinator
        self._notifier = notifier
        self._classifier = classifier
        self._catalog = catalog

    async def attempt_automatic_recovery(self, user_id: int, provider: str) -> RecoveryResult:
        self._logger.info(f"Attempting automatic recovery for user_id={user_id} provider={provider}")
        try:
            result = await self._recover(user_id, provider)
        except Exception as e:
            self._logger.exception(f"Automatic recovery failed for user_id={user_id} provider={provider}: {e}")
            result = RecoveryResult(
                RecoveryStrategy.UNKNOWN,
                False,
                "Automatic recovery could not be completed",
                error_type=self._classifier.classify(e, provider),
            )

        await self._record_attempt(user_id, provider, result)
        self._logger.info(
            f"Recovery for user_id={user_id} provider={provider} finished: "
            f"strategy={result.strategy.value} successful={result.successful}"
        )
        return result

    async def _recover(self, user_id: int, provider: str) -> RecoveryResult:
        status = await self._validator.validate_connection_health(user_id, provider, use_cache=False)
        if status.is_healthy:
            retried = await self.retry_pending_uploads(user_id, provider)
            return RecoveryResult(
                RecoveryStrategy.NO_ACTION_NEEDED,
                True,
                "Connection is healthy",
                details={"pending_uploads_retried": retried},
            )

        error_type = await self.determine_error_type(user_id, provider, status)
        strategy = determine_recovery_strategy(error_type)
        self._logger.info(
            f"Recovery strategy {strategy.value} chosen for user_id={user_id} provider={provider} "
            f"(error_type={error_type.value if error_type else None})"
        )

        result = await self._execute(strategy, user_id, provider, error_type)
        if result.successful:
            await self._mark_recovered(user_id, provider)
            result.details["pending_uploads_retried"] = await self.retry_pending_uploads(user_id, provider)
            await self._notifier.send_connection_restored(user_id, provider)
        return result

    async def determine_error_type(
        self, user_id: int, provider: str, status: HealthStatus | None = None
    ) -> CloudStorageErrorType | None:
        """Freshest evidence first: the probe, the stored health record, then the latest failed upload."""
        if status is not None and status.error_type is not None:
            return status.error_type

        record = await self._connection_health_repo.get_by_user_and_provider(user_id, provider)
        if record is not None:
            if record.last_error_type is not None:
                return record.last_error_type
            if record.last_error_message:
                return self._classifier.classify(record.last_error_message, provider)

        return await self._pending_upload_repo.last_error_type_for(user_id, provider)

    async def _execute(
        self, strategy: RecoveryStrategy, user_id: int, provider: str, error_type: CloudStorageErrorType | None
    ) -> RecoveryResult:
        if strategy == RecoveryStrategy.TOKEN_REFRESH:
            return await self._token_refresh(user_id, provider, error_type)
        if strategy in (RecoveryStrategy.NETWORK_RETRY, RecoveryStrategy.SERVICE_RETRY):
            return await self._connectivity_retry(strategy, user_id, provider, error_type)
        if strategy == RecoveryStrategy.QUOTA_WAIT:
            return await self._quota_wait(user_id, provider, error_type)
        if strategy == RecoveryStrategy.USER_INTERVENTION_REQUIRED:
            return await self._user_intervention(user_id, provider, error_type)
        return await self._health_check_retry(user_id, provider, error_type)

    async def _token_refresh(
        self, user_id: int, provider: str, error_type: CloudStorageErrorType | None
    ) -> RecoveryResult:
        refresh = await self._refresh_coordinator.coordinate_refresh(user_id, provider)
        if refresh.is_success:
            return RecoveryResult(
                RecoveryStrategy.TOKEN_REFRESH,
                True,
                "Token refreshed successfully",
                error_type=error_type,
                details={"refresh_outcome": refresh.outcome.value},
            )

        token = await self._token_repo.get_by_user_and_provider(user_id, provider)
        attempt_count = token.refresh_failure_count if token else 1
        refresh_error_type = refresh.error_type
        if refresh_error_type is not None:
            await self._notifier.handle_token_refresh_failure(user_id, provider, refresh_error_type, attempt_count)

        actions = []
        if refresh.requires_user_intervention:
            actions = self._catalog.recovery_instructions(CloudStorageErrorType.TOKEN_EXPIRED, {"provider": provider})
        return RecoveryResult(
            RecoveryStrategy.TOKEN_REFRESH,
            False,
            "Token refresh failed",
            error_type=error_type,
            recommended_actions=actions,
            details={
                "refresh_error_type": refresh_error_type.value if refresh_error_type else None,
                "attempt_count": attempt_count,
            },
        )

    async def _connectivity_retry(
        self,
        strategy: RecoveryStrategy,
        user_id: int,
        provider: str,
        error_type: CloudStorageErrorType | None,
    ) -> RecoveryResult:
        probe = await self._validator.test_api_connectivity(user_id, provider)
        if probe.is_healthy and probe.api_tested:
            return RecoveryResult(strategy, True, "Connectivity restored", error_type=error_type)

        delay = (probe.error_type or error_type or CloudStorageErrorType.UNKNOWN_ERROR).retry_delay(1)
        return RecoveryResult(
            strategy,
            False,
            "Connectivity test still failing",
            error_type=probe.error_type or error_type,
            details={"retry_after": delay},
        )

    async def _quota_wait(
        self, user_id: int, provider: str, error_type: CloudStorageErrorType | None
    ) -> RecoveryResult:
        probe = await self._validator.test_api_connectivity(user_id, provider)
        if probe.is_healthy and probe.api_tested:
            return RecoveryResult(RecoveryStrategy.QUOTA_WAIT, True, "Quota has reset", error_type=error_type)

        quota_error = error_type or CloudStorageErrorType.API_QUOTA_EXCEEDED
        return RecoveryResult(
            RecoveryStrategy.QUOTA_WAIT,
            False,
            "Quota still exhausted",
            error_type=quota_error,
            recommended_actions=self._catalog.recovery_instructions(quota_error, {"provider": provider}),
            details={"retry_after": quota_error.retry_delay(1, probe.details.get("retry_after"))},
        )

    async def _user_intervention(
        self, user_id: int, provider: str, error_type: CloudStorageErrorType | None
    ) -> RecoveryResult:
        intervention_error = error_type or CloudStorageErrorType.INSUFFICIENT_PERMISSIONS
        record = await self._connection_health_repo.get_by_user_and_provider(user_id, provider)
        failures = record.consecutive_failures if record else 0
        notified = await self._notifier.send_unhealthy_connection(user_id, provider, failures, intervention_error)

        context = {"provider": provider}
        return RecoveryResult(
            RecoveryStrategy.USER_INTERVENTION_REQUIRED,
            False,
            self._catalog.actionable_message(intervention_error, context),
            error_type=intervention_error,
            recommended_actions=self._catalog.recovery_instructions(intervention_error, context),
            details={"notification_sent": notified},
        )

    async def _health_check_retry(
        self, user_id: int, provider: str, error_type: CloudStorageErrorType | None
    ) -> RecoveryResult:
        await self._validator.invalidate(user_id, provider)
        status = await self._validator.validate_connection_health(user_id, provider, use_cache=False)
        if status.is_healthy:
            return RecoveryResult(RecoveryStrategy.HEALTH_CHECK_RETRY, True, "Health check passed")
        return RecoveryResult(
            RecoveryStrategy.HEALTH_CHECK_RETRY,
            False,
            "Health check still failing",
            error_type=status.error_type or error_type,
            details={"status": status.kind.value},
        )

    async def retry_pending_uploads(self, user_id: int, provider: str, limit: int | None = None) -> int:
        """
        Re-queue pending uploads that failed for recoverable reasons.

        Never dispatches more than `limit` items. Retries are staggered batch by batch through `retry_available_at`
        so a reconnect does not flood the provider. Uploads whose local file is gone are marked failed so they stop
        taking slots from retryable ones, and the next page is fetched in their place.
        """
        limit = settings.recovery.pending_retry_limit if limit is None else limit
        if limit <= 0:
            return 0

        now = datetime.now(UTC)
        max_attempts = settings.recovery.max_recovery_attempts
        cooldown = timedelta(seconds=settings.recovery.retry_cooldown)
        batch_size = max(1, settings.recovery.pending_batch_size)
        batch_delay = settings.recovery.pending_batch_delay

        dispatched = 0
        abandoned = 0
        while dispatched < limit:
            candidates = await self._pending_upload_repo.find_retryable(
                user_id, provider, limit - dispatched, max_attempts=max_attempts, retried_before=now - cooldown
            )
            progressed = False
            for upload in candidates:
                if upload.user_id != user_id or not upload.can_be_retried(max_attempts, cooldown, now):
                    continue
                if not upload.local_path or not os.path.exists(upload.local_path):
                    self._logger.warning(
                        f"Marking upload {upload.id} failed: local file {upload.local_path} missing"
                    )
                    await self._pending_upload_repo.mark_failed(upload, now)
                    abandoned += 1
                    progressed = True
                    continue

                batch_number = dispatched // batch_size
                await self._pending_upload_repo.enqueue_retry(
                    upload, now + timedelta(seconds=batch_number * batch_delay), now
                )
                dispatched += 1
                progressed = True

            if not progressed:
                break

        if dispatched or abandoned:
            await self._pending_upload_repo.commit()
        self._logger.info(
            f"Queued {dispatched} pending uploads for retry, {abandoned} missing locally "
            f"(user_id={user_id}, provider={provider})"
        )
        return dispatched

    async def _mark_recovered(self, user_id: int, provider: str) -> None:
        record = await self._connection_health_repo.get_or_build(user_id, provider)
        record.apply_success()
        record.consolidated_status = ConsolidatedStatus.healthy
        await self._connection_health_repo.upsert(record)

    async def _record_attempt(self, user_id: int, provider: str, result: RecoveryResult) -> None:
        try:
            await self._recovery_attempt_repo.record(
                user_id, provider, result.strategy, result.error_type, result.successful, result.message
            )
        except Exception as e:
            self._logger.error(f"Could not record recovery attempt for user_id={user_id} provider={provider}: {e}")
