import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Callable

from app.constants.errors import HARD_FAILURE_ERROR_TYPES, CloudStorageErrorType
from app.constants.health import ConsolidatedStatus
from app.controllers.coordination.rate_limiter import RateLimitedOperation, RateLimiter
from app.controllers.health.status import HealthStatus
from app.controllers.health.validator import RealTimeHealthValidator
from app.models import ConnectionHealthRecord
from app.repos.connection_health import ConnectionHealthRepo
from app.repos.token import TokenRepo
from settings import settings


class CheckOutcome(Enum):
    FORCE_REPROBE = "force_reprobe"
    LEAVE_AS_IS = "leave_as_is"


def healthy_with_expired_token(record: ConnectionHealthRecord, now: datetime) -> CheckOutcome:
    if (
        record.consolidated_status == ConsolidatedStatus.healthy
        and record.token_expires_at is not None
        and record.token_expires_at < now
    ):
        return CheckOutcome.FORCE_REPROBE
    return CheckOutcome.LEAVE_AS_IS


def not_connected_after_recent_success(record: ConnectionHealthRecord, now: datetime) -> CheckOutcome:
    recent = now - timedelta(seconds=settings.health.recent_success_window)
    if (
        record.consolidated_status == ConsolidatedStatus.not_connected
        and record.last_successful_operation_at is not None
        and record.last_successful_operation_at >= recent
    ):
        return CheckOutcome.FORCE_REPROBE
    return CheckOutcome.LEAVE_AS_IS


def healthy_while_reconnection_required(record: ConnectionHealthRecord, now: datetime) -> CheckOutcome:
    if (
        record.consolidated_status == ConsolidatedStatus.healthy
        and record.requires_reconnection
        and record.last_error_type in HARD_FAILURE_ERROR_TYPES
    ):
        return CheckOutcome.FORCE_REPROBE
    return CheckOutcome.LEAVE_AS_IS


def missing_consolidated_status(record: ConnectionHealthRecord, now: datetime) -> CheckOutcome:
    if record.consolidated_status is None:
        return CheckOutcome.FORCE_REPROBE
    return CheckOutcome.LEAVE_AS_IS


@dataclass(frozen=True)
class ConsistencyCheck:
    name: str
    run: Callable[[ConnectionHealthRecord, datetime], CheckOutcome]


CONSISTENCY_CHECKS = [
    ConsistencyCheck("healthy_with_expired_token", healthy_with_expired_token),
    ConsistencyCheck("not_connected_after_recent_success", not_connected_after_recent_success),
    ConsistencyCheck("healthy_while_reconnection_required", healthy_while_reconnection_required),
    ConsistencyCheck("missing_consolidated_status", missing_consolidated_status),
]


def find_inconsistencies(
    record: ConnectionHealthRecord, now: datetime, checks: list[ConsistencyCheck] | None = None
) -> list[str]:
    """Names of the checks that say the stored status cannot be trusted without a fresh probe."""
    return [
        check.name
        for check in (CONSISTENCY_CHECKS if checks is None else checks)
        if check.run(record, now) == CheckOutcome.FORCE_REPROBE
    ]


class ConsolidatedStatusResolver:
    """
    Reconciles the stored health record with live evidence into one ConsolidatedStatus.

    Live probes are rate limited per user/provider. Contradictory stored state bypasses the limit and is corrected
    from a fresh probe. Nothing raised inside resolution escapes `determine_consolidated_status`.
    """

    def __init__(
        self,
        connection_health_repo: ConnectionHealthRepo,
        token_repo: TokenRepo,
        rate_limiter: RateLimiter,
        validator: RealTimeHealthValidator,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._connection_health_repo = connection_health_repo
        self._token_repo = token_repo
        self._rate_limiter = rate_limiter
        self._validator = validator

    async def determine_consolidated_status(self, user_id: int, provider: str) -> ConsolidatedStatus:
        try:
            return await self._resolve(user_id, provider)
        except Exception as e:
            self._logger.exception(f"Failed to resolve status for user_id={user_id} provider={provider}: {e}")
            await self._record_resolution_error(user_id, provider, e)
            return ConsolidatedStatus.connection_issues

    async def _resolve(self, user_id: int, provider: str) -> ConsolidatedStatus:
        now = datetime.now(UTC)
        record = await self._connection_health_repo.get_or_build(user_id, provider)

        inconsistencies = find_inconsistencies(record, now)
        if inconsistencies:
            self._logger.warning(
                f"Stored status {_status_value(record.consolidated_status)} for user_id={user_id} "
                f"provider={provider} failed checks {inconsistencies}, forcing a live probe"
            )
            status = await self._validator.validate_connection_health(user_id, provider, use_cache=False)
            return await self._persist(record, status, now)

        decision = await self._rate_limiter.attempt(
            RateLimitedOperation.live_validation,
            user_id,
            provider,
            limit=settings.health.live_validations_per_window,
            window_seconds=settings.health.live_validation_window,
        )
        if not decision.allowed:
            cached = record.consolidated_status or ConsolidatedStatus.unknown
            if not self._is_fresh(record, now):
                self._logger.warning(
                    f"Live validation rate limited for user_id={user_id} provider={provider}; "
                    f"returning stale status {cached.value}"
                )
            return cached

        status = await self._validator.validate_connection_health(user_id, provider)
        return await self._persist(record, status, now)

    def _is_fresh(self, record: ConnectionHealthRecord, now: datetime) -> bool:
        if record.last_live_validation_at is None:
            return False
        return now - record.last_live_validation_at <= timedelta(seconds=settings.health.freshness_window)

    async def _persist(
        self, record: ConnectionHealthRecord, status: HealthStatus, now: datetime
    ) -> ConsolidatedStatus:
        consolidated = status.consolidated_status
        record.consolidated_status = consolidated
        record.last_live_validation_at = now
        record.live_validation_result = status.to_dict()
        if status.api_tested:
            record.api_connectivity_last_tested_at = now
            record.api_connectivity_result = status.details.get("api_test") or {
                "success": status.is_healthy,
                "error_type": status.error_type.value if status.error_type else None,
            }

        if status.is_healthy:
            if status.api_tested:
                record.apply_success(now=now)
            record.requires_reconnection = False
        elif consolidated == ConsolidatedStatus.authentication_required:
            record.requires_reconnection = True
            record.last_error_type = status.error_type or CloudStorageErrorType.INVALID_CREDENTIALS
            record.last_error_message = status.message

        token = await self._token_repo.get_by_user_and_provider(record.user_id, record.provider)
        record.token_expires_at = token.expires_at if token else None

        await self._connection_health_repo.upsert(record)
        return consolidated

    async def _record_resolution_error(self, user_id: int, provider: str, error: Exception) -> None:
        try:
            await self._connection_health_repo.rollback()
            record = await self._connection_health_repo.get_or_build(user_id, provider)
            record.consolidated_status = ConsolidatedStatus.connection_issues
            record.last_error_message = f"Status resolution failed: {type(error).__name__}"
            await self._connection_health_repo.upsert(record)
        except Exception as e:
            self._logger.error(f"Could not record resolution error for user_id={user_id} provider={provider}: {e}")


def _status_value(status: ConsolidatedStatus | None) -> str:
    return status.value if status else "none"
