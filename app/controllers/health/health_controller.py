import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConsolidatedStatus
from app.controllers.coordination.rate_limiter import RateLimitedOperation, RateLimiter
from app.controllers.health.resolver import ConsolidatedStatusResolver
from app.controllers.health.validator import HOUR, RealTimeHealthValidator
from app.controllers.messages.priority import MessagePriorityResolver
from app.metrics import RefreshMetrics, refresh_metrics
from app.models.connection_health import ConnectionHealthRecord
from app.repos.connection_health import ConnectionHealthRepo
from settings import settings

MAX_TOKEN_BACKOFF_SECONDS = 300


def token_backoff_seconds(consecutive_failures: int) -> int:
    if consecutive_failures <= 0:
        return 0
    return min(MAX_TOKEN_BACKOFF_SECONDS, 30 * 2 ** min(consecutive_failures - 1, 4))


def _rate_limits() -> dict[RateLimitedOperation, tuple[int, int]]:
    return {
        RateLimitedOperation.live_validation: (
            settings.health.live_validations_per_window,
            settings.health.live_validation_window,
        ),
        RateLimitedOperation.token_refresh: (settings.token_refresh.max_attempts_per_hour, HOUR),
        RateLimitedOperation.connectivity_test: (settings.health.connectivity_tests_per_hour, HOUR),
    }


class ConnectionHealthController:
    def __init__(
        self,
        connection_health_repo: ConnectionHealthRepo,
        resolver: ConsolidatedStatusResolver,
        validator: RealTimeHealthValidator,
        rate_limiter: RateLimiter,
        priority_resolver: MessagePriorityResolver,
        metrics: RefreshMetrics | None = None,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._connection_health_repo = connection_health_repo
        self._resolver = resolver
        self._validator = validator
        self._rate_limiter = rate_limiter
        self._priority_resolver = priority_resolver
        self._metrics = metrics or refresh_metrics

    async def record_successful_operation(
        self, user_id: int, provider: str, provider_data: dict[str, Any] | None = None
    ) -> ConnectionHealthRecord:
        record = await self._connection_health_repo.get_or_build(user_id, provider)
        record.apply_success(provider_data)
        record.consolidated_status = ConsolidatedStatus.healthy
        record = await self._connection_health_repo.upsert(record)
        self._logger.debug(f"Recorded successful operation for user_id={user_id} provider={provider}")
        return record

    async def mark_connection_unhealthy(
        self,
        user_id: int,
        provider: str,
        message: str,
        error_type: CloudStorageErrorType = CloudStorageErrorType.UNKNOWN_ERROR,
        context: dict[str, Any] | None = None,
    ) -> ConnectionHealthRecord:
        record = await self._connection_health_repo.get_or_build(user_id, provider)
        record.apply_failure(error_type, message, context)
        if record.requires_reconnection:
            record.consolidated_status = ConsolidatedStatus.authentication_required
        else:
            record.consolidated_status = ConsolidatedStatus.connection_issues
        record = await self._connection_health_repo.upsert(record)
        await self._validator.invalidate(user_id, provider)

        self._logger.warning(
            f"Connection marked unhealthy for user_id={user_id} provider={provider}: {error_type.value} "
            f"(failures={record.consecutive_failures}, status={record.status.value})"
        )
        return record

    async def get_health_summary(self, user_id: int, provider: str) -> dict[str, Any]:
        consolidated = await self._resolver.determine_consolidated_status(user_id, provider)
        record = await self._connection_health_repo.get_or_build(user_id, provider)

        context = {
            "provider": provider,
            "consolidated_status": consolidated.value,
            "error_type": record.last_error_type.value if record.last_error_type else None,
            "consecutive_failures": record.consecutive_failures,
        }
        if consolidated == ConsolidatedStatus.healthy:
            context["error_type"] = None
        display = self._priority_resolver.generate_context_aware_message(context)

        return {
            "user_id": user_id,
            "provider": provider,
            "consolidated_status": consolidated.value,
            "status": consolidated.legacy_state.value,
            "raw_status": record.status.value,
            "consecutive_failures": record.consecutive_failures,
            "last_error_type": record.last_error_type.value if record.last_error_type else None,
            "requires_reconnection": record.requires_reconnection,
            "token_expires_at": _isoformat(record.token_expires_at),
            "last_successful_operation_at": _isoformat(record.last_successful_operation_at),
            "last_live_validation_at": _isoformat(record.last_live_validation_at),
            "api_connectivity_last_tested_at": _isoformat(record.api_connectivity_last_tested_at),
            "token_backoff_seconds": token_backoff_seconds(record.consecutive_failures),
            "display_message": display["message"],
            "display": display,
        }

    async def get_rate_limit_status(self, user_id: int, provider: str) -> dict[str, dict[str, int]]:
        result = {}
        for operation, (limit, window) in _rate_limits().items():
            hits = await self._rate_limiter.hits(operation, user_id, provider, window)
            result[operation.value] = {
                "hits": hits,
                "limit": limit,
                "window_seconds": window,
                "remaining": max(0, limit - hits),
            }
        return result

    def get_refresh_metrics(self, provider: str | None = None) -> dict[str, dict[str, Any]]:
        """Token refresh outcomes, failure types, success rate and mean duration recorded by this process."""
        return self._metrics.summary(provider)

    async def clear_rate_limits(self, user_id: int, provider: str) -> None:
        await self._rate_limiter.clear(user_id, provider)
        self._logger.info(f"Cleared rate limits for user_id={user_id} provider={provider}")

    async def clear_caches(self, user_id: int, provider: str) -> None:
        await self._validator.invalidate(user_id, provider)

    async def cleanup_old_health_records(self, days: int | None = None) -> int:
        days = settings.health.record_retention_days if days is None else days
        cutoff = datetime.now(UTC) - timedelta(days=days)
        deleted = await self._connection_health_repo.cleanup_older_than(cutoff)
        self._logger.info(f"Cleaned up {deleted} health records not updated since {cutoff.isoformat()}")
        return deleted


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
