import asyncio
import logging
import time
from typing import Any

from app.cache import CacheService
from app.constants.errors import CloudStorageErrorType
from app.controllers.coordination.rate_limiter import RateLimitedOperation, RateLimiter
from app.controllers.errors.classifier import ErrorClassifier
from app.controllers.health.status import HealthStatus
from app.controllers.interfaces import ProbeResult, ProviderRegistry
from app.controllers.token.refresh_coordinator import TokenRefreshCoordinator
from app.repos.token import TokenRepo
from settings import settings

HOUR = 3600


def health_cache_key(user_id: int, provider: str) -> str:
    return f"real_time_health_{user_id}_{provider}"


def api_test_cache_key(user_id: int, provider: str) -> str:
    return f"api_connectivity_{user_id}_{provider}"


class RealTimeHealthValidator:
    """
    Live, tiered health check for one user/provider pair.

    Tier 1 validates the token, refreshing it through the coordinator when it is close to expiry. Tier 2 calls the
    provider's connectivity probe under a hard timeout. Results are cached briefly so bursts of callers share a probe.
    """

    def __init__(
        self,
        token_repo: TokenRepo,
        cache: CacheService,
        rate_limiter: RateLimiter,
        refresh_coordinator: TokenRefreshCoordinator,
        provider_registry: ProviderRegistry,
        classifier: ErrorClassifier,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._token_repo = token_repo
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._refresh_coordinator = refresh_coordinator
        self._provider_registry = provider_registry
        self._classifier = classifier

    async def validate_connection_health(self, user_id: int, provider: str, use_cache: bool = True) -> HealthStatus:
        cache_key = health_cache_key(user_id, provider)
        if use_cache:
            cached = await self._cache.get_json(cache_key)
            if cached is not None:
                self._logger.debug(f"Using cached health result for user_id={user_id} provider={provider}")
                return HealthStatus.from_dict(cached)

        started = time.monotonic()
        try:
            status = await self._validate_token(user_id, provider)
            if status is None:
                status = await self.test_api_connectivity(user_id, provider)
        except Exception as e:
            self._logger.exception(f"Health validation failed for user_id={user_id} provider={provider}: {e}")
            status = HealthStatus.connection_issues(
                "Health validation failed", self._classifier.classify(e, provider), exception=type(e).__name__
            )

        status.details["validation_time_ms"] = round((time.monotonic() - started) * 1000, 2)
        await self._cache.set_json(cache_key, status.to_dict(), status.cache_ttl)
        self._logger.info(
            f"Health validation for user_id={user_id} provider={provider}: {status.kind.value}"
            f"{f' ({status.error_type.value})' if status.error_type else ''}"
        )
        return status

    async def invalidate(self, user_id: int, provider: str) -> None:
        await self._cache.delete(health_cache_key(user_id, provider), api_test_cache_key(user_id, provider))

    async def _validate_token(self, user_id: int, provider: str) -> HealthStatus | None:
        """Token tier. Returns None when the token is usable and the API tier should run."""
        token = await self._token_repo.get_by_user_and_provider(user_id, provider)
        if token is None:
            return HealthStatus.disconnected()
        if token.requires_user_intervention:
            return HealthStatus.authentication_required(
                "Token requires user intervention", CloudStorageErrorType.INVALID_CREDENTIALS
            )
        if not token.expires_within(self._refresh_coordinator.proactive_threshold):
            return None

        decision = await self._rate_limiter.attempt(
            RateLimitedOperation.token_refresh,
            user_id,
            provider,
            limit=settings.token_refresh.max_attempts_per_hour,
            window_seconds=HOUR,
        )
        if not decision.allowed:
            return HealthStatus.connection_issues(
                "Too many token refresh attempts",
                CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED,
                retry_after=decision.retry_after,
            )

        result = await self._refresh_coordinator.coordinate_refresh(user_id, provider)
        if not result.is_success:
            return HealthStatus.from_token_error(result)
        return None

    async def test_api_connectivity(self, user_id: int, provider: str) -> HealthStatus:
        storage_provider = self._provider_registry.get(provider)
        if storage_provider is None:
            return HealthStatus.connection_issues(
                f"No storage provider registered for {provider}", CloudStorageErrorType.PROVIDER_NOT_CONFIGURED
            )

        decision = await self._rate_limiter.attempt(
            RateLimitedOperation.connectivity_test,
            user_id,
            provider,
            limit=settings.health.connectivity_tests_per_hour,
            window_seconds=HOUR,
        )
        if not decision.allowed:
            last_result = await self._cache.get_json(api_test_cache_key(user_id, provider))
            if last_result is not None:
                status = HealthStatus.from_dict(last_result)
                status.api_tested = False
                status.details["api_test_skipped"] = "rate_limited"
                return status
            # Token tier passed and no probe is permitted; report healthy without API evidence.
            return HealthStatus.healthy(api_test_skipped="rate_limited")

        try:
            probe = await asyncio.wait_for(
                storage_provider.probe_connectivity(user_id), timeout=settings.health.probe_timeout
            )
        except TimeoutError:
            self._logger.warning(f"Connectivity probe timed out for user_id={user_id} provider={provider}")
            status = HealthStatus.from_api_error(CloudStorageErrorType.TIMEOUT, "API connectivity test timed out")
        except Exception as e:
            error_type = self._classifier.classify(e, provider)
            self._logger.error(f"Connectivity probe failed for user_id={user_id} provider={provider}: {e}")
            status = HealthStatus.from_api_error(error_type, "API connectivity test failed")
        else:
            status = self._status_from_probe(probe, provider)

        await self._cache.set_json(api_test_cache_key(user_id, provider), status.to_dict(), HOUR)
        return status

    def _status_from_probe(self, probe: ProbeResult, provider: str) -> HealthStatus:
        details: dict[str, Any] = {"api_test": _probe_snapshot(probe)}
        if probe.success:
            status = HealthStatus.healthy(**details)
            status.api_tested = True
            return status

        error_type = CloudStorageErrorType.UNKNOWN_ERROR
        if probe.error is not None:
            error_type = self._classifier.classify(probe.error, provider)
        return HealthStatus.from_api_error(error_type, "API connectivity test failed", **details)


def _probe_snapshot(probe: ProbeResult) -> dict[str, Any]:
    return {"success": probe.success, "latency_ms": probe.latency_ms, **probe.details}
