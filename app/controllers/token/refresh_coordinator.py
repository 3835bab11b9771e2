import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from app.cache import CacheService
from app.constants.errors import TokenRefreshErrorType
from app.controllers.coordination.lock import RefreshLock
from app.controllers.errors.classifier import ErrorClassifier, classify_refresh_error
from app.controllers.interfaces import ProviderRegistry
from app.metrics import RefreshMetrics, RefreshTimer, refresh_metrics
from app.models import TokenRecord
from app.repos.token import TokenRepo
from app.utils.crypto import TokenCipher
from settings import settings


class RefreshOutcome(Enum):
    already_valid = "already_valid"
    refreshed_by_another_process = "refreshed_by_another_process"
    refreshed = "refreshed"
    failed = "failed"


@dataclass(frozen=True)
class RefreshResult:
    outcome: RefreshOutcome
    error_type: TokenRefreshErrorType | None = None
    cause: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def already_valid(cls, token: TokenRecord) -> "RefreshResult":
        return cls(RefreshOutcome.already_valid, expires_at=token.expires_at)

    @classmethod
    def refreshed_by_another_process(cls, token: TokenRecord) -> "RefreshResult":
        return cls(RefreshOutcome.refreshed_by_another_process, expires_at=token.expires_at)

    @classmethod
    def refreshed(cls, token: TokenRecord) -> "RefreshResult":
        return cls(RefreshOutcome.refreshed, expires_at=token.expires_at)

    @classmethod
    def failed(cls, error_type: TokenRefreshErrorType, cause: str) -> "RefreshResult":
        return cls(RefreshOutcome.failed, error_type=error_type, cause=cause)

    @property
    def is_success(self) -> bool:
        return self.outcome != RefreshOutcome.failed

    @property
    def requires_user_intervention(self) -> bool:
        return self.error_type is not None and self.error_type.requires_user_intervention


class TokenRefreshCoordinator:
    """
    Refresh-if-needed for one user/provider pair, serialized system-wide by a RefreshLock.

    At most one provider refresh call is in flight per pair. A caller that waits on the lock re-reads the token once
    it gets in and returns `refreshed_by_another_process` when the winner already left it valid.
    """

    def __init__(
        self,
        token_repo: TokenRepo,
        cache: CacheService,
        provider_registry: ProviderRegistry,
        cipher: TokenCipher,
        classifier: ErrorClassifier,
        metrics: RefreshMetrics | None = None,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._metrics = metrics or refresh_metrics
        self._token_repo = token_repo
        self._cache = cache
        self._provider_registry = provider_registry
        self._cipher = cipher
        self._classifier = classifier

    @property
    def proactive_threshold(self) -> timedelta:
        return timedelta(minutes=settings.token_refresh.proactive_threshold_minutes)

    async def coordinate_refresh(self, user_id: int, provider: str) -> RefreshResult:
        timer = RefreshTimer()
        result = await self._coordinate(user_id, provider)
        self._metrics.record_outcome(
            provider,
            result.outcome.value,
            timer.seconds(),
            result.error_type.value if result.error_type else None,
        )
        return result

    async def _coordinate(self, user_id: int, provider: str) -> RefreshResult:
        token = await self._token_repo.get_by_user_and_provider(user_id, provider)
        if token is None:
            return RefreshResult.failed(TokenRefreshErrorType.INVALID_REFRESH_TOKEN, "no token")

        if token.requires_user_intervention:
            self._logger.info(f"Skipping refresh for user_id={user_id} provider={provider}: reconnection required")
            return RefreshResult.failed(TokenRefreshErrorType.INVALID_REFRESH_TOKEN, "user intervention required")

        if not token.expires_within(self.proactive_threshold):
            return RefreshResult.already_valid(token)

        lock = RefreshLock(
            self._cache,
            user_id,
            provider,
            ttl=settings.token_refresh.lock_ttl,
            wait_timeout=settings.token_refresh.lock_wait_timeout,
            retry_delay=settings.token_refresh.lock_retry_delay,
        )
        async with lock.hold() as acquired:
            if not acquired:
                self._logger.warning(f"Token refresh lock timeout for user_id={user_id} provider={provider}")
                return RefreshResult.failed(TokenRefreshErrorType.UNKNOWN_ERROR, "lock timeout")

            return await self._refresh_locked(user_id, provider, lock)

    async def _refresh_locked(self, user_id: int, provider: str, lock: RefreshLock) -> RefreshResult:
        token = await self._token_repo.get_by_user_and_provider(user_id, provider, refresh=True)
        if token is None:
            return RefreshResult.failed(TokenRefreshErrorType.INVALID_REFRESH_TOKEN, "no token")
        if token.requires_user_intervention:
            return RefreshResult.failed(TokenRefreshErrorType.INVALID_REFRESH_TOKEN, "user intervention required")
        if not token.expires_within(self.proactive_threshold):
            self._logger.info(f"Token for user_id={user_id} provider={provider} was refreshed by another process")
            return RefreshResult.refreshed_by_another_process(token)

        if not token.has_refresh_token:
            return await self._record_failure(
                token, TokenRefreshErrorType.INVALID_REFRESH_TOKEN, "no refresh token available"
            )

        storage_provider = self._provider_registry.get(provider)
        if storage_provider is None:
            return await self._record_failure(
                token, TokenRefreshErrorType.UNKNOWN_ERROR, f"no storage provider registered for {provider}"
            )

        # Restart the TTL so it outlives the provider call timeout.
        if not await lock.extend():
            self._logger.error(f"Refresh lock lost before provider call for user_id={user_id} provider={provider}")
            return RefreshResult.failed(TokenRefreshErrorType.UNKNOWN_ERROR, "lock lost")

        now = datetime.now(UTC)
        token.mark_refresh_attempt(now)
        self._metrics.record_provider_call(provider)
        try:
            grant = await asyncio.wait_for(
                storage_provider.refresh_token(token), timeout=settings.token_refresh.refresh_timeout
            )
        except TimeoutError:
            self._logger.error(f"Token refresh timed out for user_id={user_id} provider={provider}")
            return await self._record_failure(token, TokenRefreshErrorType.NETWORK_TIMEOUT, "refresh timed out")
        except Exception as e:
            error_type = classify_refresh_error(e, provider, self._classifier)
            self._logger.error(
                f"Token refresh failed for user_id={user_id} provider={provider} ({error_type.value}): {e}"
            )
            return await self._record_failure(token, error_type, str(e) or type(e).__name__)

        if not grant:
            return await self._record_failure(token, TokenRefreshErrorType.UNKNOWN_ERROR, "unspecified failure")

        token.apply_grant(grant, self._cipher, now)
        token.mark_refresh_success(now)
        await self._token_repo.save(token)
        self._logger.info(f"Token refreshed for user_id={user_id} provider={provider}, expires at {token.expires_at}")
        return RefreshResult.refreshed(token)

    async def _record_failure(self, token: TokenRecord, error_type: TokenRefreshErrorType, cause: str) -> RefreshResult:
        token.mark_refresh_failure(error_type.requires_user_intervention)
        await self._token_repo.save(token)
        return RefreshResult.failed(error_type, cause)
