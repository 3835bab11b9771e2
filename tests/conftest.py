import os

os.environ["APP_ENV"] = "test"

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fakeredis import FakeAsyncRedis  # noqa: E402

from app.cache import CacheService  # noqa: E402
from app.controllers.coordination.rate_limiter import RateLimiter  # noqa: E402
from app.controllers.errors.classifier import ErrorClassifier  # noqa: E402
from app.controllers.health.health_controller import ConnectionHealthController  # noqa: E402
from app.controllers.health.resolver import ConsolidatedStatusResolver  # noqa: E402
from app.controllers.health.validator import RealTimeHealthValidator  # noqa: E402
from app.controllers.interfaces import ProviderRegistry  # noqa: E402
from app.controllers.messages.catalog import ErrorMessageCatalog  # noqa: E402
from app.controllers.messages.priority import MessagePriorityResolver  # noqa: E402
from app.controllers.notifications.notifier import ConnectionNotifier  # noqa: E402
from app.controllers.notifications.throttler import NotificationThrottler  # noqa: E402
from app.controllers.recovery.orchestrator import RecoveryOrchestrator  # noqa: E402
from app.controllers.token.refresh_coordinator import TokenRefreshCoordinator  # noqa: E402
from app.metrics import RefreshMetrics  # noqa: E402
from app.utils.crypto import TokenCipher  # noqa: E402
from settings import settings  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeConnectionHealthRepo,
    FakePendingUploadRepo,
    FakeRecoveryAttemptRepo,
    FakeStorageProvider,
    FakeTokenRepo,
    FakeUserRepo,
    RecordingSink,
)

PROVIDER = "google-drive"
USER_ID = 42


@pytest_asyncio.fixture
async def redis() -> AsyncGenerator[FakeAsyncRedis, None]:
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cache(redis: FakeAsyncRedis) -> CacheService:
    return CacheService(redis, prefix="test")


@pytest.fixture
def rate_limiter(cache: CacheService) -> RateLimiter:
    return RateLimiter(cache)


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(settings.token_encryption_key)


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


@pytest.fixture
def token_repo() -> FakeTokenRepo:
    return FakeTokenRepo()


@pytest.fixture
def connection_health_repo() -> FakeConnectionHealthRepo:
    return FakeConnectionHealthRepo()


@pytest.fixture
def pending_upload_repo() -> FakePendingUploadRepo:
    return FakePendingUploadRepo()


@pytest.fixture
def recovery_attempt_repo() -> FakeRecoveryAttemptRepo:
    return FakeRecoveryAttemptRepo()


@pytest.fixture
def user_repo() -> FakeUserRepo:
    return FakeUserRepo()


@pytest.fixture
def storage_provider() -> FakeStorageProvider:
    return FakeStorageProvider(PROVIDER)


@pytest.fixture
def provider_registry(storage_provider: FakeStorageProvider) -> ProviderRegistry:
    return ProviderRegistry([storage_provider])


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def refresh_metrics() -> RefreshMetrics:
    return RefreshMetrics()


@pytest.fixture
def refresh_coordinator(
    token_repo: FakeTokenRepo,
    cache: CacheService,
    provider_registry: ProviderRegistry,
    cipher: TokenCipher,
    classifier: ErrorClassifier,
    refresh_metrics: RefreshMetrics,
) -> TokenRefreshCoordinator:
    return TokenRefreshCoordinator(token_repo, cache, provider_registry, cipher, classifier, refresh_metrics)


@pytest.fixture
def validator(
    token_repo: FakeTokenRepo,
    cache: CacheService,
    rate_limiter: RateLimiter,
    refresh_coordinator: TokenRefreshCoordinator,
    provider_registry: ProviderRegistry,
    classifier: ErrorClassifier,
) -> RealTimeHealthValidator:
    return RealTimeHealthValidator(token_repo, cache, rate_limiter, refresh_coordinator, provider_registry, classifier)


@pytest.fixture
def resolver(
    connection_health_repo: FakeConnectionHealthRepo,
    token_repo: FakeTokenRepo,
    rate_limiter: RateLimiter,
    validator: RealTimeHealthValidator,
) -> ConsolidatedStatusResolver:
    return ConsolidatedStatusResolver(connection_health_repo, token_repo, rate_limiter, validator)


@pytest.fixture
def catalog() -> ErrorMessageCatalog:
    return ErrorMessageCatalog()


@pytest.fixture
def priority_resolver(catalog: ErrorMessageCatalog) -> MessagePriorityResolver:
    return MessagePriorityResolver(catalog)


@pytest.fixture
def throttler(cache: CacheService) -> NotificationThrottler:
    return NotificationThrottler(cache)


@pytest.fixture
def notifier(
    throttler: NotificationThrottler,
    sink: RecordingSink,
    user_repo: FakeUserRepo,
    token_repo: FakeTokenRepo,
    connection_health_repo: FakeConnectionHealthRepo,
    catalog: ErrorMessageCatalog,
) -> ConnectionNotifier:
    return ConnectionNotifier(throttler, sink, user_repo, token_repo, connection_health_repo, catalog)


@pytest.fixture
def orchestrator(
    connection_health_repo: FakeConnectionHealthRepo,
    token_repo: FakeTokenRepo,
    pending_upload_repo: FakePendingUploadRepo,
    recovery_attempt_repo: FakeRecoveryAttemptRepo,
    validator: RealTimeHealthValidator,
    refresh_coordinator: TokenRefreshCoordinator,
    notifier: ConnectionNotifier,
    classifier: ErrorClassifier,
    catalog: ErrorMessageCatalog,
) -> RecoveryOrchestrator:
    return RecoveryOrchestrator(
        connection_health_repo,
        token_repo,
        pending_upload_repo,
        recovery_attempt_repo,
        validator,
        refresh_coordinator,
        notifier,
        classifier,
        catalog,
    )


@pytest.fixture
def health_controller(
    connection_health_repo: FakeConnectionHealthRepo,
    resolver: ConsolidatedStatusResolver,
    validator: RealTimeHealthValidator,
    rate_limiter: RateLimiter,
    priority_resolver: MessagePriorityResolver,
    refresh_metrics: RefreshMetrics,
) -> ConnectionHealthController:
    return ConnectionHealthController(
        connection_health_repo, resolver, validator, rate_limiter, priority_resolver, refresh_metrics
    )
