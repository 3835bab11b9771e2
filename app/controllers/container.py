from typing import cast

from dependency_injector import containers, providers

from app.cache import CacheService, create_redis
from app.controllers.coordination.rate_limiter import RateLimiter
from app.controllers.errors.classifier import ErrorClassifier
from app.controllers.health.health_controller import ConnectionHealthController
from app.controllers.health.resolver import ConsolidatedStatusResolver
from app.controllers.health.validator import RealTimeHealthValidator
from app.controllers.interfaces import ProviderRegistry
from app.controllers.messages.catalog import ErrorMessageCatalog
from app.controllers.messages.priority import MessagePriorityResolver
from app.controllers.notifications.notifier import ConnectionNotifier
from app.controllers.notifications.throttler import NotificationThrottler
from app.controllers.notifications.webhook_sink import WebhookNotificationSink
from app.controllers.recovery.orchestrator import RecoveryOrchestrator
from app.controllers.token.refresh_coordinator import TokenRefreshCoordinator
from app.metrics import refresh_metrics
from app.repos.container import RepoContainer
from app.utils.crypto import TokenCipher
from settings import settings


class ControllerContainer(containers.DeclarativeContainer):
    repos: RepoContainer = cast(RepoContainer, providers.DependenciesContainer())

    redis = providers.Singleton(create_redis, url=settings.redis.url)
    cache = providers.Singleton(CacheService, redis=redis, prefix=settings.redis.key_prefix)
    token_cipher = providers.Singleton(TokenCipher, key=settings.token_encryption_key)
    provider_registry = providers.Singleton(ProviderRegistry)
    metrics = providers.Object(refresh_metrics)
    notification_sink = providers.Singleton(WebhookNotificationSink, webhook_url=settings.notifications.webhook_url)

    error_classifier = providers.Singleton(ErrorClassifier)
    rate_limiter = providers.Singleton(RateLimiter, cache=cache)

    refresh_coordinator = providers.Singleton(
        TokenRefreshCoordinator,
        token_repo=repos.token,
        cache=cache,
        provider_registry=provider_registry,
        cipher=token_cipher,
        classifier=error_classifier,
        metrics=metrics,
    )

    health_validator = providers.Singleton(
        RealTimeHealthValidator,
        token_repo=repos.token,
        cache=cache,
        rate_limiter=rate_limiter,
        refresh_coordinator=refresh_coordinator,
        provider_registry=provider_registry,
        classifier=error_classifier,
    )

    status_resolver = providers.Singleton(
        ConsolidatedStatusResolver,
        connection_health_repo=repos.connection_health,
        token_repo=repos.token,
        rate_limiter=rate_limiter,
        validator=health_validator,
    )

    message_catalog = providers.Singleton(ErrorMessageCatalog)
    priority_resolver = providers.Singleton(MessagePriorityResolver, catalog=message_catalog)

    notification_throttler = providers.Singleton(NotificationThrottler, cache=cache)
    notifier = providers.Singleton(
        ConnectionNotifier,
        throttler=notification_throttler,
        sink=notification_sink,
        user_repo=repos.user,
        token_repo=repos.token,
        connection_health_repo=repos.connection_health,
        catalog=message_catalog,
    )

    recovery_orchestrator = providers.Singleton(
        RecoveryOrchestrator,
        connection_health_repo=repos.connection_health,
        token_repo=repos.token,
        pending_upload_repo=repos.pending_upload,
        recovery_attempt_repo=repos.recovery_attempt,
        validator=health_validator,
        refresh_coordinator=refresh_coordinator,
        notifier=notifier,
        classifier=error_classifier,
        catalog=message_catalog,
    )

    health_controller = providers.Singleton(
        ConnectionHealthController,
        connection_health_repo=repos.connection_health,
        resolver=status_resolver,
        validator=health_validator,
        rate_limiter=rate_limiter,
        priority_resolver=priority_resolver,
        metrics=metrics,
    )
