import asyncio
import logging
import signal
from contextlib import AbstractAsyncContextManager, nullcontext
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from app.constants.health import ConsolidatedStatus
from app.controllers.health.health_controller import ConnectionHealthController
from app.controllers.health.resolver import ConsolidatedStatusResolver
from app.controllers.notifications.notifier import ConnectionNotifier
from app.controllers.recovery.orchestrator import RecoveryOrchestrator
from app.controllers.token.refresh_coordinator import TokenRefreshCoordinator
from app.repos.connection_health import ConnectionHealthRepo
from app.repos.token import TokenRepo
from settings import settings

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[Any]]


class HealthMonitor:
    """Periodic sweep over every tracked connection: refresh, resolve, recover, notify, clean up."""

    def __init__(
        self,
        token_repo: TokenRepo,
        connection_health_repo: ConnectionHealthRepo,
        refresh_coordinator: TokenRefreshCoordinator,
        resolver: ConsolidatedStatusResolver,
        recovery_orchestrator: RecoveryOrchestrator,
        notifier: ConnectionNotifier,
        health_controller: ConnectionHealthController,
        session_scope: SessionScope | None = None,
    ):
        self._token_repo = token_repo
        self._connection_health_repo = connection_health_repo
        self._refresh_coordinator = refresh_coordinator
        self._resolver = resolver
        self._recovery_orchestrator = recovery_orchestrator
        self._notifier = notifier
        self._health_controller = health_controller
        self._session_scope = session_scope or nullcontext

        self._shutdown_event = asyncio.Event()
        self._stats = {
            "cycles": 0,
            "tokens_refreshed": 0,
            "statuses_resolved": 0,
            "recoveries_attempted": 0,
            "recoveries_succeeded": 0,
            "notifications_sent": 0,
            "records_cleaned": 0,
            "errors": 0,
        }

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def stop(self) -> None:
        logger.info("Health monitor shutdown requested")
        self._shutdown_event.set()

    async def run_cycle(self) -> dict[str, int]:
        cycle: dict[str, int] = {}
        started = datetime.now(UTC)

        async with self._session_scope():
            cycle["tokens_refreshed"] = await self._step("proactive refresh", self._refresh_expiring_tokens)
            cycle["statuses_resolved"], unhealthy = await self._resolve_all()
            cycle["recoveries_attempted"], cycle["recoveries_succeeded"] = await self._recover(unhealthy)
            cycle["notifications_sent"] = await self._step("notifications", self._send_notifications)
            cycle["records_cleaned"] = await self._step("cleanup", self._health_controller.cleanup_old_health_records)

        self._stats["cycles"] += 1
        for key, value in cycle.items():
            self._stats[key] += value

        elapsed = (datetime.now(UTC) - started).total_seconds()
        logger.info(f"Health monitor cycle finished in {elapsed:.2f}s: {cycle}")
        logger.info(f"Token refresh metrics: {self._health_controller.get_refresh_metrics()}")
        return cycle

    async def run_forever(self, interval: int | None = None) -> None:
        interval = interval or settings.monitor.interval

        for sig in [signal.SIGINT, signal.SIGTERM]:
            signal.signal(sig, lambda s, f: self.stop())

        logger.info(f"Starting health monitor with a {interval}s interval")
        while not self._shutdown_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                self._stats["errors"] += 1
                logger.exception(f"Health monitor cycle failed: {e}")

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            except TimeoutError:
                continue

        logger.info(f"Health monitor stopped after {self._stats['cycles']} cycles")

    async def _step(self, name: str, step: Callable[[], Any]) -> int:
        try:
            return int(await step())
        except Exception as e:
            self._stats["errors"] += 1
            logger.exception(f"Health monitor step '{name}' failed: {e}")
            return 0

    async def _refresh_expiring_tokens(self) -> int:
        lookahead = timedelta(minutes=settings.token_refresh.proactive_lookahead_minutes)
        refreshed = 0
        for token in await self._token_repo.get_expiring(before=datetime.now(UTC) + lookahead):
            result = await self._refresh_coordinator.coordinate_refresh(token.user_id, token.provider)
            if result.is_success:
                refreshed += 1
            else:
                logger.warning(
                    f"Proactive refresh failed for user_id={token.user_id} provider={token.provider}: "
                    f"{result.error_type.value if result.error_type else 'unknown'}"
                )
        return refreshed

    async def _resolve_all(self) -> tuple[int, list[tuple[int, str]]]:
        """Resolve every tracked connection; returns the count and the pairs that still need recovery."""
        try:
            records = await self._connection_health_repo.get_all()
        except Exception as e:
            self._stats["errors"] += 1
            logger.exception(f"Could not load health records: {e}")
            return 0, []

        unhealthy = []
        for record in records:
            status = await self._resolver.determine_consolidated_status(record.user_id, record.provider)
            if status in (ConsolidatedStatus.connection_issues, ConsolidatedStatus.authentication_required):
                unhealthy.append((record.user_id, record.provider))
        return len(records), unhealthy

    async def _recover(self, unhealthy: list[tuple[int, str]]) -> tuple[int, int]:
        attempted = succeeded = 0
        for user_id, provider in unhealthy:
            result = await self._recovery_orchestrator.attempt_automatic_recovery(user_id, provider)
            attempted += 1
            if result.successful:
                succeeded += 1
        return attempted, succeeded

    async def _send_notifications(self) -> int:
        sent = await self._notifier.notify_users_with_expiring_tokens()
        sent += await self._notifier.notify_users_with_unhealthy_connections()
        return sent
