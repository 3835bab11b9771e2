import asyncio
import signal
from datetime import UTC, datetime, timedelta

import pytest

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConsolidatedStatus
from app.controllers.health.health_controller import ConnectionHealthController
from app.controllers.health.resolver import ConsolidatedStatusResolver
from app.controllers.notifications.notifier import ConnectionNotifier
from app.controllers.recovery.orchestrator import RecoveryOrchestrator
from app.controllers.token.refresh_coordinator import TokenRefreshCoordinator
from app.models import ConnectionHealthRecord
from app.utils.crypto import TokenCipher
from tests.conftest import PROVIDER
from tests.fakes import FakeConnectionHealthRepo, FakeStorageProvider, FakeTokenRepo, RecordingSink, make_token
from workers.health_monitor import HealthMonitor


@pytest.fixture
def monitor(
    token_repo: FakeTokenRepo,
    connection_health_repo: FakeConnectionHealthRepo,
    refresh_coordinator: TokenRefreshCoordinator,
    resolver: ConsolidatedStatusResolver,
    orchestrator: RecoveryOrchestrator,
    notifier: ConnectionNotifier,
    health_controller: ConnectionHealthController,
) -> HealthMonitor:
    return HealthMonitor(
        token_repo=token_repo,
        connection_health_repo=connection_health_repo,
        refresh_coordinator=refresh_coordinator,
        resolver=resolver,
        recovery_orchestrator=orchestrator,
        notifier=notifier,
        health_controller=health_controller,
    )


@pytest.fixture
def two_connections(token_repo: FakeTokenRepo, connection_health_repo: FakeConnectionHealthRepo, cipher: TokenCipher):
    """User 1 has a token about to expire; user 2 revoked access and must reconnect."""
    expiring = token_repo.put(make_token(cipher, 1, PROVIDER, expires_in=timedelta(minutes=5)))
    healthy = ConnectionHealthRecord.build(1, PROVIDER)
    healthy.consolidated_status = ConsolidatedStatus.healthy
    healthy.token_expires_at = expiring.expires_at
    connection_health_repo.put(healthy)

    token_repo.put(make_token(cipher, 2, PROVIDER, requires_user_intervention=True))
    revoked = ConnectionHealthRecord.build(2, PROVIDER)
    for _ in range(3):
        revoked.apply_failure(CloudStorageErrorType.TOKEN_EXPIRED, "401 Unauthorized")
    revoked.consolidated_status = ConsolidatedStatus.authentication_required
    connection_health_repo.put(revoked)
    return healthy, revoked


@pytest.mark.asyncio
async def test_empty_cycle(monitor: HealthMonitor) -> None:
    cycle = await monitor.run_cycle()

    assert set(cycle.values()) == {0}
    assert monitor.stats["cycles"] == 1
    assert monitor.stats["errors"] == 0


@pytest.mark.asyncio
async def test_cycle_refreshes_resolves_recovers_and_notifies(
    monitor: HealthMonitor,
    storage_provider: FakeStorageProvider,
    sink: RecordingSink,
    two_connections,
) -> None:
    healthy, revoked = two_connections

    cycle = await monitor.run_cycle()

    assert cycle == {
        "tokens_refreshed": 1,
        "statuses_resolved": 2,
        "recoveries_attempted": 1,
        "recoveries_succeeded": 0,
        "notifications_sent": 2,
        "records_cleaned": 0,
    }
    assert storage_provider.refresh_calls == 1
    assert healthy.consolidated_status == ConsolidatedStatus.healthy
    assert revoked.consolidated_status == ConsolidatedStatus.authentication_required
    assert sorted((user_id, template_type) for user_id, template_type, _ in sink.sent) == [
        (1, "token_expiring"),
        (2, "refresh_failure"),
        (2, "unhealthy_connection"),
    ]


@pytest.mark.asyncio
async def test_failing_step_does_not_stop_the_cycle(
    monitor: HealthMonitor, token_repo: FakeTokenRepo, monkeypatch: pytest.MonkeyPatch, two_connections
) -> None:
    async def broken(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(token_repo, "get_expiring", broken)

    cycle = await monitor.run_cycle()

    assert cycle["tokens_refreshed"] == 0
    assert cycle["statuses_resolved"] == 2
    assert cycle["recoveries_attempted"] == 1
    # The expiring-token sweep fails too, so the notification step reports nothing.
    assert cycle["notifications_sent"] == 0
    assert monitor.stats["errors"] == 2


@pytest.mark.asyncio
async def test_run_forever_stops_on_request(monitor: HealthMonitor) -> None:
    handlers = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        task = asyncio.create_task(monitor.run_forever(interval=60))
        await asyncio.sleep(0.1)
        started = datetime.now(UTC)
        monitor.stop()
        await asyncio.wait_for(task, timeout=2)
    finally:
        for sig, handler in handlers.items():
            signal.signal(sig, handler)

    assert monitor.stats["cycles"] == 1
    assert datetime.now(UTC) - started < timedelta(seconds=2)
