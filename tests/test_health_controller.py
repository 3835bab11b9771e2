from datetime import UTC, datetime, timedelta

import pytest

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConnectionState, ConsolidatedStatus
from app.controllers.health.health_controller import ConnectionHealthController, token_backoff_seconds
from app.models import ConnectionHealthRecord
from app.utils.crypto import TokenCipher
from tests.conftest import PROVIDER, USER_ID
from tests.fakes import FakeConnectionHealthRepo, FakeStorageProvider, FakeTokenRepo, make_token


@pytest.mark.parametrize(
    "failures, seconds",
    [(0, 0), (-1, 0), (1, 30), (2, 60), (3, 120), (4, 240), (5, 300), (12, 300)],
)
def test_token_backoff(failures: int, seconds: int) -> None:
    assert token_backoff_seconds(failures) == seconds


@pytest.mark.asyncio
async def test_successful_operation_resets_record(
    health_controller: ConnectionHealthController, connection_health_repo: FakeConnectionHealthRepo
) -> None:
    await health_controller.mark_connection_unhealthy(USER_ID, PROVIDER, "timeout", CloudStorageErrorType.TIMEOUT)

    record = await health_controller.record_successful_operation(USER_ID, PROVIDER, {"folder_id": "abc"})

    assert record.consecutive_failures == 0
    assert record.status == ConnectionState.healthy
    assert record.consolidated_status == ConsolidatedStatus.healthy
    assert record.provider_specific_data == {"folder_id": "abc"}
    assert connection_health_repo.upserts == 2


@pytest.mark.asyncio
async def test_mark_unhealthy_escalates(health_controller: ConnectionHealthController) -> None:
    for _ in range(2):
        record = await health_controller.mark_connection_unhealthy(
            USER_ID, PROVIDER, "connection reset", CloudStorageErrorType.NETWORK_ERROR, {"operation": "upload"}
        )

    assert record.status == ConnectionState.degraded
    assert record.consolidated_status == ConsolidatedStatus.connection_issues
    assert record.last_error_context == {"operation": "upload"}
    assert not record.requires_reconnection

    record = await health_controller.mark_connection_unhealthy(
        USER_ID, PROVIDER, "401", CloudStorageErrorType.TOKEN_EXPIRED
    )
    assert record.consolidated_status == ConsolidatedStatus.authentication_required
    assert record.requires_reconnection


@pytest.mark.asyncio
async def test_summary_for_healthy_connection(
    health_controller: ConnectionHealthController, token_repo: FakeTokenRepo, cipher: TokenCipher
) -> None:
    token = token_repo.put(make_token(cipher, USER_ID, PROVIDER))

    summary = await health_controller.get_health_summary(USER_ID, PROVIDER)

    assert summary["consolidated_status"] == "healthy"
    assert summary["status"] == "healthy"
    assert summary["token_expires_at"] == token.expires_at.isoformat()
    assert summary["token_backoff_seconds"] == 0
    assert summary["display_message"] == "Connected and working properly"
    assert summary["display"]["action_buttons"] == []


@pytest.mark.asyncio
async def test_summary_for_failing_connection(
    health_controller: ConnectionHealthController,
    token_repo: FakeTokenRepo,
    storage_provider: FakeStorageProvider,
    cipher: TokenCipher,
) -> None:
    token_repo.put(make_token(cipher, USER_ID, PROVIDER))
    storage_provider.probe_error = ConnectionError("connection reset by peer")
    for _ in range(2):
        await health_controller.mark_connection_unhealthy(
            USER_ID, PROVIDER, "connection reset", CloudStorageErrorType.NETWORK_ERROR
        )

    summary = await health_controller.get_health_summary(USER_ID, PROVIDER)

    assert summary["consolidated_status"] == "connection_issues"
    assert summary["status"] == "unhealthy"
    assert summary["raw_status"] == "degraded"
    assert summary["consecutive_failures"] == 2
    assert summary["last_error_type"] == "network_error"
    assert summary["token_backoff_seconds"] == 60
    assert summary["display_message"].startswith("Network connection issue prevented the Google Drive operation")
    assert summary["display"]["urgency"] == "low"


@pytest.mark.asyncio
async def test_rate_limit_status_and_clear(
    health_controller: ConnectionHealthController, token_repo: FakeTokenRepo, cipher: TokenCipher
) -> None:
    token_repo.put(make_token(cipher, USER_ID, PROVIDER))
    await health_controller.mark_connection_unhealthy(USER_ID, PROVIDER, "reset", CloudStorageErrorType.NETWORK_ERROR)
    await health_controller.get_health_summary(USER_ID, PROVIDER)

    limits = await health_controller.get_rate_limit_status(USER_ID, PROVIDER)

    assert limits["live_validation"] == {"hits": 1, "limit": 6, "window_seconds": 60, "remaining": 5}
    assert limits["connectivity_test"]["hits"] == 1
    assert limits["token_refresh"]["hits"] == 0

    await health_controller.clear_rate_limits(USER_ID, PROVIDER)
    limits = await health_controller.get_rate_limit_status(USER_ID, PROVIDER)
    assert all(entry["hits"] == 0 for entry in limits.values())


@pytest.mark.asyncio
async def test_cleanup_removes_stale_healthy_records(
    health_controller: ConnectionHealthController, connection_health_repo: FakeConnectionHealthRepo
) -> None:
    stale_at = datetime.now(UTC) - timedelta(days=40)
    stale = connection_health_repo.put(ConnectionHealthRecord.build(1, PROVIDER))
    stale.updated_at = stale_at
    failing = connection_health_repo.put(ConnectionHealthRecord.build(2, PROVIDER))
    for _ in range(5):
        failing.apply_failure(CloudStorageErrorType.NETWORK_ERROR, "reset")
    failing.updated_at = stale_at
    recent = connection_health_repo.put(ConnectionHealthRecord.build(3, PROVIDER))
    recent.updated_at = datetime.now(UTC)

    assert await health_controller.cleanup_old_health_records() == 1
    assert set(connection_health_repo.records) == {(2, PROVIDER), (3, PROVIDER)}
    assert await health_controller.cleanup_old_health_records(days=0) == 1
