from datetime import UTC, datetime, timedelta

import pytest

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConsolidatedStatus
from app.controllers.coordination.rate_limiter import RateLimitedOperation, RateLimiter
from app.controllers.health.resolver import ConsolidatedStatusResolver, find_inconsistencies
from app.models import ConnectionHealthRecord
from app.utils.crypto import TokenCipher
from settings import settings
from tests.conftest import PROVIDER, USER_ID
from tests.fakes import FakeConnectionHealthRepo, FakeStorageProvider, FakeTokenRepo, make_token

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


def stored(status: ConsolidatedStatus | None, **fields) -> ConnectionHealthRecord:
    record = ConnectionHealthRecord.build(USER_ID, PROVIDER)
    record.consolidated_status = status
    for name, value in fields.items():
        setattr(record, name, value)
    return record


class TestInconsistencyChecks:
    def test_consistent_record_passes(self) -> None:
        record = stored(ConsolidatedStatus.healthy, token_expires_at=NOW + timedelta(hours=1))
        assert find_inconsistencies(record, NOW) == []

    def test_healthy_with_expired_token(self) -> None:
        record = stored(ConsolidatedStatus.healthy, token_expires_at=NOW - timedelta(hours=2))
        assert find_inconsistencies(record, NOW) == ["healthy_with_expired_token"]

    def test_not_connected_after_recent_success(self) -> None:
        record = stored(ConsolidatedStatus.not_connected, last_successful_operation_at=NOW - timedelta(minutes=10))
        assert find_inconsistencies(record, NOW) == ["not_connected_after_recent_success"]

        record.last_successful_operation_at = NOW - timedelta(days=2)
        assert find_inconsistencies(record, NOW) == []

    def test_healthy_while_reconnection_required(self) -> None:
        record = stored(
            ConsolidatedStatus.healthy,
            requires_reconnection=True,
            last_error_type=CloudStorageErrorType.INVALID_CREDENTIALS,
        )
        assert find_inconsistencies(record, NOW) == ["healthy_while_reconnection_required"]

        record.last_error_type = CloudStorageErrorType.NETWORK_ERROR
        assert find_inconsistencies(record, NOW) == []

    def test_missing_status(self) -> None:
        assert find_inconsistencies(stored(None), NOW) == ["missing_consolidated_status"]


@pytest.mark.asyncio
async def test_first_resolution_probes_and_persists(
    resolver: ConsolidatedStatusResolver,
    connection_health_repo: FakeConnectionHealthRepo,
    token_repo: FakeTokenRepo,
    rate_limiter: RateLimiter,
    cipher: TokenCipher,
) -> None:
    token = token_repo.put(make_token(cipher, USER_ID, PROVIDER))

    status = await resolver.determine_consolidated_status(USER_ID, PROVIDER)

    record = connection_health_repo.records[(USER_ID, PROVIDER)]
    assert status == ConsolidatedStatus.healthy
    assert record.consolidated_status == ConsolidatedStatus.healthy
    assert record.token_expires_at == token.expires_at
    assert record.last_live_validation_at is not None
    assert record.api_connectivity_last_tested_at is not None
    assert record.live_validation_result["consolidated_status"] == "healthy"
    # Forced re-probes do not count against the live validation limit.
    assert await rate_limiter.hits(RateLimitedOperation.live_validation, USER_ID, PROVIDER, 60) == 0


@pytest.mark.asyncio
async def test_live_validation_is_rate_limited(
    resolver: ConsolidatedStatusResolver,
    connection_health_repo: FakeConnectionHealthRepo,
    token_repo: FakeTokenRepo,
    rate_limiter: RateLimiter,
    cipher: TokenCipher,
) -> None:
    token = token_repo.put(make_token(cipher, USER_ID, PROVIDER))
    connection_health_repo.put(stored(ConsolidatedStatus.healthy, token_expires_at=token.expires_at))

    statuses = [await resolver.determine_consolidated_status(USER_ID, PROVIDER) for _ in range(8)]

    assert set(statuses) == {ConsolidatedStatus.healthy}
    assert (
        await rate_limiter.hits(RateLimitedOperation.live_validation, USER_ID, PROVIDER, 60)
        == settings.health.live_validations_per_window
    )


@pytest.mark.asyncio
async def test_rate_limited_resolution_returns_stored_status(
    resolver: ConsolidatedStatusResolver,
    connection_health_repo: FakeConnectionHealthRepo,
    token_repo: FakeTokenRepo,
    storage_provider: FakeStorageProvider,
    cipher: TokenCipher,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(settings.health, "live_validations_per_window", 0)
    token_repo.put(make_token(cipher, USER_ID, PROVIDER))
    connection_health_repo.put(stored(ConsolidatedStatus.connection_issues, last_live_validation_at=NOW))

    status = await resolver.determine_consolidated_status(USER_ID, PROVIDER)

    assert status == ConsolidatedStatus.connection_issues
    assert storage_provider.probe_calls == 0
    assert connection_health_repo.upserts == 0


@pytest.mark.asyncio
async def test_healthy_record_with_expired_token_is_corrected_despite_rate_limit(
    resolver: ConsolidatedStatusResolver,
    connection_health_repo: FakeConnectionHealthRepo,
    token_repo: FakeTokenRepo,
    cipher: TokenCipher,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(settings.health, "live_validations_per_window", 0)
    token_repo.put(
        make_token(cipher, USER_ID, PROVIDER, expires_in=timedelta(hours=-2), requires_user_intervention=True)
    )
    connection_health_repo.put(
        stored(ConsolidatedStatus.healthy, token_expires_at=datetime.now(UTC) - timedelta(hours=2))
    )

    status = await resolver.determine_consolidated_status(USER_ID, PROVIDER)

    record = connection_health_repo.records[(USER_ID, PROVIDER)]
    assert status == ConsolidatedStatus.authentication_required
    assert record.consolidated_status == ConsolidatedStatus.authentication_required
    assert record.requires_reconnection
    assert record.last_error_type == CloudStorageErrorType.INVALID_CREDENTIALS


@pytest.mark.asyncio
async def test_healthy_probe_clears_failures(
    resolver: ConsolidatedStatusResolver,
    connection_health_repo: FakeConnectionHealthRepo,
    token_repo: FakeTokenRepo,
    cipher: TokenCipher,
) -> None:
    token_repo.put(make_token(cipher, USER_ID, PROVIDER))
    record = stored(ConsolidatedStatus.connection_issues)
    for _ in range(3):
        record.apply_failure(CloudStorageErrorType.NETWORK_ERROR, "connection reset")
    connection_health_repo.put(record)

    status = await resolver.determine_consolidated_status(USER_ID, PROVIDER)

    assert status == ConsolidatedStatus.healthy
    assert record.consecutive_failures == 0
    assert record.last_error_type is None
    assert not record.requires_reconnection


@pytest.mark.asyncio
async def test_resolution_never_raises(
    resolver: ConsolidatedStatusResolver,
    connection_health_repo: FakeConnectionHealthRepo,
    token_repo: FakeTokenRepo,
    cipher: TokenCipher,
) -> None:
    token_repo.put(make_token(cipher, USER_ID, PROVIDER))
    connection_health_repo.fail_upserts = True

    status = await resolver.determine_consolidated_status(USER_ID, PROVIDER)

    assert status == ConsolidatedStatus.connection_issues
    assert connection_health_repo.rollbacks == 1
