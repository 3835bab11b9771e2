import asyncio

import pytest
from fakeredis import FakeAsyncRedis

from app.cache import CacheService
from app.controllers.coordination.lock import RefreshLock, is_refresh_in_progress, refresh_lock_key, refresh_lock_ttl
from app.controllers.coordination.rate_limiter import RateLimitedOperation, RateLimiter
from app.exceptions import LockAcquisitionError

PROVIDER = "google-drive"


@pytest.mark.asyncio
async def test_lock_is_exclusive_per_user_and_provider(cache: CacheService) -> None:
    first = RefreshLock(cache, 1, PROVIDER, ttl=30, wait_timeout=0.2, retry_delay=0.05)
    second = RefreshLock(cache, 1, PROVIDER, ttl=30, wait_timeout=0.2, retry_delay=0.05)
    other_provider = RefreshLock(cache, 1, "amazon-s3", ttl=30, wait_timeout=0.2)

    assert await first.acquire()
    assert not await second.acquire()
    assert await other_provider.acquire()
    assert await is_refresh_in_progress(cache, 1, PROVIDER)

    assert await first.release()
    assert await second.acquire()
    await second.release()
    await other_provider.release()
    assert not await is_refresh_in_progress(cache, 1, PROVIDER)


@pytest.mark.asyncio
async def test_waiter_acquires_once_holder_releases(cache: CacheService) -> None:
    holder = RefreshLock(cache, 1, PROVIDER, wait_timeout=1.0)
    waiter = RefreshLock(cache, 1, PROVIDER, wait_timeout=2.0, retry_delay=0.02)
    assert await holder.acquire()

    async def release_later() -> None:
        await asyncio.sleep(0.1)
        await holder.release()

    release_task = asyncio.create_task(release_later())
    assert await waiter.acquire()
    await release_task
    await waiter.release()


@pytest.mark.asyncio
async def test_lock_expires_with_its_ttl(cache: CacheService, redis: FakeAsyncRedis) -> None:
    crashed = RefreshLock(cache, 1, PROVIDER, ttl=30)
    assert await crashed.acquire()
    assert 0 < await refresh_lock_ttl(cache, 1, PROVIDER) <= 30

    # Simulate the TTL running out on a holder that never released.
    await redis.pexpire(cache.make_key(refresh_lock_key(1, PROVIDER)), 50)
    await asyncio.sleep(0.15)

    successor = RefreshLock(cache, 1, PROVIDER, wait_timeout=0.2)
    assert await successor.acquire()

    # The stale holder must not release the successor's lock.
    assert not await crashed.release()
    assert await is_refresh_in_progress(cache, 1, PROVIDER)
    await successor.release()


@pytest.mark.asyncio
async def test_extend_only_for_holder(cache: CacheService) -> None:
    holder = RefreshLock(cache, 1, PROVIDER, ttl=5)
    outsider = RefreshLock(cache, 1, PROVIDER, ttl=5, wait_timeout=0.05)
    assert await holder.acquire()

    assert await holder.extend(60)
    assert await refresh_lock_ttl(cache, 1, PROVIDER) > 5
    assert not await outsider.extend(60)
    await holder.release()
    assert await refresh_lock_ttl(cache, 1, PROVIDER) == 0


@pytest.mark.asyncio
async def test_hold_context_releases_and_can_raise(cache: CacheService) -> None:
    lock = RefreshLock(cache, 1, PROVIDER)
    async with lock.hold() as acquired:
        assert acquired
        blocked = RefreshLock(cache, 1, PROVIDER, wait_timeout=0.05)
        with pytest.raises(LockAcquisitionError):
            async with blocked.hold(raise_on_failure=True):
                pass
    assert not await is_refresh_in_progress(cache, 1, PROVIDER)


@pytest.mark.asyncio
async def test_rate_limiter_caps_attempts_in_window(rate_limiter: RateLimiter) -> None:
    decisions = [
        await rate_limiter.attempt(RateLimitedOperation.live_validation, 1, PROVIDER, limit=3, window_seconds=60)
        for _ in range(4)
    ]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert decisions[2].remaining == 0
    refused = decisions[3]
    assert refused.count == 3
    assert 0 < refused.retry_after <= 60
    assert await rate_limiter.hits(RateLimitedOperation.live_validation, 1, PROVIDER, 60) == 3


@pytest.mark.asyncio
async def test_rate_limits_are_independent(rate_limiter: RateLimiter) -> None:
    for _ in range(2):
        await rate_limiter.attempt(RateLimitedOperation.token_refresh, 1, PROVIDER, limit=2, window_seconds=60)

    blocked = await rate_limiter.attempt(RateLimitedOperation.token_refresh, 1, PROVIDER, limit=2, window_seconds=60)
    other_user = await rate_limiter.attempt(RateLimitedOperation.token_refresh, 2, PROVIDER, limit=2, window_seconds=60)
    other_provider = await rate_limiter.attempt(
        RateLimitedOperation.token_refresh, 1, "amazon-s3", limit=2, window_seconds=60
    )
    other_operation = await rate_limiter.attempt(
        RateLimitedOperation.connectivity_test, 1, PROVIDER, limit=2, window_seconds=60
    )

    assert not blocked.allowed
    assert other_user.allowed
    assert other_provider.allowed
    assert other_operation.allowed


@pytest.mark.asyncio
async def test_concurrent_attempts_never_exceed_limit(rate_limiter: RateLimiter) -> None:
    decisions = await asyncio.gather(
        *(
            rate_limiter.attempt(RateLimitedOperation.connectivity_test, 1, PROVIDER, limit=5, window_seconds=60)
            for _ in range(20)
        )
    )
    assert sum(d.allowed for d in decisions) == 5


@pytest.mark.asyncio
async def test_window_slides_and_clear_resets(rate_limiter: RateLimiter) -> None:
    op = RateLimitedOperation.live_validation
    assert (await rate_limiter.attempt(op, 1, PROVIDER, limit=1, window_seconds=1)).allowed
    assert not (await rate_limiter.attempt(op, 1, PROVIDER, limit=1, window_seconds=1)).allowed

    await asyncio.sleep(1.1)
    assert (await rate_limiter.attempt(op, 1, PROVIDER, limit=1, window_seconds=1)).allowed

    await rate_limiter.clear(1, PROVIDER)
    assert await rate_limiter.hits(op, 1, PROVIDER, 1) == 0
    assert (await rate_limiter.attempt(op, 1, PROVIDER, limit=1, window_seconds=1)).allowed


@pytest.mark.asyncio
async def test_cache_counter_and_json(cache: CacheService) -> None:
    assert await cache.incr("counter", 60) == 1
    assert await cache.incr("counter", 60) == 2
    assert 0 < await cache.ttl("counter") <= 60

    await cache.set_json("payload", {"status": "healthy", "n": 1}, 30)
    assert await cache.get_json("payload") == {"status": "healthy", "n": 1}
    assert await cache.delete("payload", "counter") == 2
    assert await cache.get_json("payload") is None
