import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from app.cache import CacheService
from app.exceptions import LockAcquisitionError

logger = logging.getLogger(__name__)

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


def refresh_lock_key(user_id: int, provider: str) -> str:
    return f"token_refresh_{user_id}_{provider}"


class RefreshLock:
    """
    TTL-bounded mutual exclusion for one (user, provider) pair, shared by every process through Redis.

    The lock is a `SET NX EX` key holding a per-holder token. Only the holder that set the token can release or
    extend it, and a holder that never releases (crash, wedged refresh) loses the lock when the TTL runs out.
    """

    def __init__(
        self,
        cache: CacheService,
        user_id: int,
        provider: str,
        ttl: int = 30,
        wait_timeout: float = 5.0,
        retry_delay: float = 0.1,
    ) -> None:
        self.key = refresh_lock_key(user_id, provider)
        self.ttl = ttl
        self.wait_timeout = wait_timeout
        self.retry_delay = retry_delay
        self.lock_value = str(uuid.uuid4())
        self._cache = cache
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    async def acquire(self) -> bool:
        """Try to take the lock, waiting at most `wait_timeout` seconds."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_timeout
        full_key = self._cache.make_key(self.key)
        attempt = 0

        while True:
            attempt += 1
            try:
                if await self._cache.redis.set(full_key, self.lock_value, ex=self.ttl, nx=True):
                    self._acquired = True
                    logger.debug(f"Refresh lock acquired key={self.key} attempt={attempt}")
                    return True
            except Exception as e:
                logger.warning(f"Refresh lock acquire error key={self.key} attempt={attempt}: {e}")

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"Refresh lock wait timed out after {self.wait_timeout}s key={self.key}")
                return False
            await asyncio.sleep(min(self.retry_delay, remaining))

    async def release(self) -> bool:
        if not self._acquired:
            return True

        try:
            result = await self._cache.redis.eval(RELEASE_SCRIPT, 1, self._cache.make_key(self.key), self.lock_value)
        except Exception as e:
            logger.error(f"Refresh lock release error key={self.key}: {e}")
            return False
        finally:
            self._acquired = False

        released = bool(result)
        if not released:
            # TTL expired while held; another process may own the key now.
            logger.warning(f"Refresh lock was no longer held at release key={self.key}")
        return released

    async def extend(self, additional_ttl: int | None = None) -> bool:
        if not self._acquired:
            return False

        ttl = additional_ttl or self.ttl
        try:
            result = await self._cache.redis.eval(
                EXTEND_SCRIPT, 1, self._cache.make_key(self.key), self.lock_value, ttl
            )
        except Exception as e:
            logger.error(f"Refresh lock extend error key={self.key}: {e}")
            return False
        return bool(result)

    @asynccontextmanager
    async def hold(self, raise_on_failure: bool = False) -> AsyncGenerator[bool, None]:
        """
        async with lock.hold() as acquired:
            if acquired:
                ...
        """
        acquired = await self.acquire()
        if not acquired and raise_on_failure:
            raise LockAcquisitionError(f"Failed to acquire lock: {self.key}")
        try:
            yield acquired
        finally:
            if acquired:
                await self.release()


async def is_refresh_in_progress(cache: CacheService, user_id: int, provider: str) -> bool:
    return bool(await cache.redis.exists(cache.make_key(refresh_lock_key(user_id, provider))))


async def refresh_lock_ttl(cache: CacheService, user_id: int, provider: str) -> int:
    """Seconds left on the current holder's lock, or 0 when nobody holds it."""
    return max(0, await cache.ttl(refresh_lock_key(user_id, provider)))
