import json
import logging
from typing import Any

from redis.asyncio import Redis, from_url

logger = logging.getLogger(__name__)

INCR_WITH_EXPIRY_SCRIPT = """
local count = redis.call("incr", KEYS[1])
if count == 1 then
    redis.call("expire", KEYS[1], ARGV[1])
end
return count
"""


def create_redis(url: str) -> Redis:
    """Create the shared async Redis client backing locks, counters and throttles."""
    return from_url(url, decode_responses=True)


class CacheService:
    """Thin JSON cache over Redis with a namespaced key scheme."""

    def __init__(self, redis: Redis, prefix: str = "") -> None:
        self._redis = redis
        self._prefix = prefix

    @property
    def redis(self) -> Redis:
        return self._redis

    def make_key(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    async def get_json(self, key: str) -> Any | None:
        raw = await self._redis.get(self.make_key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable cache entry {key}")
            await self._redis.delete(self.make_key(key))
            return None

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        await self._redis.set(self.make_key(key), json.dumps(value, default=str), ex=max(1, int(ttl)))

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self.make_key(key))

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._redis.set(self.make_key(key), value, ex=max(1, int(ttl)))

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """SET NX EX; true only for the caller that created the key."""
        return bool(await self._redis.set(self.make_key(key), value, ex=max(1, int(ttl)), nx=True))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._redis.delete(*(self.make_key(key) for key in keys)))

    async def incr(self, key: str, ttl: int) -> int:
        """Atomically increment a counter, starting its expiry on first increment."""
        count = await self._redis.eval(INCR_WITH_EXPIRY_SCRIPT, 1, self.make_key(key), max(1, int(ttl)))
        return int(count)

    async def ttl(self, key: str) -> int:
        return int(await self._redis.ttl(self.make_key(key)))

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Redis connection closed")
