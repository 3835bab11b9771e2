import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum

from app.cache import CacheService

logger = logging.getLogger(__name__)

# Sliding-window log: one sorted-set member per permitted attempt, scored by its timestamp in ms.
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call("zremrangebyscore", key, "-inf", now - window)
local count = redis.call("zcard", key)
if count >= limit then
    local retry_after = window
    local oldest = redis.call("zrange", key, 0, 0, "WITHSCORES")
    if oldest[2] then
        retry_after = tonumber(oldest[2]) + window - now
    end
    return {0, count, retry_after}
end

redis.call("zadd", key, now, ARGV[4])
redis.call("pexpire", key, window)
return {1, count + 1, 0}
"""


class RateLimitedOperation(Enum):
    live_validation = "live_validation"
    token_refresh = "token_refresh"
    connectivity_test = "connectivity_test"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


def rate_limit_key(operation: RateLimitedOperation, user_id: int, provider: str) -> str:
    return f"{operation.value}_rate_limit_{user_id}_{provider}"


class RateLimiter:
    """Per-(user, provider, operation) sliding-window limiter with atomic check-and-increment in Redis."""

    def __init__(self, cache: CacheService) -> None:
        self._logger = logging.getLogger(__name__)
        self._cache = cache

    async def attempt(
        self, operation: RateLimitedOperation, user_id: int, provider: str, limit: int, window_seconds: int
    ) -> RateLimitDecision:
        """Record one attempt if the window still has room; a refused attempt is not counted."""
        key = self._cache.make_key(rate_limit_key(operation, user_id, provider))
        now_ms = int(time.time() * 1000)
        allowed, count, retry_after_ms = await self._cache.redis.eval(
            SLIDING_WINDOW_SCRIPT, 1, key, now_ms, window_seconds * 1000, limit, f"{now_ms}-{uuid.uuid4().hex}"
        )
        decision = RateLimitDecision(
            allowed=bool(int(allowed)),
            count=int(count),
            limit=limit,
            retry_after=-(-int(retry_after_ms) // 1000),
        )
        if not decision.allowed:
            self._logger.info(
                f"Rate limit reached for {operation.value} user_id={user_id} provider={provider} "
                f"({decision.count}/{limit}), retry in {decision.retry_after}s"
            )
        return decision

    async def hits(self, operation: RateLimitedOperation, user_id: int, provider: str, window_seconds: int) -> int:
        key = self._cache.make_key(rate_limit_key(operation, user_id, provider))
        now_ms = int(time.time() * 1000)
        return int(await self._cache.redis.zcount(key, now_ms - window_seconds * 1000, "+inf"))

    async def clear(self, user_id: int, provider: str, operation: RateLimitedOperation | None = None) -> None:
        operations = [operation] if operation else list(RateLimitedOperation)
        await self._cache.delete(*(rate_limit_key(op, user_id, provider) for op in operations))
