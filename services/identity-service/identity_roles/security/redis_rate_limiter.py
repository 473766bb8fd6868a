"""Redis-backed fixed window rate limiter."""

from __future__ import annotations

from typing import Final

from redis import Redis
from redis.exceptions import ResponseError


class RedisFixedWindowRateLimiter:
    """Distributed fixed window limiter shared by every service instance.

    The counter key expires ``window_seconds`` after the window's first accepted call,
    which gives the lazy reset. Rejected calls never touch the counter.
    """

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local window_ms = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])

    local current = tonumber(redis.call('GET', key) or '0')
    if current >= max_requests then
        return 0
    end
    local count = redis.call('INCR', key)
    if count == 1 then
        redis.call('PEXPIRE', key, window_ms)
    end
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "rate"
    ) -> None:
        """Initialise the Redis client, window configuration, and Lua script cache."""
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._LUA_SCRIPT)

    def allow(self, key: str) -> bool:
        """Return ``True`` when the key is still within the distributed rate limit."""
        redis_key = f"{self._key_prefix}:{key}"
        try:
            result = self._script(keys=[redis_key], args=[self._window_ms, self._max_requests])
            return int(result) == 1
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                return self._allow_fallback(redis_key)
            raise

    def _allow_fallback(self, redis_key: str) -> bool:
        """Non-atomic variant used when the server has scripting disabled."""
        current = int(self._client.get(redis_key) or 0)
        if current >= self._max_requests:
            return False
        count = self._client.incr(redis_key)
        if count == 1:
            self._client.pexpire(redis_key, self._window_ms)
        return True
