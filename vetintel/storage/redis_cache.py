from __future__ import annotations

import hashlib
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from vetintel.storage.errors import StoreUnavailable
from vetintel.storage.models import RateLimitDecision


class RedisRateLimitStore:
    """Redis-backed fixed-window rate limit records.

    Each (user, endpoint) key is a hash holding ``window_start``, ``count``,
    ``blocked_until`` and ``ip``. The whole state transition runs inside one
    Lua script so concurrent gateway processes can never both observe
    ``count < capacity`` for the last free slot.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # Returns {allowed, remaining, reset_ms}
    _FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local capacity = tonumber(ARGV[3])
local ip = ARGV[4]

local data = redis.call('HMGET', key, 'window_start', 'count', 'blocked_until')
local window_start = tonumber(data[1])
local count = tonumber(data[2])
local blocked_until = tonumber(data[3])

if blocked_until ~= nil and blocked_until > now then
  redis.call('HSET', key, 'ip', ip)
  return {0, 0, blocked_until}
end

if window_start == nil or count == nil or window_start + window <= now then
  redis.call('DEL', key)
  redis.call('HSET', key, 'window_start', now, 'count', 1, 'ip', ip)
  redis.call('PEXPIRE', key, window)
  return {1, capacity - 1, now + window}
end

local reset = window_start + window
if count < capacity then
  count = redis.call('HINCRBY', key, 'count', 1)
  redis.call('HSET', key, 'ip', ip)
  return {1, capacity - count, reset}
end

redis.call('HSET', key, 'blocked_until', reset, 'ip', ip)
redis.call('PEXPIRE', key, math.max(reset - now, 1))
return {0, 0, reset}
"""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = client if client is not None else aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._fixed_window = self.client.register_script(self._FIXED_WINDOW_SCRIPT)

    @staticmethod
    def _record_key(user_id: str, endpoint: str) -> str:
        """Build a collision-resistant key for one (user, endpoint) record.

        The user id is hashed so delimiter characters cannot forge another
        user's key.
        """
        digest = hashlib.sha256(user_id.encode()).hexdigest()
        return f"ratelimit:{endpoint}:{digest}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""
        # Short-lived sync client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def hit(
        self,
        user_id: str,
        endpoint: str,
        *,
        now_ms: int,
        window_ms: int,
        capacity: int,
        ip_address: Optional[str] = None,
    ) -> RateLimitDecision:
        try:
            allowed, remaining, reset_ms = await self._fixed_window(
                keys=[self._record_key(user_id, endpoint)],
                args=[now_ms, window_ms, capacity, ip_address or "unknown"],
            )
        except RedisError as exc:
            raise StoreUnavailable(
                "rate limit store unavailable", {"error_type": type(exc).__name__}
            ) from exc
        return RateLimitDecision(
            allowed=bool(int(allowed)),
            remaining=max(0, int(remaining)),
            reset_time_ms=int(reset_ms),
            limit=capacity,
        )

    async def close(self) -> None:
        """Close the connection pool on shutdown."""
        await self.client.close()
        await self.client.connection_pool.disconnect()
