# services/xp_counter_store.py
"""
Redis-backed daily XP counters.

Each operation is a single Lua script, so the read, compare and write for one
key happen atomically on the Redis server even with many API instances.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import settings
from app.core.xp_config import ActivityType
from services.redis_service import get_redis
from services.xp_stores import CounterStore, CounterStoreUnavailable

_INCREMENT_WITH_CAP = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local amount = tonumber(ARGV[1])
local cap = tonumber(ARGV[2])
if amount <= 0 or current >= cap then
    return {0, current}
end
local granted = math.min(amount, cap - current)
current = redis.call('INCRBY', KEYS[1], granted)
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[3]))
return {granted, current}
"""

_PUSH_BOUNDED = """
local max_len = tonumber(ARGV[2])
local length = redis.call('LPUSH', KEYS[1], ARGV[1])
redis.call('LTRIM', KEYS[1], 0, max_len - 1)
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[3]))
return math.min(length, max_len)
"""

_RELEASE = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current <= 0 then
    return 0
end
local remaining = math.max(0, current - tonumber(ARGV[1]))
redis.call('SET', KEYS[1], remaining, 'KEEPTTL')
return remaining
"""


def daily_counter_key(user_id: str, activity_type: ActivityType, day: str) -> str:
    return f"{settings.XP_COUNTER_PREFIX}{user_id}:{activity_type.value}:{day}"


def activity_log_key(user_id: str, activity_type: ActivityType, day: str) -> str:
    return f"{settings.XP_COUNTER_PREFIX}{user_id}:{activity_type.value}:activities:{day}"


class RedisCounterStore(CounterStore):

    def __init__(self, client_factory: Callable[[], Awaitable[redis.Redis]] = get_redis):
        self._client_factory = client_factory
        self._client: Optional[redis.Redis] = None
        self._scripts = {}

    async def _script(self, name: str, source: str):
        if self._client is None:
            self._client = await self._client_factory()
        script = self._scripts.get(name)
        if script is None:
            script = self._client.register_script(source)
            self._scripts[name] = script
        return script

    async def atomic_increment_with_cap(
        self, key: str, amount: int, cap: int, ttl_seconds: int
    ) -> Tuple[int, int]:
        try:
            script = await self._script("increment_with_cap", _INCREMENT_WITH_CAP)
            granted, current = await script(keys=[key], args=[int(amount), int(cap), int(ttl_seconds)])
        except (RedisError, OSError) as exc:
            raise CounterStoreUnavailable(str(exc)) from exc
        return int(granted), int(current)

    async def push_bounded(
        self, key: str, value: str, max_len: int, ttl_seconds: int
    ) -> int:
        try:
            script = await self._script("push_bounded", _PUSH_BOUNDED)
            length = await script(keys=[key], args=[value, int(max_len), int(ttl_seconds)])
        except (RedisError, OSError) as exc:
            raise CounterStoreUnavailable(str(exc)) from exc
        return int(length)

    async def release(self, key: str, amount: int) -> None:
        if amount <= 0:
            return
        try:
            script = await self._script("release", _RELEASE)
            await script(keys=[key], args=[int(amount)])
        except (RedisError, OSError) as exc:
            raise CounterStoreUnavailable(str(exc)) from exc
