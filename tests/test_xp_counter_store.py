# tests/test_xp_counter_store.py
from __future__ import annotations

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.xp_config import ActivityType
from services.xp_counter_store import RedisCounterStore, activity_log_key, daily_counter_key
from services.xp_stores import CounterStoreUnavailable


class FakeScript:
    def __init__(self, client, source):
        self.client = client
        self.source = source

    async def __call__(self, keys=None, args=None, client=None):
        self.client.calls.append((self.source, keys, args))
        if self.client.error is not None:
            raise self.client.error
        return self.client.result


class FakeRedis:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []
        self.registered = 0

    def register_script(self, source):
        self.registered += 1
        return FakeScript(self, source)


def _store(client):
    async def factory():
        return client

    return RedisCounterStore(client_factory=factory)


def test_key_formats():
    assert daily_counter_key("u1", ActivityType.POSTS, "2026-03-10") == "xp:daily:u1:posts:2026-03-10"
    assert (
        activity_log_key("u1", ActivityType.COMMENTS, "2026-03-10")
        == "xp:daily:u1:comments:activities:2026-03-10"
    )


@pytest.mark.asyncio
async def test_increment_with_cap_parses_script_result():
    client = FakeRedis(result=[20, 100])
    store = _store(client)

    granted, current = await store.atomic_increment_with_cap("k", 30, 100, 3600)

    assert (granted, current) == (20, 100)
    _, keys, args = client.calls[0]
    assert keys == ["k"]
    assert args == [30, 100, 3600]


@pytest.mark.asyncio
async def test_scripts_are_registered_once():
    client = FakeRedis(result=[1, 1])
    store = _store(client)

    await store.atomic_increment_with_cap("k", 1, 100, 60)
    await store.atomic_increment_with_cap("k", 1, 100, 60)

    assert client.registered == 1


@pytest.mark.asyncio
async def test_push_bounded_returns_length():
    client = FakeRedis(result=20)

    assert await _store(client).push_bounded("k", "1700000000000", 20, 60) == 20


@pytest.mark.asyncio
async def test_redis_errors_become_unavailable():
    client = FakeRedis(error=RedisConnectionError("Connection refused"))
    store = _store(client)

    with pytest.raises(CounterStoreUnavailable):
        await store.atomic_increment_with_cap("k", 10, 100, 60)
    with pytest.raises(CounterStoreUnavailable):
        await store.push_bounded("k", "1", 20, 60)
    with pytest.raises(CounterStoreUnavailable):
        await store.release("k", 10)


@pytest.mark.asyncio
async def test_release_ignores_non_positive_amounts():
    client = FakeRedis(result=0)

    await _store(client).release("k", 0)

    assert client.calls == []


@pytest.fixture
def fake_redis():
    return fakeredis.FakeAsyncRedis(decode_responses=True)


@pytest.mark.asyncio
async def test_lua_increment_truncates_at_cap(fake_redis):
    store = _store(fake_redis)

    results = [await store.atomic_increment_with_cap("cap", 40, 100, 60) for _ in range(4)]

    assert results == [(40, 40), (40, 80), (20, 100), (0, 100)]
    assert int(await fake_redis.get("cap")) == 100
    assert await fake_redis.ttl("cap") == 60


@pytest.mark.asyncio
async def test_lua_increment_leaves_missing_key_alone_when_capped(fake_redis):
    store = _store(fake_redis)

    assert await store.atomic_increment_with_cap("empty", 10, 0, 60) == (0, 0)
    assert await fake_redis.exists("empty") == 0


@pytest.mark.asyncio
async def test_lua_push_bounded_trims_list(fake_redis):
    store = _store(fake_redis)

    lengths = [await store.push_bounded("log", str(i), 20, 90) for i in range(25)]

    assert lengths[:3] == [1, 2, 3]
    assert lengths[-1] == 20
    assert await fake_redis.llen("log") == 20
    # Newest first
    assert await fake_redis.lindex("log", 0) == "24"
    assert await fake_redis.ttl("log") == 90


@pytest.mark.asyncio
async def test_lua_release_keeps_ttl_and_floors_at_zero(fake_redis):
    store = _store(fake_redis)
    await store.atomic_increment_with_cap("cap", 100, 100, 60)

    await store.release("cap", 30)
    assert int(await fake_redis.get("cap")) == 70
    assert await fake_redis.ttl("cap") == 60

    await store.release("cap", 500)
    assert int(await fake_redis.get("cap")) == 0
    assert await fake_redis.ttl("cap") == 60


@pytest.mark.asyncio
async def test_lua_release_on_missing_key_creates_nothing(fake_redis):
    await _store(fake_redis).release("never-charged", 10)

    assert await fake_redis.exists("never-charged") == 0
