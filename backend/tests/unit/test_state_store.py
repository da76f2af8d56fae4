# backend/tests/unit/test_state_store.py

import asyncio

import pytest
from unittest.mock import AsyncMock

from flowbot.models.flow import FlowState
from flowbot.services.cache_service import (
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    create_key_value_store,
)
from flowbot.services.state_store import FlowStateStore, create_store
from flowbot.utils.circuit_breaker import CircuitBreaker
from flowbot.workflows.definitions import MENU_FLOW
from flowbot.workflows.validator import load_flow_definition


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the key-value store."""

    def __init__(self):
        self.data = {}
        self.calls = []

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, px=None):
        self.calls.append(("set", key, px))
        self.data[key] = value.encode("utf-8")

    async def delete(self, key):
        self.data.pop(key, None)

    async def exists(self, key):
        return int(key in self.data)


def menu_state(current: str = "inicio") -> FlowState:
    return FlowState(flow=load_flow_definition(MENU_FLOW), current=current)


@pytest.mark.asyncio
async def test_memory_store_round_trip():
    store = FlowStateStore(InMemoryKeyValueStore(), ttl_seconds=60)
    await store.set("c1", menu_state())
    assert await store.has("c1") is True
    loaded = await store.get("c1")
    assert loaded == menu_state()
    await store.clear("c1")
    assert await store.get("c1") is None
    assert await store.has("c1") is False


@pytest.mark.asyncio
async def test_memory_store_expires_entries():
    kv = InMemoryKeyValueStore()
    await kv.set("k", "v", ttl_ms=20)
    assert await kv.get("k") == "v"
    await asyncio.sleep(0.05)
    assert await kv.get("k") is None
    assert len(kv) == 0


@pytest.mark.asyncio
async def test_memory_store_rearms_expiry_on_set():
    kv = InMemoryKeyValueStore()
    await kv.set("k", "v1", ttl_ms=200)
    await asyncio.sleep(0.12)
    await kv.set("k", "v2", ttl_ms=200)
    await asyncio.sleep(0.12)
    assert await kv.get("k") == "v2"
    await kv.close()


@pytest.mark.asyncio
async def test_memory_store_without_ttl_keeps_value():
    kv = InMemoryKeyValueStore()
    await kv.set("k", "v")
    assert await kv.exists("k") is True
    await kv.delete("k")
    assert await kv.exists("k") is False


@pytest.mark.asyncio
async def test_undecodable_state_reads_as_none():
    kv = InMemoryKeyValueStore()
    await kv.set("c1", "{not json")
    assert await FlowStateStore(kv).get("c1") is None


@pytest.mark.asyncio
async def test_redis_store_round_trip_preserves_nested_options():
    client = FakeRedis()
    store = FlowStateStore(RedisKeyValueStore(client, prefix="flowbot:flow:"), ttl_seconds=1800)
    await store.set("c1", menu_state())

    assert client.calls == [("set", "flowbot:flow:c1", 1_800_000)]
    loaded = await store.get("c1")
    options = loaded.flow.nodes["inicio"].options
    assert [option.id for option in options] == ["orcamento", "andamento", "localizacao", "outras"]
    assert options[0].aliases == ["1"]
    assert loaded.flow.nodes["inicio"].menu is not None
    assert await store.has("c1") is True


@pytest.mark.asyncio
async def test_redis_failures_degrade_to_miss():
    client = AsyncMock()
    client.get.side_effect = ConnectionError("redis down")
    client.set.side_effect = ConnectionError("redis down")
    kv = RedisKeyValueStore(client, prefix="p:")

    await kv.set("k", "v", ttl_ms=1000)
    assert await kv.get("k") is None


@pytest.mark.asyncio
async def test_open_circuit_blocks_redis_calls():
    client = AsyncMock()
    client.get.side_effect = ConnectionError("redis down")
    breaker = CircuitBreaker(failure_threshold=2, timeout=60)
    kv = RedisKeyValueStore(client, circuit_breaker=breaker)

    for _ in range(3):
        assert await kv.get("k") is None
    assert client.get.await_count == 2


def test_test_mode_always_uses_memory():
    assert isinstance(create_key_value_store("redis", redis_client=FakeRedis()), InMemoryKeyValueStore)
    assert isinstance(create_store().store, InMemoryKeyValueStore)
