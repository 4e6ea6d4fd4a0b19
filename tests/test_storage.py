"""Tests for storage providers and engine state persistence."""

import pytest

from rewardflow.engine import RewardFlowEngine
from rewardflow.exceptions import StorageError
from rewardflow.storage import EngineStateStore, MemoryStorageProvider, StorageConfig
from rewardflow.tiers import TierLevel

from conftest import NOW

HOUR = 3_600


@pytest.fixture
def provider():
    return MemoryStorageProvider(StorageConfig(namespace="test"))


# ---------------------------------------------------------------------------
# MemoryStorageProvider
# ---------------------------------------------------------------------------

class TestMemoryProvider:
    @pytest.mark.asyncio
    async def test_connect_and_health(self, provider):
        assert not await provider.health_check()
        await provider.connect()
        assert await provider.health_check()
        await provider.disconnect()
        assert not await provider.health_check()

    @pytest.mark.asyncio
    async def test_key_value(self, provider):
        assert await provider.set("k", "v")
        assert await provider.get("k") == "v"
        assert await provider.exists("k")
        assert await provider.delete("k")
        assert await provider.get("k") is None
        assert not await provider.delete("k")

    @pytest.mark.asyncio
    async def test_ttl_expires(self, provider):
        await provider.set("k", "v", ttl_seconds=0)
        assert await provider.get("k") is None
        assert not await provider.exists("k")

    @pytest.mark.asyncio
    async def test_hashes(self, provider):
        await provider.hset("h", "a", "1")
        await provider.hset("h", "b", "2")
        assert await provider.hget("h", "a") == "1"
        assert await provider.hget("h", "missing") is None
        assert await provider.hgetall("h") == {"a": "1", "b": "2"}

    @pytest.mark.asyncio
    async def test_lists(self, provider):
        for value in ("a", "b", "c"):
            await provider.rpush("l", value)
        assert await provider.llen("l") == 3
        assert await provider.lrange("l", 0, -1) == ["a", "b", "c"]
        assert await provider.lrange("l", 1, 1) == ["b"]

    @pytest.mark.asyncio
    async def test_incrby(self, provider):
        assert await provider.incrby("n", 5) == 5
        assert await provider.incrby("n", -2) == 3
        await provider.set("s", "text")
        with pytest.raises(StorageError):
            await provider.incrby("s", 1)

    @pytest.mark.asyncio
    async def test_keys_pattern(self, provider):
        await provider.set("test:a", "1")
        await provider.hset("test:b", "f", "1")
        await provider.rpush("other:c", "1")
        assert await provider.keys("test:*") == ["test:a", "test:b"]


# ---------------------------------------------------------------------------
# EngineStateStore
# ---------------------------------------------------------------------------

def _busy_engine(weth_pool):
    engine = RewardFlowEngine()
    engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
    engine.record_liquidity_event("bob", weth_pool, 100_000, now=NOW)
    engine.set_user_preferences("carol", "carol", 10, 5, 60, now=NOW)
    engine.run_aggregation_pass(NOW)
    engine.run_aggregation_pass(NOW + HOUR)
    engine.record_liquidity_event("carol", weth_pool, 1_000, now=NOW + HOUR)
    return engine


class TestEngineStateStore:
    @pytest.mark.asyncio
    async def test_roundtrip(self, provider, weth_pool):
        source = _busy_engine(weth_pool)
        store = EngineStateStore(provider)
        written = await store.save(source)
        assert written["requests"] == 2
        assert written["tasks"] == 1

        restored = RewardFlowEngine()
        await store.load(restored)

        assert restored.pending_balance("carol") == source.pending_balance("carol")
        assert restored.get_tier("alice", now=NOW).level == TierLevel.DIAMOND
        assert restored.activity_summary("bob").activity.total_liquidity == 100_000
        assert restored.get_user_preferences("carol").preferred_chain == 10
        assert restored.distribution_stats() == source.distribution_stats()
        assert restored.scheduler_stats() == source.scheduler_stats()
        assert restored.calculator.stats() == source.calculator.stats()
        assert restored.roster.total_liquidity(weth_pool.pool_id) == 201_000

        task = source.scheduler.tasks()[0]
        assert restored.get_task(task.task_id) == task
        request = source.distributor.requests()[0]
        assert restored.get_request(request.request_id).verify_id()

    @pytest.mark.asyncio
    async def test_requests_appended_once(self, provider, weth_pool):
        engine = _busy_engine(weth_pool)
        store = EngineStateStore(provider)
        await store.save(engine)
        written = await store.save(engine)
        assert written["requests"] == 0
        assert len(await store.load_requests()) == 2
        assert len(await store.load_tasks()) == 1

    @pytest.mark.asyncio
    async def test_restored_nonce_continues(self, provider, weth_pool):
        store = EngineStateStore(provider)
        await store.save(_busy_engine(weth_pool))
        restored = RewardFlowEngine()
        await store.load(restored)
        request = restored.distributor.execute_distribution("dave", 100, 10, now=NOW)
        assert request.nonce == 3

    @pytest.mark.asyncio
    async def test_namespace_prefix(self, provider, weth_pool):
        await EngineStateStore(provider).save(_busy_engine(weth_pool))
        keys = await provider.keys("*")
        assert keys
        assert all(key.startswith("test:") for key in keys)

    @pytest.mark.asyncio
    async def test_corrupt_record(self, provider):
        await provider.hset("test:pending", "alice", "{not json")
        with pytest.raises(StorageError, match="corrupt pending"):
            await EngineStateStore(provider).load(RewardFlowEngine())

    @pytest.mark.asyncio
    async def test_missing_task_body(self, provider):
        await provider.rpush("test:task_ids", "task_missing")
        with pytest.raises(StorageError):
            await EngineStateStore(provider).load_tasks()

    @pytest.mark.asyncio
    async def test_empty_store_loads_nothing(self, provider):
        engine = RewardFlowEngine()
        await EngineStateStore(provider).load(engine)
        assert engine.summary()["users"] == 0
        assert await EngineStateStore(provider).load_counters("scheduler") == {}
