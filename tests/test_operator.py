"""Tests for the asyncio operator."""

import asyncio
import time

import pytest

from rewardflow.engine import RewardFlowEngine
from rewardflow.operator import RewardFlowOperator
from rewardflow.storage import EngineStateStore, MemoryStorageProvider

from conftest import NOW


@pytest.fixture
def fast_operator(engine):
    return RewardFlowOperator(engine, aggregation_interval=0.01, monitor_interval=0.01)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, fast_operator):
        await fast_operator.start()
        assert fast_operator.running
        await asyncio.sleep(0.1)
        await fast_operator.stop()
        assert not fast_operator.running
        assert fast_operator.passes_run >= 1
        assert fast_operator.monitor_ticks >= 1
        assert fast_operator.pass_errors == 0

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, fast_operator):
        await fast_operator.start()
        first = fast_operator._aggregator_task
        await fast_operator.start()
        assert fast_operator._aggregator_task is first
        await fast_operator.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, fast_operator):
        await fast_operator.stop()
        assert not fast_operator.running

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, fast_operator):
        runner = asyncio.create_task(fast_operator.run())
        await asyncio.sleep(0.05)
        await fast_operator.stop()
        await asyncio.wait_for(runner, timeout=1.0)
        assert runner.done()

    def test_intervals_default_to_config(self, engine):
        operator = RewardFlowOperator(engine)
        assert operator.aggregation_interval == engine.config.aggregation_interval_seconds
        assert operator.monitor_interval == engine.config.monitor_interval_seconds


class TestPasses:
    @pytest.mark.asyncio
    async def test_run_pass_records_report(self, engine):
        operator = RewardFlowOperator(engine)
        report = await operator.run_pass()
        assert operator.passes_run == 1
        assert operator.last_report == report

    @pytest.mark.asyncio
    async def test_pass_errors_are_counted(self, engine):
        def broken(now=None):
            raise RuntimeError("boom")

        engine.run_aggregation_pass = broken
        operator = RewardFlowOperator(engine, aggregation_interval=0.01, monitor_interval=10)
        await operator.start()
        await asyncio.sleep(0.05)
        await operator.stop()
        assert operator.pass_errors >= 1
        assert operator.last_error == "boom"
        assert operator.passes_run == 0


class TestPersistence:
    @pytest.mark.asyncio
    async def test_loads_on_start_and_saves_on_stop(self, weth_pool):
        provider = MemoryStorageProvider()
        store = EngineStateStore(provider)

        source = RewardFlowEngine()
        source.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        await store.save(source)

        engine = RewardFlowEngine()
        operator = RewardFlowOperator(engine, state_store=store, aggregation_interval=10, monitor_interval=10)
        await operator.start()
        assert engine.pending_balance("alice") == 3_000

        engine.record_liquidity_event("bob", weth_pool, 1_000, now=NOW)
        await operator.stop()

        fresh = RewardFlowEngine()
        await store.load(fresh)
        assert fresh.activity_summary("bob") is not None

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_pass(self, engine):
        store = EngineStateStore(MemoryStorageProvider())
        order = []
        original_save = store.save

        def slow_pass(now=None):
            time.sleep(0.2)
            order.append("pass finished")

        async def recording_save(target):
            order.append("save")
            return await original_save(target)

        engine.run_aggregation_pass = slow_pass
        store.save = recording_save
        operator = RewardFlowOperator(engine, state_store=store, aggregation_interval=10, monitor_interval=10)
        await operator.start()
        await asyncio.sleep(0.05)
        await operator.stop()
        assert order[0] == "pass finished"
        assert order[-1] == "save"


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_fields(self, engine):
        operator = RewardFlowOperator(engine, aggregation_interval=10, monitor_interval=10)
        status = operator.get_status()
        assert status["running"] is False
        assert status["uptime_seconds"] == 0.0
        assert status["last_report"] is None

        await operator.start()
        await asyncio.sleep(0.01)
        status = operator.get_status()
        assert status["running"] is True
        assert status["engine"]["users"] == 0
        await operator.stop()

    def test_status_includes_analytics(self, engine, weth_pool):
        operator = RewardFlowOperator(engine, aggregation_interval=10, monitor_interval=10)
        engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        analytics = operator.get_status()["analytics"]
        assert analytics["accrued_last_15m"] == 3_000
        assert analytics["total_events"] >= 2
