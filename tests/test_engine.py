"""End-to-end tests for the RewardFlow engine."""

import pytest
from prometheus_client import CollectorRegistry

from rewardflow import RewardFlowEngine
from rewardflow.config import EngineConfig
from rewardflow.exceptions import (
    InvalidAmountError,
    PausedError,
    ThresholdNotMetError,
    UnauthorizedError,
)
from rewardflow.observability.metrics import MetricsCollector
from rewardflow.scheduling import TaskPriority, TaskStatus
from rewardflow.tiers import TierLevel

from conftest import DAY, NOW, SelectiveBridge

HOUR = 3_600
BASE = 8453


# ---------------------------------------------------------------------------
# Activity to rewards
# ---------------------------------------------------------------------------

class TestLiquidityFlow:
    def test_large_deposit_reaches_diamond(self, engine, weth_pool):
        reward = engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        assert engine.get_tier("alice", now=NOW).level == TierLevel.DIAMOND
        assert reward.tier_multiplier_bps == 20_000
        assert reward.amount == 3_000
        assert engine.pending_balance("alice") == 3_000

    def test_modest_deposit_is_gold(self, engine, stable_pool):
        engine.record_liquidity_event("alice", stable_pool, 1_000, now=NOW)
        tier = engine.get_tier("alice", now=NOW)
        assert tier.tier_points == 1_007
        assert tier.level == TierLevel.GOLD

    def test_roster_fed_from_events(self, engine, weth_pool):
        engine.record_liquidity_event("alice", weth_pool, 1_000, now=NOW)
        engine.record_liquidity_event("alice", weth_pool, 500, now=NOW + 1)
        assert engine.roster.total_liquidity(weth_pool.pool_id) == 1_500

    def test_untrusted_source(self, engine, weth_pool):
        with pytest.raises(UnauthorizedError):
            engine.record_liquidity_event("alice", weth_pool, 1_000, source="mallory", now=NOW)
        assert engine.activity_summary("alice") is None
        assert engine.pending_balance("alice") == 0

    def test_invalid_delta(self, engine, weth_pool):
        with pytest.raises(InvalidAmountError):
            engine.record_liquidity_event("alice", weth_pool, -1, now=NOW)

    def test_activity_summary(self, engine, weth_pool):
        engine.record_liquidity_event("alice", weth_pool, 1_000, now=NOW)
        summary = engine.activity_summary("alice")
        assert summary.activity.total_liquidity == 1_000
        assert summary.engagement_score > 0


class TestSwapFlow:
    @pytest.fixture
    def funded(self, engine, weth_pool):
        engine.record_liquidity_event("alice", weth_pool, 1_000, now=NOW)
        engine.record_liquidity_event("bob", weth_pool, 500, now=NOW)
        return engine

    def test_swap_fee_split(self, funded, weth_pool):
        outcome = funded.record_swap_event("carol", weth_pool, 6_000, now=NOW)
        assert outcome.allocation.total_distributed == 3_000
        assert outcome.mev is None
        assert funded.ledger.get("alice").by_source["swap"] == 2_000
        assert funded.ledger.get("bob").by_source["swap"] == 1_000
        assert funded.activity_summary("carol").activity.swap_volume == 6_000

    def test_swap_with_mev(self, funded, weth_pool):
        outcome = funded.record_swap_event(
            "carol", weth_pool, 100_000, price_before=100.0, price_after=101.0, now=NOW,
        )
        assert outcome.mev.amount == 1_000
        assert funded.ledger.get("alice").by_source["mev"] == 533
        assert funded.ledger.get("bob").by_source["mev"] == 267
        assert funded.pending_balance("rewardflow:operators") == 150
        assert funded.pending_balance("rewardflow:protocol") == 50

    def test_calm_price_no_mev(self, funded, weth_pool):
        outcome = funded.record_swap_event(
            "carol", weth_pool, 100_000, price_before=100.0, price_after=100.2, now=NOW,
        )
        assert outcome.mev is None


# ---------------------------------------------------------------------------
# Aggregation to distribution
# ---------------------------------------------------------------------------

class TestAggregationCycle:
    def test_full_cycle(self, engine, weth_pool):
        engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        engine.record_liquidity_event("bob", weth_pool, 100_000, now=NOW)

        first = engine.run_aggregation_pass(NOW)
        task_id = first.created[0]
        task = engine.get_task(task_id)
        assert task.priority == TaskPriority.URGENT
        assert engine.ledger.total_pending() == 0

        second = engine.run_aggregation_pass(NOW + HOUR)
        assert second.completed == [task_id]
        stats = engine.distribution_stats()
        assert stats.total_distributed == 6_000
        assert stats.total_fees == 100
        assert engine.task_counts()["completed"] == 1

        request = engine.distributor.requests("alice")[0]
        assert engine.get_request(request.request_id).task_id == task_id

    def test_rejected_user_restored_after_retries(self, weth_pool):
        config = EngineConfig.model_validate({"scheduler": {"max_retries": 0}})
        engine = RewardFlowEngine(config, bridge=SelectiveBridge(reject_users={"bob"}))
        engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        engine.record_liquidity_event("bob", weth_pool, 100_000, now=NOW)
        task_id = engine.run_aggregation_pass(NOW).created[0]
        engine.run_aggregation_pass(NOW + HOUR)

        task = engine.get_task(task_id)
        assert task.status == TaskStatus.FAILED
        assert task.exhausted
        assert engine.pending_balance("bob") == 3_000
        assert engine.pending_balance("alice") == 0
        assert engine.scheduler_stats().amount_restored == 3_000


class TestInstantClaim:
    @pytest.fixture
    def funded(self, engine, weth_pool):
        engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        return engine

    def test_claims_full_balance(self, funded):
        request = funded.instant_claim("alice", now=NOW)
        assert request.amount == 3_000
        assert request.net_amount == 2_950
        assert funded.pending_balance("alice") == 0
        activity = funded.activity_summary("alice").activity
        assert activity.total_claimed == 3_000
        assert activity.claim_count == 1

    def test_partial_claim_to_preferred_chain(self, funded):
        funded.set_user_preferences("alice", "alice", BASE, 100, DAY, now=NOW)
        request = funded.instant_claim("alice", 1_000, now=NOW)
        assert request.target_chain == BASE
        assert funded.pending_balance("alice") == 2_000

    def test_below_threshold_restores(self, funded):
        funded.set_user_preferences("alice", "alice", BASE, 5_000, DAY, now=NOW)
        with pytest.raises(ThresholdNotMetError):
            funded.instant_claim("alice", now=NOW)
        assert funded.pending_balance("alice") == 3_000
        assert funded.distribution_stats().failed_distributions == 1

    def test_paused_restores(self, funded):
        funded.pause("admin")
        with pytest.raises(PausedError):
            funded.instant_claim("alice", now=NOW)
        assert funded.pending_balance("alice") == 3_000
        funded.unpause("admin")
        assert funded.instant_claim("alice", now=NOW).amount == 3_000

    def test_overdraw(self, funded):
        with pytest.raises(InvalidAmountError):
            funded.instant_claim("alice", 3_001, now=NOW)
        assert funded.pending_balance("alice") == 3_000

    def test_empty_balance(self, engine):
        with pytest.raises(InvalidAmountError):
            engine.instant_claim("nobody", now=NOW)


# ---------------------------------------------------------------------------
# Administration and decay
# ---------------------------------------------------------------------------

class TestAdministration:
    def test_chain_support(self, engine):
        status = engine.set_chain_support("admin", BASE, False)
        assert not status.supported
        assert BASE not in engine.distribution_stats().supported_chains
        assert engine.chain_status(BASE).name == "base"
        assert len(engine.list_chain_status()) == 5

    def test_non_admin(self, engine):
        with pytest.raises(UnauthorizedError):
            engine.pause("alice")

    def test_preferences_roundtrip(self, engine):
        engine.set_user_preferences("alice", "alice", BASE, 10, 60, now=NOW)
        assert engine.get_user_preferences("alice").preferred_chain == BASE


class TestInactivityDecay:
    def test_decay_regresses_tier(self, engine, stable_pool):
        engine.record_liquidity_event("alice", stable_pool, 1_000, now=NOW)
        changes = engine.apply_inactivity_decay(NOW + 10 * DAY)
        assert [(c.user, c.current) for c in changes] == [("alice", TierLevel.SILVER)]
        assert engine.get_tier("alice", now=NOW + 10 * DAY).tier_points == 997


class TestSummary:
    def test_summary_keys(self, engine, weth_pool):
        engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        summary = engine.summary()
        assert summary["users"] == 1
        assert summary["total_pending"] == 3_000
        assert summary["paused"] is False
        assert summary["tasks"]["pending"] == 0
        assert summary["rewards"]["liquidity_rewards"] == 3_000
        assert summary["hook_tasks"]["total_tasks_processed"] == 0

    def test_counter_snapshots(self, engine):
        assert set(engine.counter_snapshots()) == {"distributor", "scheduler", "calculator"}


class TestMetricsWiring:
    def test_engine_records_metrics(self, weth_pool):
        registry = CollectorRegistry()
        engine = RewardFlowEngine(metrics=MetricsCollector(registry=registry))
        engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        engine.record_liquidity_event("bob", weth_pool, 100_000, now=NOW)
        engine.run_aggregation_pass(NOW)
        engine.run_aggregation_pass(NOW + HOUR)

        sample = registry.get_sample_value
        assert sample("rewardflow_rewards_accrued_total", {"source": "liquidity"}) == 6_000
        assert sample("rewardflow_tier_changes_total", {"level": "diamond"}) == 2
        assert sample("rewardflow_distributions_total", {"status": "success", "target_chain": "1"}) == 2
        assert sample("rewardflow_tasks_total", {"status": "completed"}) == 1
        assert sample("rewardflow_pending_rewards") == 0
        assert sample("rewardflow_task_dispatch_duration_seconds_count") == 1
