"""Tests for hook task ingestion."""

import json

import pytest

from rewardflow.config import IngestConfig
from rewardflow.distribution import CrossChainDistributor
from rewardflow.exceptions import InvalidTaskPayloadError
from rewardflow.ingest import HookTaskWorker
from rewardflow.reward import PendingRewardLedger

from conftest import NOW


def _payload(**overrides):
    data = {
        "user": "0xalice",
        "amount": 1_000,
        "chain_id": 1,
        "pool_id": "weth-usdc",
        "reward_type": "liquidity",
        "timestamp": int(NOW) - 60,
        "hook_address": "0xhook",
        "transaction_hash": "0xabc",
    }
    data.update(overrides)
    return data


@pytest.fixture
def ledger():
    return PendingRewardLedger()


@pytest.fixture
def distributor():
    return CrossChainDistributor()


@pytest.fixture
def worker(ledger, distributor):
    return HookTaskWorker(ledger, distributor, IngestConfig(min_task_reward=10, max_task_reward=10**6))


class TestParse:
    def test_bytes_and_str(self, worker):
        raw = json.dumps(_payload())
        assert worker.parse(raw.encode()).user == "0xalice"
        assert worker.parse(raw).amount == 1_000

    @pytest.mark.parametrize("raw", ["not json", b"\xff\xfe", json.dumps({"user": "x"})])
    def test_malformed(self, worker, raw):
        with pytest.raises(InvalidTaskPayloadError, match="invalid task data format"):
            worker.parse(raw)

    def test_unknown_reward_type(self, worker):
        with pytest.raises(InvalidTaskPayloadError):
            worker.parse(_payload(reward_type="airdrop"))


class TestValidate:
    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"user": ""}, "user address is required"),
            ({"amount": 0}, "invalid reward amount"),
            ({"amount": -5}, "invalid reward amount"),
            ({"amount": 9}, "reward amount below minimum threshold"),
            ({"amount": 10**6 + 1}, "reward amount exceeds maximum threshold"),
            ({"chain_id": 0}, "chain ID is required"),
            ({"timestamp": 0}, "invalid timestamp"),
            ({"timestamp": int(NOW) - 86_401}, "task timestamp too old"),
        ],
    )
    def test_rejections(self, worker, overrides, message):
        with pytest.raises(InvalidTaskPayloadError, match=message):
            worker.validate_task("t1", _payload(**overrides), now=NOW)

    def test_boundaries_accepted(self, worker):
        worker.validate_task("t1", _payload(amount=10), now=NOW)
        worker.validate_task("t2", _payload(amount=10**6), now=NOW)
        worker.validate_task("t3", _payload(timestamp=int(NOW) - 86_400), now=NOW)


class TestHandleTask:
    def test_accrues_and_projects_fee(self, worker, ledger, distributor):
        distributor.set_user_preferences("0xalice", "0xalice", 10, 1, 3_600)
        result = worker.handle_task("t1", _payload(), now=NOW)
        assert result.success
        assert result.accrued_amount == 1_000
        assert result.target_chain == 10
        assert result.fee_amount == 5
        assert result.net_amount == 995
        assert result.balance == 1_000
        assert ledger.get("0xalice").by_source == {"liquidity": 1_000}

    def test_failure_reported_not_raised(self, worker, ledger):
        result = worker.handle_task("t1", _payload(amount=0), now=NOW)
        assert not result.success
        assert result.error == "invalid reward amount"
        assert ledger.total_pending() == 0

    def test_stats(self, worker):
        worker.handle_task("t1", _payload(), now=NOW)
        worker.handle_task("t2", _payload(reward_type="mev", amount=300), now=NOW)
        worker.handle_task("t3", _payload(user=""), now=NOW)
        stats = worker.get_stats()
        assert stats.total_tasks_processed == 3
        assert stats.successful_tasks == 2
        assert stats.failed_tasks == 1
        assert stats.total_rewards_accrued == 1_300
        assert stats.total_mev_captured == 300
        assert stats.success_rate == pytest.approx(200 / 3)
        assert stats.average_processing_time_ms >= 0.0

    def test_via_engine(self, engine):
        result = engine.handle_hook_task("t1", _payload(reward_type="swap"), now=NOW)
        assert result.success
        assert engine.pending_balance("0xalice") == 1_000
        assert engine.summary()["hook_tasks"]["successful_tasks"] == 1
