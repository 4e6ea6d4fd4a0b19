"""
RewardFlow Engine.

Wires the tracker, classifier, calculator, scheduler and distributor
together and exposes the flows the outside world drives:

    activity event -> tracker -> tier classifier -> reward calculator
                   -> pending ledger -> aggregation scheduler -> distributor
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from pydantic import BaseModel

from rewardflow.activity.tracker import ActivitySummary, ActivityTracker
from rewardflow.concurrency import KeyedLockRegistry
from rewardflow.config import EngineConfig
from rewardflow.distribution.bridge import BridgeExecutor
from rewardflow.distribution.distributor import CrossChainDistributor
from rewardflow.distribution.models import (
    ChainStatus,
    DistributionRequest,
    DistributionStats,
    UserPreferences,
)
from rewardflow.events.bus import EventBus, InMemoryEventBus
from rewardflow.exceptions import RewardFlowError, UnauthorizedError
from rewardflow.ingest import HookTaskResult, HookTaskWorker
from rewardflow.observability.metrics import MetricsCollector
from rewardflow.reward.allocation import AllocationResult
from rewardflow.reward.calculator import LiquidityReward, MEVCapture, PoolContext, RewardCalculator
from rewardflow.reward.ledger import PendingRewardLedger
from rewardflow.reward.roster import InMemoryPositionRoster, PositionRoster
from rewardflow.scheduling.models import AggregationTask, SchedulerPassReport, SchedulerStats
from rewardflow.scheduling.scheduler import AggregationScheduler
from rewardflow.tiers.classifier import TierChange, TierClassifier, UserTier

logger = logging.getLogger(__name__)


class SwapOutcome(BaseModel):
    """Rewards produced by one swap."""

    allocation: AllocationResult
    mev: Optional[MEVCapture] = None


class RewardFlowEngine:
    """The LP incentive engine.

    Args:
        config: Engine configuration; defaults apply when omitted.
        bridge: Bridge executor used by the distributor.
        roster: LP roster provider; the in-memory roster is fed from
            liquidity events.
        bus: Event bus; an in-memory bus by default.
        metrics: Optional Prometheus metrics collector.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        bridge: Optional[BridgeExecutor] = None,
        roster: Optional[PositionRoster] = None,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.bus = bus if bus is not None else InMemoryEventBus()
        self.metrics = metrics

        self.tracker = ActivityTracker(self.config.tracker, self.config.unit, self.bus)
        self.classifier = TierClassifier(self.config.tiers, self.config.unit, self.bus)
        self.ledger = PendingRewardLedger()
        self.roster = roster if roster is not None else InMemoryPositionRoster()
        self.calculator = RewardCalculator(
            self.config.rewards, self.classifier, self.ledger, self.roster, self.bus, metrics,
        )
        self.distributor = CrossChainDistributor(self.config.distributor, bridge, self.bus, metrics)
        self.scheduler = AggregationScheduler(
            self.config.scheduler,
            self.ledger,
            self.distributor,
            classifier=self.classifier,
            bus=self.bus,
            metrics=metrics,
        )
        self.hook_worker = HookTaskWorker(
            self.ledger, self.distributor, self.config.ingest, self.bus, metrics,
        )
        self._locks = KeyedLockRegistry()

        if metrics is not None:
            self.classifier.on_tier_change(self._record_tier_metric)

    def _record_tier_metric(self, change: TierChange) -> None:
        if self.metrics is not None:
            self.metrics.record_tier_change(change.current.label)

    def _require_trusted(self, source: str) -> None:
        if source not in self.config.trusted_sources:
            raise UnauthorizedError(f"{source!r} is not a trusted event source")

    # ------------------------------------------------------------------
    # Activity flows
    # ------------------------------------------------------------------

    def record_liquidity_event(
        self,
        user: str,
        pool: PoolContext,
        delta: int,
        source: str = "hook",
        now: Optional[float] = None,
    ) -> LiquidityReward:
        """Record a liquidity addition and accrue its reward.

        Raises:
            UnauthorizedError: If *source* is not trusted.
            InvalidAmountError: If *delta* is negative or *user* is empty.
        """
        self._require_trusted(source)
        now = time.time() if now is None else now
        with self._locks.hold(user):
            activity = self.tracker.record_liquidity_event(user, delta, now)
            if isinstance(self.roster, InMemoryPositionRoster):
                self.roster.add_liquidity(pool.pool_id, user, delta)
            self.classifier.update(activity, now)
            return self.calculator.calculate_liquidity_reward(user, delta, pool, now)

    def record_swap_event(
        self,
        user: str,
        pool: PoolContext,
        volume: int,
        price_before: Optional[float] = None,
        price_after: Optional[float] = None,
        source: str = "hook",
        now: Optional[float] = None,
    ) -> SwapOutcome:
        """Record a swap, share its fee pool with LPs and capture any MEV."""
        self._require_trusted(source)
        now = time.time() if now is None else now
        with self._locks.hold(user):
            activity = self.tracker.record_swap_event(user, volume, now)
            self.classifier.update(activity, now)

        allocation = self.calculator.calculate_swap_reward(pool, volume)
        capture: Optional[MEVCapture] = None
        if price_before is not None and price_after is not None:
            detected = self.calculator.detect_mev(price_before, price_after, volume)
            if detected > 0:
                capture = self.calculator.capture_mev(pool, detected)
        return SwapOutcome(allocation=allocation, mev=capture)

    def handle_hook_task(self, task_id: str, payload: Any, now: Optional[float] = None) -> HookTaskResult:
        return self.hook_worker.handle_task(task_id, payload, now)

    # ------------------------------------------------------------------
    # Claims and preferences
    # ------------------------------------------------------------------

    def instant_claim(
        self,
        user: str,
        amount: Optional[int] = None,
        now: Optional[float] = None,
    ) -> DistributionRequest:
        """Pay out *amount* (default: the whole pending balance) immediately.

        The amount leaves the pending ledger only if the distributor accepts
        the claim.
        """
        now = time.time() if now is None else now
        with self._locks.hold(user), self.ledger.hold(user):
            drained = self.ledger.drain(user, amount)
            try:
                request = self.distributor.execute_instant_claim(user, drained, now)
            except RewardFlowError:
                self.ledger.restore(user, drained)
                raise
            activity = self.tracker.record_claim_event(user, drained, now)
            self.classifier.update(activity, now)
        return request

    def set_user_preferences(
        self,
        caller: str,
        user: str,
        preferred_chain: int,
        claim_threshold: int,
        claim_frequency: int,
        auto_claim_enabled: bool = False,
        now: Optional[float] = None,
    ) -> UserPreferences:
        return self.distributor.set_user_preferences(
            caller, user, preferred_chain, claim_threshold, claim_frequency, auto_claim_enabled, now,
        )

    def get_user_preferences(self, user: str) -> UserPreferences:
        return self.distributor.get_user_preferences(user)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def pause(self, caller: str) -> None:
        self.distributor.pause(caller)

    def unpause(self, caller: str) -> None:
        self.distributor.unpause(caller)

    def set_chain_support(
        self,
        caller: str,
        chain_id: int,
        supported: bool,
        fee: Optional[int] = None,
        name: Optional[str] = None,
    ) -> ChainStatus:
        return self.distributor.set_chain_support(caller, chain_id, supported, fee=fee, name=name)

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------

    def run_aggregation_pass(self, now: Optional[float] = None) -> SchedulerPassReport:
        return self.scheduler.run_pass(now)

    def apply_inactivity_decay(self, now: Optional[float] = None) -> list[TierChange]:
        """Regress the tiers of inactive users; returns the level changes."""
        changes = self.classifier.decay_all(now)
        if changes:
            logger.info("Inactivity decay changed %d tiers", len(changes))
        if self.metrics is not None:
            self.metrics.set_pending_rewards(self.ledger.total_pending())
        return changes

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def pending_balance(self, user: str) -> int:
        return self.ledger.balance(user)

    def get_tier(self, user: str, now: Optional[float] = None) -> Optional[UserTier]:
        return self.classifier.refresh(user, now)

    def activity_summary(self, user: str) -> Optional[ActivitySummary]:
        return self.tracker.summary(user)

    def distribution_stats(self) -> DistributionStats:
        return self.distributor.stats()

    def chain_status(self, chain_id: int) -> ChainStatus:
        return self.distributor.chain_status(chain_id)

    def list_chain_status(self) -> list[ChainStatus]:
        return self.distributor.list_chain_status()

    def get_request(self, request_id: str) -> DistributionRequest:
        return self.distributor.get_request(request_id)

    def get_task(self, task_id: str) -> AggregationTask:
        return self.scheduler.get_task(task_id)

    def task_counts(self) -> dict[str, int]:
        return self.scheduler.task_counts()

    def scheduler_stats(self) -> SchedulerStats:
        return self.scheduler.stats()

    def counter_snapshots(self) -> dict[str, dict[str, int]]:
        return {
            "distributor": self.distributor.counters(),
            "scheduler": self.scheduler.counters(),
            "calculator": self.calculator.stats(),
        }

    def summary(self) -> dict[str, Any]:
        """A compact, JSON-friendly view of engine state."""
        stats = self.distributor.stats()
        return {
            "users": len(self.tracker.users()),
            "total_pending": self.ledger.total_pending(),
            "paused": stats.paused,
            "supported_chains": stats.supported_chains,
            "total_distributed": stats.total_distributed,
            "total_fees": stats.total_fees,
            "successful_distributions": stats.successful_distributions,
            "failed_distributions": stats.failed_distributions,
            "success_rate": round(stats.success_rate, 2),
            "tasks": self.scheduler.task_counts(),
            "rewards": self.calculator.stats(),
            "hook_tasks": self.hook_worker.get_stats().model_dump(),
        }
