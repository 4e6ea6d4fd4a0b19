"""
Reward Calculator.

Turns liquidity, swap and MEV events into pending reward value.

- Liquidity rewards: ``delta * base_rate`` scaled by a peak-hour multiplier,
  a reference-pair multiplier and the user's tier multiplier.
- Swap rewards: a fixed share of the swap volume, split across the pool's
  LPs by liquidity share.
- MEV capture: a detected amount split between LPs, operators and the
  protocol; the LP part is split like swap rewards.

Every operation only ever adds to pending balances.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from rewardflow import constants as c
from rewardflow.concurrency import AtomicCounters
from rewardflow.config import RewardConfig
from rewardflow.events.bus import EVENT_MEV_CAPTURED, EVENT_REWARD_ACCRUED, Event, EventBus
from rewardflow.exceptions import InvalidAmountError
from rewardflow.observability.metrics import MetricsCollector
from rewardflow.tiers.classifier import TierClassifier

from .allocation import AllocationResult, RewardPool, allocate
from .ledger import PendingRewardLedger
from .roster import PositionRoster

logger = logging.getLogger(__name__)

SOURCE_LIQUIDITY = "liquidity"
SOURCE_SWAP = "swap"
SOURCE_MEV = "mev"


class PoolContext(BaseModel):
    """Identity of the pool an event happened in."""

    pool_id: str
    token0: str
    token1: str
    chain_id: int = Field(default=c.CHAIN_ETHEREUM, ge=1)


class LiquidityReward(BaseModel):
    """Breakdown of one liquidity reward."""

    user: str
    amount: int
    base_amount: int
    time_multiplier_bps: int
    pair_multiplier_bps: int
    tier_multiplier_bps: int


class MEVCapture(BaseModel):
    """Result of splitting a captured MEV amount."""

    pool_id: str
    amount: int
    lp_amount: int
    operator_amount: int
    protocol_amount: int
    lp_allocation: AllocationResult


class RewardCalculator:
    """Scores events into pending rewards.

    Args:
        config: Reward tunables.
        classifier: Source of tier multipliers.
        ledger: Pending balances to accrue into.
        roster: LP roster provider for proportional splits.
        bus: Optional event bus.
        metrics: Optional metrics collector.
    """

    def __init__(
        self,
        config: RewardConfig,
        classifier: TierClassifier,
        ledger: PendingRewardLedger,
        roster: PositionRoster,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        self.classifier = classifier
        self.ledger = ledger
        self.roster = roster
        self._bus = bus
        self._metrics = metrics
        self._counters = AtomicCounters(
            "total_accrued",
            "liquidity_rewards",
            "swap_rewards",
            "mev_captured",
            "mev_lp",
            "mev_operator",
            "mev_protocol",
            "undistributed",
        )

    # -- Multipliers ----------------------------------------------------------

    def time_multiplier(self, now: Optional[float] = None) -> int:
        """Peak-window multiplier in bps for the UTC hour of *now*."""
        now = time.time() if now is None else now
        hour = datetime.fromtimestamp(now, tz=timezone.utc).hour
        start, end = self.config.peak_start_hour, self.config.peak_end_hour
        if start <= end:
            in_peak = start <= hour < end
        else:
            in_peak = hour >= start or hour < end
        return self.config.peak_multiplier_bps if in_peak else c.BPS_DENOMINATOR

    def pair_multiplier(self, pool: PoolContext) -> int:
        reference = self.config.reference_asset.lower()
        if reference in (pool.token0.lower(), pool.token1.lower()):
            return self.config.reference_pair_multiplier_bps
        return c.BPS_DENOMINATOR

    # -- Liquidity ------------------------------------------------------------

    def calculate_liquidity_reward(
        self,
        user: str,
        delta: int,
        pool: PoolContext,
        now: Optional[float] = None,
    ) -> LiquidityReward:
        """Score a liquidity addition and accrue it to *user*."""
        if delta < 0:
            raise InvalidAmountError(f"liquidity delta must be non-negative, got {delta}")
        now = time.time() if now is None else now

        time_bps = self.time_multiplier(now)
        pair_bps = self.pair_multiplier(pool)
        tier_bps = self.classifier.multiplier_for(user, now)

        base = delta * self.config.liquidity_reward_bps // c.BPS_DENOMINATOR
        amount = (
            delta * self.config.liquidity_reward_bps * time_bps * pair_bps * tier_bps
            // c.BPS_DENOMINATOR ** 4
        )
        self._accrue(user, amount, SOURCE_LIQUIDITY, pool.pool_id)
        self._counters.add("liquidity_rewards", amount)
        return LiquidityReward(
            user=user,
            amount=amount,
            base_amount=base,
            time_multiplier_bps=time_bps,
            pair_multiplier_bps=pair_bps,
            tier_multiplier_bps=tier_bps,
        )

    # -- Swaps ----------------------------------------------------------------

    def calculate_swap_reward(self, pool: PoolContext, volume: int) -> AllocationResult:
        """Pool the swap share of *volume* and split it across the pool's LPs."""
        if volume < 0:
            raise InvalidAmountError(f"swap volume must be non-negative, got {volume}")
        pooled = volume * self.config.swap_share_bps // c.BPS_DENOMINATOR
        result = self._split_to_lps(pool, pooled, SOURCE_SWAP)
        self._counters.add("swap_rewards", result.total_distributed)
        return result

    # -- MEV ------------------------------------------------------------------

    def deviation_bps(self, price_before: float, price_after: float) -> int:
        if price_before <= 0:
            return 0
        return int(abs(price_after - price_before) * c.BPS_DENOMINATOR / price_before)

    def detect_mev(self, price_before: float, price_after: float, swap_amount: int) -> int:
        """Return the capturable MEV amount for a swap, or 0 if none is detected.

        A swap qualifies when its size is at least ``mev_min_swap_size`` and
        the price moved by more than ``mev_deviation_threshold_bps``. The
        captured amount is the share of the swap equal to the deviation.
        """
        if swap_amount < self.config.mev_min_swap_size:
            return 0
        deviation = self.deviation_bps(price_before, price_after)
        if deviation <= self.config.mev_deviation_threshold_bps:
            return 0
        return swap_amount * min(deviation, c.BPS_DENOMINATOR) // c.BPS_DENOMINATOR

    def capture_mev(self, pool: PoolContext, amount: int) -> MEVCapture:
        """Split a detected MEV *amount* between LPs, operators and the protocol."""
        if amount < 0:
            raise InvalidAmountError(f"MEV amount must be non-negative, got {amount}")
        split = self.config.mev_split
        lp_amount = amount * split.lp_bps // c.BPS_DENOMINATOR
        operator_amount = amount * split.operator_bps // c.BPS_DENOMINATOR
        protocol_amount = amount - lp_amount - operator_amount

        lp_allocation = self._split_to_lps(pool, lp_amount, SOURCE_MEV)
        self._accrue(self.config.operator_account, operator_amount, SOURCE_MEV, pool.pool_id)
        self._accrue(self.config.protocol_account, protocol_amount, SOURCE_MEV, pool.pool_id)

        self._counters.add_many({
            "mev_captured": amount,
            "mev_lp": lp_allocation.total_distributed,
            "mev_operator": operator_amount,
            "mev_protocol": protocol_amount,
        })
        if self._metrics is not None:
            self._metrics.record_mev(amount)
        if self._bus is not None and amount > 0:
            self._bus.emit(Event(
                event_type=EVENT_MEV_CAPTURED,
                source=pool.pool_id,
                payload={
                    "amount": amount,
                    "lp_amount": lp_amount,
                    "operator_amount": operator_amount,
                    "protocol_amount": protocol_amount,
                },
            ))
        logger.info(
            "Captured MEV in %s: %d (lp=%d, operators=%d, protocol=%d)",
            pool.pool_id, amount, lp_amount, operator_amount, protocol_amount,
        )
        return MEVCapture(
            pool_id=pool.pool_id,
            amount=amount,
            lp_amount=lp_amount,
            operator_amount=operator_amount,
            protocol_amount=protocol_amount,
            lp_allocation=lp_allocation,
        )

    # -- Stats ----------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        return self._counters.snapshot()

    def load(self, counters: dict[str, int]) -> None:
        self._counters.restore(counters)

    # -- Internal -------------------------------------------------------------

    def _split_to_lps(self, pool: PoolContext, amount: int, source: str) -> AllocationResult:
        shares = self.roster.get_shares(pool.pool_id)
        result = allocate(RewardPool(pool_id=pool.pool_id, total_reward=amount, participants=shares))
        if result.skipped:
            if amount > 0:
                logger.debug("No liquidity in %s; skipped %s split of %d", pool.pool_id, source, amount)
                self._counters.add("undistributed", amount)
            return result
        for allocation in result.allocations:
            self._accrue(allocation.user, allocation.amount, source, pool.pool_id)
        return result

    def _accrue(self, user: str, amount: int, source: str, pool_id: str) -> None:
        if amount <= 0:
            return
        balance = self.ledger.accrue(user, amount, source)
        self._counters.add("total_accrued", amount)
        if self._metrics is not None:
            self._metrics.record_accrual(source, amount)
        if self._bus is not None:
            self._bus.emit(Event(
                event_type=EVENT_REWARD_ACCRUED,
                source=user,
                payload={"amount": amount, "reward_source": source, "pool_id": pool_id, "balance": balance},
            ))
