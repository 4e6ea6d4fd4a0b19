"""
Reward Calculation

Scores liquidity, swap and MEV events into per-user pending rewards.
"""

from .allocation import (
    AllocationResult,
    AllocationStrategy,
    LargestRemainderStrategy,
    LiquidityShare,
    RewardAllocation,
    RewardPool,
    allocate,
)
from .calculator import (
    SOURCE_LIQUIDITY,
    SOURCE_MEV,
    SOURCE_SWAP,
    LiquidityReward,
    MEVCapture,
    PoolContext,
    RewardCalculator,
)
from .ledger import PendingReward, PendingRewardLedger
from .roster import InMemoryPositionRoster, PositionRoster

__all__ = [
    "AllocationResult",
    "AllocationStrategy",
    "LargestRemainderStrategy",
    "LiquidityShare",
    "RewardAllocation",
    "RewardPool",
    "allocate",
    "LiquidityReward",
    "MEVCapture",
    "PoolContext",
    "RewardCalculator",
    "SOURCE_LIQUIDITY",
    "SOURCE_SWAP",
    "SOURCE_MEV",
    "PendingReward",
    "PendingRewardLedger",
    "InMemoryPositionRoster",
    "PositionRoster",
]
