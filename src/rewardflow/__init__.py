"""
RewardFlow - Multi-chain LP incentive engine

Tracks liquidity-provider engagement, classifies users into reward tiers,
scores liquidity, swap and MEV events into pending rewards, and batches
those rewards into prioritized cross-chain distributions.

Layers:
1. Activity: per-user engagement and loyalty tracking
2. Tiers: tier classification, multipliers and inactivity decay
3. Rewards: liquidity, swap and MEV reward calculation
4. Scheduling: aggregation tasks, priority, retry and expiry
5. Distribution: fees, preferences and cross-chain payout requests
"""

__version__ = "1.0.0a1"

# Layer 1: Activity
from rewardflow.activity import (
    ActivitySummary,
    ActivityTracker,
    UserActivity,
)

# Layer 2: Tiers
from rewardflow.tiers import (
    TierChange,
    TierClassifier,
    TierLevel,
    UserTier,
)

# Layer 3: Rewards
from rewardflow.reward import (
    InMemoryPositionRoster,
    LiquidityReward,
    MEVCapture,
    PendingReward,
    PendingRewardLedger,
    PoolContext,
    RewardCalculator,
)

# Layer 4: Scheduling
from rewardflow.scheduling import (
    AggregationScheduler,
    AggregationTask,
    SchedulerPassReport,
    TaskEntry,
    TaskPriority,
    TaskStatus,
)

# Layer 5: Distribution
from rewardflow.distribution import (
    BridgeExecutor,
    CrossChainDistributor,
    DistributionRequest,
    DistributionStats,
    RecordingBridgeExecutor,
    UserPreferences,
)

from rewardflow.config import EngineConfig, load_config
from rewardflow.engine import RewardFlowEngine, SwapOutcome
from rewardflow.exceptions import (
    BridgeRejectedError,
    InvalidAmountError,
    PausedError,
    PolicyError,
    RewardFlowError,
    ThresholdNotMetError,
    UnauthorizedError,
    UnsupportedChainError,
    ValidationError,
)

__all__ = [
    "__version__",
    # Activity
    "ActivitySummary",
    "ActivityTracker",
    "UserActivity",
    # Tiers
    "TierChange",
    "TierClassifier",
    "TierLevel",
    "UserTier",
    # Rewards
    "InMemoryPositionRoster",
    "LiquidityReward",
    "MEVCapture",
    "PendingReward",
    "PendingRewardLedger",
    "PoolContext",
    "RewardCalculator",
    # Scheduling
    "AggregationScheduler",
    "AggregationTask",
    "SchedulerPassReport",
    "TaskEntry",
    "TaskPriority",
    "TaskStatus",
    # Distribution
    "BridgeExecutor",
    "CrossChainDistributor",
    "DistributionRequest",
    "DistributionStats",
    "RecordingBridgeExecutor",
    "UserPreferences",
    # Engine
    "EngineConfig",
    "load_config",
    "RewardFlowEngine",
    "SwapOutcome",
    # Errors
    "BridgeRejectedError",
    "InvalidAmountError",
    "PausedError",
    "PolicyError",
    "RewardFlowError",
    "ThresholdNotMetError",
    "UnauthorizedError",
    "UnsupportedChainError",
    "ValidationError",
]
