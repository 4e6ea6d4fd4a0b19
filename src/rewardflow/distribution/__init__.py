"""
Cross-Chain Distribution

Fee accounting, user preferences and append-only distribution requests.
"""

from .bridge import BridgeExecutor, BridgeInstruction, RecordingBridgeExecutor
from .distributor import CrossChainDistributor
from .models import (
    ChainStatus,
    DistributionRequest,
    DistributionStats,
    UserDistributionRecord,
    UserPreferences,
)

__all__ = [
    "BridgeExecutor",
    "BridgeInstruction",
    "RecordingBridgeExecutor",
    "CrossChainDistributor",
    "ChainStatus",
    "DistributionRequest",
    "DistributionStats",
    "UserDistributionRecord",
    "UserPreferences",
]
