"""Tier classification: Bronze through Diamond with reward multipliers."""

from .classifier import TierChange, TierClassifier, TierLevel, UserTier

__all__ = [
    "TierClassifier",
    "TierChange",
    "TierLevel",
    "UserTier",
]
