# Copyright (c) RewardFlow Contributors. All rights reserved.
# Licensed under the MIT License.
"""Shared constants for the RewardFlow engine.

Amounts are integer base units, multipliers are basis points.
"""

BPS_DENOMINATOR = 10_000

SECONDS_PER_DAY = 86_400
SECONDS_PER_WEEK = 7 * SECONDS_PER_DAY

# Engagement / loyalty
SCORE_MIN = 0
SCORE_MAX = 100
LOYALTY_BONUS_LIQUIDITY = 5
LOYALTY_BONUS_CLAIM = 3
LOYALTY_BONUS_SWAP = 1
LOYALTY_DECAY_PER_DAY = 1
EXPECTED_TX_WINDOW_SECONDS = SECONDS_PER_WEEK

ENGAGEMENT_LIQUIDITY_CAP = 1_000
ENGAGEMENT_VOLUME_CAP = 10_000
WEIGHT_LIQUIDITY = 30
WEIGHT_VOLUME = 25
WEIGHT_LOYALTY = 25
WEIGHT_CONSISTENCY = 20

# Tiers
TIER_SILVER_THRESHOLD = 100
TIER_GOLD_THRESHOLD = 1_000
TIER_PLATINUM_THRESHOLD = 5_000
TIER_DIAMOND_THRESHOLD = 10_000
TIER_POINTS_MAX = 20_000
CONSECUTIVE_DAY_POINTS = 2

MULTIPLIER_BRONZE_BPS = 10_000
MULTIPLIER_SILVER_BPS = 11_000
MULTIPLIER_GOLD_BPS = 12_500
MULTIPLIER_PLATINUM_BPS = 15_000
MULTIPLIER_DIAMOND_BPS = 20_000

# Reward calculation
PEAK_MULTIPLIER_BPS = 12_000
REFERENCE_PAIR_MULTIPLIER_BPS = 15_000
SWAP_SHARE_BPS = 5_000

# Chains (ids follow EIP-155)
CHAIN_ETHEREUM = 1
CHAIN_OPTIMISM = 10
CHAIN_POLYGON = 137
CHAIN_BASE = 8453
CHAIN_ARBITRUM = 42161

# Scheduling
URGENCY_URGENT = 90
URGENCY_HIGH = 70
URGENCY_MEDIUM = 50

# Hook task ingestion
MAX_TASK_AGE_SECONDS = 24 * 60 * 60
