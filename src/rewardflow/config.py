"""
Engine Configuration.

Pydantic models for every tunable of the engine, loadable from YAML with
``REWARDFLOW_<SECTION>__<FIELD>`` environment overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from rewardflow import constants as c
from rewardflow.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "REWARDFLOW_"


class TrackerConfig(BaseModel):
    """Activity tracker tunables."""

    loyalty_decay_per_day: int = Field(default=c.LOYALTY_DECAY_PER_DAY, ge=0)
    liquidity_bonus: int = Field(default=c.LOYALTY_BONUS_LIQUIDITY, ge=0, le=100)
    claim_bonus: int = Field(default=c.LOYALTY_BONUS_CLAIM, ge=0, le=100)
    swap_bonus: int = Field(default=c.LOYALTY_BONUS_SWAP, ge=0, le=100)
    expected_tx_window_seconds: int = Field(default=c.EXPECTED_TX_WINDOW_SECONDS, ge=1)
    engagement_liquidity_cap: int = Field(default=c.ENGAGEMENT_LIQUIDITY_CAP, ge=1)
    engagement_volume_cap: int = Field(default=c.ENGAGEMENT_VOLUME_CAP, ge=1)

    @model_validator(mode="after")
    def _bonus_order(self) -> "TrackerConfig":
        if not self.liquidity_bonus >= self.claim_bonus >= self.swap_bonus:
            raise ValueError("bonuses must satisfy liquidity >= claim >= swap")
        return self


class TierConfig(BaseModel):
    """Tier thresholds (in points) and multipliers (in bps)."""

    silver_threshold: int = Field(default=c.TIER_SILVER_THRESHOLD, ge=1)
    gold_threshold: int = Field(default=c.TIER_GOLD_THRESHOLD, ge=1)
    platinum_threshold: int = Field(default=c.TIER_PLATINUM_THRESHOLD, ge=1)
    diamond_threshold: int = Field(default=c.TIER_DIAMOND_THRESHOLD, ge=1)
    max_tier_points: int = Field(default=c.TIER_POINTS_MAX, ge=1)
    consecutive_day_points: int = Field(default=c.CONSECUTIVE_DAY_POINTS, ge=0)

    bronze_multiplier_bps: int = Field(default=c.MULTIPLIER_BRONZE_BPS, ge=0)
    silver_multiplier_bps: int = Field(default=c.MULTIPLIER_SILVER_BPS, ge=0)
    gold_multiplier_bps: int = Field(default=c.MULTIPLIER_GOLD_BPS, ge=0)
    platinum_multiplier_bps: int = Field(default=c.MULTIPLIER_PLATINUM_BPS, ge=0)
    diamond_multiplier_bps: int = Field(default=c.MULTIPLIER_DIAMOND_BPS, ge=0)

    @model_validator(mode="after")
    def _ascending(self) -> "TierConfig":
        thresholds = [
            self.silver_threshold,
            self.gold_threshold,
            self.platinum_threshold,
            self.diamond_threshold,
        ]
        if thresholds != sorted(set(thresholds)):
            raise ValueError("tier thresholds must be strictly ascending")
        return self


class MEVSplitConfig(BaseModel):
    """Per-deployment MEV capture split, in bps."""

    lp_bps: int = Field(default=8_000, ge=7_500, le=8_500)
    operator_bps: int = Field(default=1_500, ge=1_000, le=1_500)
    protocol_bps: int = Field(default=500, ge=500, le=1_000)

    @model_validator(mode="after")
    def _sums_to_whole(self) -> "MEVSplitConfig":
        total = self.lp_bps + self.operator_bps + self.protocol_bps
        if total != c.BPS_DENOMINATOR:
            raise ValueError(f"MEV split must sum to {c.BPS_DENOMINATOR} bps, got {total}")
        return self


class RewardConfig(BaseModel):
    """Reward calculator tunables."""

    liquidity_reward_bps: int = Field(default=100, ge=0, le=c.BPS_DENOMINATOR)
    peak_start_hour: int = Field(default=13, ge=0, le=23)
    peak_end_hour: int = Field(default=21, ge=0, le=24)
    peak_multiplier_bps: int = Field(default=c.PEAK_MULTIPLIER_BPS, ge=0)
    reference_asset: str = "WETH"
    reference_pair_multiplier_bps: int = Field(default=c.REFERENCE_PAIR_MULTIPLIER_BPS, ge=0)
    swap_share_bps: int = Field(default=c.SWAP_SHARE_BPS, ge=0, le=c.BPS_DENOMINATOR)
    mev_deviation_threshold_bps: int = Field(default=50, ge=0)
    mev_min_swap_size: int = Field(default=10_000, ge=0)
    mev_split: MEVSplitConfig = Field(default_factory=MEVSplitConfig)
    operator_account: str = "rewardflow:operators"
    protocol_account: str = "rewardflow:protocol"


class SchedulerConfig(BaseModel):
    """Aggregation scheduler tunables."""

    aggregation_window_seconds: int = Field(default=3_600, ge=0)
    min_batch_size: int = Field(default=2, ge=1)
    max_batch_size: int = Field(default=100, ge=1)
    task_deadline_seconds: int = Field(default=86_400, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_seconds: int = Field(default=300, ge=0)
    per_user_cost: int = Field(default=100, ge=1, description="Cost units per dispatched entry")
    unit_cost: int = Field(default=1, ge=0, description="Base units per cost unit")
    resource_limit: int = Field(default=10_000, ge=1)
    urgent_amount_threshold: int = Field(default=100_000, ge=0)
    high_amount_threshold: int = Field(default=10_000, ge=0)
    medium_amount_threshold: int = Field(default=1_000, ge=0)
    dispatch_workers: int = Field(default=4, ge=1, le=64)
    respect_timing: bool = True

    @model_validator(mode="after")
    def _batch_bounds(self) -> "SchedulerConfig":
        if self.min_batch_size > self.max_batch_size:
            raise ValueError("min_batch_size must not exceed max_batch_size")
        if not (
            self.urgent_amount_threshold
            >= self.high_amount_threshold
            >= self.medium_amount_threshold
        ):
            raise ValueError("priority thresholds must be descending")
        return self


class ChainConfig(BaseModel):
    """A destination chain and its flat distribution fee."""

    chain_id: int = Field(ge=1)
    name: str
    fee: int = Field(ge=0)
    rpc_url: Optional[str] = None
    bridge_address: Optional[str] = None
    enabled: bool = True


def _default_chains() -> list[ChainConfig]:
    return [
        ChainConfig(chain_id=c.CHAIN_ETHEREUM, name="ethereum", fee=50),
        ChainConfig(chain_id=c.CHAIN_OPTIMISM, name="optimism", fee=5),
        ChainConfig(chain_id=c.CHAIN_ARBITRUM, name="arbitrum", fee=5),
        ChainConfig(chain_id=c.CHAIN_POLYGON, name="polygon", fee=2),
        ChainConfig(chain_id=c.CHAIN_BASE, name="base", fee=3),
    ]


class DistributorConfig(BaseModel):
    """Cross-chain distributor tunables."""

    source_chain: int = Field(default=c.CHAIN_ETHEREUM, ge=1)
    chains: list[ChainConfig] = Field(default_factory=_default_chains)
    default_fee: int = Field(default=100, ge=0, description="Fee for chains missing from the table")
    default_claim_threshold: int = Field(default=1, ge=1)
    default_claim_frequency_seconds: int = Field(default=86_400, ge=1)
    admins: list[str] = Field(default_factory=lambda: ["admin"])

    @model_validator(mode="after")
    def _unique_chains(self) -> "DistributorConfig":
        ids = [chain.chain_id for chain in self.chains]
        if len(ids) != len(set(ids)):
            raise ValueError("chain ids must be unique")
        return self


class IngestConfig(BaseModel):
    """Hook task payload limits."""

    min_task_reward: int = Field(default=1, ge=1)
    max_task_reward: int = Field(default=100 * 10**18, ge=1)
    max_task_age_seconds: int = Field(default=c.MAX_TASK_AGE_SECONDS, ge=1)


class ObservabilityConfig(BaseModel):
    """Logging and metrics settings."""

    log_level: str = "info"
    metrics_enabled: bool = True
    metrics_port: int = Field(default=8080, ge=1, le=65535)


class EngineConfig(BaseModel):
    """Top-level configuration for a RewardFlow engine."""

    unit: int = Field(default=1, ge=1, description="Base units per liquidity/volume unit")
    trusted_sources: list[str] = Field(default_factory=lambda: ["hook"])
    aggregation_interval_seconds: float = Field(default=3_600.0, gt=0)
    monitor_interval_seconds: float = Field(default=60.0, gt=0)

    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    tiers: TierConfig = Field(default_factory=TierConfig)
    rewards: RewardConfig = Field(default_factory=RewardConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    distributor: DistributorConfig = Field(default_factory=DistributorConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "EngineConfig":
        """Parse configuration from a YAML document."""
        data = yaml.safe_load(yaml_content) or {}
        if not isinstance(data, dict):
            raise ConfigurationError("configuration root must be a mapping")
        return _build(data)

    def to_yaml(self) -> str:
        """Serialize to YAML."""
        return yaml.dump(self.model_dump(mode="json"), default_flow_style=False, sort_keys=False)


def load_config(
    path: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """Load configuration from an optional YAML file plus environment overrides.

    Args:
        path: YAML file. A missing file is an error; ``None`` means defaults.
        env: Environment mapping, defaults to ``os.environ``.

    Raises:
        ConfigurationError: If the file cannot be read or values are invalid.
    """
    data: dict[str, Any] = {}
    if path is not None:
        try:
            raw = Path(path).read_text()
        except OSError as exc:
            raise ConfigurationError(f"cannot read config file {path}: {exc}") from exc
        loaded = yaml.safe_load(raw) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError("configuration root must be a mapping")
        data = loaded
        logger.info("Loaded configuration from %s", path)

    overrides = _env_overrides(os.environ if env is None else env)
    for keys, value in overrides:
        _assign(data, keys, value)
    if overrides:
        logger.debug("Applied %d environment overrides", len(overrides))
    return _build(data)


def _build(data: dict[str, Any]) -> EngineConfig:
    try:
        return EngineConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


def _env_overrides(env: Mapping[str, str]) -> list[tuple[list[str], Any]]:
    overrides: list[tuple[list[str], Any]] = []
    for name, value in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        keys = [k.lower() for k in name[len(ENV_PREFIX):].split("__") if k]
        if keys:
            # YAML parsing turns "3" into 3 and "true" into True.
            overrides.append((keys, yaml.safe_load(value)))
    return overrides


def _assign(data: dict[str, Any], keys: list[str], value: Any) -> None:
    node = data
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = value
