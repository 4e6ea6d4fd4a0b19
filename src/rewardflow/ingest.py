"""
Hook task ingestion.

The exchange's hook layer submits reward tasks as JSON payloads. The worker
validates each payload, accrues the reward to the user's pending balance and
reports the fee and net amount the user would receive on their preferred
chain.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from rewardflow.config import IngestConfig
from rewardflow.distribution.distributor import CrossChainDistributor
from rewardflow.events.bus import EVENT_REWARD_ACCRUED, Event, EventBus
from rewardflow.exceptions import InvalidTaskPayloadError, RewardFlowError
from rewardflow.observability.metrics import MetricsCollector
from rewardflow.reward.ledger import PendingRewardLedger

logger = logging.getLogger(__name__)

RewardType = Literal["liquidity", "swap", "mev"]


class HookRewardTask(BaseModel):
    """A reward task emitted by an exchange hook."""

    user: str
    amount: int
    chain_id: int
    pool_id: str = ""
    reward_type: RewardType
    timestamp: int
    hook_address: str = ""
    transaction_hash: str = ""


class HookTaskResult(BaseModel):
    """Outcome of handling one hook task."""

    task_id: str
    success: bool
    user: str = ""
    reward_type: Optional[str] = None
    accrued_amount: int = 0
    fee_amount: int = 0
    net_amount: int = 0
    target_chain: int = 0
    balance: int = 0
    error: Optional[str] = None
    processed_at: float


class HookTaskStats(BaseModel):
    """Hook task processing statistics."""

    total_tasks_processed: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    total_rewards_accrued: int = 0
    total_mev_captured: int = 0
    average_processing_time_ms: float = 0.0
    success_rate: float = 0.0


class HookTaskWorker:
    """Validates and applies hook reward tasks.

    Args:
        ledger: Pending balances to accrue into.
        distributor: Used to project fee and destination chain.
        config: Payload limits.
        bus: Optional event bus.
        metrics: Optional metrics collector.
    """

    def __init__(
        self,
        ledger: PendingRewardLedger,
        distributor: CrossChainDistributor,
        config: Optional[IngestConfig] = None,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config or IngestConfig()
        self._ledger = ledger
        self._distributor = distributor
        self._bus = bus
        self._metrics = metrics
        self._stats = HookTaskStats()
        self._stats_lock = threading.Lock()

    def parse(self, payload: Union[bytes, str, dict[str, Any]]) -> HookRewardTask:
        """Decode *payload* into a task without range checks."""
        try:
            if isinstance(payload, dict):
                return HookRewardTask.model_validate(payload)
            if isinstance(payload, bytes):
                payload = payload.decode()
            return HookRewardTask.model_validate(json.loads(payload))
        except (UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as exc:
            raise InvalidTaskPayloadError(f"invalid task data format: {exc}") from exc

    def validate_task(
        self,
        task_id: str,
        payload: Union[bytes, str, dict[str, Any]],
        now: Optional[float] = None,
    ) -> HookRewardTask:
        """Parse and validate a task payload.

        Raises:
            InvalidTaskPayloadError: If the payload is malformed or out of range.
        """
        task = self.parse(payload)
        now = time.time() if now is None else now

        if not task.user:
            raise InvalidTaskPayloadError("user address is required")
        if task.amount <= 0:
            raise InvalidTaskPayloadError("invalid reward amount")
        if task.amount < self.config.min_task_reward:
            raise InvalidTaskPayloadError("reward amount below minimum threshold")
        if task.amount > self.config.max_task_reward:
            raise InvalidTaskPayloadError("reward amount exceeds maximum threshold")
        if task.chain_id == 0:
            raise InvalidTaskPayloadError("chain ID is required")
        if task.timestamp <= 0:
            raise InvalidTaskPayloadError("invalid timestamp")
        if now - task.timestamp > self.config.max_task_age_seconds:
            raise InvalidTaskPayloadError("task timestamp too old")

        logger.debug(
            "Validated hook task %s: user=%s amount=%d type=%s",
            task_id, task.user, task.amount, task.reward_type,
        )
        return task

    def handle_task(
        self,
        task_id: str,
        payload: Union[bytes, str, dict[str, Any]],
        now: Optional[float] = None,
    ) -> HookTaskResult:
        """Validate and accrue a hook task; failures are reported, not raised."""
        started = time.monotonic()
        now = time.time() if now is None else now
        try:
            result = self._process(task_id, self.validate_task(task_id, payload, now), now)
        except RewardFlowError as exc:
            logger.warning("Hook task %s rejected: %s", task_id, exc)
            result = HookTaskResult(task_id=task_id, success=False, error=str(exc), processed_at=now)
        self._update_stats(result, time.monotonic() - started)
        return result

    def _process(self, task_id: str, task: HookRewardTask, now: float) -> HookTaskResult:
        balance = self._ledger.accrue(task.user, task.amount, task.reward_type)
        prefs = self._distributor.get_user_preferences(task.user)
        fee = self._distributor.calculate_fee(task.amount, prefs.preferred_chain)

        if self._metrics is not None:
            self._metrics.record_accrual(task.reward_type, task.amount)
            if task.reward_type == "mev":
                self._metrics.record_mev(task.amount)
        if self._bus is not None:
            self._bus.emit(Event(
                event_type=EVENT_REWARD_ACCRUED,
                source=task.user,
                payload={
                    "amount": task.amount,
                    "reward_source": task.reward_type,
                    "pool_id": task.pool_id,
                    "balance": balance,
                    "hook_task_id": task_id,
                },
            ))
        logger.info(
            "Hook task %s accrued %d %s reward to %s",
            task_id, task.amount, task.reward_type, task.user,
        )
        return HookTaskResult(
            task_id=task_id,
            success=True,
            user=task.user,
            reward_type=task.reward_type,
            accrued_amount=task.amount,
            fee_amount=fee,
            net_amount=task.amount - fee,
            target_chain=prefs.preferred_chain,
            balance=balance,
            processed_at=now,
        )

    def _update_stats(self, result: HookTaskResult, elapsed: float) -> None:
        with self._stats_lock:
            stats = self._stats
            stats.total_tasks_processed += 1
            if result.success:
                stats.successful_tasks += 1
                stats.total_rewards_accrued += result.accrued_amount
                if result.reward_type == "mev":
                    stats.total_mev_captured += result.accrued_amount
            else:
                stats.failed_tasks += 1
            n = stats.total_tasks_processed
            stats.average_processing_time_ms += (elapsed * 1000 - stats.average_processing_time_ms) / n
            stats.success_rate = stats.successful_tasks * 100.0 / n

    def get_stats(self) -> HookTaskStats:
        with self._stats_lock:
            return self._stats.model_copy()
