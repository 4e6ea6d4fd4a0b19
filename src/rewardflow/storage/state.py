"""
Engine state persistence.

Writes the engine's per-user records, task and request history, and
aggregate counters to an ``AbstractStorageProvider`` and reads them back.

Layout (``<ns>`` is ``StorageConfig.namespace``)::

    <ns>:activity               hash  user -> UserActivity
    <ns>:tiers                  hash  user -> UserTier
    <ns>:pending                hash  user -> PendingReward
    <ns>:preferences            hash  user -> UserPreferences
    <ns>:distribution_records   hash  user -> UserDistributionRecord
    <ns>:tasks                  hash  task id -> AggregationTask
    <ns>:task_ids               list  task ids, append-only
    <ns>:requests               list  DistributionRequest, append-only
    <ns>:roster                 key   pool -> user -> liquidity
    <ns>:counters:<component>   key   counter snapshot
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from rewardflow.activity.tracker import UserActivity
from rewardflow.distribution.models import (
    DistributionRequest,
    UserDistributionRecord,
    UserPreferences,
)
from rewardflow.exceptions import StorageError
from rewardflow.reward.ledger import PendingReward
from rewardflow.reward.roster import InMemoryPositionRoster
from rewardflow.scheduling.models import AggregationTask
from rewardflow.tiers.classifier import UserTier

from .provider import AbstractStorageProvider

if TYPE_CHECKING:
    from rewardflow.engine import RewardFlowEngine

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class EngineStateStore:
    """Saves and restores a ``RewardFlowEngine`` through a storage provider."""

    def __init__(self, provider: AbstractStorageProvider):
        self.provider = provider
        self.namespace = provider.config.namespace

    def _key(self, *parts: str) -> str:
        return ":".join((self.namespace, *parts))

    # -- Save -----------------------------------------------------------------

    async def save(self, engine: "RewardFlowEngine") -> dict[str, int]:
        """Persist the engine's current state.

        Per-user records and task snapshots are overwritten; requests and
        task ids are appended past what is already stored.

        Returns:
            Number of items written per section.
        """
        written = {
            "activity": await self._save_hash("activity", engine.tracker.records()),
            "tiers": await self._save_hash("tiers", engine.classifier.tiers()),
            "pending": await self._save_hash("pending", engine.ledger.records()),
            "preferences": await self._save_hash("preferences", engine.distributor.preferences()),
            "distribution_records": await self._save_hash(
                "distribution_records", engine.distributor.records(),
            ),
            "requests": await self._append_requests(engine.distributor.requests()),
            "tasks": await self._save_tasks(engine.scheduler.tasks()),
        }

        if isinstance(engine.roster, InMemoryPositionRoster):
            await self.provider.set(self._key("roster"), json.dumps(engine.roster.snapshot()))

        for component, values in engine.counter_snapshots().items():
            await self.provider.set(self._key("counters", component), json.dumps(values))

        logger.info(
            "Saved engine state: %d users, %d new requests, %d tasks",
            written["pending"], written["requests"], written["tasks"],
        )
        return written

    async def _save_hash(self, section: str, records: list[BaseModel]) -> int:
        key = self._key(section)
        for record in records:
            await self.provider.hset(key, getattr(record, "user"), record.model_dump_json())
        return len(records)

    async def _append_requests(self, requests: list[DistributionRequest]) -> int:
        key = self._key("requests")
        stored = await self.provider.llen(key)
        fresh = requests[stored:]
        for request in fresh:
            await self.provider.rpush(key, request.model_dump_json())
        return len(fresh)

    async def _save_tasks(self, tasks: list[AggregationTask]) -> int:
        known = set(await self.provider.lrange(self._key("task_ids"), 0, -1))
        for task in tasks:
            await self.provider.hset(self._key("tasks"), task.task_id, task.model_dump_json())
            if task.task_id not in known:
                await self.provider.rpush(self._key("task_ids"), task.task_id)
        return len(tasks)

    # -- Load -----------------------------------------------------------------

    async def load(self, engine: "RewardFlowEngine") -> None:
        """Restore persisted state into *engine*."""
        engine.tracker.load(await self.load_records("activity", UserActivity))
        engine.classifier.load(await self.load_records("tiers", UserTier))
        engine.ledger.load(await self.load_records("pending", PendingReward))

        raw_roster = await self.provider.get(self._key("roster"))
        if raw_roster is not None and isinstance(engine.roster, InMemoryPositionRoster):
            engine.roster.load(self._decode_json("roster", raw_roster))

        engine.distributor.load(
            requests=await self.load_requests(),
            preferences=await self.load_records("preferences", UserPreferences),
            records=await self.load_records("distribution_records", UserDistributionRecord),
            counters=await self.load_counters("distributor"),
        )
        engine.scheduler.load(await self.load_tasks(), await self.load_counters("scheduler"))
        engine.calculator.load(await self.load_counters("calculator"))
        logger.info("Loaded engine state from namespace %s", self.namespace)

    async def load_records(self, section: str, model: type[ModelT]) -> list[ModelT]:
        raw = await self.provider.hgetall(self._key(section))
        return [self._decode(model, section, value) for _, value in sorted(raw.items())]

    async def load_requests(self) -> list[DistributionRequest]:
        raw = await self.provider.lrange(self._key("requests"), 0, -1)
        return [self._decode(DistributionRequest, "requests", value) for value in raw]

    async def load_tasks(self) -> list[AggregationTask]:
        task_ids = await self.provider.lrange(self._key("task_ids"), 0, -1)
        tasks: list[AggregationTask] = []
        for task_id in task_ids:
            value = await self.provider.hget(self._key("tasks"), task_id)
            if value is None:
                raise StorageError(f"task {task_id} is listed but not stored")
            tasks.append(self._decode(AggregationTask, "tasks", value))
        return tasks

    async def load_counters(self, component: str) -> dict[str, int]:
        raw = await self.provider.get(self._key("counters", component))
        if raw is None:
            return {}
        return {name: int(value) for name, value in self._decode_json(component, raw).items()}

    @staticmethod
    def _decode(model: type[ModelT], section: str, value: str) -> ModelT:
        try:
            return model.model_validate_json(value)
        except PydanticValidationError as exc:
            raise StorageError(f"corrupt {section} record: {exc}") from exc

    @staticmethod
    def _decode_json(section: str, value: str) -> Any:
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise StorageError(f"corrupt {section} value: {exc}") from exc
