"""
Pending Reward Ledger.

Per-user accumulator of unclaimed reward value. Scored reward events only
ever add to a balance; the scheduler and the instant-claim path are the
only callers that drain it.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from pydantic import BaseModel, Field

from rewardflow.concurrency import KeyedLockRegistry
from rewardflow.exceptions import InvalidAmountError

logger = logging.getLogger(__name__)


class PendingReward(BaseModel):
    """Unclaimed reward value for one user."""

    user: str
    balance: int = Field(default=0, ge=0)
    by_source: dict[str, int] = Field(default_factory=dict)
    total_accrued: int = Field(default=0, ge=0)
    total_drained: int = Field(default=0, ge=0)
    total_restored: int = Field(default=0, ge=0)


class PendingRewardLedger:
    """Thread-safe per-user pending balances."""

    def __init__(self) -> None:
        self._records: dict[str, PendingReward] = {}
        self._records_lock = threading.Lock()
        self._locks = KeyedLockRegistry()

    @contextmanager
    def hold(self, user: str) -> Iterator[None]:
        """Serialize a read-modify-write sequence on *user*'s balance."""
        with self._locks.hold(user):
            yield

    def accrue(self, user: str, amount: int, source: str) -> int:
        """Add *amount* from *source*; returns the new balance."""
        if amount < 0:
            raise InvalidAmountError(f"accrual must be non-negative, got {amount}")
        with self._locks.hold(user):
            record = self._get_or_create(user)
            if amount == 0:
                return record.balance
            record.balance += amount
            record.total_accrued += amount
            record.by_source[source] = record.by_source.get(source, 0) + amount
            return record.balance

    def drain(self, user: str, amount: Optional[int] = None) -> int:
        """Remove *amount* (or the full balance) and return what was removed.

        Raises:
            InvalidAmountError: If *amount* is negative or exceeds the balance.
        """
        with self._locks.hold(user):
            record = self._get_or_create(user)
            take = record.balance if amount is None else amount
            if take < 0 or take > record.balance:
                raise InvalidAmountError(
                    f"cannot drain {take} from {user}: balance is {record.balance}"
                )
            record.balance -= take
            record.total_drained += take
            return take

    def drain_if_at_least(self, user: str, threshold: int) -> int:
        """Copy-then-clear *user*'s balance when it meets *threshold*, else 0."""
        with self._locks.hold(user):
            record = self._records.get(user)
            if record is None or record.balance <= 0 or record.balance < threshold:
                return 0
            return self.drain(user)

    def restore(self, user: str, amount: int) -> int:
        """Return a previously drained *amount* to *user*'s balance."""
        if amount <= 0:
            return self.balance(user)
        with self._locks.hold(user):
            record = self._get_or_create(user)
            record.balance += amount
            record.total_restored += amount
            logger.debug("Restored %d to pending balance of %s", amount, user)
            return record.balance

    def balance(self, user: str) -> int:
        with self._locks.hold(user):
            with self._records_lock:
                record = self._records.get(user)
            return record.balance if record is not None else 0

    def get(self, user: str) -> Optional[PendingReward]:
        with self._locks.hold(user):
            with self._records_lock:
                record = self._records.get(user)
            return record.model_copy(deep=True) if record is not None else None

    def users_with_balance(self) -> list[str]:
        with self._records_lock:
            return [user for user, record in self._records.items() if record.balance > 0]

    def total_pending(self) -> int:
        with self._records_lock:
            return sum(record.balance for record in self._records.values())

    def records(self) -> list[PendingReward]:
        with self._records_lock:
            return [record.model_copy(deep=True) for record in self._records.values()]

    def load(self, records: list[PendingReward]) -> None:
        with self._records_lock:
            for record in records:
                self._records[record.user] = record.model_copy(deep=True)

    def _get_or_create(self, user: str) -> PendingReward:
        with self._records_lock:
            record = self._records.get(user)
            if record is None:
                record = PendingReward(user=user)
                self._records[user] = record
            return record
