"""
Concurrency primitives.

Per-key locks so different users never contend, and an atomic counter set
for the few aggregate statistics shared across users.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class KeyedLockRegistry:
    """One re-entrant lock per key, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Serialize work on *key*."""
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class AtomicCounters:
    """Named integer counters with atomic increments and consistent snapshots."""

    def __init__(self, *names: str) -> None:
        self._values: dict[str, int] = {name: 0 for name in names}
        self._lock = threading.Lock()

    def add(self, name: str, amount: int = 1) -> int:
        with self._lock:
            value = self._values.get(name, 0) + amount
            self._values[name] = value
            return value

    def add_many(self, increments: dict[str, int]) -> None:
        """Apply several increments as one atomic update."""
        with self._lock:
            for name, amount in increments.items():
                self._values[name] = self._values.get(name, 0) + amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._values.get(name, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._values)

    def restore(self, values: dict[str, int]) -> None:
        with self._lock:
            self._values.update(values)
