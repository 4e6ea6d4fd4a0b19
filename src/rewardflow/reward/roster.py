"""
LP roster providers.

The reward calculator asks a roster for "current LPs and their shares of a
pool". The in-memory roster is fed from liquidity events; a deployment can
plug in a position-tracking service instead.
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from .allocation import LiquidityShare


@runtime_checkable
class PositionRoster(Protocol):
    """Source of LP positions per pool."""

    def get_shares(self, pool_id: str) -> list[LiquidityShare]: ...


class InMemoryPositionRoster:
    """Roster built from the liquidity events the engine has seen."""

    def __init__(self) -> None:
        self._positions: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    def add_liquidity(self, pool_id: str, user: str, delta: int) -> int:
        """Add *delta* to *user*'s position in *pool_id*; returns the position."""
        with self._lock:
            pool = self._positions.setdefault(pool_id, {})
            pool[user] = max(0, pool.get(user, 0) + delta)
            return pool[user]

    def get_shares(self, pool_id: str) -> list[LiquidityShare]:
        with self._lock:
            pool = dict(self._positions.get(pool_id, {}))
        return [
            LiquidityShare(user=user, liquidity=liquidity)
            for user, liquidity in sorted(pool.items())
            if liquidity > 0
        ]

    def total_liquidity(self, pool_id: str) -> int:
        with self._lock:
            return sum(self._positions.get(pool_id, {}).values())

    def pools(self) -> list[str]:
        with self._lock:
            return list(self._positions)

    def snapshot(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {pool_id: dict(pool) for pool_id, pool in self._positions.items()}

    def load(self, positions: dict[str, dict[str, int]]) -> None:
        with self._lock:
            for pool_id, pool in positions.items():
                self._positions[pool_id] = dict(pool)
