"""
Proportional Reward Allocation.

Splits a pooled integer reward across liquidity providers by their share
of pool liquidity. Uses the largest-remainder method so the allocations
always sum exactly to the pooled amount:

1. Every LP gets ``floor(amount * share / total)``.
2. The leftover units go one each to the LPs with the largest fractional
   remainders, ties broken by larger share, then by user id ascending.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class LiquidityShare(BaseModel):
    """One LP's position in a pool."""

    user: str
    liquidity: int = Field(ge=0)


class RewardPool(BaseModel):
    """A pool of rewards to split among a pool's LPs."""

    pool_id: str
    total_reward: int = Field(ge=0)
    participants: list[LiquidityShare]


class RewardAllocation(BaseModel):
    """Allocation result for a single LP."""

    user: str
    amount: int
    percentage: float


class AllocationResult(BaseModel):
    """Complete result of a proportional split."""

    pool_id: str
    strategy: str
    allocations: list[RewardAllocation]
    total_distributed: int
    skipped: bool = False


@runtime_checkable
class AllocationStrategy(Protocol):
    """Protocol for pluggable allocation strategies."""

    def allocate(self, pool: RewardPool) -> AllocationResult: ...


class LargestRemainderStrategy:
    """Liquidity-weighted split with largest-remainder rounding."""

    name = "largest_remainder"

    def allocate(self, pool: RewardPool) -> AllocationResult:
        participants = [p for p in pool.participants if p.liquidity > 0]
        total_liquidity = sum(p.liquidity for p in participants)
        if not participants or total_liquidity == 0:
            return AllocationResult(
                pool_id=pool.pool_id,
                strategy=self.name,
                allocations=[],
                total_distributed=0,
                skipped=True,
            )

        floors: list[int] = []
        remainders: list[int] = []
        for p in participants:
            quotient, remainder = divmod(pool.total_reward * p.liquidity, total_liquidity)
            floors.append(quotient)
            remainders.append(remainder)

        leftover = pool.total_reward - sum(floors)
        order = sorted(
            range(len(participants)),
            key=lambda i: (-remainders[i], -participants[i].liquidity, participants[i].user),
        )
        for i in order[:leftover]:
            floors[i] += 1

        allocations = [
            RewardAllocation(
                user=p.user,
                amount=amount,
                percentage=p.liquidity * 100.0 / total_liquidity,
            )
            for p, amount in zip(participants, floors)
        ]
        return AllocationResult(
            pool_id=pool.pool_id,
            strategy=self.name,
            allocations=allocations,
            total_distributed=sum(floors),
        )


def allocate(pool: RewardPool, strategy: Optional[AllocationStrategy] = None) -> AllocationResult:
    """Split *pool* and check conservation of the total.

    Raises:
        ValueError: If a non-skipped split does not sum to the pool total.
    """
    result = (strategy or LargestRemainderStrategy()).allocate(pool)
    if not result.skipped and result.total_distributed != pool.total_reward:
        raise ValueError(
            f"Allocation mismatch: distributed {result.total_distributed} "
            f"but pool total is {pool.total_reward}"
        )
    return result
