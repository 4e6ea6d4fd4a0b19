"""Shared fixtures for RewardFlow tests."""

import pytest

from rewardflow.config import EngineConfig
from rewardflow.distribution.bridge import BridgeInstruction
from rewardflow.engine import RewardFlowEngine
from rewardflow.exceptions import BridgeRejectedError
from rewardflow.reward.calculator import PoolContext

# 2023-11-14 22:13:20 UTC, outside the default 13-21 UTC peak window.
NOW = 1_700_000_000.0
DAY = 86_400


class SelectiveBridge:
    """Bridge executor that rejects instructions for chosen users."""

    def __init__(self, reject_users=()):
        self.reject_users = set(reject_users)
        self.accepted: list[BridgeInstruction] = []

    def submit(self, instruction: BridgeInstruction) -> str:
        if instruction.user in self.reject_users:
            raise BridgeRejectedError(f"bridge refused transfer to {instruction.user}")
        self.accepted.append(instruction)
        return f"ref-{instruction.nonce}"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def weth_pool():
    return PoolContext(pool_id="weth-usdc", token0="WETH", token1="USDC")


@pytest.fixture
def stable_pool():
    return PoolContext(pool_id="usdc-dai", token0="USDC", token1="DAI")


@pytest.fixture
def engine():
    return RewardFlowEngine(EngineConfig())


class UnreachableBridge(SelectiveBridge):
    """Bridge executor whose transport fails for chosen users."""

    def submit(self, instruction: BridgeInstruction) -> str:
        if instruction.user in self.reject_users:
            raise ConnectionError("bridge RPC timed out")
        self.accepted.append(instruction)
        return f"ref-{instruction.nonce}"
