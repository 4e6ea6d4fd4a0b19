"""
Bridge executor interface.

The distributor hands each payout to a bridge executor. Acceptance means
"dispatched", not settled on the destination chain.
"""

from __future__ import annotations

import hashlib
import threading
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


class BridgeInstruction(BaseModel):
    """A transfer instruction for the bridge."""

    user: str
    amount: int
    source_chain: int
    target_chain: int
    nonce: int


@runtime_checkable
class BridgeExecutor(Protocol):
    """Accepts transfer instructions.

    Implementations return a bridge reference on acceptance and raise
    ``BridgeRejectedError`` on refusal.
    """

    def submit(self, instruction: BridgeInstruction) -> str: ...


class RecordingBridgeExecutor:
    """Accepts every instruction and keeps them in memory."""

    def __init__(self) -> None:
        self._instructions: list[BridgeInstruction] = []
        self._lock = threading.Lock()

    def submit(self, instruction: BridgeInstruction) -> str:
        with self._lock:
            self._instructions.append(instruction)
        digest = hashlib.sha256(instruction.model_dump_json().encode()).hexdigest()
        return f"bridge-{digest[:16]}"

    @property
    def instructions(self) -> list[BridgeInstruction]:
        with self._lock:
            return list(self._instructions)
