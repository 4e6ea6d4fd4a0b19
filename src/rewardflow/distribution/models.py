"""Data models for cross-chain distribution."""

from __future__ import annotations

import hashlib
import json
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DistributionRequest(BaseModel):
    """Immutable record of one user's cross-chain payout instruction.

    ``request_id`` is the SHA-256 of the canonical fields, so a request can
    be re-derived and verified offline.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str = ""
    user: str
    amount: int = Field(gt=0)
    fee: int = Field(ge=0)
    net_amount: int = Field(ge=0)
    source_chain: int
    target_chain: int
    timestamp: float
    nonce: int = Field(ge=0)
    executed: bool = True
    bridge_reference: Optional[str] = None
    task_id: Optional[str] = None

    def compute_id(self) -> str:
        """Compute the SHA-256 hash of this request's canonical fields.

        Returns:
            Hex-encoded SHA-256 digest.
        """
        data = {
            "user": self.user,
            "amount": self.amount,
            "fee": self.fee,
            "net_amount": self.net_amount,
            "source_chain": self.source_chain,
            "target_chain": self.target_chain,
            "timestamp": self.timestamp,
            "nonce": self.nonce,
            "task_id": self.task_id,
        }
        canonical = json.dumps(data, sort_keys=True)
        return hashlib.sha256(canonical.encode()).hexdigest()

    def verify_id(self) -> bool:
        return self.request_id == self.compute_id()

    @classmethod
    def create(cls, **fields: object) -> "DistributionRequest":
        """Build a request with its derived ``request_id`` filled in."""
        draft = cls(**fields)
        return draft.model_copy(update={"request_id": draft.compute_id()})


class UserPreferences(BaseModel):
    """Distribution preferences owned by a user."""

    user: str
    preferred_chain: int
    claim_threshold: int = Field(ge=1)
    claim_frequency: int = Field(ge=1, description="Seconds between claims")
    auto_claim_enabled: bool = False
    last_update: Optional[float] = None


class UserDistributionRecord(BaseModel):
    """Per-user payout history with a per-chain sub-map."""

    user: str
    total_claimed: int = 0
    total_fees: int = 0
    claimed_by_chain: dict[int, int] = Field(default_factory=dict)
    request_ids: list[str] = Field(default_factory=list)
    last_claim_time: Optional[float] = None


class ChainStatus(BaseModel):
    """Support status and fee for one chain."""

    chain_id: int
    name: str
    supported: bool
    fee: int


class DistributionStats(BaseModel):
    """Aggregate distribution statistics."""

    total_distributed: int = 0
    total_fees: int = 0
    total_requests: int = 0
    successful_distributions: int = 0
    failed_distributions: int = 0
    paused: bool = False
    supported_chains: list[int] = Field(default_factory=list)

    @property
    def success_rate(self) -> float:
        attempts = self.successful_distributions + self.failed_distributions
        return self.successful_distributions * 100.0 / attempts if attempts else 0.0
