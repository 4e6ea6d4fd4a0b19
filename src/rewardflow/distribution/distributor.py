"""
Cross-Chain Distributor.

Computes destination fees, applies user preferences, hands payouts to the
bridge executor and keeps the append-only request history plus aggregate
statistics.

Counting rule: validation errors (bad amount, unsupported chain) are
rejected before anything is counted. Policy rejections (paused, below
threshold) and bridge refusals increment ``failed_distributions``.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Optional

from rewardflow.concurrency import AtomicCounters, KeyedLockRegistry
from rewardflow.config import ChainConfig, DistributorConfig
from rewardflow.events.bus import (
    EVENT_CHAIN_UPDATED,
    EVENT_DISTRIBUTION_EXECUTED,
    EVENT_DISTRIBUTION_FAILED,
    EVENT_DISTRIBUTOR_PAUSED,
    EVENT_DISTRIBUTOR_UNPAUSED,
    Event,
    EventBus,
)
from rewardflow.exceptions import (
    BridgeRejectedError,
    InvalidAmountError,
    PausedError,
    RequestNotFoundError,
    ThresholdNotMetError,
    UnauthorizedError,
    UnsupportedChainError,
)
from rewardflow.observability.metrics import MetricsCollector

from .bridge import BridgeExecutor, BridgeInstruction, RecordingBridgeExecutor
from .models import (
    ChainStatus,
    DistributionRequest,
    DistributionStats,
    UserDistributionRecord,
    UserPreferences,
)

logger = logging.getLogger(__name__)


class CrossChainDistributor:
    """Dispatches reward payouts to supported destination chains.

    Args:
        config: Chains, fee table, defaults and admin identities.
        bridge: Bridge executor; defaults to an in-memory recorder.
        bus: Optional event bus.
        metrics: Optional metrics collector.
    """

    def __init__(
        self,
        config: Optional[DistributorConfig] = None,
        bridge: Optional[BridgeExecutor] = None,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config or DistributorConfig()
        self._bridge = bridge or RecordingBridgeExecutor()
        self._bus = bus
        self._metrics = metrics

        self._state_lock = threading.Lock()
        self._chains: dict[int, ChainConfig] = {ch.chain_id: ch for ch in self.config.chains}
        self._admins = set(self.config.admins)
        self._paused = False

        self._requests: dict[str, DistributionRequest] = {}
        self._request_order: list[str] = []
        self._requests_lock = threading.Lock()
        self._nonce = itertools.count(1)
        self._nonce_lock = threading.Lock()

        self._preferences: dict[str, UserPreferences] = {}
        self._records: dict[str, UserDistributionRecord] = {}
        self._records_lock = threading.Lock()
        self._locks = KeyedLockRegistry()

        self._counters = AtomicCounters(
            "total_distributed",
            "total_fees",
            "total_requests",
            "successful_distributions",
            "failed_distributions",
        )

    # ------------------------------------------------------------------
    # Fees and chains
    # ------------------------------------------------------------------

    def calculate_fee(self, amount: int, target_chain: int) -> int:
        """Flat fee for *target_chain*, capped at *amount*."""
        with self._state_lock:
            chain = self._chains.get(target_chain)
            fee = chain.fee if chain is not None else self.config.default_fee
        return min(fee, max(0, amount))

    def net_reward(self, gross: int, target_chain: int) -> int:
        return gross - self.calculate_fee(gross, target_chain)

    def is_supported(self, chain_id: int) -> bool:
        with self._state_lock:
            chain = self._chains.get(chain_id)
            return chain is not None and chain.enabled

    def supported_chains(self) -> list[int]:
        with self._state_lock:
            return sorted(cid for cid, ch in self._chains.items() if ch.enabled)

    def chain_status(self, chain_id: int) -> ChainStatus:
        with self._state_lock:
            chain = self._chains.get(chain_id)
        if chain is None:
            return ChainStatus(
                chain_id=chain_id, name="unknown", supported=False, fee=self.config.default_fee,
            )
        return ChainStatus(chain_id=chain_id, name=chain.name, supported=chain.enabled, fee=chain.fee)

    def list_chain_status(self) -> list[ChainStatus]:
        with self._state_lock:
            ids = sorted(self._chains)
        return [self.chain_status(cid) for cid in ids]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def is_admin(self, caller: str) -> bool:
        return caller in self._admins

    @property
    def paused(self) -> bool:
        with self._state_lock:
            return self._paused

    def pause(self, caller: str) -> None:
        self._require_admin(caller, "pause")
        with self._state_lock:
            self._paused = True
        logger.warning("Distributor paused by %s", caller)
        self._emit(EVENT_DISTRIBUTOR_PAUSED, caller, {})

    def unpause(self, caller: str) -> None:
        self._require_admin(caller, "unpause")
        with self._state_lock:
            self._paused = False
        logger.info("Distributor unpaused by %s", caller)
        self._emit(EVENT_DISTRIBUTOR_UNPAUSED, caller, {})

    def set_chain_support(
        self,
        caller: str,
        chain_id: int,
        supported: bool,
        fee: Optional[int] = None,
        name: Optional[str] = None,
    ) -> ChainStatus:
        """Enable or disable *chain_id*, optionally updating its fee.

        Raises:
            UnauthorizedError: If *caller* is not an admin.
            InvalidAmountError: If *fee* is negative or the chain id is invalid.
        """
        self._require_admin(caller, "set_chain_support")
        if chain_id < 1:
            raise InvalidAmountError(f"invalid chain id {chain_id}")
        if fee is not None and fee < 0:
            raise InvalidAmountError(f"fee must be non-negative, got {fee}")
        with self._state_lock:
            current = self._chains.get(chain_id)
            if current is None:
                current = ChainConfig(
                    chain_id=chain_id,
                    name=name or f"chain-{chain_id}",
                    fee=self.config.default_fee if fee is None else fee,
                )
            update: dict[str, object] = {"enabled": supported}
            if fee is not None:
                update["fee"] = fee
            if name is not None:
                update["name"] = name
            self._chains[chain_id] = current.model_copy(update=update)
        logger.info("Chain %d support set to %s by %s", chain_id, supported, caller)
        status = self.chain_status(chain_id)
        self._emit(EVENT_CHAIN_UPDATED, caller, status.model_dump())
        return status

    def _require_admin(self, caller: str, action: str) -> None:
        if not self.is_admin(caller):
            raise UnauthorizedError(f"{caller!r} may not {action}")

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def set_user_preferences(
        self,
        caller: str,
        user: str,
        preferred_chain: int,
        claim_threshold: int,
        claim_frequency: int,
        auto_claim_enabled: bool = False,
        now: Optional[float] = None,
    ) -> UserPreferences:
        """Persist *user*'s preferences after validating them.

        Raises:
            UnauthorizedError: If *caller* is not *user*.
            UnsupportedChainError: If *preferred_chain* is not supported.
            InvalidAmountError: If threshold or frequency is not positive.
        """
        if caller != user:
            raise UnauthorizedError(f"{caller!r} may not change preferences of {user!r}")
        if not self.is_supported(preferred_chain):
            raise UnsupportedChainError(preferred_chain)
        if claim_threshold <= 0:
            raise InvalidAmountError(f"claim threshold must be positive, got {claim_threshold}")
        if claim_frequency <= 0:
            raise InvalidAmountError(f"claim frequency must be positive, got {claim_frequency}")
        prefs = UserPreferences(
            user=user,
            preferred_chain=preferred_chain,
            claim_threshold=claim_threshold,
            claim_frequency=claim_frequency,
            auto_claim_enabled=auto_claim_enabled,
            last_update=time.time() if now is None else now,
        )
        with self._locks.hold(user):
            with self._records_lock:
                self._preferences[user] = prefs
        logger.debug("Preferences updated for %s (chain=%d)", user, preferred_chain)
        return prefs.model_copy()

    def get_user_preferences(self, user: str) -> UserPreferences:
        """Stored preferences, or the configured defaults."""
        with self._records_lock:
            prefs = self._preferences.get(user)
        if prefs is not None:
            return prefs.model_copy()
        return UserPreferences(
            user=user,
            preferred_chain=self.config.source_chain,
            claim_threshold=self.config.default_claim_threshold,
            claim_frequency=self.config.default_claim_frequency_seconds,
        )

    def has_preferences(self, user: str) -> bool:
        with self._records_lock:
            return user in self._preferences

    def get_optimal_distribution_timing(self, user: str, now: Optional[float] = None) -> float:
        """Advisory next-dispatch time for *user*.

        ``last_claim_time + claim_frequency``, never earlier than *now*.
        Users who have never claimed can be paid immediately.
        """
        now = time.time() if now is None else now
        prefs = self.get_user_preferences(user)
        record = self.user_record(user)
        if record is None or record.last_claim_time is None:
            return now
        return max(now, record.last_claim_time + prefs.claim_frequency)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def execute_distribution(
        self,
        user: str,
        amount: int,
        target_chain: int,
        now: Optional[float] = None,
        task_id: Optional[str] = None,
    ) -> DistributionRequest:
        """Dispatch *amount* to *user* on *target_chain*.

        Raises:
            InvalidAmountError: If *amount* is not positive.
            UnsupportedChainError: If *target_chain* is not supported.
            PausedError: If the distributor is paused.
            BridgeRejectedError: If the bridge refuses the instruction.
        """
        if amount <= 0:
            raise InvalidAmountError(f"distribution amount must be positive, got {amount}")
        if not self.is_supported(target_chain):
            raise UnsupportedChainError(target_chain)
        if self.paused:
            self._record_failure(user, amount, target_chain, "paused")
            raise PausedError("distributor is paused")

        now = time.time() if now is None else now
        fee = self.calculate_fee(amount, target_chain)
        net = amount - fee
        with self._nonce_lock:
            nonce = next(self._nonce)

        instruction = BridgeInstruction(
            user=user,
            amount=net,
            source_chain=self.config.source_chain,
            target_chain=target_chain,
            nonce=nonce,
        )
        try:
            reference = self._bridge.submit(instruction)
        except BridgeRejectedError as exc:
            self._record_failure(user, amount, target_chain, str(exc))
            raise
        except Exception as exc:
            reason = f"bridge error: {type(exc).__name__}: {exc}"
            self._record_failure(user, amount, target_chain, reason)
            raise BridgeRejectedError(reason) from exc

        request = DistributionRequest.create(
            user=user,
            amount=amount,
            fee=fee,
            net_amount=net,
            source_chain=self.config.source_chain,
            target_chain=target_chain,
            timestamp=now,
            nonce=nonce,
            executed=True,
            bridge_reference=reference,
            task_id=task_id,
        )
        with self._requests_lock:
            self._requests[request.request_id] = request
            self._request_order.append(request.request_id)

        with self._locks.hold(user):
            record = self._get_or_create_record(user)
            record.total_claimed += amount
            record.total_fees += fee
            record.claimed_by_chain[target_chain] = record.claimed_by_chain.get(target_chain, 0) + amount
            record.request_ids.append(request.request_id)
            record.last_claim_time = now

        self._counters.add_many({
            "total_distributed": amount,
            "total_fees": fee,
            "total_requests": 1,
            "successful_distributions": 1,
        })
        if self._metrics is not None:
            self._metrics.record_distribution(True, target_chain, amount, fee)
        logger.debug(
            "Distributed %d to %s on chain %d (fee=%d, request=%s)",
            amount, user, target_chain, fee, request.request_id[:12],
        )
        self._emit(EVENT_DISTRIBUTION_EXECUTED, user, {
            "request_id": request.request_id,
            "amount": amount,
            "fee": fee,
            "target_chain": target_chain,
            "task_id": task_id,
        })
        return request

    def execute_instant_claim(self, user: str, amount: int, now: Optional[float] = None) -> DistributionRequest:
        """Dispatch to *user*'s preferred chain if *amount* meets their threshold.

        Raises:
            ThresholdNotMetError: If *amount* is below the claim threshold.
        """
        if amount <= 0:
            raise InvalidAmountError(f"claim amount must be positive, got {amount}")
        prefs = self.get_user_preferences(user)
        if not self.is_supported(prefs.preferred_chain):
            raise UnsupportedChainError(prefs.preferred_chain)
        if amount < prefs.claim_threshold:
            self._record_failure(user, amount, prefs.preferred_chain, "below threshold")
            raise ThresholdNotMetError(
                f"claim of {amount} is below threshold {prefs.claim_threshold} for {user}"
            )
        return self.execute_distribution(user, amount, prefs.preferred_chain, now=now)

    def _record_failure(self, user: str, amount: int, target_chain: int, reason: str) -> None:
        self._counters.add("failed_distributions")
        if self._metrics is not None:
            self._metrics.record_distribution(False, target_chain)
        logger.warning("Distribution of %d to %s on chain %d failed: %s", amount, user, target_chain, reason)
        self._emit(EVENT_DISTRIBUTION_FAILED, user, {
            "amount": amount,
            "target_chain": target_chain,
            "reason": reason,
        })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> DistributionRequest:
        with self._requests_lock:
            request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFoundError(f"no distribution request {request_id}")
        return request

    def requests(self, user: Optional[str] = None) -> list[DistributionRequest]:
        with self._requests_lock:
            ordered = [self._requests[rid] for rid in self._request_order]
        if user is None:
            return ordered
        return [r for r in ordered if r.user == user]

    def user_record(self, user: str) -> Optional[UserDistributionRecord]:
        with self._locks.hold(user):
            with self._records_lock:
                record = self._records.get(user)
            return record.model_copy(deep=True) if record is not None else None

    def counters(self) -> dict[str, int]:
        return self._counters.snapshot()

    def stats(self) -> DistributionStats:
        values = self._counters.snapshot()
        return DistributionStats(
            **values,
            paused=self.paused,
            supported_chains=self.supported_chains(),
        )

    def preferences(self) -> list[UserPreferences]:
        with self._records_lock:
            return [p.model_copy() for p in self._preferences.values()]

    def records(self) -> list[UserDistributionRecord]:
        with self._records_lock:
            return [r.model_copy(deep=True) for r in self._records.values()]

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def load(
        self,
        requests: list[DistributionRequest],
        preferences: list[UserPreferences],
        records: list[UserDistributionRecord],
        counters: dict[str, int],
    ) -> None:
        """Replace in-memory state with persisted history."""
        with self._requests_lock:
            for request in requests:
                if request.request_id not in self._requests:
                    self._requests[request.request_id] = request
                    self._request_order.append(request.request_id)
            highest = max((r.nonce for r in requests), default=0)
        with self._nonce_lock:
            self._nonce = itertools.count(highest + 1)
        with self._records_lock:
            for prefs in preferences:
                self._preferences[prefs.user] = prefs
            for record in records:
                self._records[record.user] = record
        self._counters.restore(counters)

    def _get_or_create_record(self, user: str) -> UserDistributionRecord:
        with self._records_lock:
            record = self._records.get(user)
            if record is None:
                record = UserDistributionRecord(user=user)
                self._records[user] = record
            return record

    def _emit(self, event_type: str, source: str, payload: dict) -> None:
        if self._bus is not None:
            self._bus.emit(Event(event_type=event_type, source=source, payload=payload))
