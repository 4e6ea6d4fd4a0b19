# Copyright (c) RewardFlow Contributors. All rights reserved.
# Licensed under the MIT License.
"""Centralized exception hierarchy for RewardFlow.

Validation errors mean the input can never succeed; policy errors mean the
call is not allowed right now. Callers can tell "retry later" from
"never valid" by catching one base class or the other.
"""


class RewardFlowError(Exception):
    """Base exception for all RewardFlow errors."""


# -- Validation ---------------------------------------------------------------

class ValidationError(RewardFlowError):
    """Input rejected before any state mutation."""


class InvalidAmountError(ValidationError):
    """Amount is zero, negative or otherwise out of range."""


class UnsupportedChainError(ValidationError):
    """Target chain is not in the supported-chain set."""

    def __init__(self, chain_id: int, message: str = "") -> None:
        self.chain_id = chain_id
        super().__init__(message or f"Chain {chain_id} is not supported")


class InvalidEntriesError(ValidationError):
    """Task entries are empty or malformed."""


class InvalidTaskPayloadError(ValidationError):
    """A hook task payload failed parsing or validation."""


class ConfigurationError(ValidationError):
    """Engine configuration is invalid."""


# -- Policy -------------------------------------------------------------------

class PolicyError(RewardFlowError):
    """Call is valid but not permitted in the current state."""


class PausedError(PolicyError):
    """The distributor is paused."""


class ThresholdNotMetError(PolicyError):
    """Amount is below the user's claim threshold."""


class UnauthorizedError(PolicyError):
    """Caller lacks the identity or role for this operation."""


# -- Dispatch -----------------------------------------------------------------

class DispatchError(RewardFlowError):
    """A distribution instruction could not be dispatched."""


class BridgeRejectedError(DispatchError):
    """The bridge executor refused the transfer instruction."""


# -- Tasks and records --------------------------------------------------------

class TaskError(RewardFlowError):
    """Errors related to aggregation task handling."""


class TaskNotFoundError(TaskError):
    """No task with the given id."""


class InvalidTransitionError(TaskError):
    """A task status transition is not allowed."""


class RequestNotFoundError(RewardFlowError):
    """No distribution request with the given id."""


class StorageError(RewardFlowError):
    """Errors related to storage backend operations."""


__all__ = [
    "RewardFlowError",
    "ValidationError",
    "InvalidAmountError",
    "UnsupportedChainError",
    "InvalidEntriesError",
    "InvalidTaskPayloadError",
    "ConfigurationError",
    "PolicyError",
    "PausedError",
    "ThresholdNotMetError",
    "UnauthorizedError",
    "DispatchError",
    "BridgeRejectedError",
    "TaskError",
    "TaskNotFoundError",
    "InvalidTransitionError",
    "RequestNotFoundError",
    "StorageError",
]
