"""
Storage for RewardFlow.

Async storage providers and engine state persistence.
"""

from .provider import AbstractStorageProvider, StorageConfig
from .memory_provider import MemoryStorageProvider
from .state import EngineStateStore

__all__ = [
    "AbstractStorageProvider",
    "StorageConfig",
    "MemoryStorageProvider",
    "EngineStateStore",
]
