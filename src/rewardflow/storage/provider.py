"""
Abstract Storage Provider Interface.

The contract engine state persistence is written against. Keys are plain
strings, values are JSON-encoded strings.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Configuration for a storage provider."""

    backend: str = Field(default="memory", description="Storage backend type")
    namespace: str = Field(default="rewardflow", description="Prefix for every key")
    connection_string: Optional[str] = Field(default=None, description="Connection string")
    timeout_seconds: int = Field(default=30, ge=1, le=300, description="Operation timeout")


class AbstractStorageProvider(ABC):
    """
    Abstract storage provider.

    Supports:
    - Key-value operations
    - Hash operations (per-user records)
    - List operations (append-only task and request history)
    - Atomic counters
    """

    def __init__(self, config: StorageConfig):
        self.config = config

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to storage backend."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to storage backend."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage backend is healthy."""

    # Key-Value Operations

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get value by key."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """Set value with optional TTL."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists."""

    # Hash Operations

    @abstractmethod
    async def hget(self, key: str, field: str) -> Optional[str]:
        """Get hash field value."""

    @abstractmethod
    async def hset(self, key: str, field: str, value: str) -> bool:
        """Set hash field value."""

    @abstractmethod
    async def hgetall(self, key: str) -> dict[str, str]:
        """Get all hash fields."""

    # List Operations

    @abstractmethod
    async def rpush(self, key: str, value: str) -> int:
        """Push value to tail of list. Returns new list length."""

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Get list range [start, stop]; ``stop=-1`` means to the end."""

    @abstractmethod
    async def llen(self, key: str) -> int:
        """Get list length."""

    # Atomic Operations

    @abstractmethod
    async def incrby(self, key: str, amount: int) -> int:
        """Increment value by amount. Returns new value."""

    # Pattern Operations

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """Get keys matching a glob pattern."""
