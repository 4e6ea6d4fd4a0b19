"""
In-Memory Storage Provider.

Dictionary-backed provider for development, tests and single-process runs.
"""

import fnmatch
import time
from collections import defaultdict
from typing import Optional

from rewardflow.exceptions import StorageError

from .provider import AbstractStorageProvider, StorageConfig


class MemoryStorageProvider(AbstractStorageProvider):
    """
    In-memory storage provider.

    Data is lost on restart. Expired keys are dropped lazily on access.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        super().__init__(config or StorageConfig())
        self._data: dict[str, str] = {}
        self._hashes: dict[str, dict[str, str]] = defaultdict(dict)
        self._lists: dict[str, list[str]] = defaultdict(list)
        self._expires: dict[str, float] = {}
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def health_check(self) -> bool:
        return self._connected

    def _expire(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and time.time() >= deadline:
            self._data.pop(key, None)
            del self._expires[key]

    # Key-Value Operations

    async def get(self, key: str) -> Optional[str]:
        self._expire(key)
        return self._data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        self._data[key] = value
        if ttl_seconds is not None:
            self._expires[key] = time.time() + ttl_seconds
        else:
            self._expires.pop(key, None)
        return True

    async def delete(self, key: str) -> bool:
        self._expires.pop(key, None)
        removed = self._data.pop(key, None) is not None
        removed = self._hashes.pop(key, None) is not None or removed
        removed = self._lists.pop(key, None) is not None or removed
        return removed

    async def exists(self, key: str) -> bool:
        self._expire(key)
        return key in self._data or key in self._hashes or key in self._lists

    # Hash Operations

    async def hget(self, key: str, field: str) -> Optional[str]:
        return self._hashes.get(key, {}).get(field)

    async def hset(self, key: str, field: str, value: str) -> bool:
        self._hashes[key][field] = value
        return True

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self._hashes.get(key, {}))

    # List Operations

    async def rpush(self, key: str, value: str) -> int:
        self._lists[key].append(value)
        return len(self._lists[key])

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        lst = self._lists.get(key, [])
        if stop == -1:
            return lst[start:]
        return lst[start:stop + 1]

    async def llen(self, key: str) -> int:
        return len(self._lists.get(key, []))

    # Atomic Operations

    async def incrby(self, key: str, amount: int) -> int:
        self._expire(key)
        try:
            current = int(self._data.get(key, "0"))
        except ValueError as exc:
            raise StorageError(f"value at {key} is not an integer") from exc
        new_value = current + amount
        self._data[key] = str(new_value)
        return new_value

    # Pattern Operations

    async def keys(self, pattern: str) -> list[str]:
        for key in list(self._expires):
            self._expire(key)
        names = set(self._data) | set(self._hashes) | set(self._lists)
        return sorted(key for key in names if fnmatch.fnmatch(key, pattern))
