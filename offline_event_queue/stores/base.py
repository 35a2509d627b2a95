"""
Durable store interface.

The queue treats its persistence backend as an opaque string key-value
store. Every operation is asynchronous and may raise StorageIOError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class DurableStore(ABC):
    """
    Abstract base for key-value persistence backends.

    Values are opaque strings; callers own their serialization format.
    Implementations wrap backend failures in StorageIOError.
    """

    async def initialize(self) -> None:
        """Prepare the backend (open connections, create schema)."""

    async def close(self) -> None:
        """Release backend resources."""

    async def __aenter__(self) -> DurableStore:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Read a value.

        Args:
            key: Storage key

        Returns:
            Stored value, or None if the key does not exist
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """
        Write a value, replacing any previous one.

        The write must be complete when this returns.
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key. Removing a missing key is not an error."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Delete every key in the store."""
        pass

    @abstractmethod
    async def keys(self) -> set[str]:
        """Return all keys currently stored."""
        pass
