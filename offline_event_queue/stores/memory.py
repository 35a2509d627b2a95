"""In-memory durable store, for tests and ephemeral processes."""

from __future__ import annotations

from .base import DurableStore


class MemoryStore(DurableStore):
    """Dict-backed store. Survives queue reloads, not process restarts."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)

    async def clear(self) -> None:
        self.data.clear()

    async def keys(self) -> set[str]:
        return set(self.data)
