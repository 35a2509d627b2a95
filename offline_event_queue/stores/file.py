"""
File-backed durable store.

One file per key under a base directory. Writes are atomic:
- Value written to a temp file in the same directory
- Flushed and fsynced
- Renamed over the target
so a crash mid-write leaves either the old value or the new one.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError, UndecodableValueError
from .base import DurableStore

logger = logging.getLogger(__name__)

VALUE_SUFFIX = ".value"


class FileStore(DurableStore):
    """Durable store keeping each key in its own file.

    Example:
        >>> store = FileStore(Path.home() / ".offline_event_queue" / "store")
        >>> await store.set("offline_event_queue", '{"schema_version": 1}')
    """

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)

    def _path_for(self, key: str) -> Path:
        # Percent-encode so any key maps to a single safe file name
        return self.base_dir / f"{quote(key, safe='')}{VALUE_SUFFIX}"

    async def initialize(self) -> None:
        try:
            await aiofiles.os.makedirs(self.base_dir, exist_ok=True)
        except OSError as e:
            raise StorageIOError("create_directory", str(self.base_dir), e) from e

    async def get(self, key: str) -> str | None:
        path = self._path_for(key)
        try:
            if not await aiofiles.os.path.exists(path):
                return None
            async with aiofiles.open(path, encoding="utf-8") as f:
                return await f.read()
        except UnicodeDecodeError as e:
            raise UndecodableValueError(key, e) from e
        except OSError as e:
            raise StorageIOError("get", key, e) from e

    async def set(self, key: str, value: str) -> None:
        await self.initialize()
        path = self._path_for(key)

        try:
            fd, temp_path = await asyncio.to_thread(
                tempfile.mkstemp, dir=self.base_dir, prefix=".tmp_", suffix=VALUE_SUFFIX
            )
        except OSError as e:
            raise StorageIOError("set", key, e) from e

        try:
            await asyncio.to_thread(os.close, fd)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(value)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())

            await aiofiles.os.replace(temp_path, path)
        except Exception as e:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            raise StorageIOError("set", key, e) from e

    async def remove(self, key: str) -> None:
        try:
            await aiofiles.os.remove(self._path_for(key))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageIOError("remove", key, e) from e

    async def keys(self) -> set[str]:
        try:
            if not await aiofiles.os.path.exists(self.base_dir):
                return set()
            names = await aiofiles.os.listdir(self.base_dir)
        except OSError as e:
            raise StorageIOError("keys", str(self.base_dir), e) from e

        return {
            unquote(name[: -len(VALUE_SUFFIX)])
            for name in names
            if name.endswith(VALUE_SUFFIX) and not name.startswith(".tmp_")
        }

    async def clear(self) -> None:
        for key in await self.keys():
            await self.remove(key)
        logger.debug("Cleared file store at %s", self.base_dir)
