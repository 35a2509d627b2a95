"""
Durable store backends.

The queue persists through the DurableStore interface; pick the backend
that matches the host application:

    # Tests and ephemeral processes
    from offline_event_queue.stores import MemoryStore

    # One atomically-written file per key
    from offline_event_queue.stores import FileStore

    # A table in an SQLite database
    from offline_event_queue.stores import SQLiteStore, SQLiteStoreConfig
"""

from .base import DurableStore
from .file import FileStore
from .memory import MemoryStore
from .sqlite import SQLiteStore, SQLiteStoreConfig

__all__ = [
    "DurableStore",
    "FileStore",
    "MemoryStore",
    "SQLiteStore",
    "SQLiteStoreConfig",
]
