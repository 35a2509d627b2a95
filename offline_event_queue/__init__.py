"""
Offline Event Queue

Durable, offline-tolerant queue for tracking and analytics events.

Provides:
- A bounded FIFO queue persisted through a pluggable key-value store
- Background delivery driven by connectivity changes and a periodic timer
- Exponential backoff with jitter, partial-acceptance accounting and
  poison-event abandonment
- Queue status reporting with push notifications

Usage:

    >>> from offline_event_queue import OfflineEventQueue
    >>> from offline_event_queue.network import ManualNetworkObserver
    >>> from offline_event_queue.stores import FileStore
    >>> from offline_event_queue.sync import HttpCollector
    >>> observer = ManualNetworkObserver(online=False)
    >>> service = await OfflineEventQueue.create(
    ...     store=FileStore("/var/lib/myapp/events"),
    ...     observer=observer,
    ...     collector=HttpCollector("https://collector.example.com/v1/events"),
    ... )
    >>> async with service:
    ...     await service.enqueue({"name": "button_click", "id": "save"})
    ...     observer.set_online(True)  # queued events flush in the background

Store Selection:

    # Ephemeral, for tests
    from offline_event_queue.stores import MemoryStore

    # One atomically-written file per key
    from offline_event_queue.stores import FileStore

    # A table in an SQLite database
    from offline_event_queue.stores import SQLiteStore, SQLiteStoreConfig
"""

from .config import QueueConfig, SyncConfig, load_settings
from .diagnostics import Diagnostics
from .event_queue import EventQueue
from .exceptions import (
    ConfigurationError,
    CorruptionDetected,
    DeliveryAbandoned,
    DeliveryError,
    DeliveryTimeoutError,
    EventQueueError,
    PersistenceError,
    StorageIOError,
    UndecodableValueError,
)
from .models import (
    ConnectivityChange,
    DeliveryReport,
    EventId,
    FlushOutcome,
    QueuedEvent,
    QueueStatus,
    SyncPhase,
    SyncResult,
    SyncState,
)
from .service import OfflineEventQueue
from .status import QueueStatusReporter
from .subscriptions import Subscription
from .sync import SyncEngine

__all__ = [
    # Service
    "OfflineEventQueue",
    # Core components
    "EventQueue",
    "SyncEngine",
    "QueueStatusReporter",
    "Diagnostics",
    "Subscription",
    # Configuration
    "QueueConfig",
    "SyncConfig",
    "load_settings",
    # Models
    "EventId",
    "QueuedEvent",
    "DeliveryReport",
    "ConnectivityChange",
    "FlushOutcome",
    "SyncPhase",
    "SyncResult",
    "SyncState",
    "QueueStatus",
    # Exceptions
    "EventQueueError",
    "StorageIOError",
    "UndecodableValueError",
    "PersistenceError",
    "DeliveryError",
    "DeliveryTimeoutError",
    "CorruptionDetected",
    "DeliveryAbandoned",
    "ConfigurationError",
]

__version__ = "0.1.0"
