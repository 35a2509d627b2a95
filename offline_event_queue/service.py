"""
Offline-first event queue service.

Wires a durable store, a network observer and a collector into one owned
instance per process:
- enqueue() writes durably and returns once the event is persisted
- Delivery happens in the background when connectivity allows
- force_sync() flushes on demand
- status() / subscribe_status() expose queue depth and flush health

Producers only ever see PersistenceError from enqueue(); network failures
are absorbed by the sync engine and visible only through status().
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .config import QueueConfig, SyncConfig
from .diagnostics import Diagnostics
from .event_queue import EventQueue
from .models import EventId, QueueStatus, SyncResult
from .network.base import NetworkObserver
from .network.manual import ManualNetworkObserver
from .status import QueueStatusReporter
from .stores.base import DurableStore
from .stores.file import FileStore
from .subscriptions import Listener, Subscription
from .sync.collector import Collector, HttpCollector
from .sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class OfflineEventQueue:
    """Durable event queue with background delivery.

    Example:
        >>> service = await OfflineEventQueue.create(
        ...     store=FileStore(base_dir),
        ...     observer=ManualNetworkObserver(online=False),
        ...     collector=HttpCollector("https://collector.example.com/v1/events"),
        ... )
        >>> async with service:
        ...     await service.enqueue({"name": "screen_view", "screen": "home"})
        ...     service.status().size
        1
    """

    def __init__(
        self,
        store: DurableStore,
        observer: NetworkObserver,
        collector: Collector,
        queue_config: QueueConfig | None = None,
        sync_config: SyncConfig | None = None,
        diagnostics: Diagnostics | None = None,
    ):
        """Initialize the service. Prefer ``create()``, which also loads the queue.

        Args:
            store: Durable store for the queue record
            observer: Connectivity source
            collector: Delivery destination
            queue_config: Queue configuration
            sync_config: Sync engine configuration
            diagnostics: Diagnostic channel (one is created if not provided)
        """
        self.store = store
        self.observer = observer
        self.collector = collector
        self.diagnostics = diagnostics or Diagnostics()
        self.queue = EventQueue(store, queue_config, self.diagnostics)
        self.engine = SyncEngine(self.queue, observer, collector, sync_config, self.diagnostics)
        self.reporter = QueueStatusReporter(self.queue, self.engine)
        self._started = False

    @classmethod
    async def create(
        cls,
        store: DurableStore,
        observer: NetworkObserver,
        collector: Collector,
        queue_config: QueueConfig | None = None,
        sync_config: SyncConfig | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> OfflineEventQueue:
        """Create the service and load persisted events.

        Raises:
            PersistenceError: If the store cannot be read
        """
        service = cls(store, observer, collector, queue_config, sync_config, diagnostics)
        await store.initialize()
        await service.queue.load()
        return service

    @classmethod
    async def for_endpoint(
        cls,
        endpoint: str,
        base_dir: Path | None = None,
        auth_token: str | None = None,
        queue_config: QueueConfig | None = None,
        sync_config: SyncConfig | None = None,
    ) -> OfflineEventQueue:
        """Create a file-backed service delivering to an HTTP collector.

        Connectivity starts as online; call ``observer.set_online()`` from
        the platform's network status hook.

        Args:
            endpoint: Collector URL
            base_dir: Store directory. Defaults to ~/.offline_event_queue/store
            auth_token: Optional bearer token for the collector
        """
        store = FileStore(base_dir or Path.home() / ".offline_event_queue" / "store")
        return await cls.create(
            store=store,
            observer=ManualNetworkObserver(online=True),
            collector=HttpCollector(endpoint, auth_token=auth_token),
            queue_config=queue_config,
            sync_config=sync_config,
        )

    async def start(self) -> None:
        """Start background delivery."""
        if self._started:
            return
        self._started = True
        await self.engine.start()

    async def shutdown(self) -> None:
        """Stop background delivery and release resources.

        An in-flight flush finishes first. Pending events stay in the store.
        """
        await self.engine.shutdown()
        self.reporter.close()
        await self.collector.close()
        await self.store.close()
        self._started = False

    async def __aenter__(self) -> OfflineEventQueue:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    async def enqueue(self, payload: Any) -> EventId | None:
        """Durably queue an event for delivery.

        Returns:
            The event id, or None if the event name is excluded

        Raises:
            PersistenceError: If the event could not be persisted
        """
        return await self.queue.enqueue(payload)

    async def clear(self) -> int:
        """Discard all undelivered events, e.g. after the user opts out of tracking.

        Raises:
            PersistenceError: If the empty queue could not be persisted
        """
        return await self.queue.clear()

    async def force_sync(self) -> SyncResult:
        """Flush now, ignoring backoff. See SyncEngine.force_sync."""
        return await self.engine.force_sync()

    def status(self) -> QueueStatus:
        return self.reporter.status()

    def subscribe_status(self, listener: Listener[QueueStatus]) -> Subscription:
        """Receive a QueueStatus on every queue change and flush."""
        return self.reporter.subscribe(listener)
