"""
Queue status reporting.

``status()`` is a pure read of the queue and sync engine. Observers that
want updates should ``subscribe()``: the reporter pushes a fresh
QueueStatus after every queue mutation and every flush. ``watch()`` is a
polling fallback for callers that cannot take callbacks.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from .event_queue import EventQueue
from .models import QueueStatus, SyncState
from .subscriptions import Listener, ListenerSet, Subscription
from .sync.engine import SyncEngine


class QueueStatusReporter:
    """Derives QueueStatus from an EventQueue and a SyncEngine."""

    def __init__(self, queue: EventQueue, engine: SyncEngine):
        self.queue = queue
        self.engine = engine
        self._listeners: ListenerSet[QueueStatus] = ListenerSet("status")
        self._upstream: list[Subscription] = []

    def status(self) -> QueueStatus:
        state = self.engine.state
        return QueueStatus(
            size=self.queue.size(),
            oldest_timestamp=self.queue.oldest_timestamp(),
            dropped_count=self.queue.dropped_count,
            last_flush_result=state.last_result,
            consecutive_failures=state.consecutive_failures,
            abandoned_count=self.queue.abandoned_count,
            size_bytes=self.queue.size_bytes(),
            is_syncing=state.in_flight,
            last_attempt_at=state.last_attempt_at,
            last_success_at=state.last_success_at,
            phase=state.phase,
        )

    def subscribe(self, listener: Listener[QueueStatus]) -> Subscription:
        """Receive a QueueStatus after every queue change and flush."""
        if not self._upstream:
            self._upstream = [
                self.queue.subscribe(self._on_queue_change),
                self.engine.subscribe(self._on_sync_change),
            ]
        return self._listeners.add(listener)

    def close(self) -> None:
        """Detach from the queue and engine and drop all listeners."""
        for subscription in self._upstream:
            subscription.unsubscribe()
        self._upstream = []
        self._listeners.clear()

    async def watch(self, interval: float = 5.0) -> AsyncIterator[QueueStatus]:
        """Yield the current status every ``interval`` seconds."""
        while True:
            yield self.status()
            await asyncio.sleep(interval)

    def _on_queue_change(self, _queue: EventQueue) -> None:
        self._listeners.notify(self.status())

    def _on_sync_change(self, _state: SyncState) -> None:
        self._listeners.notify(self.status())
