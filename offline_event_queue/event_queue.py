"""
Durable, bounded FIFO queue of pending events.

The whole queue is persisted as one versioned JSON record under a single
storage key:

    {"schema_version": 1, "last_id": 1718000000000000,
     "dropped_count": 0, "abandoned_count": 0,
     "events": [{"id": ..., "payload": ..., "enqueued_at": ..., "attempts": 0}]}

Every mutation builds the next snapshot, persists it, and only then swaps
it in, so the in-memory and persisted copies never diverge. Mutations are
serialized by a single asyncio lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from .config import QueueConfig
from .diagnostics import Diagnostics
from .exceptions import (
    CorruptionDetected,
    PersistenceError,
    StorageIOError,
    UndecodableValueError,
)
from .logging_utils import QueueLoggerAdapter
from .models import EventId, QueuedEvent
from .stores.base import DurableStore
from .subscriptions import Listener, ListenerSet, Subscription

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class _Snapshot:
    events: tuple[QueuedEvent, ...] = ()
    last_id: int = 0
    dropped_count: int = 0
    abandoned_count: int = 0


def next_event_id(now: datetime, last_id: int) -> EventId:
    """Derive an id from the enqueue time with a per-millisecond sequence.

    Ids never go below ``last_id + 1``, so they stay strictly increasing
    even if the wall clock steps backwards.
    """
    return max(last_id + 1, int(now.timestamp() * 1000) * 1000)


class EventQueue:
    """Ordered, durable, bounded buffer of pending events.

    Example:
        >>> queue = EventQueue(MemoryStore(), QueueConfig(capacity=100))
        >>> await queue.load()
        >>> event_id = await queue.enqueue({"name": "button_click"})
        >>> batch = queue.peek_batch(50)
        >>> await queue.remove_prefix(batch[-1].id)
    """

    def __init__(
        self,
        store: DurableStore,
        config: QueueConfig | None = None,
        diagnostics: Diagnostics | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the queue. Call ``load()`` before use.

        Args:
            store: Durable store holding the queue record
            config: Queue configuration
            diagnostics: Channel for CorruptionDetected reports
            clock: Returns the current UTC time (injectable for tests)
        """
        self.store = store
        self.config = config or QueueConfig()
        self.config.validate()
        self.diagnostics = diagnostics or Diagnostics()
        self._now = clock or (lambda: datetime.now(UTC))

        self._state = _Snapshot()
        self._size_bytes = 0
        self._event_sizes: dict[EventId, int] = {}
        self._loaded = False
        self._lock = asyncio.Lock()
        self._listeners: ListenerSet[EventQueue] = ListenerSet("queue")
        self._log = QueueLoggerAdapter(logger, {"storage_key": self.config.storage_key})

    @property
    def key(self) -> str:
        return self.config.storage_key

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def size(self) -> int:
        return len(self._state.events)

    def oldest_timestamp(self) -> datetime | None:
        events = self._state.events
        return events[0].enqueued_at if events else None

    def size_bytes(self) -> int:
        """Size of the persisted record in bytes."""
        return self._size_bytes

    @property
    def dropped_count(self) -> int:
        """Events evicted by the capacity policy. Never decreases."""
        return self._state.dropped_count

    @property
    def abandoned_count(self) -> int:
        """Events dropped after exceeding the delivery attempt ceiling."""
        return self._state.abandoned_count

    @property
    def last_id(self) -> EventId:
        return self._state.last_id

    def peek_batch(self, max_count: int) -> list[QueuedEvent]:
        """Return up to ``max_count`` oldest events without removing them."""
        if max_count <= 0:
            return []
        return list(self._state.events[:max_count])

    def subscribe(self, listener: Listener[EventQueue]) -> Subscription:
        """Be notified after every committed mutation."""
        return self._listeners.add(listener)

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self) -> int:
        """Rebuild the in-memory queue from the durable store.

        A corrupt or unsupported record is reported as CorruptionDetected and
        the queue starts empty.

        Returns:
            Number of events loaded

        Raises:
            PersistenceError: If the store cannot be read
        """
        async with self._lock:
            await self._load_locked()
        self._listeners.notify(self)
        return self.size()

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self._load_locked()

    async def _load_locked(self) -> None:
        try:
            raw = await self.store.get(self.key)
        except UndecodableValueError as e:
            await self._reset_corrupt(str(e.cause or e))
            return
        except (StorageIOError, OSError) as e:
            raise PersistenceError("load", self.key, e) from e

        self._event_sizes.clear()
        if raw is None:
            self._state = _Snapshot()
            self._size_bytes = 0
            self._loaded = True
            return

        try:
            data = json.loads(raw)
            if isinstance(data, list):
                snapshot = self._migrate_legacy(data)
                migrated = True
            else:
                snapshot = self._decode(data)
                migrated = False
        except (ValueError, KeyError, TypeError, OverflowError) as e:
            await self._reset_corrupt(str(e))
            return

        self._state = snapshot
        self._size_bytes = len(raw.encode("utf-8"))
        self._loaded = True
        self._log.info("Loaded %d queued events", len(snapshot.events))

        if migrated:
            try:
                value = await self._persist(snapshot, "migrate")
                self._size_bytes = len(value.encode("utf-8"))
            except PersistenceError:
                self._log.warning("Could not rewrite migrated legacy queue record", exc_info=True)

    def _decode(self, data: Any) -> _Snapshot:
        if not isinstance(data, dict):
            raise ValueError("queue record is not an object")

        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise ValueError(f"unsupported schema_version {version!r}")

        events = tuple(QueuedEvent.from_dict(item) for item in data["events"])
        for previous, current in zip(events, events[1:]):
            if current.id <= previous.id:
                raise ValueError(f"event ids out of order at {current.id}")

        last_id = int(data.get("last_id", 0))
        if events:
            last_id = max(last_id, events[-1].id)

        return _Snapshot(
            events=events,
            last_id=last_id,
            dropped_count=int(data.get("dropped_count", 0)),
            abandoned_count=int(data.get("abandoned_count", 0)),
        )

    def _migrate_legacy(self, items: list[Any]) -> _Snapshot:
        """Convert a bare JSON array of raw events into a current snapshot.

        Each element becomes an event payload. An epoch-millisecond
        ``timestamp`` field, if present, becomes ``enqueued_at``.
        """
        now = self._now()
        last_id = 0
        events = []
        for item in items:
            enqueued_at = now
            timestamp = item.get("timestamp") if isinstance(item, dict) else None
            if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
                enqueued_at = datetime.fromtimestamp(timestamp / 1000, UTC)
            last_id = next_event_id(now, last_id)
            events.append(QueuedEvent(id=last_id, payload=item, enqueued_at=enqueued_at))

        self._log.info("Migrating %d events from legacy queue record", len(events))
        return self._apply_bounds(_Snapshot(events=tuple(events), last_id=last_id))

    async def _reset_corrupt(self, reason: str) -> None:
        self.diagnostics.report(CorruptionDetected(self.key, reason))
        self._state = _Snapshot()
        self._event_sizes.clear()
        self._size_bytes = 0
        self._loaded = True
        try:
            await self.store.remove(self.key)
        except (StorageIOError, OSError):
            self._log.warning("Could not remove corrupt queue record", exc_info=True)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def enqueue(self, payload: Any) -> EventId | None:
        """Durably append an event.

        When the queue is full the oldest events are evicted to make room.

        Args:
            payload: JSON-serializable event payload

        Returns:
            The assigned event id, or None if the payload's event name is
            excluded from queueing

        Raises:
            PersistenceError: If the durable write fails. The queue is left
                exactly as it was before the call.
            TypeError: If the payload is not JSON serializable
        """
        if self._is_excluded(payload):
            self._log.debug("Skipping excluded event: %s", payload.get(self.config.event_name_field))
            return None

        async with self._lock:
            await self._ensure_loaded()
            state = self._state
            now = self._now()
            event = QueuedEvent(
                id=next_event_id(now, state.last_id),
                payload=payload,
                enqueued_at=now,
            )
            grown = replace(state, events=state.events + (event,), last_id=event.id)
            bounded = self._apply_bounds(grown)
            await self._commit(bounded, "enqueue")

        evicted = bounded.dropped_count - state.dropped_count
        if evicted:
            self._log.info(
                "Queue full, evicted %d oldest events",
                evicted,
                extra={"dropped_count": bounded.dropped_count},
            )
        return event.id

    async def remove_prefix(self, up_to_id: EventId) -> int:
        """Durably remove every event with ``id <= up_to_id``.

        Events enqueued after a batch was read have larger ids and survive.

        Returns:
            Number of events removed

        Raises:
            PersistenceError: If the durable write fails
        """
        async with self._lock:
            await self._ensure_loaded()
            state = self._state
            kept = tuple(e for e in state.events if e.id > up_to_id)
            removed = len(state.events) - len(kept)
            if removed:
                await self._commit(replace(state, events=kept), "remove_prefix")
        return removed

    async def record_attempt(self, event_ids: Iterable[EventId]) -> list[QueuedEvent]:
        """Durably increment ``attempts`` on the given events.

        Returns:
            The updated events, in queue order

        Raises:
            PersistenceError: If the durable write fails
        """
        ids = set(event_ids)
        if not ids:
            return []
        async with self._lock:
            await self._ensure_loaded()
            state = self._state
            events = tuple(
                replace(e, attempts=e.attempts + 1) if e.id in ids else e for e in state.events
            )
            await self._commit(replace(state, events=events), "record_attempt")
        return [e for e in events if e.id in ids]

    async def discard(self, event_ids: Iterable[EventId]) -> list[QueuedEvent]:
        """Durably drop abandoned events and count them.

        Returns:
            The events that were removed

        Raises:
            PersistenceError: If the durable write fails
        """
        ids = set(event_ids)
        async with self._lock:
            await self._ensure_loaded()
            state = self._state
            removed = [e for e in state.events if e.id in ids]
            if removed:
                await self._commit(
                    replace(
                        state,
                        events=tuple(e for e in state.events if e.id not in ids),
                        abandoned_count=state.abandoned_count + len(removed),
                    ),
                    "discard",
                )
        return removed

    async def clear(self) -> int:
        """Durably drop every pending event.

        The id high-water mark and the drop counters are kept, so ids stay
        increasing after a purge.

        Returns:
            Number of events removed

        Raises:
            PersistenceError: If the durable write fails
        """
        async with self._lock:
            await self._ensure_loaded()
            state = self._state
            removed = len(state.events)
            if removed:
                await self._commit(replace(state, events=()), "clear")

        if removed:
            self._log.info("Cleared %d queued events", removed)
        return removed

    # =========================================================================
    # Internals)
    # =========================================================================

    def _is_excluded(self, payload: Any) -> bool:
        if not self.config.excluded_events or not isinstance(payload, dict):
            return False
        return payload.get(self.config.event_name_field) in self.config.excluded_events

    def _event_size(self, event: QueuedEvent) -> int:
        size = self._event_sizes.get(event.id)
        if size is None:
            size = len(json.dumps(event.to_dict()).encode("utf-8"))
            self._event_sizes[event.id] = size
        return size

    def _apply_bounds(self, state: _Snapshot) -> _Snapshot:
        """Evict oldest events until count and byte budgets are met.

        The newest event is never evicted.
        """
        events = state.events
        evict = max(0, len(events) - self.config.capacity)

        if self.config.max_bytes is not None:
            total = sum(self._event_size(e) for e in events[evict:])
            while total > self.config.max_bytes and len(events) - evict > 1:
                total -= self._event_size(events[evict])
                evict += 1
            if total > self.config.max_bytes:
                self._log.warning(
                    "Event %d alone exceeds max_bytes (%d > %d)",
                    events[-1].id,
                    total,
                    self.config.max_bytes,
                )

        if not evict:
            return state
        return replace(
            state,
            events=events[evict:],
            dropped_count=state.dropped_count + evict,
        )

    def _serialize(self, state: _Snapshot) -> str:
        return json.dumps(
            {
                "schema_version": SCHEMA_VERSION,
                "last_id": state.last_id,
                "dropped_count": state.dropped_count,
                "abandoned_count": state.abandoned_count,
                "events": [e.to_dict() for e in state.events],
            }
        )

    async def _persist(self, state: _Snapshot, operation: str) -> str:
        value = self._serialize(state)
        try:
            await self.store.set(self.key, value)
        except (StorageIOError, OSError) as e:
            raise PersistenceError(operation, self.key, e) from e
        return value

    def _prune_sizes(self, state: _Snapshot) -> None:
        live = {e.id for e in state.events}
        for event_id in [i for i in self._event_sizes if i not in live]:
            del self._event_sizes[event_id]

    async def _commit(self, state: _Snapshot, operation: str) -> None:
        try:
            value = await self._persist(state, operation)
        except PersistenceError:
            # The id of an uncommitted event is issued again by the next enqueue
            self._prune_sizes(self._state)
            raise
        self._state = state
        self._size_bytes = len(value.encode("utf-8"))
        self._prune_sizes(state)
        self._listeners.notify(self)
