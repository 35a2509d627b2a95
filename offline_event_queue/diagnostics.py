"""
Diagnostic channel for non-fatal conditions.

Corrupt persisted records and abandoned poison events are not errors a
caller can act on, so they are reported here instead of being raised:
logged at WARNING, counted, and forwarded to any subscribed listeners.
"""

from __future__ import annotations

import logging
from collections import Counter

from .exceptions import EventQueueError
from .subscriptions import Listener, ListenerSet, Subscription

logger = logging.getLogger(__name__)


class Diagnostics:
    """Collects diagnostic reports from the queue and the sync engine."""

    def __init__(self) -> None:
        self._listeners: ListenerSet[EventQueueError] = ListenerSet("diagnostics")
        self._counts: Counter[str] = Counter()

    def subscribe(self, listener: Listener[EventQueueError]) -> Subscription:
        """Receive every reported condition."""
        return self._listeners.add(listener)

    def report(self, condition: EventQueueError) -> None:
        kind = type(condition).__name__
        self._counts[kind] += 1
        logger.warning(
            "%s: %s",
            kind,
            condition.message,
            extra={"condition": kind, **condition.details},
        )
        self._listeners.notify(condition)

    def count(self, kind: type[EventQueueError]) -> int:
        """Number of reports of a given condition type."""
        return self._counts[kind.__name__]

    def counts(self) -> dict[str, int]:
        return dict(self._counts)
