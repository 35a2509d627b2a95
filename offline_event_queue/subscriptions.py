"""
Explicit listener registration.

Every change channel in the package (connectivity, queue mutations, flush
results, diagnostics) hands out a Subscription at registration time so
that owners can unregister deterministically on shutdown.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class Subscription:
    """Handle returned by ``subscribe``. Unsubscribing twice is a no-op."""

    def __init__(self, dispose: Callable[[], None]):
        self._dispose: Callable[[], None] | None = dispose

    @property
    def active(self) -> bool:
        return self._dispose is not None

    def unsubscribe(self) -> None:
        if self._dispose is not None:
            dispose, self._dispose = self._dispose, None
            dispose()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class ListenerSet(Generic[T]):
    """Ordered set of listeners notified synchronously.

    A listener that raises is logged and skipped; it never interrupts the
    notifying component or the remaining listeners.
    """

    def __init__(self, channel: str):
        self.channel = channel
        self._listeners: list[Listener[T]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: Listener[T]) -> Subscription:
        self._listeners.append(listener)
        return Subscription(lambda: self._remove(listener))

    def _remove(self, listener: Listener[T]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def notify(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Listener on %s channel failed", self.channel)

    def clear(self) -> None:
        self._listeners.clear()
