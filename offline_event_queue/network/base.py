"""
Network observer interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import ConnectivityChange
from ..subscriptions import Listener, ListenerSet, Subscription


class NetworkObserver(ABC):
    """Reports connectivity and notifies subscribers of changes.

    Listeners are called with a ConnectivityChange on every notification,
    including repeats of the current state. Consumers must tolerate
    spurious repeats.
    """

    def __init__(self) -> None:
        self._listeners: ListenerSet[ConnectivityChange] = ListenerSet("connectivity")

    @abstractmethod
    def is_online(self) -> bool:
        """Point-in-time connectivity."""
        pass

    def subscribe(self, listener: Listener[ConnectivityChange]) -> Subscription:
        """Register a listener. Call ``unsubscribe()`` on the result to stop."""
        return self._listeners.add(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _emit(self, connected: bool) -> None:
        self._listeners.notify(ConnectivityChange(connected=connected))
