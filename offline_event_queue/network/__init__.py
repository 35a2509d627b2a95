"""
Network observers.

The sync engine consumes connectivity through the NetworkObserver
interface:
- ManualNetworkObserver: the application pushes state via set_online()
- ProbeNetworkObserver: periodic DNS probe
"""

from .base import NetworkObserver
from .manual import ManualNetworkObserver
from .probe import ProbeNetworkObserver

__all__ = [
    "NetworkObserver",
    "ManualNetworkObserver",
    "ProbeNetworkObserver",
]
