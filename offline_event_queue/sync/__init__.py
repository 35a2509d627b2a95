"""
Sync module.

Delivers queued events to a remote collector:
- SyncEngine: flush triggers, batching, retry with backoff
- Collector / HttpCollector / CallbackCollector: delivery destinations
- Backoff: capped exponential backoff with jitter
"""

from .backoff import Backoff, compute_backoff
from .collector import CallbackCollector, Collector, HttpCollector
from .engine import SyncEngine

__all__ = [
    "Backoff",
    "compute_backoff",
    "Collector",
    "HttpCollector",
    "CallbackCollector",
    "SyncEngine",
]
