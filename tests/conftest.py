"""
Shared test configuration and fixtures.

Provides in-process fakes for the queue's collaborators:
- FlakyStore: memory store whose reads and writes can be made to fail
- ScriptedCollector: collector replaying scripted responses and recording batches
- FakeClock: manually advanced monotonic clock
"""

import asyncio
import logging
from collections.abc import Sequence

import pytest

from offline_event_queue.config import QueueConfig, SyncConfig
from offline_event_queue.diagnostics import Diagnostics
from offline_event_queue.event_queue import EventQueue
from offline_event_queue.exceptions import StorageIOError
from offline_event_queue.models import DeliveryReport, QueuedEvent
from offline_event_queue.network.manual import ManualNetworkObserver
from offline_event_queue.stores.memory import MemoryStore
from offline_event_queue.sync.collector import Collector
from offline_event_queue.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class FlakyStore(MemoryStore):
    """Memory store with switchable failures."""

    def __init__(self, initial: dict[str, str] | None = None):
        super().__init__(initial)
        self.fail_get = False
        self.fail_set = False
        self.fail_remove = False
        self.set_calls = 0

    async def get(self, key: str) -> str | None:
        if self.fail_get:
            raise StorageIOError("get", key, OSError("disk unavailable"))
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        self.set_calls += 1
        if self.fail_set:
            raise StorageIOError("set", key, OSError("disk full"))
        await super().set(key, value)

    async def remove(self, key: str) -> None:
        if self.fail_remove:
            raise StorageIOError("remove", key, OSError("read-only filesystem"))
        await super().remove(key)


class ScriptedCollector(Collector):
    """
    Collector that records every batch and replays scripted responses.

    Each response is consumed by one delivery:
    - None: accept the whole batch
    - int: accept that many events
    - Exception: raise it

    Once the script is exhausted every batch is accepted. Setting ``gate``
    to an unset asyncio.Event holds deliveries until it is set.
    """

    def __init__(self, responses: Sequence[object] | None = None):
        self.responses = list(responses or [])
        self.batches: list[list[QueuedEvent]] = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    @property
    def delivered_payloads(self) -> list[object]:
        return [event.payload for batch in self.batches for event in batch]

    async def deliver(self, events: Sequence[QueuedEvent]) -> DeliveryReport:
        self.batches.append(list(events))
        if self.gate is not None:
            await self.gate.wait()

        response = self.responses.pop(0) if self.responses else None
        if isinstance(response, Exception):
            raise response
        if response is None:
            return DeliveryReport(accepted=len(events))
        return DeliveryReport(accepted=response)

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_for_idle(engine: SyncEngine, timeout: float = 2.0) -> None:
    """Wait until the engine has no flush in flight."""
    deadline = asyncio.get_running_loop().time() + timeout
    while engine.state.in_flight:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("flush did not finish in time")
        await asyncio.sleep(0.005)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def diagnostics():
    return Diagnostics()


@pytest.fixture
def observer():
    """Observer that starts offline."""
    return ManualNetworkObserver(online=False)


@pytest.fixture
def collector():
    return ScriptedCollector()


@pytest.fixture
def sync_config():
    """Fast, jitter-free settings so tests are deterministic."""
    return SyncConfig(
        batch_size=50,
        sync_interval_ms=60000,
        initial_backoff_ms=1000,
        max_backoff_ms=8000,
        jitter=0.0,
        max_retries=3,
        delivery_timeout_ms=1000,
    )


@pytest.fixture
async def queue(store, diagnostics):
    """Loaded queue over the flaky store."""
    q = EventQueue(store, QueueConfig(capacity=100), diagnostics)
    await q.load()
    return q


@pytest.fixture
async def engine(queue, observer, collector, sync_config):
    """Sync engine over the fixtures above. Shut down after the test."""
    e = SyncEngine(queue, observer, collector, sync_config)
    yield e
    await e.shutdown()
