"""
Tests for the sync engine.

Covers:
- FIFO batch delivery and queue draining
- No event loss on delivery failure
- Partial acceptance
- Backoff scheduling and reset
- Poison event abandonment
- Single-flight flushing and trigger coalescing
- Connectivity, timer and forced triggers
- Shutdown
"""

import asyncio
import random

import pytest

from offline_event_queue.config import QueueConfig, SyncConfig
from offline_event_queue.diagnostics import Diagnostics
from offline_event_queue.event_queue import EventQueue
from offline_event_queue.exceptions import DeliveryAbandoned, DeliveryError
from offline_event_queue.models import FlushOutcome, SyncPhase
from offline_event_queue.network.manual import ManualNetworkObserver
from offline_event_queue.sync.engine import SyncEngine

from conftest import FakeClock, FlakyStore, ScriptedCollector, wait_for_idle, wait_until


async def fill(queue: EventQueue, *names: str) -> list[int]:
    return [await queue.enqueue({"name": name}) for name in names]


def names(events) -> list[str]:
    return [event.payload["name"] for event in events]


class TestForceSync:
    """Tests for explicit flush requests."""

    @pytest.mark.asyncio
    async def test_delivers_queue_in_fifo_order(self, engine, queue, observer, collector):
        """All queued events are delivered oldest first and removed."""
        await fill(queue, "a", "b", "c")
        observer.set_online(True)

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.SUCCESS
        assert result.success
        assert result.delivered == 3
        assert result.remaining == 0
        assert len(collector.batches) == 1
        assert names(collector.batches[0]) == ["a", "b", "c"]
        assert queue.size() == 0

    @pytest.mark.asyncio
    async def test_drains_in_batches(self, queue, observer, collector, sync_config):
        """A queue larger than batch_size is drained batch by batch, in order."""
        sync_config.batch_size = 2
        engine = SyncEngine(queue, observer, collector, sync_config)
        ids = await fill(queue, "a", "b", "c", "d", "e")
        observer.set_online(True)

        result = await engine.force_sync()

        assert result.delivered == 5
        assert [len(batch) for batch in collector.batches] == [2, 2, 1]
        assert [e.id for batch in collector.batches for e in batch] == ids
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_offline(self, engine, queue, collector):
        """Without connectivity nothing is sent."""
        await fill(queue, "a")

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.OFFLINE
        assert result.remaining == 1
        assert collector.batches == []

    @pytest.mark.asyncio
    async def test_empty_queue(self, engine, observer, collector):
        """Flushing an empty queue succeeds without contacting the collector."""
        observer.set_online(True)
        result = await engine.force_sync()
        assert result.outcome == FlushOutcome.SUCCESS
        assert result.delivered == 0
        assert collector.batches == []

    @pytest.mark.asyncio
    async def test_busy_while_flush_in_flight(self, engine, queue, observer, collector):
        """A second request during a flush does not start another one."""
        await fill(queue, "a")
        observer.set_online(True)
        collector.gate = asyncio.Event()

        first = asyncio.create_task(engine.force_sync())
        await wait_until(lambda: collector.batches)

        second = await engine.force_sync()
        assert second.outcome == FlushOutcome.BUSY

        collector.gate.set()
        assert (await first).outcome == FlushOutcome.SUCCESS
        assert len(collector.batches) == 1

    @pytest.mark.asyncio
    async def test_ignores_backoff_window(self, engine, queue, observer, collector):
        """force_sync retries immediately after a failure."""
        await fill(queue, "a")
        observer.set_online(True)
        collector.responses = [DeliveryError("unavailable")]

        assert (await engine.force_sync()).outcome == FlushOutcome.FAILED
        assert engine.phase == SyncPhase.BACKOFF_WAIT

        assert (await engine.force_sync()).outcome == FlushOutcome.SUCCESS
        assert engine.phase == SyncPhase.IDLE
        assert engine.state.consecutive_failures == 0


class TestFailureHandling:
    """Tests for delivery failures."""

    @pytest.mark.asyncio
    async def test_failed_delivery_loses_nothing(self, engine, queue, observer, collector):
        """A failed batch stays queued with its attempt count incremented."""
        ids = await fill(queue, "a", "b")
        observer.set_online(True)
        collector.responses = [DeliveryError("HTTP 503", status_code=503)]

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.FAILED
        assert not result.success
        assert result.errors
        assert result.remaining == 2
        assert [e.id for e in queue.peek_batch(10)] == ids
        assert [e.attempts for e in queue.peek_batch(10)] == [1, 1]
        assert engine.state.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_zero_accepted_is_a_failure(self, engine, queue, observer, collector):
        """A collector accepting nothing counts as a failed flush."""
        await fill(queue, "a")
        observer.set_online(True)
        collector.responses = [0]

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.FAILED
        assert queue.size() == 1
        assert engine.state.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_delivery_timeout(self, queue, observer, collector, sync_config):
        """A collector that never answers times out and counts as a failure."""
        sync_config.delivery_timeout_ms = 50
        engine = SyncEngine(queue, observer, collector, sync_config)
        await fill(queue, "a")
        observer.set_online(True)
        collector.gate = asyncio.Event()

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.FAILED
        assert "timed out" in result.errors[0]
        assert queue.size() == 1
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_collector_error(self, engine, queue, observer, collector):
        """Any collector exception is contained in the flush result."""
        await fill(queue, "a")
        observer.set_online(True)
        collector.responses = [RuntimeError("bug in collector")]

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.FAILED
        assert queue.size() == 1
        assert not engine.state.in_flight

    @pytest.mark.asyncio
    async def test_persistence_failure_during_flush(self, engine, queue, store, observer, collector):
        """A store failure fails the flush without sending unrecorded attempts."""
        await fill(queue, "a")
        observer.set_online(True)
        store.fail_set = True

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.FAILED
        assert collector.batches == []
        assert queue.size() == 1

    @pytest.mark.asyncio
    async def test_removal_failure_keeps_events_for_redelivery(
        self, engine, queue, store, observer, collector
    ):
        """If removal cannot be persisted the events stay queued."""
        await fill(queue, "a")
        observer.set_online(True)

        deliver = collector.deliver

        async def deliver_then_break_store(events):
            report = await deliver(events)
            store.fail_set = True
            return report

        collector.deliver = deliver_then_break_store

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.FAILED
        assert len(collector.batches) == 1
        assert queue.size() == 1


class TestPartialAcceptance:
    """Tests for collectors accepting only a prefix of a batch."""

    @pytest.mark.asyncio
    async def test_accepted_prefix_removed(self, engine, queue, observer, collector):
        """Only the accepted prefix is removed; the rest waits for the next flush."""
        await fill(queue, "B", "C", "D")
        observer.set_online(True)
        collector.responses = [2]

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.PARTIAL
        assert result.success
        assert result.delivered == 2
        assert result.remaining == 1
        remaining = queue.peek_batch(10)
        assert names(remaining) == ["D"]
        assert remaining[0].attempts == 1
        assert engine.state.consecutive_failures == 0
        assert engine.phase == SyncPhase.IDLE

    @pytest.mark.asyncio
    async def test_partial_resets_failure_streak(self, engine, queue, observer, collector):
        """Progress after failures resets the backoff streak."""
        await fill(queue, "a", "b")
        observer.set_online(True)
        collector.responses = [DeliveryError("down"), DeliveryError("down"), 1]

        await engine.force_sync()
        await engine.force_sync()
        assert engine.state.consecutive_failures == 2

        result = await engine.force_sync()
        assert result.outcome == FlushOutcome.PARTIAL
        assert engine.state.consecutive_failures == 0


class TestBackoff:
    """Tests for retry scheduling."""

    @pytest.mark.asyncio
    async def test_backoff_grows_and_is_capped(self, queue, observer, sync_config):
        """Retry windows double per failure up to the cap."""
        sync_config.max_retries = 100
        clock = FakeClock()
        collector = ScriptedCollector([DeliveryError("down")] * 6)
        engine = SyncEngine(queue, observer, collector, sync_config, clock=clock)
        await fill(queue, "a")
        observer.set_online(True)

        windows = []
        for _ in range(6):
            await engine.force_sync()
            windows.append(engine.state.next_eligible_at - clock())

        assert windows == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_jittered_backoff_is_non_decreasing(self, queue, observer):
        """With jitter the windows still never shrink and never exceed the cap."""
        config = SyncConfig(
            initial_backoff_ms=100,
            max_backoff_ms=1000,
            jitter=0.5,
            max_retries=100,
        )
        clock = FakeClock()
        collector = ScriptedCollector([DeliveryError("down")] * 12)
        engine = SyncEngine(
            queue, observer, collector, config, clock=clock, rng=random.Random(1234)
        )
        await fill(queue, "a")
        observer.set_online(True)

        windows = []
        for _ in range(12):
            await engine.force_sync()
            windows.append(engine.state.next_eligible_at - clock())

        assert all(w <= 1.0 for w in windows)
        assert all(b >= a for a, b in zip(windows, windows[1:]))
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_long_failure_streak_stays_capped(self, queue, observer, sync_config):
        """A multi-day outage keeps scheduling retries at the cap."""
        clock = FakeClock()
        collector = ScriptedCollector([DeliveryError("down")])
        engine = SyncEngine(queue, observer, collector, sync_config, clock=clock)
        engine.state.consecutive_failures = 5000
        await fill(queue, "a")
        observer.set_online(True)

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.FAILED
        assert engine.state.consecutive_failures == 5001
        assert engine.state.next_eligible_at - clock() == 8.0
        assert engine.phase == SyncPhase.BACKOFF_WAIT
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_connectivity_respects_backoff_window(self, queue, observer, sync_config):
        """Coming online during the backoff window does not retry early."""
        clock = FakeClock()
        collector = ScriptedCollector([DeliveryError("down")])
        engine = SyncEngine(queue, observer, collector, sync_config, clock=clock)
        await engine.start()
        await fill(queue, "a")
        observer.set_online(True)
        await wait_for_idle(engine)
        assert len(collector.batches) == 1

        observer.set_online(False)
        observer.set_online(True)
        await asyncio.sleep(0.01)
        assert len(collector.batches) == 1
        assert engine.phase == SyncPhase.BACKOFF_WAIT

        clock.advance(1.0)
        observer.set_online(True)
        await wait_for_idle(engine)
        assert len(collector.batches) == 2
        assert queue.size() == 0
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_timer_retries_after_backoff(self, queue, observer):
        """The timer wakes up when the backoff window ends, before the interval."""
        config = SyncConfig(
            sync_interval_ms=60000,
            initial_backoff_ms=20,
            max_backoff_ms=100,
            jitter=0.0,
        )
        collector = ScriptedCollector([DeliveryError("down")])
        engine = SyncEngine(queue, observer, collector, config)
        await fill(queue, "a")
        observer.set_online(True)
        await engine.start()

        await wait_until(lambda: queue.size() == 0)
        assert len(collector.batches) == 2
        await engine.shutdown()


class TestPoisonEvents:
    """Tests for events exceeding the attempt ceiling."""

    @pytest.mark.asyncio
    async def test_event_abandoned_after_max_retries(self, queue, observer, sync_config):
        """An event is tried once plus max_retries times, then dropped and reported."""
        assert sync_config.max_retries == 3
        diagnostics = Diagnostics()
        reports = []
        diagnostics.subscribe(reports.append)
        collector = ScriptedCollector([DeliveryError("bad event")] * 5)
        engine = SyncEngine(queue, observer, collector, sync_config, diagnostics)
        (poison,) = await fill(queue, "poison")
        observer.set_online(True)

        for _ in range(4):
            assert (await engine.force_sync()).outcome == FlushOutcome.FAILED
        assert queue.size() == 1

        result = await engine.force_sync()

        assert result.outcome == FlushOutcome.SUCCESS
        assert result.abandoned == 1
        assert len(collector.batches) == 4
        assert queue.size() == 0
        assert queue.abandoned_count == 1
        assert diagnostics.count(DeliveryAbandoned) == 1
        assert reports[0].event_id == poison
        assert reports[0].attempts == 4
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_abandonment_does_not_block_later_events(self, queue, observer, sync_config):
        """Events behind an abandoned one are delivered in the same flush."""
        sync_config.max_retries = 0
        collector = ScriptedCollector([DeliveryError("down")])
        engine = SyncEngine(queue, observer, collector, sync_config)
        await fill(queue, "old")
        observer.set_online(True)
        await engine.force_sync()

        await fill(queue, "new")
        result = await engine.force_sync()

        assert result.abandoned == 1
        assert result.delivered == 1
        assert names(collector.batches[-1]) == ["new"]
        await engine.shutdown()


class TestTriggers:
    """Tests for automatic flush triggers."""

    @pytest.mark.asyncio
    async def test_online_notification_flushes(self, engine, queue, observer, collector):
        """Coming online with pending events starts a flush."""
        await engine.start()
        await fill(queue, "a", "b")

        observer.set_online(True)
        await wait_for_idle(engine)

        assert names(collector.batches[0]) == ["a", "b"]
        assert queue.size() == 0
        assert engine.state.last_success_at is not None

    @pytest.mark.asyncio
    async def test_repeated_online_notifications_coalesce(
        self, engine, queue, observer, collector
    ):
        """A burst of online notifications results in a single delivery."""
        await engine.start()
        await fill(queue, "a", "b")
        collector.gate = asyncio.Event()

        for _ in range(5):
            observer.set_online(True)
        await wait_until(lambda: collector.batches)
        for _ in range(5):
            observer.set_online(True)

        collector.gate.set()
        await wait_for_idle(engine)
        await asyncio.sleep(0.01)

        assert len(collector.batches) == 1
        assert queue.size() == 0

    @pytest.mark.asyncio
    async def test_online_with_empty_queue_does_nothing(self, engine, observer, collector):
        """Connectivity alone does not produce empty flushes."""
        await engine.start()
        observer.set_online(True)
        await asyncio.sleep(0.01)
        assert engine.state.last_result is None
        assert collector.batches == []

    @pytest.mark.asyncio
    async def test_startup_flush_when_online(self, queue, collector, sync_config):
        """Events left from a previous session flush as soon as the engine starts."""
        observer = ManualNetworkObserver(online=True)
        await fill(queue, "left over")
        engine = SyncEngine(queue, observer, collector, sync_config)

        await engine.start()
        await wait_for_idle(engine)

        assert names(collector.batches[0]) == ["left over"]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_timer_flushes_while_online(self, queue, collector):
        """Events enqueued while online are picked up by the periodic timer."""
        observer = ManualNetworkObserver(online=True)
        config = SyncConfig(sync_interval_ms=20)
        engine = SyncEngine(queue, observer, collector, config)
        await engine.start()

        await fill(queue, "tick")
        await wait_until(lambda: queue.size() == 0)

        assert names(collector.batches[0]) == ["tick"]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self, engine, observer):
        """Starting an already running engine does not double-subscribe."""
        await engine.start()
        await engine.start()
        assert observer.listener_count == 1


class TestShutdown:
    """Tests for disabling the engine."""

    @pytest.mark.asyncio
    async def test_shutdown_unsubscribes_and_disables(self, engine, queue, observer, collector):
        """After shutdown no trigger starts a flush."""
        await engine.start()
        await engine.shutdown()

        assert engine.is_disabled
        assert observer.listener_count == 0

        await fill(queue, "a")
        observer.set_online(True)
        await asyncio.sleep(0.01)
        assert collector.batches == []

        result = await engine.force_sync()
        assert result.outcome == FlushOutcome.DISABLED
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_flush(self, engine, queue, observer, collector):
        """A flush in progress completes before shutdown returns."""
        await fill(queue, "a")
        observer.set_online(True)
        collector.gate = asyncio.Event()

        flush = asyncio.create_task(engine.force_sync())
        await wait_until(lambda: collector.batches)

        shutdown = asyncio.create_task(engine.shutdown())
        await asyncio.sleep(0.01)
        assert not shutdown.done()

        collector.gate.set()
        await shutdown

        assert (await flush).outcome == FlushOutcome.SUCCESS
        assert queue.size() == 0
        assert engine.phase == SyncPhase.DISABLED

    @pytest.mark.asyncio
    async def test_start_after_shutdown_is_refused(self, engine, observer):
        """A shut down engine cannot be restarted."""
        await engine.shutdown()
        await engine.start()
        assert observer.listener_count == 0

    @pytest.mark.asyncio
    async def test_events_survive_for_next_session(self, observer, collector, sync_config):
        """Undelivered events are still in the store after shutdown."""
        store = FlakyStore()
        queue = EventQueue(store, QueueConfig())
        await queue.load()
        engine = SyncEngine(queue, observer, collector, sync_config)
        await engine.start()
        await fill(queue, "a", "b")
        await engine.shutdown()

        next_session = EventQueue(store, QueueConfig())
        assert await next_session.load() == 2


class TestSyncNotifications:
    """Tests for sync state listeners."""

    @pytest.mark.asyncio
    async def test_listener_sees_each_flush(self, engine, queue, observer):
        """Subscribers are notified with the state after every flush."""
        results = []
        engine.subscribe(lambda state: results.append(state.last_result.outcome))
        await fill(queue, "a")
        observer.set_online(True)

        await engine.force_sync()
        await engine.force_sync()

        assert results == [FlushOutcome.SUCCESS, FlushOutcome.SUCCESS]
