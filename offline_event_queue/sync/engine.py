"""
Sync engine driving delivery of queued events.

Flushes are triggered by:
- A connectivity notification reporting online
- A periodic timer while online and outside the backoff window
- An explicit force_sync() call, which ignores backoff but not connectivity

Only one flush runs at a time. Triggers arriving during a flush are
coalesced into it. A flush drains the queue batch by batch; a failure
leaves the queue untouched (except for attempt counts) and schedules a
retry with exponential backoff.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import time
from collections.abc import Callable
from datetime import UTC, datetime

from ..config import SyncConfig
from ..diagnostics import Diagnostics
from ..event_queue import EventQueue
from ..exceptions import (
    DeliveryAbandoned,
    DeliveryError,
    DeliveryTimeoutError,
    PersistenceError,
)
from ..models import (
    ConnectivityChange,
    DeliveryReport,
    FlushOutcome,
    QueuedEvent,
    SyncPhase,
    SyncResult,
    SyncState,
)
from ..network.base import NetworkObserver
from ..subscriptions import Listener, ListenerSet, Subscription
from .backoff import Backoff
from .collector import Collector

logger = logging.getLogger(__name__)


class SyncEngine:
    """Delivers queued events to a collector with retry and backoff.

    Example:
        >>> engine = SyncEngine(queue, observer, HttpCollector(url))
        >>> await engine.start()
        >>> result = await engine.force_sync()
        >>> await engine.shutdown()
    """

    def __init__(
        self,
        queue: EventQueue,
        observer: NetworkObserver,
        collector: Collector,
        config: SyncConfig | None = None,
        diagnostics: Diagnostics | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        """Initialize the sync engine.

        Args:
            queue: Loaded event queue to drain
            observer: Connectivity source
            collector: Delivery destination
            config: Sync configuration
            diagnostics: Channel for DeliveryAbandoned reports
            clock: Monotonic clock in seconds, used for backoff windows
            rng: Random source for backoff jitter
        """
        self.queue = queue
        self.observer = observer
        self.collector = collector
        self.config = config or SyncConfig()
        self.config.validate()
        self.diagnostics = diagnostics or queue.diagnostics
        self._clock = clock

        self._state = SyncState()
        self._backoff = Backoff(self.config, rng)
        self._listeners: ListenerSet[SyncState] = ListenerSet("sync")
        self._subscription: Subscription | None = None
        self._timer_task: asyncio.Task[None] | None = None
        self._flush_task: asyncio.Task[SyncResult] | None = None
        self._wakeup = asyncio.Event()

    @property
    def state(self) -> SyncState:
        """Current control state. Treat as read-only."""
        return self._state

    @property
    def phase(self) -> SyncPhase:
        return self._state.phase

    @property
    def is_disabled(self) -> bool:
        return self._state.phase == SyncPhase.DISABLED

    def subscribe(self, listener: Listener[SyncState]) -> Subscription:
        """Be notified after every flush and on shutdown."""
        return self._listeners.add(listener)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Subscribe to connectivity changes and start the periodic timer.

        If already online with events pending, a flush starts immediately.
        """
        if self.is_disabled:
            logger.warning("Sync engine is shut down, not starting")
            return
        if self._timer_task is not None:
            return

        self._subscription = self.observer.subscribe(self._on_connectivity)
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(
            "Sync engine started (interval=%.1fs, batch_size=%d)",
            self.config.sync_interval,
            self.config.batch_size,
        )

        if self.queue.size():
            self._trigger("startup")

    async def shutdown(self) -> None:
        """Disable all automatic flushing.

        An in-flight flush is allowed to finish. Queued events stay durable
        for the next session.
        """
        self._state.phase = SyncPhase.DISABLED

        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        if self._timer_task is not None:
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None

        if self._flush_task is not None and not self._flush_task.done():
            logger.info("Waiting for in-flight flush before shutdown")
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task

        logger.info("Sync engine shut down with %d events queued", self.queue.size())
        self._listeners.notify(self._state)

    # =========================================================================
    # Triggers
    # =========================================================================

    async def force_sync(self) -> SyncResult:
        """Flush now, regardless of the backoff window.

        Returns:
            SyncResult. Outcome is OFFLINE when there is no connectivity,
            BUSY when a flush is already running, DISABLED after shutdown.
        """
        if self.is_disabled:
            return SyncResult(FlushOutcome.DISABLED, remaining=self.queue.size())
        if not self.observer.is_online():
            return SyncResult(FlushOutcome.OFFLINE, remaining=self.queue.size())
        if self._state.in_flight:
            return SyncResult(FlushOutcome.BUSY, remaining=self.queue.size())

        task = self._spawn_flush("forced")
        # Shielded so a cancelled caller does not abort the delivery
        return await asyncio.shield(task)

    def _on_connectivity(self, change: ConnectivityChange) -> None:
        if change.connected and self.queue.size():
            self._trigger("connectivity")
        self._wakeup.set()

    def _trigger(self, reason: str) -> bool:
        """Start a background flush if eligible. Returns True if one started."""
        if self.is_disabled or self._state.in_flight:
            return False
        if not self.observer.is_online():
            return False
        if self._clock() < self._state.next_eligible_at:
            logger.debug("Flush trigger '%s' ignored during backoff", reason)
            return False

        self._spawn_flush(reason)
        return True

    def _spawn_flush(self, reason: str) -> asyncio.Task[SyncResult]:
        # Taken synchronously so concurrent triggers see the flight flag
        self._state.in_flight = True
        self._state.phase = SyncPhase.FLUSHING
        self._state.last_attempt_at = datetime.now(UTC)
        self._flush_task = asyncio.create_task(self._run_flush(reason))
        return self._flush_task

    async def _timer_loop(self) -> None:
        while not self.is_disabled:
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._next_tick_delay())
                continue
            except TimeoutError:
                pass

            if self.queue.size():
                self._trigger("timer")

    def _next_tick_delay(self) -> float:
        interval = self.config.sync_interval
        if self._state.phase == SyncPhase.BACKOFF_WAIT:
            remaining = self._state.next_eligible_at - self._clock()
            if 0 < remaining < interval:
                return remaining
        return interval

    # =========================================================================
    # Flush
    # =========================================================================

    async def _run_flush(self, reason: str) -> SyncResult:
        started = self._clock()
        result = SyncResult(FlushOutcome.SUCCESS)
        logger.debug("Flush started (%s), %d events queued", reason, self.queue.size())

        try:
            await self._drain(result)
        except (DeliveryError, PersistenceError) as e:
            result.outcome = FlushOutcome.FAILED
            result.errors.append(str(e))
            logger.warning("Flush failed: %s", e, extra={"reason": reason})
        except Exception as e:
            result.outcome = FlushOutcome.FAILED
            result.errors.append(str(e))
            logger.exception("Unexpected error during flush")
        finally:
            self._state.in_flight = False
            if self._state.phase == SyncPhase.FLUSHING:
                self._state.phase = SyncPhase.IDLE

        result.remaining = self.queue.size()
        result.duration_ms = int((self._clock() - started) * 1000)
        result.completed_at = datetime.now(UTC)
        self._finish(result)
        return result

    async def _drain(self, result: SyncResult) -> None:
        """Deliver batches until the queue is empty, or stop on partial acceptance."""
        while True:
            batch = await self._take_batch(result)
            if not batch:
                return

            batch = await self.queue.record_attempt(event.id for event in batch)
            report = await self._deliver(batch)
            accepted = max(0, min(report.accepted, len(batch)))

            if accepted:
                await self.queue.remove_prefix(batch[accepted - 1].id)
                result.delivered += accepted

            if accepted == len(batch):
                continue
            if accepted == 0:
                raise DeliveryError("Collector accepted none of the batch")

            result.outcome = FlushOutcome.PARTIAL
            logger.info(
                "Collector accepted %d of %d events, remainder stays queued",
                accepted,
                len(batch),
            )
            return

    async def _take_batch(self, result: SyncResult) -> list[QueuedEvent]:
        """Peek the next batch, first abandoning events past the attempt ceiling."""
        while True:
            batch = self.queue.peek_batch(self.config.batch_size)
            poison = [e for e in batch if e.attempts > self.config.max_retries]
            if not poison:
                return batch

            removed = await self.queue.discard(e.id for e in poison)
            for event in removed:
                self.diagnostics.report(DeliveryAbandoned(event.id, event.attempts))
            result.abandoned += len(removed)
            if not removed:
                return [e for e in batch if e not in poison]

    async def _deliver(self, batch: list[QueuedEvent]) -> DeliveryReport:
        timeout = self.config.delivery_timeout
        try:
            return await asyncio.wait_for(self.collector.deliver(batch), timeout=timeout)
        except TimeoutError as e:
            raise DeliveryTimeoutError(timeout) from e

    def _finish(self, result: SyncResult) -> None:
        state = self._state
        now = self._clock()

        if result.outcome == FlushOutcome.FAILED:
            state.consecutive_failures += 1
            delay = self._backoff.next_delay(state.consecutive_failures)
            state.next_eligible_at = now + delay
            next_phase = SyncPhase.BACKOFF_WAIT
            logger.info(
                "Retrying in %.1fs after %d consecutive failures",
                delay,
                state.consecutive_failures,
            )
        else:
            state.consecutive_failures = 0
            state.next_eligible_at = now
            state.last_success_at = result.completed_at
            self._backoff.reset()
            next_phase = SyncPhase.IDLE
            if result.delivered or result.abandoned:
                logger.info(
                    "Flush delivered %d events (%d abandoned, %d remaining)",
                    result.delivered,
                    result.abandoned,
                    result.remaining,
                )

        if state.phase != SyncPhase.DISABLED:
            state.phase = next_phase
        state.last_result = result

        self._listeners.notify(state)
        self._wakeup.set()
