"""
Data types shared by the queue, the sync engine and the status reporter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

EventId = int


@dataclass(frozen=True)
class QueuedEvent:
    """One pending event with its queue-managed envelope.

    Attributes:
        id: Strictly increasing identifier, used for ordering and dedup
        payload: Caller-supplied JSON-serializable value
        enqueued_at: When the event was enqueued (UTC)
        attempts: Number of delivery attempts made so far
    """

    id: EventId
    payload: Any
    enqueued_at: datetime
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at.isoformat(),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedEvent:
        """Create from dictionary.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        enqueued_at = datetime.fromisoformat(data["enqueued_at"])
        if enqueued_at.tzinfo is None:
            enqueued_at = enqueued_at.replace(tzinfo=UTC)

        attempts = int(data.get("attempts", 0))
        if attempts < 0:
            raise ValueError(f"negative attempts: {attempts}")

        return cls(
            id=int(data["id"]),
            payload=data.get("payload"),
            enqueued_at=enqueued_at,
            attempts=attempts,
        )


@dataclass(frozen=True)
class DeliveryReport:
    """What the collector confirmed for one delivered batch.

    ``accepted`` is the length of the accepted prefix of the batch.
    """

    accepted: int


class SyncPhase(Enum):
    """Current phase of the sync engine."""

    IDLE = "idle"
    FLUSHING = "flushing"
    BACKOFF_WAIT = "backoff_wait"
    DISABLED = "disabled"


class FlushOutcome(Enum):
    """How a flush request ended."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    OFFLINE = "offline"
    BUSY = "busy"
    DISABLED = "disabled"


@dataclass
class SyncResult:
    """Result of a flush request."""

    outcome: FlushOutcome
    delivered: int = 0
    abandoned: int = 0
    remaining: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        return self.outcome in (FlushOutcome.SUCCESS, FlushOutcome.PARTIAL)


@dataclass
class SyncState:
    """Transient control state of the sync engine. Never persisted."""

    phase: SyncPhase = SyncPhase.IDLE
    in_flight: bool = False
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0
    # Monotonic clock seconds; 0.0 means immediately eligible
    next_eligible_at: float = 0.0
    last_result: SyncResult | None = None


@dataclass(frozen=True)
class QueueStatus:
    """Point-in-time view of the queue for external observers."""

    size: int
    oldest_timestamp: datetime | None
    dropped_count: int
    last_flush_result: SyncResult | None
    consecutive_failures: int
    abandoned_count: int = 0
    size_bytes: int = 0
    is_syncing: bool = False
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    phase: SyncPhase = SyncPhase.IDLE

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        last = self.last_flush_result
        return {
            "size": self.size,
            "oldest_timestamp": self.oldest_timestamp.isoformat() if self.oldest_timestamp else None,
            "dropped_count": self.dropped_count,
            "abandoned_count": self.abandoned_count,
            "size_bytes": self.size_bytes,
            "consecutive_failures": self.consecutive_failures,
            "is_syncing": self.is_syncing,
            "phase": self.phase.value,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_flush_result": last.outcome.value if last else None,
        }


@dataclass(frozen=True)
class ConnectivityChange:
    """Notification delivered by a network observer."""

    connected: bool
