"""
Custom exceptions for the offline event queue.

Stores, collectors and the queue itself raise these exceptions so callers
can handle failures consistently regardless of the backend in use.
"""


class EventQueueError(Exception):
    """Base exception for all event queue errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StorageIOError(EventQueueError):
    """Raised by a durable store when a read or write fails."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if key:
            details["key"] = key
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if key:
            message += f": {key}"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause


class UndecodableValueError(StorageIOError):
    """Raised by a durable store when a stored value is not valid text.

    The bytes were read but cannot be turned into a string, so retrying
    will not help. The queue treats this as a corrupt record.
    """

    def __init__(self, key: str, cause: Exception | None = None):
        super().__init__("decode", key, cause)


class PersistenceError(EventQueueError):
    """Raised when the queue cannot read or write its persisted record.

    This is the only error producers calling ``enqueue`` ever observe.
    """

    def __init__(self, operation: str, key: str, cause: Exception | None = None):
        details = {"operation": operation, "key": key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Failed to persist queue during {operation}: {key}", details)
        self.operation = operation
        self.key = key
        self.cause = cause


class DeliveryError(EventQueueError):
    """Raised by a collector when a batch could not be delivered."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {}
        if status_code is not None:
            details["status_code"] = status_code
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.status_code = status_code
        self.cause = cause


class DeliveryTimeoutError(DeliveryError):
    """Raised when a delivery attempt exceeds its timeout."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Delivery timed out after {timeout_seconds:.1f}s")
        self.details["timeout_seconds"] = timeout_seconds
        self.timeout_seconds = timeout_seconds


class CorruptionDetected(EventQueueError):
    """Reported when the persisted queue record cannot be parsed.

    Not raised to callers: the queue resets to empty and reports this
    through the diagnostics channel.
    """

    def __init__(self, key: str, reason: str):
        super().__init__(
            f"Corrupt queue record under {key}: {reason}",
            {"key": key, "reason": reason},
        )
        self.key = key
        self.reason = reason


class DeliveryAbandoned(EventQueueError):
    """Reported when an event exceeds the delivery attempt ceiling and is dropped."""

    def __init__(self, event_id: int, attempts: int):
        super().__init__(
            f"Event {event_id} abandoned after {attempts} delivery attempts",
            {"event_id": event_id, "attempts": attempts},
        )
        self.event_id = event_id
        self.attempts = attempts


class ConfigurationError(EventQueueError):
    """Raised when a configuration value is invalid."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Invalid configuration for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value
