"""
Configuration for the event queue and the sync engine.

Defaults mirror the tracking provider's queue setup: 1000 queued events,
a one minute sync interval and three retries after the first delivery attempt.

Configuration can be built directly, from ``OFFLINE_QUEUE_*`` environment
variables, or from the ``event_queue`` section of a YAML settings file:

```yaml
event_queue:
  queue:
    storage_key: "offline_event_queue"
    capacity: 500
    max_bytes: 1048576
    excluded_events: ["heartbeat"]
  sync:
    batch_size: 25
    sync_interval_ms: 30000
    max_retries: 5
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

DEFAULT_STORAGE_KEY = "offline_event_queue"


@dataclass
class QueueConfig:
    """Configuration for the durable event queue."""

    storage_key: str = DEFAULT_STORAGE_KEY
    capacity: int = 1000
    max_bytes: int | None = None

    # Payloads that are mappings with one of these names are never queued
    excluded_events: frozenset[str] = field(default_factory=frozenset)
    event_name_field: str = "name"

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        if not self.storage_key:
            raise ConfigurationError("storage_key", "must not be empty")
        if self.capacity < 1:
            raise ConfigurationError("capacity", "must be at least 1", str(self.capacity))
        if self.max_bytes is not None and self.max_bytes < 1:
            raise ConfigurationError("max_bytes", "must be positive", str(self.max_bytes))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueConfig:
        """Create config from a settings mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "excluded_events" in values:
            values["excluded_events"] = frozenset(values["excluded_events"] or ())
        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def from_env(cls) -> QueueConfig:
        """Create config from environment variables."""
        max_bytes = os.environ.get("OFFLINE_QUEUE_MAX_BYTES")
        excluded = os.environ.get("OFFLINE_QUEUE_EXCLUDED_EVENTS", "")

        config = cls(
            storage_key=os.environ.get("OFFLINE_QUEUE_STORAGE_KEY", DEFAULT_STORAGE_KEY),
            capacity=_env_int("OFFLINE_QUEUE_CAPACITY", 1000),
            max_bytes=int(max_bytes) if max_bytes else None,
            excluded_events=frozenset(name.strip() for name in excluded.split(",") if name.strip()),
        )
        config.validate()
        return config


@dataclass
class SyncConfig:
    """Configuration for the sync engine."""

    # Batching
    batch_size: int = 50

    # Periodic flush timer
    sync_interval_ms: int = 60000

    # Retry settings
    initial_backoff_ms: int = 1000
    max_backoff_ms: int = 60000
    backoff_multiplier: float = 2.0
    jitter: float = 0.2

    # Poison event protection: attempts allowed after the first one
    max_retries: int = 3

    delivery_timeout_ms: int = 10000

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        if self.batch_size < 1:
            raise ConfigurationError("batch_size", "must be at least 1", str(self.batch_size))
        if self.sync_interval_ms <= 0:
            raise ConfigurationError("sync_interval_ms", "must be positive")
        if self.initial_backoff_ms < 0:
            raise ConfigurationError("initial_backoff_ms", "must not be negative")
        if self.max_backoff_ms < self.initial_backoff_ms:
            raise ConfigurationError(
                "max_backoff_ms", "must not be below initial_backoff_ms", str(self.max_backoff_ms)
            )
        if self.backoff_multiplier < 1.0:
            raise ConfigurationError("backoff_multiplier", "must be at least 1.0")
        if not 0.0 <= self.jitter < 1.0:
            raise ConfigurationError("jitter", "must be in [0, 1)", str(self.jitter))
        if self.max_retries < 0:
            raise ConfigurationError("max_retries", "must not be negative")
        if self.delivery_timeout_ms <= 0:
            raise ConfigurationError("delivery_timeout_ms", "must be positive")

    @property
    def sync_interval(self) -> float:
        return self.sync_interval_ms / 1000

    @property
    def delivery_timeout(self) -> float:
        return self.delivery_timeout_ms / 1000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create config from a settings mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        config = cls(**{k: v for k, v in data.items() if k in known})
        config.validate()
        return config

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Create config from environment variables."""
        defaults = cls()
        config = cls(
            batch_size=_env_int("OFFLINE_QUEUE_BATCH_SIZE", defaults.batch_size),
            sync_interval_ms=_env_int("OFFLINE_QUEUE_SYNC_INTERVAL_MS", defaults.sync_interval_ms),
            initial_backoff_ms=_env_int(
                "OFFLINE_QUEUE_INITIAL_BACKOFF_MS", defaults.initial_backoff_ms
            ),
            max_backoff_ms=_env_int("OFFLINE_QUEUE_MAX_BACKOFF_MS", defaults.max_backoff_ms),
            backoff_multiplier=float(
                os.environ.get("OFFLINE_QUEUE_BACKOFF_MULTIPLIER", defaults.backoff_multiplier)
            ),
            jitter=float(os.environ.get("OFFLINE_QUEUE_JITTER", defaults.jitter)),
            max_retries=_env_int("OFFLINE_QUEUE_MAX_RETRIES", defaults.max_retries),
            delivery_timeout_ms=_env_int(
                "OFFLINE_QUEUE_DELIVERY_TIMEOUT_MS", defaults.delivery_timeout_ms
            ),
        )
        config.validate()
        return config


def load_settings(path: Path | None = None) -> tuple[QueueConfig, SyncConfig]:
    """Load queue and sync configuration from a YAML settings file.

    Args:
        path: Settings file. Defaults to ~/.offline_event_queue/settings.yaml

    Returns:
        Tuple of (QueueConfig, SyncConfig). Missing sections use defaults.

    Raises:
        ConfigurationError: If the file is not valid YAML or a value is invalid
    """
    path = path or Path.home() / ".offline_event_queue" / "settings.yaml"
    if not path.exists():
        return QueueConfig(), SyncConfig()

    try:
        settings = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError("settings", f"invalid YAML in {path}: {e}") from e

    section = settings.get("event_queue") or {}
    return (
        QueueConfig.from_dict(section.get("queue") or {}),
        SyncConfig.from_dict(section.get("sync") or {}),
    )


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(name, "must be an integer", value) from e
