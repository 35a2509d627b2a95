"""
Exponential backoff with jitter for flush retries.

The delay after the n-th consecutive failure is

    initial_backoff * multiplier ** (n - 1), capped at max_backoff

reduced by a random fraction of up to ``jitter`` so that many clients
coming back online together do not retry in lockstep. Within one failure
streak a delay is never shorter than the previous one, so the sequence is
non-decreasing and never exceeds the cap.
"""

from __future__ import annotations

import logging
import math
import random

from ..config import SyncConfig

logger = logging.getLogger(__name__)


def compute_backoff(
    failures: int,
    config: SyncConfig,
    rng: random.Random | None = None,
    floor: float = 0.0,
) -> float:
    """Delay in seconds before the next attempt after ``failures`` failures.

    Args:
        failures: Consecutive failures so far (>= 1)
        config: Sync configuration with backoff settings
        rng: Random source for jitter (module random if None)
        floor: Lower bound, usually the previous delay in the streak

    Returns:
        Delay in seconds, in [floor, max_backoff]
    """
    cap = config.max_backoff_ms / 1000
    if failures <= 0:
        return 0.0

    initial = config.initial_backoff_ms / 1000
    multiplier = config.backoff_multiplier
    exponent = failures - 1
    if initial <= 0:
        raw = 0.0
    elif multiplier > 1.0 and exponent >= math.log(cap / initial, multiplier):
        # Past the cap; the power itself would overflow on long streaks
        raw = cap
    else:
        raw = min(initial * multiplier**exponent, cap)
    source = rng or random
    jittered = raw * (1.0 - config.jitter * source.random())
    return min(max(jittered, floor), cap)


class Backoff:
    """Tracks the delay sequence of one failure streak."""

    def __init__(self, config: SyncConfig, rng: random.Random | None = None):
        self.config = config
        self._rng = rng
        self._previous = 0.0

    @property
    def previous_delay(self) -> float:
        return self._previous

    def next_delay(self, failures: int) -> float:
        delay = compute_backoff(failures, self.config, self._rng, floor=self._previous)
        self._previous = delay
        logger.debug("Backoff after %d failures: %.2fs", failures, delay)
        return delay

    def reset(self) -> None:
        self._previous = 0.0
