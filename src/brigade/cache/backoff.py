"""Randomized exponential backoff for change feed reconnection.

The delay for a retry attempt is

    min(max_delay, base * multiplier ** min(attempt, max_exponent) * (1 + jitter * r))

with r drawn uniformly from [0, 1). The expected delay is non-decreasing in
attempt and never exceeds max_delay.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass

from brigade.config import settings


def compute_backoff_delay(
    attempt: int,
    *,
    base: float = 1.0,
    multiplier: float = 2.0,
    max_exponent: int = 3,
    max_delay: float = 30.0,
    jitter: float = 0.5,
    rng: Callable[[], float] = random.random,
) -> float:
    """Return the delay in seconds before retry number attempt (0-based).

    Args:
        attempt: Number of retries already scheduled since the last success
        base: Delay of the first retry before jitter
        multiplier: Growth factor per attempt
        max_exponent: Attempts beyond this stop growing the delay
        max_delay: Hard cap on the returned delay
        jitter: Fraction of the exponential delay added at random
        rng: Source of uniform [0, 1) values, injectable for tests
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    exponential = base * multiplier ** min(attempt, max_exponent)
    return min(max_delay, exponential * (1.0 + jitter * rng()))


@dataclass(frozen=True)
class BackoffPolicy:
    """Backoff parameters bound together."""

    base: float = 1.0
    multiplier: float = 2.0
    max_exponent: int = 3
    max_delay: float = 30.0
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.base <= 0:
            raise ValueError("base must be positive")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.max_exponent < 0:
            raise ValueError("max_exponent must be >= 0")
        if self.max_delay < self.base:
            raise ValueError("max_delay must be >= base")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    @classmethod
    def from_settings(cls) -> BackoffPolicy:
        """Create a policy from application settings."""
        return cls(
            base=settings.retry_delay_base,
            multiplier=settings.retry_delay_multiplier,
            max_exponent=settings.retry_max_exponent,
            max_delay=settings.retry_delay_max,
            jitter=settings.retry_jitter,
        )

    def delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay before retry number attempt (0-based)."""
        return compute_backoff_delay(
            attempt,
            base=self.base,
            multiplier=self.multiplier,
            max_exponent=self.max_exponent,
            max_delay=self.max_delay,
            jitter=self.jitter,
            rng=rng,
        )
