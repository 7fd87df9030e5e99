"""
Backoff calculation utilities.

Shared by:
- RateLimiter cooldown after a failure streak (scrapecore/scheduler/rate_limiter.py)
- Worker retry delay (scrapecore/scheduler/worker_pool.py)
- Firecrawl internal retries (scrapecore/engines/firecrawl.py)
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CooldownConfig:
    """Configuration for failure-streak cooldown.

    - failure_threshold: Streak length that starts the cooldown (default: 3)
    - base_seconds: Cooldown at the threshold (default: 5.0)
    - max_seconds: Upper cap (default: 300.0)

    Example:
        >>> config = CooldownConfig(failure_threshold=3, base_seconds=5.0)
    """

    failure_threshold: int = 3
    base_seconds: float = 5.0
    max_seconds: float = 300.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.base_seconds <= 0:
            raise ValueError("base_seconds must be positive")
        if self.max_seconds < self.base_seconds:
            raise ValueError("max_seconds must be >= base_seconds")


def calculate_cooldown(consecutive_failures: int, config: CooldownConfig | None = None) -> float:
    """Cooldown duration after a streak of failures.

    cooldown = min(max_seconds, base_seconds * 2 ** (failures - threshold))
    once failures >= threshold, else 0.

    Args:
        consecutive_failures: Current failure streak.
        config: Cooldown configuration (default: CooldownConfig()).

    Returns:
        Cooldown in seconds. Non-decreasing in consecutive_failures.

    Example:
        >>> calculate_cooldown(2)
        0.0
        >>> calculate_cooldown(3)
        5.0
        >>> calculate_cooldown(5)
        20.0
        >>> calculate_cooldown(100)
        300.0
    """
    if consecutive_failures < 0:
        raise ValueError("consecutive_failures must be non-negative")

    if config is None:
        config = CooldownConfig()

    if consecutive_failures < config.failure_threshold:
        return 0.0

    exponent = consecutive_failures - config.failure_threshold
    # Cap the exponent before raising so huge streaks cannot overflow
    if exponent > 64:
        return config.max_seconds
    return min(config.max_seconds, config.base_seconds * (2**exponent))


def calculate_linear_backoff(attempt: int, step_seconds: float) -> float:
    """Linear retry delay: attempt * step_seconds.

    Args:
        attempt: 1-indexed attempt that just failed.
        step_seconds: Delay unit.

    Returns:
        Delay in seconds (never negative).
    """
    if attempt < 0:
        raise ValueError("attempt must be non-negative")
    return max(0.0, attempt * step_seconds)
