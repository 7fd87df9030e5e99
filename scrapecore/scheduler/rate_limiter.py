"""
Per-domain rate limiter with failure-aware cooldown.

Each domain gets:
- a fixed-window request budget (rate_limit per rate_window_seconds)
- a failure streak; once it reaches failure_threshold the domain is in
  cooldown for min(backoff_max, backoff_base * 2 ** (streak - threshold))
- a circuit state for introspection: closed, open (cooling down) or
  half-open (cooldown elapsed, streak not yet cleared by a success)

State is created lazily per domain and mutated under that domain's
asyncio.Lock. A periodic sweep drops domains that have been idle longer
than idle_ttl_seconds and are not cooling down.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from scrapecore.utils.backoff import CooldownConfig, calculate_cooldown
from scrapecore.utils.config import RateLimitConfig, get_settings
from scrapecore.utils.logging import get_logger
from scrapecore.utils.periodic import PeriodicTask

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Per-domain circuit state."""

    CLOSED = "closed"
    """No penalty, requests limited by the window budget only."""

    OPEN = "open"
    """Cooling down after a failure streak, requests rejected."""

    HALF_OPEN = "half-open"
    """Cooldown elapsed, next request is a probe. One success closes it."""


@dataclass
class DomainRateState:
    """Mutable rate state for one domain. Guarded by the domain's lock."""

    domain: str
    window_start: float
    window_count: int = 0
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    total_requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_rejected: int = 0
    last_seen: float = 0.0


class RateLimiter:
    """Per-domain admission gate.

    Example:
        limiter = RateLimiter()
        await limiter.start()
        if await limiter.allow("jobs.example.com"):
            try:
                ...
                await limiter.record_success("jobs.example.com")
            except ScrapeError as e:
                await limiter.record_failure("jobs.example.com", e)
        await limiter.stop()
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            config: Rate limit configuration. Uses settings if None.
            clock: Monotonic time source (tests pass a fake clock).
        """
        self._config = config or get_settings().rate_limit
        self._clock = clock
        self._cooldown = CooldownConfig(
            failure_threshold=self._config.failure_threshold,
            base_seconds=self._config.backoff_base_seconds,
            max_seconds=self._config.backoff_max_seconds,
        )
        self._states: dict[str, DomainRateState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._sweep = PeriodicTask(
            "rate_limiter_cleanup",
            self._config.cleanup_interval_seconds,
            self.cleanup,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the idle-domain sweep."""
        await self._sweep.start()
        logger.info(
            "Rate limiter started",
            rate_limit=self._config.rate_limit,
            window_seconds=self._config.rate_window_seconds,
            failure_threshold=self._config.failure_threshold,
        )

    async def stop(self) -> None:
        """Stop the idle-domain sweep."""
        await self._sweep.stop()
        logger.info("Rate limiter stopped", domains=len(self._states))

    @property
    def is_running(self) -> bool:
        return self._sweep.is_running

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _lock_for(self, domain: str) -> asyncio.Lock:
        lock = self._locks.get(domain)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[domain] = lock
        return lock

    def _state_for(self, domain: str, now: float) -> DomainRateState:
        state = self._states.get(domain)
        if state is None:
            state = DomainRateState(domain=domain, window_start=now, last_seen=now)
            self._states[domain] = state
        return state

    def _remaining_cooldown(self, state: DomainRateState, now: float) -> float:
        if state.last_failure_at is None:
            return 0.0
        cooldown = calculate_cooldown(state.consecutive_failures, self._cooldown)
        if cooldown <= 0:
            return 0.0
        return max(0.0, state.last_failure_at + cooldown - now)

    def _circuit_state(self, state: DomainRateState, now: float) -> CircuitState:
        if state.consecutive_failures < self._config.failure_threshold:
            return CircuitState.CLOSED
        if self._remaining_cooldown(state, now) > 0:
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    # =========================================================================
    # Gate
    # =========================================================================

    async def allow(self, domain: str) -> bool:
        """Admit one request for ``domain`` if budget and cooldown permit.

        Args:
            domain: Target host.

        Returns:
            True if the request may proceed (the slot is consumed).
        """
        domain = domain.lower()
        async with self._lock_for(domain):
            now = self._clock()
            state = self._state_for(domain, now)
            state.last_seen = now

            remaining = self._remaining_cooldown(state, now)
            if remaining > 0:
                state.total_rejected += 1
                logger.debug(
                    "Domain in cooldown",
                    domain=domain,
                    remaining_seconds=round(remaining, 2),
                    consecutive_failures=state.consecutive_failures,
                )
                return False

            if now - state.window_start >= self._config.rate_window_seconds:
                state.window_start = now
                state.window_count = 0

            if state.window_count >= self._config.rate_limit:
                state.total_rejected += 1
                logger.debug(
                    "Domain window budget exhausted",
                    domain=domain,
                    window_count=state.window_count,
                    rate_limit=self._config.rate_limit,
                )
                return False

            state.window_count += 1
            state.total_requests += 1
            return True

    async def record_success(self, domain: str) -> None:
        """Clear the failure streak for ``domain``."""
        domain = domain.lower()
        async with self._lock_for(domain):
            now = self._clock()
            state = self._state_for(domain, now)
            if state.consecutive_failures >= self._config.failure_threshold:
                logger.info(
                    "Domain recovered",
                    domain=domain,
                    previous_failures=state.consecutive_failures,
                )
            state.consecutive_failures = 0
            state.total_successes += 1
            state.last_seen = now

    async def record_failure(self, domain: str, error: BaseException | None = None) -> None:
        """Extend the failure streak for ``domain``.

        Args:
            domain: Target host.
            error: Failure that caused it (logged only).
        """
        domain = domain.lower()
        async with self._lock_for(domain):
            now = self._clock()
            state = self._state_for(domain, now)
            state.consecutive_failures += 1
            state.total_failures += 1
            state.last_failure_at = now
            state.last_seen = now

            cooldown = calculate_cooldown(state.consecutive_failures, self._cooldown)
            if cooldown > 0:
                logger.warning(
                    "Domain cooling down after failures",
                    domain=domain,
                    consecutive_failures=state.consecutive_failures,
                    cooldown_seconds=cooldown,
                    error=str(error) if error else None,
                )

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_domain_stats(self, domain: str) -> dict[str, Any] | None:
        """Snapshot of one domain's state, or None if it is not tracked."""
        domain = domain.lower()
        state = self._states.get(domain)
        if state is None:
            return None

        now = self._clock()
        return {
            "domain": state.domain,
            "circuit_state": self._circuit_state(state, now).value,
            "window_count": state.window_count,
            "rate_limit": self._config.rate_limit,
            "consecutive_failures": state.consecutive_failures,
            "cooldown_remaining_seconds": round(self._remaining_cooldown(state, now), 3),
            "total_requests": state.total_requests,
            "total_successes": state.total_successes,
            "total_failures": state.total_failures,
            "total_rejected": state.total_rejected,
            "idle_seconds": round(now - state.last_seen, 3),
        }

    def get_all_stats(self) -> dict[str, Any]:
        """Aggregate counters plus per-domain snapshots."""
        domains = {domain: self.get_domain_stats(domain) for domain in list(self._states)}
        open_circuits = sum(
            1 for stats in domains.values() if stats and stats["circuit_state"] == CircuitState.OPEN.value
        )
        return {
            "tracked_domains": len(domains),
            "open_circuits": open_circuits,
            "total_requests": sum(s.total_requests for s in self._states.values()),
            "total_rejected": sum(s.total_rejected for s in self._states.values()),
            "domains": domains,
        }

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup(self) -> int:
        """Drop idle domains that are not cooling down.

        Returns:
            Number of domains removed.
        """
        now = self._clock()
        removed = 0

        for domain in list(self._states):
            lock = self._lock_for(domain)
            if lock.locked():
                continue
            async with lock:
                state = self._states.get(domain)
                if state is None:
                    continue
                if now - state.last_seen <= self._config.idle_ttl_seconds:
                    continue
                if self._remaining_cooldown(state, now) > 0:
                    continue
                del self._states[domain]
                self._locks.pop(domain, None)
                removed += 1

        if removed:
            logger.info("Removed idle rate limit entries", removed=removed, remaining=len(self._states))
        return removed
