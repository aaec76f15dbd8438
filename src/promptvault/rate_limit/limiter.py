"""Sliding-window rate limiter for PromptVault.

Each key maps to the list of call timestamps (epoch milliseconds) inside its
window. A check purges stale timestamps, then either records the call and
allows it, or rejects it without recording. Callers may opt into recording
rejected calls so that repeated failures extend the lockout.

Thread-safe for concurrent access within a single process: the check for a
key runs under one of a fixed set of striped locks chosen by the key hash, so
lock memory stays constant however many clients are seen. Storage is
behind the CounterStore protocol so a shared external store can replace the
in-memory one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from promptvault.clock import Clock, to_epoch_ms, utc_now

logger = logging.getLogger(__name__)

MILLISECONDS_PER_SECOND = 1000
SWEEP_INTERVAL_CHECKS = 1000
LOCK_STRIPES = 64


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the call is allowed.
        remaining: Calls left in the current window after this one.
        retry_after_seconds: Seconds until the window admits another call (None if allowed).
        limit: Maximum calls per window.
        window_ms: Window length in milliseconds.
    """

    allowed: bool
    remaining: int
    retry_after_seconds: int | None
    limit: int
    window_ms: int


@runtime_checkable
class CounterStore(Protocol):
    """Storage for per-key call timestamps."""

    def get(self, key: str) -> list[int]:
        """Return the recorded timestamps for key, oldest first."""
        ...

    def add(self, key: str, timestamp_ms: int) -> None:
        """Record one call for key."""
        ...

    def prune(self, key: str, cutoff_ms: int) -> list[int]:
        """Drop timestamps at or before cutoff and return what remains."""
        ...


class InMemoryCounterStore:
    """Process-local counter store."""

    def __init__(self) -> None:
        self._windows: dict[str, list[int]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> list[int]:
        with self._lock:
            return list(self._windows.get(key, ()))

    def add(self, key: str, timestamp_ms: int) -> None:
        with self._lock:
            self._windows.setdefault(key, []).append(timestamp_ms)

    def prune(self, key: str, cutoff_ms: int) -> list[int]:
        with self._lock:
            current = self._windows.get(key)
            if not current:
                return []
            kept = [ts for ts in current if ts > cutoff_ms]
            if kept:
                self._windows[key] = kept
            else:
                del self._windows[key]
            return list(kept)

    def drop_idle(self, cutoff_ms: int) -> list[str]:
        """Remove keys whose newest timestamp is at or before cutoff and return them."""
        with self._lock:
            idle = [k for k, v in self._windows.items() if not v or v[-1] <= cutoff_ms]
            for key in idle:
                del self._windows[key]
            return idle

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._windows)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()


class SlidingWindowLimiter:
    """Generic sliding-window limiter keyed by arbitrary strings."""

    def __init__(self, store: CounterStore | None = None, *, clock: Clock = utc_now) -> None:
        self._store: CounterStore = store if store is not None else InMemoryCounterStore()
        self._clock = clock
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))
        self._locks_guard = threading.Lock()
        self._checks = 0
        self._max_window_ms = 0

    @property
    def store(self) -> CounterStore:
        return self._store

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % LOCK_STRIPES]

    def _now_ms(self) -> int:
        return to_epoch_ms(self._clock())

    def check(
        self,
        key: str,
        window_ms: int,
        max_count: int,
        *,
        record_rejected: bool = False,
    ) -> RateLimitDecision:
        """Check and, if allowed, record one call for key.

        Args:
            key: Counter key (usually class, actor and source IP).
            window_ms: Window length in milliseconds.
            max_count: Maximum calls allowed inside the window.
            record_rejected: Also record the call when it is rejected.

        Returns:
            RateLimitDecision with the result.
        """
        now_ms = self._now_ms()
        with self._lock_for(key):
            timestamps = self._store.prune(key, now_ms - window_ms)
            if len(timestamps) < max_count:
                self._store.add(key, now_ms)
                decision = RateLimitDecision(
                    allowed=True,
                    remaining=max_count - len(timestamps) - 1,
                    retry_after_seconds=None,
                    limit=max_count,
                    window_ms=window_ms,
                )
            else:
                if record_rejected:
                    self._store.add(key, now_ms)
                decision = RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after_seconds=_retry_after(timestamps, now_ms, window_ms, max_count),
                    limit=max_count,
                    window_ms=window_ms,
                )

        self._after_check(now_ms, window_ms)
        return decision

    def peek(self, key: str, window_ms: int, max_count: int) -> RateLimitDecision:
        """Report whether a call would be allowed, without recording it."""
        now_ms = self._now_ms()
        with self._lock_for(key):
            timestamps = self._store.prune(key, now_ms - window_ms)
        if len(timestamps) < max_count:
            return RateLimitDecision(
                allowed=True,
                remaining=max_count - len(timestamps),
                retry_after_seconds=None,
                limit=max_count,
                window_ms=window_ms,
            )
        return RateLimitDecision(
            allowed=False,
            remaining=0,
            retry_after_seconds=_retry_after(timestamps, now_ms, window_ms, max_count),
            limit=max_count,
            window_ms=window_ms,
        )

    def _after_check(self, now_ms: int, window_ms: int) -> None:
        with self._locks_guard:
            self._checks += 1
            self._max_window_ms = max(self._max_window_ms, window_ms)
            due = self._checks % SWEEP_INTERVAL_CHECKS == 0
            max_window = self._max_window_ms
        if due and isinstance(self._store, InMemoryCounterStore):
            dropped = self._store.drop_idle(now_ms - max_window)
            if dropped:
                logger.debug("Dropped %d idle rate windows", len(dropped))

    def reset(self) -> None:
        """Forget all windows (useful for testing)."""
        if isinstance(self._store, InMemoryCounterStore):
            self._store.clear()


def _retry_after(timestamps: list[int], now_ms: int, window_ms: int, max_count: int) -> int:
    """Seconds until enough timestamps leave the window to admit one call."""
    if not timestamps:
        return 1
    # The call is admitted once all but (max_count - 1) timestamps have expired.
    index = max(0, len(timestamps) - max_count)
    release_ms = timestamps[index] + window_ms - now_ms
    return max(1, -(-release_ms // MILLISECONDS_PER_SECOND))
