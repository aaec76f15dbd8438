"""Operation-class rate limit policies for PromptVault.

Default windows per class:
- general: 100 calls / 15 min
- auth: 5 calls / 15 min (rejected attempts are counted)
- password_reset: 3 calls / 1 h
- text_generation: 10 calls / 1 min
- admin: 50 calls / 15 min
- destructive: 10 calls / 1 h
- prompt_access: 5 calls / 1 min

Each class can be overridden with PROMPTVAULT_RATE_LIMIT_<CLASS>="<max>/<window_seconds>".
Counters are keyed by class, actor and source IP.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Final

from promptvault.clock import Clock, utc_now
from promptvault.rate_limit.limiter import (
    CounterStore,
    RateLimitDecision,
    SlidingWindowLimiter,
)

logger = logging.getLogger(__name__)

ENV_RATE_LIMIT_PREFIX: Final[str] = "PROMPTVAULT_RATE_LIMIT_"

MINUTE_MS: Final[int] = 60 * 1000
HOUR_MS: Final[int] = 60 * MINUTE_MS


class RateLimitClass(StrEnum):
    """Operation classes with independent windows."""

    GENERAL = "general"
    AUTH = "auth"
    PASSWORD_RESET = "password_reset"
    TEXT_GENERATION = "text_generation"
    ADMIN = "admin"
    DESTRUCTIVE = "destructive"
    PROMPT_ACCESS = "prompt_access"


class RateLimitConfigError(Exception):
    """Raised when rate limit configuration is invalid."""


@dataclass(frozen=True)
class WindowPolicy:
    """Window and behavior for one rate class.

    Attributes:
        max_count: Calls allowed per window.
        window_ms: Window length in milliseconds.
        record_rejected: Count rejected calls too, extending the lockout.
        security_sensitive: Exhaustion is logged as a security event.
    """

    max_count: int
    window_ms: int
    record_rejected: bool = False
    security_sensitive: bool = False

    def __post_init__(self) -> None:
        if self.max_count <= 0:
            raise RateLimitConfigError(f"max_count must be positive, got {self.max_count}")
        if self.window_ms <= 0:
            raise RateLimitConfigError(f"window_ms must be positive, got {self.window_ms}")


DEFAULT_POLICIES: Final[Mapping[RateLimitClass, WindowPolicy]] = MappingProxyType(
    {
        RateLimitClass.GENERAL: WindowPolicy(100, 15 * MINUTE_MS),
        RateLimitClass.AUTH: WindowPolicy(
            5, 15 * MINUTE_MS, record_rejected=True, security_sensitive=True
        ),
        RateLimitClass.PASSWORD_RESET: WindowPolicy(3, HOUR_MS, security_sensitive=True),
        RateLimitClass.TEXT_GENERATION: WindowPolicy(10, MINUTE_MS),
        RateLimitClass.ADMIN: WindowPolicy(50, 15 * MINUTE_MS),
        RateLimitClass.DESTRUCTIVE: WindowPolicy(10, HOUR_MS, security_sensitive=True),
        RateLimitClass.PROMPT_ACCESS: WindowPolicy(5, MINUTE_MS),
    }
)


@dataclass(frozen=True)
class RateLimitConfig:
    """Policies for every rate class (immutable)."""

    policies: Mapping[RateLimitClass, WindowPolicy]

    def __post_init__(self) -> None:
        missing = [c.value for c in RateLimitClass if c not in self.policies]
        if missing:
            raise RateLimitConfigError(f"Missing rate limit policies for: {', '.join(missing)}")

    def policy(self, rate_class: RateLimitClass) -> WindowPolicy:
        return self.policies[rate_class]


def _parse_override(env_var: str, default: WindowPolicy) -> WindowPolicy:
    """Parse a "<max>/<window_seconds>" override, keeping the default flags.

    Raises:
        RateLimitConfigError: If the value is set but malformed.
    """
    raw = os.environ.get(env_var)
    if raw is None or not raw.strip():
        return default

    raw = raw.strip()
    parts = raw.split("/")
    if len(parts) != 2:
        raise RateLimitConfigError(
            f"{env_var} must look like '<max>/<window_seconds>', got '{raw}'"
        )
    try:
        max_count = int(parts[0])
        window_seconds = int(parts[1])
    except ValueError as e:
        raise RateLimitConfigError(
            f"{env_var} must look like '<max>/<window_seconds>', got '{raw}'"
        ) from e

    if max_count <= 0 or window_seconds <= 0:
        raise RateLimitConfigError(f"{env_var} values must be positive integers, got '{raw}'")

    return WindowPolicy(
        max_count=max_count,
        window_ms=window_seconds * 1000,
        record_rejected=default.record_rejected,
        security_sensitive=default.security_sensitive,
    )


def load_rate_limit_config() -> RateLimitConfig:
    """Load per-class policies, applying environment overrides.

    Raises:
        RateLimitConfigError: If any override is malformed.
    """
    policies = {
        rate_class: _parse_override(
            f"{ENV_RATE_LIMIT_PREFIX}{rate_class.value.upper()}", default
        )
        for rate_class, default in DEFAULT_POLICIES.items()
    }
    return RateLimitConfig(policies=MappingProxyType(policies))


def counter_key(rate_class: RateLimitClass, actor_id: str, source_ip: str) -> str:
    return f"{rate_class.value}:{actor_id}:{source_ip}"


class UsageCounter:
    """Rate limiter that applies per-class policies.

    Thread-safe for concurrent access.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        store: CounterStore | None = None,
        *,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the counter.

        Args:
            config: Rate class policies. If None, loads from environment.
            store: Counter store. If None, uses an in-memory store.
            clock: Time source.

        Raises:
            RateLimitConfigError: If configuration is invalid.
        """
        if config is None:
            config = load_rate_limit_config()
        self._config = config
        self._limiter = SlidingWindowLimiter(store, clock=clock)

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def policy(self, rate_class: RateLimitClass) -> WindowPolicy:
        return self._config.policy(rate_class)

    def check(self, rate_class: RateLimitClass, actor_id: str, source_ip: str) -> RateLimitDecision:
        """Check and record one call for (class, actor, IP)."""
        policy = self._config.policy(rate_class)
        decision = self._limiter.check(
            counter_key(rate_class, actor_id, source_ip),
            policy.window_ms,
            policy.max_count,
            record_rejected=policy.record_rejected,
        )
        if not decision.allowed:
            logger.info(
                "Rate limit exhausted: class=%s actor=%s retry_after=%s",
                rate_class.value,
                actor_id,
                decision.retry_after_seconds,
            )
        return decision

    def peek(self, rate_class: RateLimitClass, actor_id: str, source_ip: str) -> RateLimitDecision:
        """Report the state of (class, actor, IP) without recording a call."""
        policy = self._config.policy(rate_class)
        return self._limiter.peek(
            counter_key(rate_class, actor_id, source_ip), policy.window_ms, policy.max_count
        )

    def reset(self) -> None:
        """Reset all windows (useful for testing)."""
        self._limiter.reset()
