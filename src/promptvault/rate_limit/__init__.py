"""PromptVault rate limiting module.

Provides sliding-window rate limiting per operation class, actor and source IP.
"""

from promptvault.rate_limit.limiter import (
    CounterStore,
    InMemoryCounterStore,
    RateLimitDecision,
    SlidingWindowLimiter,
)
from promptvault.rate_limit.policies import (
    RateLimitClass,
    RateLimitConfig,
    RateLimitConfigError,
    UsageCounter,
    WindowPolicy,
    load_rate_limit_config,
)

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimitClass",
    "RateLimitConfig",
    "RateLimitConfigError",
    "RateLimitDecision",
    "SlidingWindowLimiter",
    "UsageCounter",
    "WindowPolicy",
    "load_rate_limit_config",
]
