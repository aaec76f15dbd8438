"""Time helpers shared across PromptVault components.

Components take an injectable ``Clock`` so that time-dependent behavior
(envelope staleness, session freshness, rate windows, TOTP steps) is testable.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_iso_z(value: datetime) -> str:
    """Format an aware datetime as ISO-8601 with a ``Z`` suffix.

    Microseconds are always present so that formatted values sort lexically.
    """
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a ``Z`` suffix.

    Naive timestamps are assumed to be UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp.
    """
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    return int(value.timestamp() * 1000)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
