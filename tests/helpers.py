"""Shared constants and helpers for PromptVault tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from promptvault.access.step_up import StepUpRegistry, totp

MASTER_SECRET = "test-master-secret-0123456789abcdef"
ROTATION_SECRET = "test-rotation-secret-0123456789abcdef"
SESSION_SECRET = "test-session-secret-0123456789abcdef"

OWNER_ID = "owner-1"
MODERATOR_ID = "moderator-1"
STANDARD_ID = "standard-1"
PREMIUM_ID = "premium-1"
INACTIVE_ID = "inactive-1"

ADMIN_IP = "127.0.0.1"
OUTSIDE_IP = "203.0.113.9"

START_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def enroll_step_up(registry: StepUpRegistry, actor_id: str, clock: FakeClock) -> str:
    """Enroll and confirm an actor, then move to the next TOTP step.

    Returns the base32 secret. The confirming step is consumed, so the clock
    is advanced one period to make a fresh code available.
    """
    start = registry.begin_enrollment(actor_id)
    assert registry.confirm_enrollment(actor_id, totp(start.secret, clock().timestamp()))
    clock.advance(seconds=30)
    return start.secret


def current_code(secret: str, clock: FakeClock) -> str:
    return totp(secret, clock().timestamp())
