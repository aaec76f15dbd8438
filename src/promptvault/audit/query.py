"""Audit event filtering and cursor pagination for PromptVault.

Design requirements:
- Stable pagination: deterministic ordering by occurred_at DESC, event_id DESC
- Cursor-based: base64url-encoded JSON with last occurred_at + last event_id
- Fail closed: an invalid cursor or limit is a ValidationError, not an uncaught exception
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from promptvault.audit.events import (
    AdminAction,
    AdminAuditEvent,
    ResultStatus,
    Severity,
    TargetType,
)
from promptvault.clock import as_utc, parse_iso
from promptvault.errors import ValidationError

logger = logging.getLogger(__name__)

MIN_PAGE_LIMIT = 1
MAX_PAGE_LIMIT = 200
DEFAULT_PAGE_LIMIT = 50


@dataclass(frozen=True, slots=True)
class AuditFilters:
    """Optional filters for audit queries. Unset fields match everything."""

    actor_id: str | None = None
    action: AdminAction | None = None
    target_type: TargetType | None = None
    target_id: str | None = None
    severity: Severity | None = None
    result_status: ResultStatus | None = None
    is_security_event: bool | None = None
    requires_review: bool | None = None
    since: datetime | None = None
    until: datetime | None = None

    def __post_init__(self) -> None:
        if self.since is not None:
            object.__setattr__(self, "since", as_utc(self.since))
        if self.until is not None:
            object.__setattr__(self, "until", as_utc(self.until))

    def matches(self, event: AdminAuditEvent) -> bool:
        if self.actor_id is not None and event.actor_id != self.actor_id:
            return False
        if self.action is not None and event.action != self.action:
            return False
        if self.target_type is not None and event.target_type != self.target_type:
            return False
        if self.target_id is not None and event.target_id != self.target_id:
            return False
        if self.severity is not None and event.severity != self.severity:
            return False
        if self.result_status is not None and event.result.status != self.result_status:
            return False
        if (
            self.is_security_event is not None
            and event.flags.is_security_event != self.is_security_event
        ):
            return False
        if self.requires_review is not None and event.flags.requires_review != self.requires_review:
            return False
        if self.since is not None or self.until is not None:
            occurred = parse_iso(event.occurred_at)
            if self.since is not None and occurred < self.since:
                return False
            if self.until is not None and occurred > self.until:
                return False
        return True


@dataclass(frozen=True, slots=True)
class PageCursor:
    occurred_at: str
    event_id: str


@dataclass(frozen=True, slots=True)
class AuditEventsPage:
    """Paginated audit events result."""

    items: list[AdminAuditEvent]
    next_cursor: str | None


def encode_cursor(occurred_at: str, event_id: str) -> str:
    """Encode pagination cursor as base64url JSON."""
    payload = {"occurred_at": occurred_at, "event_id": event_id}
    json_bytes = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(json_bytes).decode("ascii")


def decode_cursor(cursor: str) -> PageCursor:
    """Decode pagination cursor from base64url JSON.

    Raises:
        ValidationError: If cursor is invalid.
    """
    try:
        json_bytes = base64.urlsafe_b64decode(cursor.encode("ascii"))
        payload = json.loads(json_bytes.decode("utf-8"))
        occurred_at = payload["occurred_at"]
        event_id = payload["event_id"]
        if not isinstance(occurred_at, str) or not isinstance(event_id, str):
            raise ValueError("Invalid cursor field types")
        return PageCursor(occurred_at=occurred_at, event_id=event_id)
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError) as e:
        logger.warning("Invalid audit cursor: %s", e)
        raise ValidationError(
            "Invalid pagination cursor",
            code="INVALID_CURSOR",
            details={"reason": "cursor_parse_failed"},
        ) from e


def validate_limit(limit: int) -> int:
    """Validate limit parameter (1-200).

    Raises:
        ValidationError: If limit is out of range.
    """
    if limit < MIN_PAGE_LIMIT or limit > MAX_PAGE_LIMIT:
        raise ValidationError(
            f"Limit must be between {MIN_PAGE_LIMIT} and {MAX_PAGE_LIMIT}",
            code="INVALID_LIMIT",
            details={"provided": limit, "min": MIN_PAGE_LIMIT, "max": MAX_PAGE_LIMIT},
        )
    return limit


def sort_key(event: AdminAuditEvent) -> tuple[str, str]:
    return (event.occurred_at, event.event_id)


def filter_events(
    events: Iterable[AdminAuditEvent],
    filters: AuditFilters,
    *,
    after: PageCursor | None = None,
    limit: int | None = None,
) -> list[AdminAuditEvent]:
    """Filter, order newest first, and cut after the cursor.

    Used by stores that hold events in process or read them from a file.
    """
    matched = [ev for ev in events if filters.matches(ev)]
    matched.sort(key=sort_key, reverse=True)
    if after is not None:
        boundary = (after.occurred_at, after.event_id)
        matched = [ev for ev in matched if sort_key(ev) < boundary]
    if limit is not None:
        matched = matched[:limit]
    return matched


def build_page(rows: list[AdminAuditEvent], limit: int) -> AuditEventsPage:
    """Build a page from up to ``limit + 1`` rows."""
    items = rows[:limit]
    next_cursor: str | None = None
    if len(rows) > limit and items:
        last_item = items[-1]
        next_cursor = encode_cursor(last_item.occurred_at, last_item.event_id)
    return AuditEventsPage(items=items, next_cursor=next_cursor)
