"""Audit Trail for PromptVault administrative actions.

Records one event per attempt, successful or failed, and answers the
operational queries used by dashboards and reviewers.

Design requirements:
- Severity and flags are derived from the action, never taken from the caller
- Recording never aborts the triggering operation; store failures are logged
  and counted
- Events are immutable except for the review annotation
- Aggregations are for dashboards only and never feed access decisions
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta

from promptvault.audit.classification import classify
from promptvault.audit.events import (
    AdminAction,
    AdminAuditEvent,
    AuditEntry,
    ResultStatus,
    ReviewAnnotation,
    ReviewStatus,
)
from promptvault.audit.query import (
    DEFAULT_PAGE_LIMIT,
    AuditEventsPage,
    AuditFilters,
    build_page,
    decode_cursor,
    validate_limit,
)
from promptvault.audit.store import AuditStore
from promptvault.clock import Clock, as_utc, parse_iso, to_iso_z, utc_now
from promptvault.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_WINDOW_HOURS = 24 * 366
MAX_TREND_DAYS = 366


class AuditEventNotFound(NotFoundError):
    default_code = "AUDIT_EVENT_NOT_FOUND"


@dataclass(frozen=True, slots=True)
class ActorStats:
    """Per-actor activity summary.

    Attributes:
        actor_id: Actor the counts belong to.
        total: Events attributed to the actor.
        success: Events with result status success.
        failed: Events with result status error.
        security_events: Events flagged as security events.
        success_rate: success / total as a percentage, two decimals.
        last_activity: occurred_at of the newest event.
    """

    actor_id: str
    total: int
    success: int
    failed: int
    security_events: int
    success_rate: float
    last_activity: str | None


@dataclass(frozen=True, slots=True)
class ActionTrend:
    day: str
    action: str
    count: int


def validate_hours(hours: int) -> int:
    if hours < 1 or hours > MAX_WINDOW_HOURS:
        raise ValidationError(
            f"hours must be between 1 and {MAX_WINDOW_HOURS}",
            details={"provided": hours},
        )
    return hours


class AuditTrail:
    """Records and queries administrative audit events."""

    def __init__(
        self,
        store: AuditStore,
        *,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._failed_writes = 0
        self._counter_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    @property
    def store(self) -> AuditStore:
        return self._store

    @property
    def failed_writes(self) -> int:
        """Number of events lost to store failures since startup."""
        with self._counter_lock:
            return self._failed_writes

    def build_event(self, entry: AuditEntry) -> AdminAuditEvent:
        """Turn a caller entry into a stored event with derived classification."""
        classification = classify(entry.action)
        return AdminAuditEvent(
            event_id=self._id_factory(),
            occurred_at=to_iso_z(self._clock()),
            actor_id=entry.actor_id,
            actor_role=entry.actor_role,
            action=entry.action,
            target_type=entry.target_type,
            target_id=entry.target_id,
            target_name=entry.target_name,
            description=entry.description,
            changes=entry.changes,
            request=entry.request,
            result=entry.result,
            severity=classification.severity,
            flags=classification.flags,
            metadata=entry.metadata,
        )

    def record(self, entry: AuditEntry) -> AdminAuditEvent | None:
        """Append an event for the entry.

        Returns:
            The stored event, or None if the store failed. A failure is logged
            and counted but never raised to the caller.
        """
        try:
            event = self.build_event(entry)
            self._store.append(event)
        except Exception:
            with self._counter_lock:
                self._failed_writes += 1
            logger.exception(
                "Audit write failed: action=%s actor=%s",
                entry.action.value,
                entry.actor_id,
                extra={"request_id": entry.request.request_id},
            )
            return None

        if event.flags.is_security_event:
            logger.info(
                "Security event recorded: action=%s actor=%s severity=%s",
                event.action.value,
                event.actor_id,
                event.severity.value,
                extra={"request_id": event.request.request_id},
            )
        return event

    def record_deferred(self, entry: AuditEntry) -> Future[AdminAuditEvent | None]:
        """Record on a background worker; for read paths only."""
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit")
            executor = self._executor
        return executor.submit(self.record, entry)

    def close(self) -> None:
        """Wait for deferred writes and stop the background worker."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def query(
        self,
        filters: AuditFilters | None = None,
        *,
        limit: int = DEFAULT_PAGE_LIMIT,
        cursor: str | None = None,
    ) -> AuditEventsPage:
        """Return one page of events, newest first.

        Raises:
            ValidationError: If limit or cursor is invalid.
        """
        limit = validate_limit(limit)
        after = decode_cursor(cursor) if cursor else None
        rows = self._store.find(filters or AuditFilters(), after=after, limit=limit + 1)
        return build_page(rows, limit)

    def _since(self, hours: int) -> datetime:
        return self._clock() - timedelta(hours=validate_hours(hours))

    def security_events(self, hours: int = 24) -> list[AdminAuditEvent]:
        """Security-flagged events in the trailing window, newest first."""
        return self._store.find(AuditFilters(is_security_event=True, since=self._since(hours)))

    def failed_events(self, hours: int = 24) -> list[AdminAuditEvent]:
        """Events whose result status is error in the trailing window, newest first."""
        return self._store.find(
            AuditFilters(result_status=ResultStatus.ERROR, since=self._since(hours))
        )

    def actions_by_type(self, action: AdminAction, limit: int = 100) -> list[AdminAuditEvent]:
        return self._store.find(AuditFilters(action=action), limit=validate_limit(limit))

    def stats_by_actor(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ActorStats]:
        """Group events in [start, end] by actor, most active first."""
        start = as_utc(start) if start is not None else None
        end = as_utc(end) if end is not None else None
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end")

        events = self._store.find(AuditFilters(since=start, until=end))
        grouped: dict[str, list[AdminAuditEvent]] = {}
        for event in events:
            grouped.setdefault(event.actor_id, []).append(event)

        stats: list[ActorStats] = []
        for actor_id, actor_events in grouped.items():
            total = len(actor_events)
            success = sum(1 for ev in actor_events if ev.result.status == ResultStatus.SUCCESS)
            failed = sum(1 for ev in actor_events if ev.result.status == ResultStatus.ERROR)
            security = sum(1 for ev in actor_events if ev.flags.is_security_event)
            stats.append(
                ActorStats(
                    actor_id=actor_id,
                    total=total,
                    success=success,
                    failed=failed,
                    security_events=security,
                    success_rate=round(success / total * 100, 2) if total else 0.0,
                    last_activity=max(ev.occurred_at for ev in actor_events),
                )
            )
        stats.sort(key=lambda s: (-s.total, s.actor_id))
        return stats

    def action_trends(self, days: int = 7) -> list[ActionTrend]:
        """Daily counts per action over the trailing window, oldest day first."""
        if days < 1 or days > MAX_TREND_DAYS:
            raise ValidationError(
                f"days must be between 1 and {MAX_TREND_DAYS}", details={"provided": days}
            )
        since = self._clock() - timedelta(days=days)
        counts: Counter[tuple[str, str]] = Counter()
        for event in self._store.find(AuditFilters(since=since)):
            day = parse_iso(event.occurred_at).date().isoformat()
            counts[(day, event.action.value)] += 1
        return [
            ActionTrend(day=day, action=action, count=count)
            for (day, action), count in sorted(counts.items())
        ]

    def mark_reviewed(
        self,
        event_id: str,
        *,
        reviewed_by: str,
        status: ReviewStatus,
        notes: str | None = None,
    ) -> AdminAuditEvent:
        """Attach a review annotation to an event.

        Raises:
            AuditEventNotFound: If no such event exists.
        """
        review = ReviewAnnotation(
            reviewed_by=reviewed_by,
            reviewed_at=to_iso_z(self._clock()),
            status=status,
            notes=notes,
        )
        updated = self._store.annotate_review(event_id, review)
        if updated is None:
            raise AuditEventNotFound(
                "Audit event not found", details={"event_id": event_id}
            )
        logger.info("Audit event %s reviewed by %s: %s", event_id, reviewed_by, status.value)
        return updated
