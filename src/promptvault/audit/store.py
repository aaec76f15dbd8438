"""Audit event stores for PromptVault.

All stores implement the AuditStore protocol.

Design requirements:
- Append-only: events are never rewritten; the review annotation is the only
  later change and is stored beside the event, not over it
- Fail closed: any IO or database failure raises AuditStoreError
- Deterministic: consistent JSON serialization (sorted keys, no extra whitespace)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from promptvault.audit.events import AdminAuditEvent, ReviewAnnotation
from promptvault.audit.query import AuditFilters, PageCursor, filter_events
from promptvault.clock import to_iso_z

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "PROMPTVAULT_AUDIT_LOG_PATH"
DEFAULT_AUDIT_LOG_PATH = "./var/audit/admin_audit_events.jsonl"


class AuditStoreError(Exception):
    """Raised when an audit store cannot read or write."""


def _dumps(record: dict[str, Any]) -> str:
    try:
        return json.dumps(record, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise AuditStoreError(f"Failed to serialize audit record: {e}") from e


@runtime_checkable
class AuditStore(Protocol):
    """Protocol for audit event stores."""

    def append(self, event: AdminAuditEvent) -> None:
        """Persist a new event.

        Raises:
            AuditStoreError: If the write fails for any reason
        """
        ...

    def get(self, event_id: str) -> AdminAuditEvent | None:
        """Return the event with its latest review annotation, if any."""
        ...

    def annotate_review(self, event_id: str, review: ReviewAnnotation) -> AdminAuditEvent | None:
        """Attach a review annotation; returns None if the event does not exist."""
        ...

    def find(
        self,
        filters: AuditFilters,
        *,
        after: PageCursor | None = None,
        limit: int | None = None,
    ) -> list[AdminAuditEvent]:
        """Return matching events ordered by occurred_at DESC, event_id DESC."""
        ...


class InMemoryAuditStore:
    """In-memory audit store for tests and single-process development.

    Thread-safe for concurrent usage.
    """

    def __init__(self) -> None:
        self._events: dict[str, AdminAuditEvent] = {}
        self._lock = threading.Lock()

    def append(self, event: AdminAuditEvent) -> None:
        # Round-trip through JSON so stored events are always serializable.
        restored = AdminAuditEvent.from_record(json.loads(_dumps(event.to_record())))
        with self._lock:
            if restored.event_id in self._events:
                raise AuditStoreError(f"Duplicate audit event id {restored.event_id}")
            self._events[restored.event_id] = restored

    def get(self, event_id: str) -> AdminAuditEvent | None:
        with self._lock:
            return self._events.get(event_id)

    def annotate_review(self, event_id: str, review: ReviewAnnotation) -> AdminAuditEvent | None:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                return None
            updated = event.model_copy(update={"review": review})
            self._events[event_id] = updated
            return updated

    def find(
        self,
        filters: AuditFilters,
        *,
        after: PageCursor | None = None,
        limit: int | None = None,
    ) -> list[AdminAuditEvent]:
        with self._lock:
            snapshot = list(self._events.values())
        return filter_events(snapshot, filters, after=after, limit=limit)

    @property
    def events(self) -> list[AdminAuditEvent]:
        """Return all stored events in insertion order."""
        with self._lock:
            return list(self._events.values())

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class JsonlAuditStore:
    """Append-only JSONL file store.

    Configuration:
    - File path from env PROMPTVAULT_AUDIT_LOG_PATH
      (default: ./var/audit/admin_audit_events.jsonl)
    - Creates parent directories if missing
    - Event lines hold the event record; review lines hold
      {"review_of": <event_id>, "review": {...}} and are merged on read
    """

    def __init__(self, file_path: str | Path | None = None) -> None:
        if file_path is not None:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path(os.environ.get(AUDIT_LOG_PATH_ENV) or DEFAULT_AUDIT_LOG_PATH)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def _append_line(self, record: dict[str, Any]) -> None:
        line = _dumps(record) + "\n"
        parent = self._file_path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AuditStoreError(f"Failed to create audit log directory {parent}: {e}") from e
        try:
            with self._lock, open(self._file_path, mode="a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise AuditStoreError(f"Failed to write audit record to {self._file_path}: {e}") from e

    def _load(self) -> dict[str, AdminAuditEvent]:
        if not self._file_path.exists():
            return {}
        events: dict[str, AdminAuditEvent] = {}
        reviews: dict[str, ReviewAnnotation] = {}
        try:
            with open(self._file_path, encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                        if "review_of" in record:
                            reviews[record["review_of"]] = ReviewAnnotation.model_validate(
                                record["review"]
                            )
                        else:
                            event = AdminAuditEvent.from_record(record)
                            events[event.event_id] = event
                    except (KeyError, ValueError):
                        logger.warning(
                            "Skipping unreadable audit line %d in %s", line_no, self._file_path
                        )
        except OSError as e:
            raise AuditStoreError(f"Failed to read audit log {self._file_path}: {e}") from e

        for event_id, review in reviews.items():
            if event_id in events:
                events[event_id] = events[event_id].model_copy(update={"review": review})
        return events

    def append(self, event: AdminAuditEvent) -> None:
        self._append_line(event.to_record())

    def get(self, event_id: str) -> AdminAuditEvent | None:
        return self._load().get(event_id)

    def annotate_review(self, event_id: str, review: ReviewAnnotation) -> AdminAuditEvent | None:
        event = self.get(event_id)
        if event is None:
            return None
        self._append_line({"review_of": event_id, "review": review.model_dump(mode="json")})
        return event.model_copy(update={"review": review})

    def find(
        self,
        filters: AuditFilters,
        *,
        after: PageCursor | None = None,
        limit: int | None = None,
    ) -> list[AdminAuditEvent]:
        return filter_events(self._load().values(), filters, after=after, limit=limit)


class SqlAuditStore:
    """Audit store on SQLAlchemy Core (PostgreSQL or SQLite).

    Filter columns are denormalized from the event document so queries use
    the audit indexes instead of scanning JSON.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def append(self, event: AdminAuditEvent) -> None:
        record = event.to_record()
        record.pop("review", None)
        params = {
            "event_id": event.event_id,
            "occurred_at": event.occurred_at,
            "actor_id": event.actor_id,
            "action": event.action.value,
            "target_type": event.target_type.value,
            "target_id": event.target_id,
            "severity": event.severity.value,
            "result_status": event.result.status.value,
            "is_security_event": int(event.flags.is_security_event),
            "requires_review": int(event.flags.requires_review),
            "document": _dumps(record),
        }
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    text(
                        """
                        INSERT INTO audit_events (
                            event_id, occurred_at, actor_id, action, target_type,
                            target_id, severity, result_status, is_security_event,
                            requires_review, document
                        ) VALUES (
                            :event_id, :occurred_at, :actor_id, :action, :target_type,
                            :target_id, :severity, :result_status, :is_security_event,
                            :requires_review, :document
                        )
                        """
                    ),
                    params,
                )
        except SQLAlchemyError as e:
            raise AuditStoreError(f"Failed to insert audit event: {type(e).__name__}") from e

    @staticmethod
    def _row_to_event(row: Any) -> AdminAuditEvent:
        record = json.loads(row.document)
        if row.review:
            record["review"] = json.loads(row.review)
        return AdminAuditEvent.from_record(record)

    def get(self, event_id: str) -> AdminAuditEvent | None:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text("SELECT document, review FROM audit_events WHERE event_id = :event_id"),
                    {"event_id": event_id},
                ).fetchone()
        except SQLAlchemyError as e:
            raise AuditStoreError(f"Failed to read audit event: {type(e).__name__}") from e
        return self._row_to_event(row) if row is not None else None

    def annotate_review(self, event_id: str, review: ReviewAnnotation) -> AdminAuditEvent | None:
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text("UPDATE audit_events SET review = :review WHERE event_id = :event_id"),
                    {"review": _dumps(review.model_dump(mode="json")), "event_id": event_id},
                )
        except SQLAlchemyError as e:
            raise AuditStoreError(f"Failed to annotate audit event: {type(e).__name__}") from e
        if result.rowcount == 0:
            return None
        return self.get(event_id)

    def find(
        self,
        filters: AuditFilters,
        *,
        after: PageCursor | None = None,
        limit: int | None = None,
    ) -> list[AdminAuditEvent]:
        where_clauses: list[str] = []
        params: dict[str, Any] = {}

        simple = {
            "actor_id": filters.actor_id,
            "action": filters.action.value if filters.action else None,
            "target_type": filters.target_type.value if filters.target_type else None,
            "target_id": filters.target_id,
            "severity": filters.severity.value if filters.severity else None,
            "result_status": filters.result_status.value if filters.result_status else None,
        }
        for column, value in simple.items():
            if value is not None:
                where_clauses.append(f"{column} = :{column}")
                params[column] = value

        if filters.is_security_event is not None:
            where_clauses.append("is_security_event = :is_security_event")
            params["is_security_event"] = int(filters.is_security_event)
        if filters.requires_review is not None:
            where_clauses.append("requires_review = :requires_review")
            params["requires_review"] = int(filters.requires_review)

        # occurred_at is stored as fixed-precision ISO text, so text comparison orders by time.
        if filters.since is not None:
            where_clauses.append("occurred_at >= :since")
            params["since"] = to_iso_z(filters.since)
        if filters.until is not None:
            where_clauses.append("occurred_at <= :until")
            params["until"] = to_iso_z(filters.until)

        if after is not None:
            where_clauses.append(
                "(occurred_at < :cursor_at OR (occurred_at = :cursor_at AND event_id < :cursor_id))"
            )
            params["cursor_at"] = after.occurred_at
            params["cursor_id"] = after.event_id

        where_sql = " AND ".join(where_clauses) if where_clauses else "1 = 1"
        limit_sql = ""
        if limit is not None:
            limit_sql = "LIMIT :limit"
            params["limit"] = limit

        query = text(
            f"""
            SELECT document, review
            FROM audit_events
            WHERE {where_sql}
            ORDER BY occurred_at DESC, event_id DESC
            {limit_sql}
            """
        )
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(query, params).fetchall()
        except SQLAlchemyError as e:
            logger.exception("Audit query backend error: %s", type(e).__name__)
            raise AuditStoreError(f"Audit store unavailable: {type(e).__name__}") from e
        return [self._row_to_event(row) for row in rows]


def get_audit_store(engine: Engine | None = None) -> AuditStore:
    """Return the configured audit store.

    Uses the SQL store when an engine is given, otherwise the JSONL file store.
    """
    if engine is not None:
        return SqlAuditStore(engine)
    return JsonlAuditStore()
