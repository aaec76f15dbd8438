"""Tests for the audit stores.

Tests cover:
1. JSONL and SQL stores behave the same through the AuditTrail
2. Review annotations are stored beside the event, never over it
3. Unreadable JSONL lines are skipped
. Long target ids are stored and found whole
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import Text, inspect

from promptvault.audit import (
    AdminAction,
    AuditEntry,
    AuditFilters,
    AuditStore,
    AuditTrail,
    EventResult,
    JsonlAuditStore,
    ResultStatus,
    ReviewStatus,
    SqlAuditStore,
    TargetType,
    get_audit_store,
)
from promptvault.persistence.db import ensure_schema, make_engine
from tests.helpers import MODERATOR_ID, OWNER_ID, FakeClock


def entry(action: AdminAction, actor_id: str = OWNER_ID, *, failed: bool = False) -> AuditEntry:
    return AuditEntry(
        actor_id=actor_id,
        action=action,
        target_type=TargetType.PROMPT,
        target_id="def-1",
        description=f"{action.value} by {actor_id}",
        result=EventResult(status=ResultStatus.ERROR if failed else ResultStatus.SUCCESS),
    )


@pytest.fixture(params=["jsonl", "sql"])
def backend(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[AuditStore]:
    if request.param == "jsonl":
        yield JsonlAuditStore(tmp_path / "audit" / "events.jsonl")
        return
    engine = make_engine(f"sqlite:///{tmp_path / 'audit.db'}")
    ensure_schema(engine)
    yield SqlAuditStore(engine)
    engine.dispose()


class TestStoreBackends:
    """Behavior shared by every persistent store."""

    def test_append_and_get(self, backend: AuditStore, clock: FakeClock) -> None:
        trail = AuditTrail(backend, clock=clock)
        event = trail.record(entry(AdminAction.PROMPT_CREATED))
        assert event is not None

        assert backend.get(event.event_id) == event
        assert backend.get("missing") is None

    def test_find_filters_and_orders(self, backend: AuditStore, clock: FakeClock) -> None:
        trail = AuditTrail(backend, clock=clock)
        first = trail.record(entry(AdminAction.PROMPT_CREATED))
        clock.advance(seconds=1)
        second = trail.record(entry(AdminAction.UNAUTHORIZED_ACCESS, failed=True))
        clock.advance(seconds=1)
        third = trail.record(entry(AdminAction.PROMPT_ACTIVATED, MODERATOR_ID))
        assert first and second and third

        everything = backend.find(AuditFilters())
        security = backend.find(AuditFilters(is_security_event=True))
        failed = backend.find(AuditFilters(result_status=ResultStatus.ERROR))
        moderator = backend.find(AuditFilters(actor_id=MODERATOR_ID))
        recent = backend.find(AuditFilters(since=clock.advance(seconds=-1)))

        assert [e.event_id for e in everything] == [
            third.event_id,
            second.event_id,
            first.event_id,
        ]
        assert [e.event_id for e in security] == [second.event_id]
        assert [e.event_id for e in failed] == [second.event_id]
        assert [e.event_id for e in moderator] == [third.event_id]
        assert [e.event_id for e in recent] == [third.event_id, second.event_id]

    def test_pagination(self, backend: AuditStore, clock: FakeClock) -> None:
        trail = AuditTrail(backend, clock=clock)
        for _ in range(5):
            trail.record(entry(AdminAction.PROMPT_UPDATED))
            clock.advance(seconds=1)

        first_page = trail.query(limit=3)
        second_page = trail.query(limit=3, cursor=first_page.next_cursor)

        assert len(first_page.items) == 3
        assert first_page.next_cursor is not None
        assert len(second_page.items) == 2
        assert second_page.next_cursor is None
        ids = [e.event_id for e in first_page.items + second_page.items]
        assert len(set(ids)) == 5

    def test_review_annotation(self, backend: AuditStore, clock: FakeClock) -> None:
        trail = AuditTrail(backend, clock=clock)
        event = trail.record(entry(AdminAction.PROMPT_DELETED))
        assert event is not None

        trail.mark_reviewed(
            event.event_id, reviewed_by=OWNER_ID, status=ReviewStatus.FLAGGED, notes="check"
        )

        stored = backend.get(event.event_id)
        assert stored is not None
        assert stored.review is not None
        assert stored.review.status == ReviewStatus.FLAGGED
        assert stored.review.notes == "check"
        assert stored.model_copy(update={"review": None}) == event
        assert backend.annotate_review("missing", stored.review) is None

    def test_long_target_id_is_kept_whole(self, backend: AuditStore, clock: FakeClock) -> None:
        trail = AuditTrail(backend, clock=clock)
        long_id = "p" * 300
        event = trail.record(
            entry(AdminAction.PROMPT_DELETED).model_copy(update={"target_id": long_id})
        )
        assert event is not None

        found = backend.find(AuditFilters(target_id=long_id))

        assert [e.event_id for e in found] == [event.event_id]
        assert found[0].target_id == long_id


class TestSqlSchema:
    """Column types of the audit table."""

    def test_target_columns_are_unbounded(self, tmp_path: Path) -> None:
        engine = make_engine(f"sqlite:///{tmp_path / 'audit.db'}")
        ensure_schema(engine)

        columns = {c["name"]: c["type"] for c in inspect(engine).get_columns("audit_events")}
        engine.dispose()

        assert isinstance(columns["target_id"], Text)


class TestJsonlAuditStore:
    """File-specific behavior."""

    def test_creates_parent_directories(self, tmp_path: Path, clock: FakeClock) -> None:
        path = tmp_path / "nested" / "dir" / "audit.jsonl"
        AuditTrail(JsonlAuditStore(path), clock=clock).record(entry(AdminAction.PROMPT_CREATED))

        assert path.exists()
        assert len(path.read_text(encoding="utf-8").splitlines()) == 1

    def test_review_is_appended_not_rewritten(self, tmp_path: Path, clock: FakeClock) -> None:
        path = tmp_path / "audit.jsonl"
        trail = AuditTrail(JsonlAuditStore(path), clock=clock)
        event = trail.record(entry(AdminAction.PROMPT_DELETED))
        assert event is not None
        original = path.read_text(encoding="utf-8")

        trail.mark_reviewed(event.event_id, reviewed_by=OWNER_ID, status=ReviewStatus.APPROVED)

        content = path.read_text(encoding="utf-8")
        assert content.startswith(original)
        assert len(content.splitlines()) == 2

    def test_skips_unreadable_lines(self, tmp_path: Path, clock: FakeClock) -> None:
        path = tmp_path / "audit.jsonl"
        store = JsonlAuditStore(path)
        trail = AuditTrail(store, clock=clock)
        trail.record(entry(AdminAction.PROMPT_CREATED))
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n\n")
            f.write('{"event_id": "incomplete"}\n')
        trail.record(entry(AdminAction.PROMPT_ACTIVATED))

        assert len(store.find(AuditFilters())) == 2

    def test_default_path_from_env(self, tmp_path: Path) -> None:
        store = JsonlAuditStore()

        assert store.file_path == tmp_path / "audit.jsonl"

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert JsonlAuditStore(tmp_path / "absent.jsonl").find(AuditFilters()) == []


class TestGetAuditStore:
    """Backend selection."""

    def test_defaults_to_jsonl(self) -> None:
        assert isinstance(get_audit_store(), JsonlAuditStore)

    def test_engine_selects_sql(self, tmp_path: Path) -> None:
        engine = make_engine(f"sqlite:///{tmp_path / 'audit.db'}")

        assert isinstance(get_audit_store(engine), SqlAuditStore)
