"""Tests for the Version Store.

Tests cover:
1. Create/add/activate semantics (exactly one active version, contiguous ordinals)
2. Tombstone deletion with a mandatory reason
3. Lookup by key and page scope, catalog ordering by popularity
4. Definition-level active switch and renewal of every stored body
5. Usage statistics and popularity score
6. Compare-and-swap under concurrent activation
7. The SQL repository on SQLite
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import pytest

from promptvault.errors import ValidationError
from promptvault.persistence.db import ensure_schema, make_engine
from promptvault.prompts import (
    ActivationConflict,
    DefinitionNotFound,
    DefinitionSpec,
    DuplicateKey,
    InMemoryPromptRepository,
    PageScope,
    PopularityWeights,
    PromptCategory,
    PromptDefinition,
    PromptType,
    PromptVersionStore,
    SqlPromptRepository,
    VersionNotFound,
    parse_definition_spec,
    validate_deletion_reason,
)
from promptvault.prompts.models import load_popularity_weights
from promptvault.vault.envelope import PlaintextContent
from tests.helpers import OWNER_ID, FakeClock


def make_spec(key: str, **overrides: Any) -> DefinitionSpec:
    fields: dict[str, Any] = {"name": key.replace("_", " ").title(), "key": key}
    fields.update(overrides)
    return DefinitionSpec(**fields)


def body(text: str) -> PlaintextContent:
    return PlaintextContent(text=text)


def active_text(store: PromptVersionStore, definition_id: str) -> str:
    content = store.get_active_content(definition_id).content
    assert isinstance(content, PlaintextContent)
    return content.text


def active_ordinals(definition: PromptDefinition) -> list[int]:
    return [v.ordinal for v in definition.versions if v.is_active]


class TestCreateAndActivate:
    """Scenarios A and B."""

    def test_scenario_a_create_and_activate(self, store: PromptVersionStore) -> None:
        definition = store.create_definition(
            make_spec("punctuation", prompt_type=PromptType.PUNCTUATION), body("X"), author=OWNER_ID
        )
        store.activate_version(definition.definition_id, 1, activated_by=OWNER_ID)

        assert active_text(store, definition.definition_id) == "X"

    def test_scenario_b_new_version_is_inactive_until_activated(
        self, store: PromptVersionStore
    ) -> None:
        definition = store.create_definition(make_spec("punctuation"), body("X"), author=OWNER_ID)
        definition_id = definition.definition_id

        ordinal = store.add_version(definition_id, body("Y"), author=OWNER_ID, changelog="v2")

        assert ordinal == 2
        assert active_text(store, definition_id) == "X"

        store.activate_version(definition_id, 2, activated_by=OWNER_ID)

        assert active_text(store, definition_id) == "Y"
        versions = store.list_for_editing(definition_id)
        assert versions[0].is_active is False
        assert versions[1].is_active is True

    def test_first_version_is_active(self, store: PromptVersionStore) -> None:
        definition = store.create_definition(make_spec("nikud"), body("X"), author=OWNER_ID)

        assert definition.current_version == 1
        assert active_ordinals(definition) == [1]
        assert definition.created_by == OWNER_ID
        assert definition.revision == 1

    def test_ordinals_are_contiguous(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("sources"), body("v1"), author=OWNER_ID
        ).definition_id

        ordinals = [
            store.add_version(definition_id, body(f"v{i}"), author=OWNER_ID) for i in range(2, 6)
        ]

        assert ordinals == [2, 3, 4, 5]
        assert [v.ordinal for v in store.list_for_editing(definition_id)] == [1, 2, 3, 4, 5]

    def test_activation_leaves_exactly_one_active(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("grammar"), body("v1"), author=OWNER_ID
        ).definition_id
        for i in range(2, 5):
            store.add_version(definition_id, body(f"v{i}"), author=OWNER_ID)

        for ordinal in (3, 1, 4, 4, 2):
            committed = store.activate_version(definition_id, ordinal, activated_by=OWNER_ID)
            assert active_ordinals(committed) == [ordinal]
            assert committed.current_version == ordinal

    def test_activate_unknown_ordinal(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("edit"), body("v1"), author=OWNER_ID
        ).definition_id

        with pytest.raises(VersionNotFound) as exc_info:
            store.activate_version(definition_id, 7, activated_by=OWNER_ID)

        assert exc_info.value.code == "VERSION_NOT_FOUND"
        assert active_ordinals(store.get_definition(definition_id)) == [1]

    def test_unknown_definition(self, store: PromptVersionStore) -> None:
        with pytest.raises(DefinitionNotFound):
            store.add_version("missing", body("Y"), author=OWNER_ID)
        with pytest.raises(DefinitionNotFound):
            store.activate_version("missing", 1, activated_by=OWNER_ID)

    def test_duplicate_key_and_name(self, store: PromptVersionStore) -> None:
        store.create_definition(make_spec("format", name="Format"), body("X"), author=OWNER_ID)

        with pytest.raises(DuplicateKey):
            store.create_definition(
                make_spec("format", name="Other name"), body("X"), author=OWNER_ID
            )
        with pytest.raises(DuplicateKey):
            store.create_definition(
                make_spec("other_key", name="Format"), body("X"), author=OWNER_ID
            )

    def test_changelog_too_long(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("truncate"), body("v1"), author=OWNER_ID
        ).definition_id

        with pytest.raises(ValidationError):
            store.add_version(definition_id, body("v2"), author=OWNER_ID, changelog="x" * 501)

        assert len(store.list_for_editing(definition_id)) == 1

    def test_system_instruction_is_kept_per_version(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("analyze"),
            body("analyze"),
            author=OWNER_ID,
            system_instruction=body("be terse"),
        ).definition_id

        active = store.get_active_content(definition_id)

        assert active.system_instruction == body("be terse")
        assert active.ordinal == 1
        assert active.key == "analyze"


class TestDeletion:
    """Tombstones with a mandatory reason."""

    def test_reason_is_required(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("translate"), body("X"), author=OWNER_ID
        ).definition_id

        with pytest.raises(ValidationError) as exc_info:
            store.delete_definition(definition_id, deleted_by=OWNER_ID, reason=" ok ")

        assert exc_info.value.code == "DELETION_REASON_REQUIRED"
        assert store.get_definition(definition_id).is_deleted is False

    def test_deleted_definition_disappears(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("translate"), body("X"), author=OWNER_ID
        ).definition_id

        deleted = store.delete_definition(
            definition_id, deleted_by=OWNER_ID, reason="  superseded by v2 prompt  "
        )

        assert deleted.deleted is not None
        assert deleted.deleted.reason == "superseded by v2 prompt"
        assert deleted.is_active is False
        with pytest.raises(DefinitionNotFound):
            store.get_definition(definition_id)
        with pytest.raises(DefinitionNotFound):
            store.get_by_key("translate")
        assert store.list_definitions() == []
        assert store.get_definition(definition_id, include_deleted=True).is_deleted

    def test_deleted_key_is_not_reused(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("translate"), body("X"), author=OWNER_ID
        ).definition_id
        store.delete_definition(definition_id, deleted_by=OWNER_ID, reason="retired prompt")

        with pytest.raises(DuplicateKey):
            store.create_definition(make_spec("translate"), body("X"), author=OWNER_ID)

    @pytest.mark.parametrize("reason", [None, "", "    ", "ok", "abcd"])
    def test_validate_deletion_reason_rejects_short(self, reason: str | None) -> None:
        with pytest.raises(ValidationError):
            validate_deletion_reason(reason)

    def test_validate_deletion_reason_strips(self) -> None:
        assert validate_deletion_reason("  abcde ") == "abcde"


class TestLookup:
    """Key lookup, page scope and catalog ordering."""

    def test_get_by_key_respects_page_scope(self, store: PromptVersionStore) -> None:
        store.create_definition(
            make_spec("editor_only", page_scope=PageScope.EDITOR), body("X"), author=OWNER_ID
        )
        store.create_definition(
            make_spec("everywhere", page_scope=PageScope.BOTH), body("X"), author=OWNER_ID
        )

        assert store.get_by_key("editor_only").key == "editor_only"
        assert store.get_by_key("editor_only", page_scope=PageScope.EDITOR).key == "editor_only"
        with pytest.raises(DefinitionNotFound):
            store.get_by_key("editor_only", page_scope=PageScope.RESEARCH)
        assert store.get_by_key("everywhere", page_scope=PageScope.RESEARCH).key == "everywhere"

    def test_list_definitions_filters(self, store: PromptVersionStore) -> None:
        store.create_definition(
            make_spec("torah_nikud", prompt_type=PromptType.NIKUD, category=PromptCategory.TORAH),
            body("X"),
            author=OWNER_ID,
        )
        store.create_definition(
            make_spec("general_edit", prompt_type=PromptType.EDIT),
            body("X"),
            author=OWNER_ID,
        )

        nikud = store.list_definitions(prompt_type=PromptType.NIKUD)
        torah = store.list_definitions(category=PromptCategory.TORAH)
        general = store.list_definitions(category=PromptCategory.GENERAL)

        assert [d.key for d in nikud] == ["torah_nikud"]
        assert [d.key for d in torah] == ["torah_nikud"]
        assert [d.key for d in general] == ["general_edit"]

    def test_list_orders_by_popularity_then_key(self, store: PromptVersionStore) -> None:
        ids = {
            key: store.create_definition(make_spec(key), body("X"), author=OWNER_ID).definition_id
            for key in ("alpha", "beta", "gamma")
        }
        store.record_usage(ids["gamma"], response_ms=100, tokens=10, success=True)

        assert [d.key for d in store.list_definitions()] == ["gamma", "alpha", "beta"]

    def test_list_definitions_by_active_flag(self, store: PromptVersionStore) -> None:
        live = store.create_definition(make_spec("live"), body("X"), author=OWNER_ID)
        paused = store.create_definition(make_spec("paused"), body("X"), author=OWNER_ID)
        store.set_active(paused.definition_id, False, changed_by=OWNER_ID)

        assert [d.key for d in store.list_definitions(is_active=True)] == [live.key]
        assert [d.key for d in store.list_definitions(is_active=False)] == [paused.key]
        assert len(store.list_definitions()) == 2


class TestActiveFlagAndRenewal:
    """Definition-level switch and whole-definition content rewrites."""

    def test_set_active_keeps_versions(self, store: PromptVersionStore) -> None:
        definition = store.create_definition(make_spec("translate"), body("X"), author=OWNER_ID)
        definition_id = definition.definition_id

        disabled = store.set_active(definition_id, False, changed_by="owner-2")

        assert disabled.is_active is False
        assert disabled.last_modified_by == "owner-2"
        assert disabled.revision == definition.revision + 1
        assert active_ordinals(disabled) == [1]
        assert store.set_active(definition_id, True, changed_by=OWNER_ID).is_active is True

    def test_set_active_unknown_definition(self, store: PromptVersionStore) -> None:
        with pytest.raises(DefinitionNotFound):
            store.set_active("missing", False, changed_by=OWNER_ID)

    def test_renew_content_rewrites_every_body(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("analyze"), body("v1"), author=OWNER_ID, system_instruction=body("sys")
        ).definition_id
        store.add_version(definition_id, body("v2"), author=OWNER_ID)

        def shout(content: Any) -> PlaintextContent:
            assert isinstance(content, PlaintextContent)
            return body(content.text.upper())

        count = store.renew_content(definition_id, shout, renewed_by="owner-2")

        versions = store.list_for_editing(definition_id)
        assert count == 2
        assert [v.content for v in versions] == [body("V1"), body("V2")]
        assert versions[0].system_instruction == body("SYS")
        assert versions[1].system_instruction is None
        assert active_ordinals(store.get_definition(definition_id)) == [1]
        assert store.get_definition(definition_id).last_modified_by == "owner-2"

    def test_renew_content_failure_commits_nothing(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("analyze"), body("v1"), author=OWNER_ID
        ).definition_id
        before = store.get_definition(definition_id)

        def broken(content: Any) -> Any:
            raise ValidationError("cannot renew")

        with pytest.raises(ValidationError):
            store.renew_content(definition_id, broken, renewed_by=OWNER_ID)

        assert store.get_definition(definition_id) == before


class TestUsageStatistics:
    """Running averages and popularity score."""

    def test_record_usage_updates_averages(
        self, store: PromptVersionStore, clock: FakeClock
    ) -> None:
        definition_id = store.create_definition(
            make_spec("custom_one"), body("X"), author=OWNER_ID
        ).definition_id

        store.record_usage(definition_id, response_ms=100, tokens=10, success=True)
        usage = store.record_usage(definition_id, response_ms=300, tokens=30, success=False)

        assert usage.total_usages == 2
        assert usage.average_response_ms == pytest.approx(200)
        assert usage.average_tokens == pytest.approx(20)
        assert usage.success_rate == pytest.approx(50)
        assert usage.last_used_at is not None
        assert usage.popularity_score == pytest.approx(0.4 * 2 + 0.3 * 50 + 0.3 * (100 - 0.2))

    def test_negative_values_rejected(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("custom_two"), body("X"), author=OWNER_ID
        ).definition_id

        with pytest.raises(ValidationError):
            store.record_usage(definition_id, response_ms=-1, tokens=0, success=True)

    def test_custom_weights(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTVAULT_POPULARITY_WEIGHTS", "1, 0, 0")

        weights = load_popularity_weights()

        assert weights == PopularityWeights(volume=1, success=0, latency=0)


class TestConcurrency:
    """Compare-and-swap keeps exactly one active version."""

    def test_concurrent_activation_keeps_single_active(self, clock: FakeClock) -> None:
        store = PromptVersionStore(
            InMemoryPromptRepository(), clock=clock, weights=PopularityWeights(), retries=50
        )
        definition_id = store.create_definition(
            make_spec("contended"), body("v1"), author=OWNER_ID
        ).definition_id
        for i in range(2, 6):
            store.add_version(definition_id, body(f"v{i}"), author=OWNER_ID)

        violations: list[list[int]] = []
        stop = threading.Event()

        def activate(ordinal: int) -> None:
            try:
                store.activate_version(definition_id, ordinal, activated_by=OWNER_ID)
            except ActivationConflict:
                pass

        def observe() -> None:
            while not stop.is_set():
                active = active_ordinals(store.get_definition(definition_id))
                if len(active) != 1:
                    violations.append(active)

        observer = threading.Thread(target=observe)
        observer.start()
        workers = [threading.Thread(target=activate, args=(i % 5 + 1,)) for i in range(40)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        stop.set()
        observer.join()

        final = store.get_definition(definition_id)
        assert violations == []
        assert len(active_ordinals(final)) == 1
        assert active_ordinals(final) == [final.current_version]

    def test_exhausted_retries_raise_activation_conflict(self, clock: FakeClock) -> None:
        class LosingRepository(InMemoryPromptRepository):
            def __init__(self) -> None:
                super().__init__()
                self.save_calls = 0

            def save(self, definition: PromptDefinition, expected_revision: int) -> bool:
                self.save_calls += 1
                return False

        repository = LosingRepository()
        store = PromptVersionStore(
            repository, clock=clock, weights=PopularityWeights(), retries=2
        )
        definition_id = store.create_definition(
            make_spec("always_lost"), body("v1"), author=OWNER_ID
        ).definition_id

        with pytest.raises(ActivationConflict) as exc_info:
            store.activate_version(definition_id, 1, activated_by=OWNER_ID)

        assert exc_info.value.http_status == 409
        assert repository.save_calls == 3

    def test_stale_revision_is_rejected(self, store: PromptVersionStore) -> None:
        definition_id = store.create_definition(
            make_spec("stale"), body("v1"), author=OWNER_ID
        ).definition_id
        repository = store.repository
        first = repository.get(definition_id)
        second = repository.get(definition_id)
        assert first is not None and second is not None

        assert repository.save(first, expected_revision=first.revision) is True
        assert repository.save(second, expected_revision=second.revision) is False


class TestDefinitionSpec:
    """Caller-supplied metadata validation."""

    def test_defaults(self) -> None:
        spec = parse_definition_spec({"name": "Punctuation", "key": "punctuation"})

        assert spec.prompt_type == PromptType.CUSTOM
        assert spec.category == PromptCategory.GENERAL
        assert spec.page_scope == PageScope.BOTH
        assert spec.is_public is False

    @pytest.mark.parametrize("key", ["Punctuation", "with-dash", "digits1", "", "a" * 65])
    def test_bad_key_rejected(self, key: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_definition_spec({"name": "Name", "key": key})

        assert "key" in exc_info.value.details["fields"]

    def test_unknown_prompt_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_definition_spec({"name": "Name", "key": "name", "prompt_type": "poetry"})


class TestSqlRepository:
    """The same store semantics on SQLite."""

    @pytest.fixture
    def sql_store(self, tmp_path: Path, clock: FakeClock) -> PromptVersionStore:
        engine = make_engine(f"sqlite:///{tmp_path / 'promptvault.db'}")
        ensure_schema(engine)
        return PromptVersionStore(
            SqlPromptRepository(engine), clock=clock, weights=PopularityWeights(), retries=3
        )

    def test_scenarios_a_and_b(self, sql_store: PromptVersionStore) -> None:
        definition_id = sql_store.create_definition(
            make_spec("punctuation"), body("X"), author=OWNER_ID
        ).definition_id
        sql_store.activate_version(definition_id, 1, activated_by=OWNER_ID)
        assert active_text(sql_store, definition_id) == "X"

        assert sql_store.add_version(definition_id, body("Y"), author=OWNER_ID) == 2
        assert active_text(sql_store, definition_id) == "X"

        sql_store.activate_version(definition_id, 2, activated_by=OWNER_ID)
        assert active_text(sql_store, definition_id) == "Y"
        assert active_ordinals(sql_store.get_definition(definition_id)) == [2]

    def test_revision_increments(self, sql_store: PromptVersionStore) -> None:
        definition_id = sql_store.create_definition(
            make_spec("revisions"), body("X"), author=OWNER_ID
        ).definition_id
        sql_store.add_version(definition_id, body("Y"), author=OWNER_ID)
        sql_store.activate_version(definition_id, 2, activated_by=OWNER_ID)

        assert sql_store.get_definition(definition_id).revision == 3

    def test_duplicate_key(self, sql_store: PromptVersionStore) -> None:
        sql_store.create_definition(make_spec("dupe"), body("X"), author=OWNER_ID)

        with pytest.raises(DuplicateKey):
            sql_store.create_definition(
                make_spec("dupe", name="Another"), body("X"), author=OWNER_ID
            )

    def test_stale_revision_is_rejected(self, sql_store: PromptVersionStore) -> None:
        definition_id = sql_store.create_definition(
            make_spec("stale"), body("v1"), author=OWNER_ID
        ).definition_id
        repository = sql_store.repository
        first = repository.get(definition_id)
        second = repository.get(definition_id)
        assert first is not None and second is not None

        assert repository.save(first, expected_revision=first.revision) is True
        assert repository.save(second, expected_revision=second.revision) is False

    def test_list_and_delete(self, sql_store: PromptVersionStore) -> None:
        keep = sql_store.create_definition(make_spec("keep"), body("X"), author=OWNER_ID)
        drop = sql_store.create_definition(make_spec("drop"), body("X"), author=OWNER_ID)
        sql_store.record_usage(keep.definition_id, response_ms=50, tokens=5, success=True)

        sql_store.delete_definition(
            drop.definition_id, deleted_by=OWNER_ID, reason="no longer used"
        )

        assert [d.key for d in sql_store.list_definitions()] == ["keep"]
        assert sql_store.get_by_key("keep").usage.total_usages == 1
        with pytest.raises(DefinitionNotFound):
            sql_store.get_by_key("drop")
