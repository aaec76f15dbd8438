"""Prompt definition repositories.

Each definition is stored as a single document with a ``revision`` token. A
save succeeds only if the stored revision still equals the one the writer
read, so concurrent writers cannot interleave partial updates.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from promptvault.prompts.errors import DuplicateKey
from promptvault.prompts.models import PromptDefinition

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@runtime_checkable
class PromptRepository(Protocol):
    """Storage for prompt definition documents."""

    def get(self, definition_id: str) -> PromptDefinition | None:
        """Return a private copy of the stored document."""
        ...

    def get_by_key(self, key: str) -> PromptDefinition | None:
        ...

    def insert(self, definition: PromptDefinition) -> None:
        """Store a new document.

        Raises:
            DuplicateKey: If the id, key or name is taken.
        """
        ...

    def save(self, definition: PromptDefinition, expected_revision: int) -> bool:
        """Replace the document if its stored revision equals expected_revision.

        On success the document's revision becomes expected_revision + 1.

        Returns:
            True if the document was replaced, False on a revision mismatch.
        """
        ...

    def list(self, *, include_deleted: bool = False) -> list[PromptDefinition]:
        ...


class InMemoryPromptRepository:
    """Process-local repository.

    Each definition has its own lock, held only for the compare-and-swap.
    Readers always get deep copies, so they never observe a document while it
    is being replaced.
    """

    def __init__(self) -> None:
        self._documents: dict[str, PromptDefinition] = {}
        self._key_index: dict[str, str] = {}
        self._name_index: dict[str, str] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def get(self, definition_id: str) -> PromptDefinition | None:
        document = self._documents.get(definition_id)
        return document.model_copy(deep=True) if document is not None else None

    def get_by_key(self, key: str) -> PromptDefinition | None:
        definition_id = self._key_index.get(key)
        return self.get(definition_id) if definition_id is not None else None

    def insert(self, definition: PromptDefinition) -> None:
        with self._registry_lock:
            if definition.definition_id in self._documents:
                raise DuplicateKey("Definition id already exists")
            if definition.key in self._key_index:
                raise DuplicateKey(
                    f"A prompt with key '{definition.key}' already exists",
                    details={"key": definition.key},
                )
            if definition.name in self._name_index:
                raise DuplicateKey(
                    f"A prompt named '{definition.name}' already exists",
                    details={"name": definition.name},
                )
            self._locks[definition.definition_id] = threading.Lock()
            self._documents[definition.definition_id] = definition.model_copy(deep=True)
            self._key_index[definition.key] = definition.definition_id
            self._name_index[definition.name] = definition.definition_id

    def save(self, definition: PromptDefinition, expected_revision: int) -> bool:
        lock = self._locks.get(definition.definition_id)
        if lock is None:
            return False
        with lock:
            stored = self._documents.get(definition.definition_id)
            if stored is None or stored.revision != expected_revision:
                return False
            replacement = definition.model_copy(deep=True)
            replacement.revision = expected_revision + 1
            self._documents[definition.definition_id] = replacement
        definition.revision = expected_revision + 1
        return True

    def list(self, *, include_deleted: bool = False) -> list[PromptDefinition]:
        documents = list(self._documents.values())
        return [
            d.model_copy(deep=True) for d in documents if include_deleted or not d.is_deleted
        ]


class SqlPromptRepository:
    """Repository on SQLAlchemy Core (PostgreSQL or SQLite).

    The compare-and-swap is a single ``UPDATE ... WHERE revision = :expected``.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @staticmethod
    def _load(document: str) -> PromptDefinition:
        return PromptDefinition.model_validate_json(document)

    def get(self, definition_id: str) -> PromptDefinition | None:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT document FROM prompt_definitions WHERE definition_id = :id"),
                {"id": definition_id},
            ).fetchone()
        return self._load(row.document) if row is not None else None

    def get_by_key(self, key: str) -> PromptDefinition | None:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT document FROM prompt_definitions WHERE prompt_key = :key"),
                {"key": key},
            ).fetchone()
        return self._load(row.document) if row is not None else None

    def insert(self, definition: PromptDefinition) -> None:
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    text(
                        """
                        INSERT INTO prompt_definitions (
                            definition_id, prompt_key, name, revision,
                            popularity_score, is_deleted, document
                        ) VALUES (
                            :definition_id, :prompt_key, :name, :revision,
                            :popularity_score, :is_deleted, :document
                        )
                        """
                    ),
                    {
                        "definition_id": definition.definition_id,
                        "prompt_key": definition.key,
                        "name": definition.name,
                        "revision": definition.revision,
                        "popularity_score": definition.usage.popularity_score,
                        "is_deleted": int(definition.is_deleted),
                        "document": definition.model_dump_json(),
                    },
                )
        except IntegrityError as e:
            raise DuplicateKey(
                "A prompt with this key or name already exists",
                details={"key": definition.key, "name": definition.name},
            ) from e

    def save(self, definition: PromptDefinition, expected_revision: int) -> bool:
        new_revision = expected_revision + 1
        candidate = definition.model_copy(update={"revision": new_revision})
        with self._engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE prompt_definitions
                    SET document = :document,
                        revision = :new_revision,
                        popularity_score = :popularity_score,
                        is_deleted = :is_deleted
                    WHERE definition_id = :definition_id AND revision = :expected_revision
                    """
                ),
                {
                    "document": candidate.model_dump_json(),
                    "new_revision": new_revision,
                    "popularity_score": candidate.usage.popularity_score,
                    "is_deleted": int(candidate.is_deleted),
                    "definition_id": definition.definition_id,
                    "expected_revision": expected_revision,
                },
            )
        if result.rowcount != 1:
            return False
        definition.revision = new_revision
        return True

    def list(self, *, include_deleted: bool = False) -> list[PromptDefinition]:
        query = "SELECT document FROM prompt_definitions"
        if not include_deleted:
            query += " WHERE is_deleted = 0"
        query += " ORDER BY popularity_score DESC, prompt_key ASC"
        with self._engine.connect() as conn:
            rows = conn.execute(text(query)).fetchall()
        return [self._load(row.document) for row in rows]
