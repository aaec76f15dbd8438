"""Version Store for prompt definitions.

Every mutation reads the current document, applies the change to a private
copy, re-validates the invariants and commits with one compare-and-swap on the
revision token. A lost race is retried a bounded number of times.

Design requirements:
- At most one active version per definition, at every observable instant
- Ordinals are assigned as max(existing) + 1 and never reused
- Version bodies are opaque; sealing is the caller's decision
- Deletion leaves a tombstone with a mandatory reason
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from pydantic import ValidationError as PydanticValidationError

from promptvault.clock import Clock, to_iso_z, utc_now
from promptvault.errors import ConfigurationError, ValidationError
from promptvault.prompts.errors import (
    ActivationConflict,
    ConcurrentUpdateError,
    DefinitionNotFound,
    VersionNotFound,
)
from promptvault.prompts.models import (
    MAX_CHANGELOG_LENGTH,
    DefinitionSpec,
    PageScope,
    PopularityWeights,
    PromptCategory,
    PromptDefinition,
    PromptType,
    PromptVersion,
    Tombstone,
    UsageStats,
    load_popularity_weights,
)
from promptvault.prompts.repository import PromptRepository
from promptvault.vault.envelope import PlaintextContent, SealedContent

logger = logging.getLogger(__name__)

ENV_ACTIVATION_RETRIES: Final[str] = "PROMPTVAULT_ACTIVATION_RETRIES"
DEFAULT_ACTIVATION_RETRIES: Final[int] = 3
MIN_DELETION_REASON_LENGTH: Final[int] = 5

Content = SealedContent | PlaintextContent


@dataclass(frozen=True, slots=True)
class ActiveContent:
    """The active version body of a definition, still in stored form."""

    definition_id: str
    key: str
    ordinal: int
    content: Content
    system_instruction: Content | None


def load_activation_retries() -> int:
    raw = os.environ.get(ENV_ACTIVATION_RETRIES, "").strip()
    if not raw:
        return DEFAULT_ACTIVATION_RETRIES
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{ENV_ACTIVATION_RETRIES} must be a non-negative integer, got '{raw}'"
        ) from e
    if value < 0:
        raise ConfigurationError(
            f"{ENV_ACTIVATION_RETRIES} must be a non-negative integer, got {value}"
        )
    return value


def validate_deletion_reason(reason: str | None) -> str:
    """Return the stripped reason or raise if it is too short."""
    stripped = (reason or "").strip()
    if len(stripped) < MIN_DELETION_REASON_LENGTH:
        raise ValidationError(
            f"Deletion reason must be at least {MIN_DELETION_REASON_LENGTH} characters",
            code="DELETION_REASON_REQUIRED",
            details={"min_length": MIN_DELETION_REASON_LENGTH},
        )
    return stripped


def _validate_changelog(changelog: str) -> str:
    if len(changelog) > MAX_CHANGELOG_LENGTH:
        raise ValidationError(
            f"Changelog must be at most {MAX_CHANGELOG_LENGTH} characters",
            details={"max_length": MAX_CHANGELOG_LENGTH},
        )
    return changelog


class PromptVersionStore:
    """Versioned storage for prompt definitions."""

    def __init__(
        self,
        repository: PromptRepository,
        *,
        clock: Clock = utc_now,
        weights: PopularityWeights | None = None,
        retries: int | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._weights = weights if weights is not None else load_popularity_weights()
        self._retries = retries if retries is not None else load_activation_retries()

    @property
    def repository(self) -> PromptRepository:
        return self._repository

    def _now(self) -> str:
        return to_iso_z(self._clock())

    def _load(self, definition_id: str, *, include_deleted: bool = False) -> PromptDefinition:
        definition = self._repository.get(definition_id)
        if definition is None or (definition.is_deleted and not include_deleted):
            raise DefinitionNotFound(
                "Prompt definition not found", details={"definition_id": definition_id}
            )
        return definition

    def _mutate(
        self,
        definition_id: str,
        change: Callable[[PromptDefinition], None],
        *,
        conflict: type[ConcurrentUpdateError] = ConcurrentUpdateError,
    ) -> PromptDefinition:
        """Apply change to a private copy and commit it with compare-and-swap."""
        for attempt in range(self._retries + 1):
            current = self._load(definition_id)
            draft = current.model_copy(deep=True)
            change(draft)
            try:
                committed = PromptDefinition.model_validate(draft.model_dump())
            except PydanticValidationError as e:
                raise ValidationError(
                    "Change would violate prompt definition invariants",
                    details={"definition_id": definition_id},
                ) from e
            if self._repository.save(committed, expected_revision=current.revision):
                return committed
            logger.info(
                "Revision conflict on %s (attempt %d/%d)",
                definition_id,
                attempt + 1,
                self._retries + 1,
            )
        raise conflict(
            "Prompt definition changed concurrently, please retry",
            details={"definition_id": definition_id},
        )

    def create_definition(
        self,
        spec: DefinitionSpec,
        initial_content: Content,
        *,
        author: str,
        system_instruction: Content | None = None,
        changelog: str = "Initial version",
    ) -> PromptDefinition:
        """Create a definition whose version 1 is active.

        Raises:
            DuplicateKey: If the key or name is already taken.
        """
        now = self._now()
        definition = PromptDefinition(
            definition_id=str(uuid.uuid4()),
            name=spec.name,
            key=spec.key,
            prompt_type=spec.prompt_type,
            category=spec.category,
            page_scope=spec.page_scope,
            description=spec.description,
            tags=list(spec.tags),
            is_public=spec.is_public,
            is_active=spec.is_active,
            restricted_to=list(spec.restricted_to),
            current_version=1,
            versions=[
                PromptVersion(
                    ordinal=1,
                    content=initial_content,
                    system_instruction=system_instruction,
                    author=author,
                    changelog=_validate_changelog(changelog),
                    created_at=now,
                    is_active=True,
                )
            ],
            created_by=author,
            last_modified_by=author,
            created_at=now,
            updated_at=now,
        )
        self._repository.insert(definition)
        logger.info("Created prompt definition %s (key=%s)", definition.definition_id, spec.key)
        return definition

    def add_version(
        self,
        definition_id: str,
        content: Content,
        *,
        author: str,
        system_instruction: Content | None = None,
        changelog: str = "",
    ) -> int:
        """Append an inactive version and return its ordinal."""
        _validate_changelog(changelog)
        assigned: list[int] = []

        def change(draft: PromptDefinition) -> None:
            ordinal = draft.max_ordinal + 1
            draft.versions.append(
                PromptVersion(
                    ordinal=ordinal,
                    content=content,
                    system_instruction=system_instruction,
                    author=author,
                    changelog=changelog,
                    created_at=self._now(),
                    is_active=False,
                )
            )
            draft.last_modified_by = author
            draft.updated_at = self._now()
            assigned.append(ordinal)

        self._mutate(definition_id, change)
        ordinal = assigned[-1]
        logger.info("Added version %d to prompt definition %s", ordinal, definition_id)
        return ordinal

    def activate_version(
        self, definition_id: str, ordinal: int, *, activated_by: str
    ) -> PromptDefinition:
        """Make ``ordinal`` the only active version.

        Raises:
            DefinitionNotFound: If the definition does not exist.
            VersionNotFound: If the ordinal does not exist.
            ActivationConflict: If concurrent updates exhaust the retries.
        """

        def change(draft: PromptDefinition) -> None:
            if draft.version(ordinal) is None:
                raise VersionNotFound(
                    "Prompt version not found",
                    details={"definition_id": definition_id, "ordinal": ordinal},
                )
            for version in draft.versions:
                version.is_active = version.ordinal == ordinal
            draft.current_version = ordinal
            draft.last_modified_by = activated_by
            draft.updated_at = self._now()

        committed = self._mutate(definition_id, change, conflict=ActivationConflict)
        logger.info("Activated version %d of prompt definition %s", ordinal, definition_id)
        return committed

    def get_definition(
        self, definition_id: str, *, include_deleted: bool = False
    ) -> PromptDefinition:
        return self._load(definition_id, include_deleted=include_deleted)

    def get_by_key(self, key: str, *, page_scope: PageScope | None = None) -> PromptDefinition:
        definition = self._repository.get_by_key(key)
        if definition is None or definition.is_deleted or not definition.serves(page_scope):
            raise DefinitionNotFound("Prompt definition not found", details={"key": key})
        return definition

    @staticmethod
    def _active_of(definition: PromptDefinition) -> ActiveContent:
        version = definition.active_version()
        return ActiveContent(
            definition_id=definition.definition_id,
            key=definition.key,
            ordinal=version.ordinal,
            content=version.content,
            system_instruction=version.system_instruction,
        )

    def get_active_content(self, definition_id: str) -> ActiveContent:
        """Return the active version body in stored form."""
        return self._active_of(self._load(definition_id))

    def list_for_editing(self, definition_id: str) -> list[PromptVersion]:
        """Return every version of a definition, oldest first."""
        return list(self._load(definition_id).versions)

    def list_definitions(
        self,
        *,
        prompt_type: PromptType | None = None,
        category: PromptCategory | None = None,
        page_scope: PageScope | None = None,
        is_active: bool | None = None,
    ) -> list[PromptDefinition]:
        """Live definitions matching the filters, most popular first."""
        definitions = [
            d
            for d in self._repository.list()
            if (prompt_type is None or d.prompt_type == prompt_type)
            and (is_active is None or d.is_active == is_active)
            and (category is None or d.category == category)
            and d.serves(page_scope)
        ]
        definitions.sort(key=lambda d: (-d.usage.popularity_score, d.key))
        return definitions

    def record_usage(
        self,
        definition_id: str,
        *,
        response_ms: float,
        tokens: int,
        success: bool,
    ) -> UsageStats:
        """Fold one generation call into the running usage statistics."""
        if response_ms < 0 or tokens < 0:
            raise ValidationError("response_ms and tokens must not be negative")

        def change(draft: PromptDefinition) -> None:
            usage = draft.usage
            count = usage.total_usages + 1
            usage.average_response_ms = (
                usage.average_response_ms * usage.total_usages + response_ms
            ) / count
            usage.average_tokens = (usage.average_tokens * usage.total_usages + tokens) / count
            usage.success_rate = round(
                (usage.success_rate * usage.total_usages + (100 if success else 0)) / count, 4
            )
            usage.total_usages = count
            usage.last_used_at = self._now()
            usage.popularity_score = self._weights.score(usage)

        return self._mutate(definition_id, change).usage

    def delete_definition(
        self, definition_id: str, *, deleted_by: str, reason: str
    ) -> PromptDefinition:
        """Tombstone a definition. It disappears from every lookup.

        Raises:
            ValidationError: If the reason is shorter than the minimum.
            DefinitionNotFound: If the definition does not exist.
        """
        stripped = validate_deletion_reason(reason)

        def change(draft: PromptDefinition) -> None:
            now = self._now()
            draft.is_active = False
            draft.deleted = Tombstone(deleted_at=now, deleted_by=deleted_by, reason=stripped)
            draft.last_modified_by = deleted_by
            draft.updated_at = now

        committed = self._mutate(definition_id, change)
        logger.info("Deleted prompt definition %s", definition_id)
        return committed

    def set_active(
        self, definition_id: str, is_active: bool, *, changed_by: str
    ) -> PromptDefinition:
        """Switch a definition on or off for the read path. Versions are untouched."""

        def change(draft: PromptDefinition) -> None:
            draft.is_active = is_active
            draft.last_modified_by = changed_by
            draft.updated_at = self._now()

        committed = self._mutate(definition_id, change)
        logger.info(
            "%s prompt definition %s",
            "Enabled" if is_active else "Disabled",
            definition_id,
        )
        return committed

    def renew_content(
        self,
        definition_id: str,
        renew: Callable[[Content], Content],
        *,
        renewed_by: str,
    ) -> int:
        """Rewrite every version body through ``renew`` in one commit.

        Returns the number of versions rewritten. Ordinals, authors and the
        active flag are preserved.
        """
        renewed: list[int] = []

        def change(draft: PromptDefinition) -> None:
            renewed.clear()
            for version in draft.versions:
                version.content = renew(version.content)
                if version.system_instruction is not None:
                    version.system_instruction = renew(version.system_instruction)
                renewed.append(version.ordinal)
            draft.last_modified_by = renewed_by
            draft.updated_at = self._now()

        self._mutate(definition_id, change)
        logger.info(
            "Renewed stored content of %d versions of prompt definition %s",
            len(renewed),
            definition_id,
        )
        return len(renewed)
