"""Prompt definition and version models.

A definition is a named, keyed piece of configuration content with an ordered
list of immutable versions, at most one of which is active. Version bodies are
stored as ``StoredContent`` and are opaque to this module.

Design requirements:
- Ordinals are contiguous from 1 and never reused
- At most one version is active; ``current_version`` always names an existing version
- Invariants are checked whenever a definition document is (re)built
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from promptvault.access.roles import Role
from promptvault.errors import ConfigurationError, ValidationError
from promptvault.vault.envelope import StoredContent

logger = logging.getLogger(__name__)

KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z_]{1,64}$")
MAX_NAME_LENGTH: Final[int] = 100
MAX_DESCRIPTION_LENGTH: Final[int] = 500
MAX_CHANGELOG_LENGTH: Final[int] = 500
MAX_TAGS: Final[int] = 20

ENV_POPULARITY_WEIGHTS: Final[str] = "PROMPTVAULT_POPULARITY_WEIGHTS"


class PromptType(StrEnum):
    PUNCTUATION = "punctuation"
    NIKUD = "nikud"
    SOURCES = "sources"
    GRAMMAR = "grammar"
    EDIT = "edit"
    FORMAT = "format"
    TRUNCATE = "truncate"
    ANALYZE = "analyze"
    TRANSLATE = "translate"
    CUSTOM = "custom"
    SYSTEM = "system"


class PromptCategory(StrEnum):
    TORAH = "torah"
    HALACHA = "halacha"
    PHILOSOPHY = "philosophy"
    HISTORY = "history"
    GENERAL = "general"
    SYSTEM = "system"


class PageScope(StrEnum):
    """Which application surface a definition serves."""

    EDITOR = "editor"
    RESEARCH = "research"
    BOTH = "both"


class DefinitionSpec(BaseModel):
    """Caller-supplied metadata for a new definition."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    key: str
    prompt_type: PromptType = PromptType.CUSTOM
    category: PromptCategory = PromptCategory.GENERAL
    page_scope: PageScope = PageScope.BOTH
    description: str = Field(default="", max_length=MAX_DESCRIPTION_LENGTH)
    tags: list[str] = Field(default_factory=list, max_length=MAX_TAGS)
    is_public: bool = False
    is_active: bool = True
    restricted_to: list[str] = Field(default_factory=list)

    @field_validator("key")
    @classmethod
    def _check_key(cls, value: str) -> str:
        if not KEY_PATTERN.match(value):
            raise ValueError("key must contain only lowercase letters and underscores")
        return value


def parse_definition_spec(data: dict[str, Any]) -> DefinitionSpec:
    """Build a DefinitionSpec, converting schema errors to ValidationError."""
    try:
        return DefinitionSpec.model_validate(data)
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ValidationError(
            "Invalid prompt definition", details={"fields": fields}
        ) from e


class UsageStats(BaseModel):
    """Running usage statistics for a definition."""

    total_usages: int = 0
    success_rate: float = Field(default=0.0, ge=0, le=100)
    average_response_ms: float = 0.0
    average_tokens: float = 0.0
    last_used_at: str | None = None
    popularity_score: float = 0.0


@dataclass(frozen=True)
class PopularityWeights:
    """Weights for the popularity score.

    score = volume * total_usages + success * success_rate
            + latency * (100 - average_response_ms / 1000)
    """

    volume: float = 0.4
    success: float = 0.3
    latency: float = 0.3

    def __post_init__(self) -> None:
        for name in ("volume", "success", "latency"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"Popularity weight '{name}' must not be negative")

    def score(self, usage: UsageStats) -> float:
        return round(
            self.volume * usage.total_usages
            + self.success * usage.success_rate
            + self.latency * (100 - usage.average_response_ms / 1000),
            4,
        )


def load_popularity_weights() -> PopularityWeights:
    """Load weights from PROMPTVAULT_POPULARITY_WEIGHTS="volume,success,latency".

    Raises:
        ConfigurationError: If the value is malformed.
    """
    raw = os.environ.get(ENV_POPULARITY_WEIGHTS, "").strip()
    if not raw:
        return PopularityWeights()
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 3:
        raise ConfigurationError(
            f"{ENV_POPULARITY_WEIGHTS} must have three comma-separated numbers"
        )
    try:
        volume, success, latency = (float(p) for p in parts)
    except ValueError as e:
        raise ConfigurationError(
            f"{ENV_POPULARITY_WEIGHTS} must contain numbers, got '{raw}'"
        ) from e
    return PopularityWeights(volume=volume, success=success, latency=latency)


class Tombstone(BaseModel):
    model_config = ConfigDict(frozen=True)

    deleted_at: str
    deleted_by: str
    reason: str


class PromptVersion(BaseModel):
    """One immutable version body."""

    ordinal: int = Field(ge=1)
    content: StoredContent
    system_instruction: StoredContent | None = None
    author: str
    changelog: str = Field(default="", max_length=MAX_CHANGELOG_LENGTH)
    created_at: str
    is_active: bool = False


class PromptDefinition(BaseModel):
    """A versioned prompt definition document."""

    definition_id: str
    revision: int = Field(default=1, ge=1)
    name: str = Field(max_length=MAX_NAME_LENGTH)
    key: str
    prompt_type: PromptType
    category: PromptCategory
    page_scope: PageScope
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    is_public: bool = False
    is_active: bool = True
    restricted_to: list[str] = Field(default_factory=list)
    current_version: int
    versions: list[PromptVersion]
    usage: UsageStats = Field(default_factory=UsageStats)
    created_by: str
    last_modified_by: str
    created_at: str
    updated_at: str
    deleted: Tombstone | None = None

    @model_validator(mode="after")
    def _check_versions(self) -> PromptDefinition:
        ordinals = [v.ordinal for v in self.versions]
        if ordinals != list(range(1, len(ordinals) + 1)):
            raise ValueError("version ordinals must be contiguous from 1")
        if sum(1 for v in self.versions if v.is_active) > 1:
            raise ValueError("at most one version may be active")
        if self.current_version not in ordinals:
            raise ValueError("current_version must reference an existing version")
        return self

    @property
    def is_deleted(self) -> bool:
        return self.deleted is not None

    @property
    def max_ordinal(self) -> int:
        return self.versions[-1].ordinal

    def version(self, ordinal: int) -> PromptVersion | None:
        if 1 <= ordinal <= len(self.versions):
            return self.versions[ordinal - 1]
        return None

    def active_version(self) -> PromptVersion:
        """Return the flagged version, falling back to the current pointer."""
        for version in self.versions:
            if version.is_active:
                return version
        return self.versions[self.current_version - 1]

    def serves(self, page_scope: PageScope | None) -> bool:
        if page_scope is None:
            return True
        return self.page_scope in (page_scope, PageScope.BOTH)

    def can_be_used_by(self, role: str, tier: str | None) -> bool:
        """Visibility rule for the read path.

        An inactive or deleted definition is never usable. A non-empty
        restriction list admits the listed roles and tiers only. Otherwise a
        public definition is open to everyone and a private one to owners.
        """
        if not self.is_active or self.is_deleted:
            return False
        if self.restricted_to:
            return role in self.restricted_to or (tier is not None and tier in self.restricted_to)
        return self.is_public or role == Role.OWNER.value

    def metadata_view(self) -> dict[str, Any]:
        """Definition metadata without any version body."""
        return {
            "definition_id": self.definition_id,
            "name": self.name,
            "key": self.key,
            "prompt_type": self.prompt_type.value,
            "category": self.category.value,
            "page_scope": self.page_scope.value,
            "description": self.description,
            "tags": list(self.tags),
            "is_public": self.is_public,
            "is_active": self.is_active,
            "current_version": self.current_version,
            "version_count": len(self.versions),
            "usage": self.usage.model_dump(mode="json"),
            "updated_at": self.updated_at,
        }
