"""PromptVault Version Store.

Key components:
- PromptVersionStore: versioned definitions with exactly-one-active activation
- InMemoryPromptRepository / SqlPromptRepository: revision-checked document storage
"""

from promptvault.prompts.errors import (
    ActivationConflict,
    ConcurrentUpdateError,
    DefinitionNotFound,
    DuplicateKey,
    VersionNotFound,
)
from promptvault.prompts.models import (
    DefinitionSpec,
    PageScope,
    PopularityWeights,
    PromptCategory,
    PromptDefinition,
    PromptType,
    PromptVersion,
    UsageStats,
    parse_definition_spec,
)
from promptvault.prompts.repository import (
    InMemoryPromptRepository,
    PromptRepository,
    SqlPromptRepository,
)
from promptvault.prompts.store import (
    MIN_DELETION_REASON_LENGTH,
    ActiveContent,
    PromptVersionStore,
    validate_deletion_reason,
)

__all__ = [
    "MIN_DELETION_REASON_LENGTH",
    "ActivationConflict",
    "ActiveContent",
    "ConcurrentUpdateError",
    "DefinitionNotFound",
    "DefinitionSpec",
    "DuplicateKey",
    "InMemoryPromptRepository",
    "PageScope",
    "PopularityWeights",
    "PromptCategory",
    "PromptDefinition",
    "PromptRepository",
    "PromptType",
    "PromptVersion",
    "PromptVersionStore",
    "SqlPromptRepository",
    "UsageStats",
    "VersionNotFound",
    "parse_definition_spec",
    "validate_deletion_reason",
]
