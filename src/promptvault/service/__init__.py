"""PromptVault service layer: gated admin operations and the read path."""

from promptvault.service.admin import OperationResult, PromptAdminService, denial_action
from promptvault.service.generation import (
    GenerationMessage,
    GenerationRequest,
    GenerationResult,
    TextGenerationClient,
)
from promptvault.service.reader import GenerationFailed, PromptReader, ResolvedPrompt
from promptvault.service.redaction import redact

__all__ = [
    "GenerationFailed",
    "GenerationMessage",
    "GenerationRequest",
    "GenerationResult",
    "OperationResult",
    "PromptAdminService",
    "PromptReader",
    "ResolvedPrompt",
    "TextGenerationClient",
    "denial_action",
    "redact",
]
