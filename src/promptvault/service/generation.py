"""Text-generation collaborator interface.

PromptVault never calls a provider itself. It builds a ``GenerationRequest``
whose ``system`` field carries the decrypted definition body and hands it to
whatever ``TextGenerationClient`` the deployment wires in. Earlier turns of a
conversation travel as ``messages`` ahead of the new user turn.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Protocol, runtime_checkable

CONVERSATION_ROLES: Final[frozenset[str]] = frozenset({"user", "assistant"})


@dataclass(frozen=True, slots=True)
class GenerationMessage:
    role: str
    content: str


@dataclass(frozen=True)
class GenerationRequest:
    """One call to the text-generation service.

    ``system`` holds decrypted definition content and must never be logged.
    """

    model: str
    messages: list[GenerationMessage]
    system: str = field(repr=False)
    max_tokens: int = 1024
    temperature: float = 0.0


@dataclass(frozen=True, slots=True)
class GenerationResult:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@runtime_checkable
class TextGenerationClient(Protocol):
    def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run one generation call. May raise on provider failure."""
        ...
