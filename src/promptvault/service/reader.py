"""Read path: catalog listing and prompt resolution for text generation.

Read traffic runs identity, visibility and the text_generation limiter. It
never reaches the IP allow-list, step-up, or the admin and destructive
limiters. Decrypted content leaves this module only inside a
``GenerationRequest.system`` and is never logged or returned to callers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from promptvault.access.gate import AccessGate, ActorContext, RequestContext
from promptvault.access.policy import Operation
from promptvault.access.session import SessionClaims
from promptvault.errors import PromptVaultError, ValidationError
from promptvault.prompts.errors import DefinitionNotFound
from promptvault.prompts.models import PageScope, PromptCategory, PromptDefinition, PromptType
from promptvault.prompts.store import PromptVersionStore
from promptvault.service.generation import (
    CONVERSATION_ROLES,
    GenerationMessage,
    GenerationRequest,
    GenerationResult,
    TextGenerationClient,
)
from promptvault.service.redaction import redact
from promptvault.vault.cipher import ContentVault
from promptvault.vault.envelope import PlaintextContent
from promptvault.vault.keys import VaultUnavailable

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "default"


class GenerationFailed(PromptVaultError):
    default_code = "GENERATION_FAILED"
    http_status = 502


@dataclass(frozen=True)
class ResolvedPrompt:
    """A usable definition with its decrypted active body."""

    definition_id: str
    key: str
    ordinal: int
    system: str = field(repr=False)


class PromptReader:
    """Serves the catalog and resolves prompts for the generation collaborator."""

    def __init__(
        self,
        gate: AccessGate,
        store: PromptVersionStore,
        vault: ContentVault | None,
        client: TextGenerationClient | None = None,
    ) -> None:
        self._gate = gate
        self._store = store
        self._vault = vault
        self._client = client

    def _visible(self, definition: PromptDefinition, actor: ActorContext) -> bool:
        tier = actor.tier.value if actor.tier is not None else None
        return definition.can_be_used_by(actor.role.value, tier)

    def catalog(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        *,
        prompt_type: PromptType | None = None,
        category: PromptCategory | None = None,
        page_scope: PageScope | None = None,
    ) -> list[dict[str, Any]]:
        """Metadata of the definitions the caller may use, most popular first.

        Raises:
            GateDenied: If identity or the general limiter rejects the caller.
        """
        actor = self._gate.identify(claims, request)
        self._gate.enforce_rate_limits(Operation.VIEW_CATALOG, actor, request)
        return [
            redact(definition.metadata_view())
            for definition in self._store.list_definitions(
                prompt_type=prompt_type, category=category, page_scope=page_scope
            )
            if self._visible(definition, actor)
        ]

    def resolve(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        key: str,
        *,
        page_scope: PageScope | None = None,
    ) -> ResolvedPrompt:
        """Resolve a key to its decrypted active body for generation.

        Definitions the caller may not use are reported as not found.

        Raises:
            GateDenied: If identity or the text_generation limiter rejects the caller.
            DefinitionNotFound: If no usable definition has this key.
            IntegrityFailure / ExpiredEnvelope: If the stored body cannot be opened.
        """
        actor = self._gate.identify(claims, request)
        definition = self._store.get_by_key(key, page_scope=page_scope)
        if not self._visible(definition, actor):
            logger.info(
                "Prompt %s not usable by actor %s",
                key,
                actor.actor_id,
                extra={"request_id": request.request_id},
            )
            raise DefinitionNotFound("Prompt definition not found", details={"key": key})
        self._gate.enforce_rate_limits(Operation.USE_PROMPT, actor, request)

        version = definition.active_version()
        parts = [self._reveal(version.content)]
        if version.system_instruction is not None:
            parts.insert(0, self._reveal(version.system_instruction))
        return ResolvedPrompt(
            definition_id=definition.definition_id,
            key=definition.key,
            ordinal=version.ordinal,
            system="\n\n".join(parts),
        )

    def _reveal(self, content: Any) -> str:
        if isinstance(content, PlaintextContent):
            return content.text
        if self._vault is None:
            raise VaultUnavailable("Content vault is not configured")
        return self._vault.reveal(content)

    def generate(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        key: str,
        user_text: str,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        page_scope: PageScope | None = None,
        history: Sequence[GenerationMessage] = (),
    ) -> GenerationResult:
        """Run one generation with the active body of ``key`` and record usage.

        ``history`` holds earlier user and assistant turns, oldest first. They are
        sent ahead of ``user_text``.

        Raises:
            ValidationError: If a history turn has a role other than user or assistant.
            GenerationFailed: If no client is configured or the client fails.
        """
        for turn in history:
            if turn.role not in CONVERSATION_ROLES:
                raise ValidationError(
                    "Conversation history may only hold user and assistant turns",
                    details={"role": turn.role},
                )
        if self._client is None:
            raise GenerationFailed("No text-generation client is configured")
        resolved = self.resolve(claims, request, key, page_scope=page_scope)

        started = time.perf_counter()
        try:
            result = self._client.generate(
                GenerationRequest(
                    model=model,
                    messages=[*history, GenerationMessage(role="user", content=user_text)],
                    system=resolved.system,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
            )
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self._store.record_usage(
                resolved.definition_id, response_ms=elapsed_ms, tokens=0, success=False
            )
            logger.warning(
                "Generation failed for prompt %s: %s",
                key,
                type(e).__name__,
                extra={"request_id": request.request_id},
            )
            raise GenerationFailed("Text generation failed") from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._store.record_usage(
            resolved.definition_id,
            response_ms=elapsed_ms,
            tokens=result.total_tokens,
            success=True,
        )
        return result
