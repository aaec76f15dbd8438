"""Component wiring for PromptVault.

``build_container_from_env`` assembles every component from environment
configuration. Tests build a ``ServiceContainer`` directly with in-memory
collaborators and a fake clock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from promptvault.access.gate import AccessGate, load_gate_config
from promptvault.access.identity import ActorDirectory, load_actor_directory
from promptvault.access.ip_allowlist import IpAllowList
from promptvault.access.session import SessionTokenCodec
from promptvault.access.step_up import StepUpRegistry
from promptvault.audit.store import get_audit_store
from promptvault.audit.trail import AuditTrail
from promptvault.clock import Clock, utc_now
from promptvault.persistence.db import ensure_schema, get_app_engine, is_database_configured
from promptvault.prompts.repository import (
    InMemoryPromptRepository,
    PromptRepository,
    SqlPromptRepository,
)
from promptvault.prompts.store import PromptVersionStore
from promptvault.rate_limit.policies import UsageCounter
from promptvault.service.admin import PromptAdminService
from promptvault.service.generation import TextGenerationClient
from promptvault.service.reader import PromptReader
from promptvault.vault.cipher import ContentVault
from promptvault.vault.keys import VaultUnavailable, plaintext_fallback_enabled

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything the API and CLI need, built once per process."""

    sessions: SessionTokenCodec
    directory: ActorDirectory
    gate: AccessGate
    store: PromptVersionStore
    trail: AuditTrail
    vault: ContentVault | None
    admin: PromptAdminService
    reader: PromptReader

    def close(self) -> None:
        self.trail.close()


def build_container(
    *,
    sessions: SessionTokenCodec,
    directory: ActorDirectory,
    gate: AccessGate,
    store: PromptVersionStore,
    trail: AuditTrail,
    vault: ContentVault | None,
    allow_plaintext: bool = False,
    client: TextGenerationClient | None = None,
) -> ServiceContainer:
    return ServiceContainer(
        sessions=sessions,
        directory=directory,
        gate=gate,
        store=store,
        trail=trail,
        vault=vault,
        admin=PromptAdminService(gate, store, trail, vault, allow_plaintext=allow_plaintext),
        reader=PromptReader(gate, store, vault, client),
    )


def _load_vault(clock: Clock, allow_plaintext: bool) -> ContentVault | None:
    try:
        return ContentVault.from_env(clock=clock)
    except VaultUnavailable:
        if not allow_plaintext:
            raise
        logger.warning("Content vault unavailable, plaintext fallback is enabled")
        return None


def build_container_from_env(
    *,
    clock: Clock = utc_now,
    client: TextGenerationClient | None = None,
) -> ServiceContainer:
    """Build every component from environment configuration.

    Uses SQL repositories when PROMPTVAULT_DATABASE_URL is set, in-memory
    ones otherwise.

    Raises:
        ConfigurationError: If session or gate configuration is invalid.
        VaultUnavailable: If vault secrets are missing and plaintext is not allowed.
        RateLimitConfigError: If a rate limit override is malformed.
    """
    allow_plaintext = plaintext_fallback_enabled()
    vault = _load_vault(clock, allow_plaintext)

    repository: PromptRepository
    if is_database_configured():
        engine = get_app_engine()
        ensure_schema(engine)
        repository = SqlPromptRepository(engine)
        trail = AuditTrail(get_audit_store(engine), clock=clock)
    else:
        repository = InMemoryPromptRepository()
        trail = AuditTrail(get_audit_store(), clock=clock)

    step_up = StepUpRegistry(clock=clock)
    directory = load_actor_directory()
    gate = AccessGate(
        directory,
        IpAllowList.from_env(),
        step_up,
        UsageCounter(clock=clock),
        load_gate_config(),
        clock=clock,
    )
    return build_container(
        sessions=SessionTokenCodec.from_env(clock=clock),
        directory=directory,
        gate=gate,
        store=PromptVersionStore(repository, clock=clock),
        trail=trail,
        vault=vault,
        allow_plaintext=allow_plaintext,
        client=client,
    )
