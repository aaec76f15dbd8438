"""Pytest configuration and fixtures for PromptVault tests.

Components are wired with in-memory collaborators and a shared fake clock so
that time-dependent behavior (envelope staleness, session age, rate windows,
TOTP steps) is deterministic.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from promptvault.access.gate import AccessGate, GateConfig, RequestContext
from promptvault.access.identity import ActorProfile, InMemoryActorDirectory
from promptvault.access.ip_allowlist import IpAllowList
from promptvault.access.roles import Role, SubscriptionTier
from promptvault.access.session import SessionClaims, SessionTokenCodec
from promptvault.access.step_up import StepUpRegistry
from promptvault.audit.store import InMemoryAuditStore
from promptvault.audit.trail import AuditTrail
from promptvault.container import ServiceContainer, build_container
from promptvault.prompts.models import PopularityWeights
from promptvault.prompts.repository import InMemoryPromptRepository
from promptvault.prompts.store import PromptVersionStore
from promptvault.rate_limit.policies import UsageCounter, load_rate_limit_config
from promptvault.vault.cipher import ContentVault
from promptvault.vault.keys import VaultConfig
from tests.helpers import (
    ADMIN_IP,
    INACTIVE_ID,
    MASTER_SECRET,
    MODERATOR_ID,
    OWNER_ID,
    PREMIUM_ID,
    ROTATION_SECRET,
    SESSION_SECRET,
    STANDARD_ID,
    FakeClock,
)

_PROMPTVAULT_ENV_VARS = (
    "PROMPTVAULT_ENV",
    "PROMPTVAULT_DATABASE_URL",
    "PROMPTVAULT_ADMIN_IP_ALLOWLIST",
    "PROMPTVAULT_BYPASS_IP_CHECK",
    "PROMPTVAULT_BYPASS_STEP_UP",
    "PROMPTVAULT_ALLOW_PLAINTEXT",
    "PROMPTVAULT_ACTORS_JSON",
    "PROMPTVAULT_ENVELOPE_MAX_AGE_SECONDS",
    "PROMPTVAULT_SESSION_MAX_AGE_SECONDS",
    "PROMPTVAULT_SESSION_TTL_SECONDS",
    "PROMPTVAULT_TRUST_FORWARDED_FOR",
    "PROMPTVAULT_POPULARITY_WEIGHTS",
    "PROMPTVAULT_ACTIVATION_RETRIES",
    "PROMPTVAULT_OTEL_ENABLED",
    "PROMPTVAULT_REQUIRE_OTEL",
)


@pytest.fixture(autouse=True)
def promptvault_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Strong secrets, a temp audit log and no stray PromptVault configuration."""
    for name in _PROMPTVAULT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PROMPTVAULT_MASTER_SECRET", MASTER_SECRET)
    monkeypatch.setenv("PROMPTVAULT_ROTATION_SECRET", ROTATION_SECRET)
    monkeypatch.setenv("PROMPTVAULT_SESSION_SECRET", SESSION_SECRET)
    monkeypatch.setenv("PROMPTVAULT_AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
    for suffix in (
        "GENERAL",
        "AUTH",
        "PASSWORD_RESET",
        "TEXT_GENERATION",
        "ADMIN",
        "DESTRUCTIVE",
        "PROMPT_ACCESS",
    ):
        monkeypatch.delenv(f"PROMPTVAULT_RATE_LIMIT_{suffix}", raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def vault(clock: FakeClock) -> ContentVault:
    return ContentVault(
        VaultConfig(master_secret=MASTER_SECRET, rotation_secret=ROTATION_SECRET), clock=clock
    )


@pytest.fixture
def directory() -> InMemoryActorDirectory:
    return InMemoryActorDirectory(
        [
            ActorProfile(OWNER_ID, Role.OWNER, SubscriptionTier.ENTERPRISE),
            ActorProfile(MODERATOR_ID, Role.MODERATOR, SubscriptionTier.BASIC),
            ActorProfile(STANDARD_ID, Role.STANDARD, SubscriptionTier.FREE),
            ActorProfile(PREMIUM_ID, Role.STANDARD, SubscriptionTier.PREMIUM),
            ActorProfile(INACTIVE_ID, Role.OWNER, is_active=False),
        ]
    )


@pytest.fixture
def sessions(clock: FakeClock) -> SessionTokenCodec:
    return SessionTokenCodec(SESSION_SECRET, clock=clock)


@pytest.fixture
def claims_for(sessions: SessionTokenCodec) -> Callable[[str], SessionClaims]:
    """Issue and decode a fresh session for an actor."""

    def _claims(actor_id: str) -> SessionClaims:
        return sessions.decode(sessions.issue(actor_id))

    return _claims


@pytest.fixture
def usage(clock: FakeClock) -> UsageCounter:
    return UsageCounter(load_rate_limit_config(), clock=clock)


@pytest.fixture
def step_up(clock: FakeClock) -> StepUpRegistry:
    return StepUpRegistry(clock=clock)


@pytest.fixture
def gate(
    directory: InMemoryActorDirectory,
    step_up: StepUpRegistry,
    usage: UsageCounter,
    clock: FakeClock,
) -> AccessGate:
    return AccessGate(
        directory,
        IpAllowList([ADMIN_IP, "10.0.0.0/8"]),
        step_up,
        usage,
        GateConfig(),
        clock=clock,
    )


@pytest.fixture
def store(clock: FakeClock) -> PromptVersionStore:
    return PromptVersionStore(
        InMemoryPromptRepository(), clock=clock, weights=PopularityWeights(), retries=3
    )


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def trail(audit_store: InMemoryAuditStore, clock: FakeClock) -> Iterator[AuditTrail]:
    trail = AuditTrail(audit_store, clock=clock)
    yield trail
    trail.close()


@pytest.fixture
def container(
    sessions: SessionTokenCodec,
    directory: InMemoryActorDirectory,
    gate: AccessGate,
    store: PromptVersionStore,
    trail: AuditTrail,
    vault: ContentVault,
) -> ServiceContainer:
    return build_container(
        sessions=sessions,
        directory=directory,
        gate=gate,
        store=store,
        trail=trail,
        vault=vault,
    )


@pytest.fixture
def admin_request() -> RequestContext:
    return RequestContext(
        source_ip=ADMIN_IP,
        method="POST",
        endpoint="/v1/admin/prompts",
        user_agent="pytest",
        request_id="req-test-0001",
    )
