"""PromptVault Access Gate: roles, sessions, IP allow-list, step-up and rate limits."""

from promptvault.access.gate import (
    AccessGate,
    ActorContext,
    GateConfig,
    GateDenied,
    GateStage,
    RequestContext,
    load_gate_config,
)
from promptvault.access.identity import (
    ActorDirectory,
    ActorProfile,
    InMemoryActorDirectory,
    load_actor_directory,
)
from promptvault.access.ip_allowlist import IpAllowList, normalize_ip
from promptvault.access.policy import POLICY_RULES, Operation, PolicyRule
from promptvault.access.roles import Role, SubscriptionTier
from promptvault.access.session import InvalidSession, SessionClaims, SessionTokenCodec
from promptvault.access.step_up import EnrollmentStart, StepUpNotEnrolled, StepUpRegistry

__all__ = [
    "POLICY_RULES",
    "AccessGate",
    "ActorContext",
    "ActorDirectory",
    "ActorProfile",
    "EnrollmentStart",
    "GateConfig",
    "GateDenied",
    "GateStage",
    "InMemoryActorDirectory",
    "InvalidSession",
    "IpAllowList",
    "Operation",
    "PolicyRule",
    "RequestContext",
    "Role",
    "SessionClaims",
    "SessionTokenCodec",
    "StepUpNotEnrolled",
    "StepUpRegistry",
    "SubscriptionTier",
    "load_actor_directory",
    "load_gate_config",
    "normalize_ip",
]
