"""Policy table for gated PromptVault operations.

Deny by default: an operation without a rule cannot be authorized.

Policy highlights:
- Only owners can manage prompt definitions, including the admin listing and edit view
- Moderators and owners can read the audit trail; only owners see per-actor stats
- Deleting a definition requires a step-up code and counts against the destructive limiter
- Read-path operations skip the IP allow-list and never require step-up
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType

from promptvault.access.roles import Role, SubscriptionTier
from promptvault.rate_limit.policies import RateLimitClass


class Operation(StrEnum):
    CREATE_DEFINITION = "create_definition"
    ADD_VERSION = "add_version"
    ACTIVATE_VERSION = "activate_version"
    DELETE_DEFINITION = "delete_definition"
    SET_DEFINITION_ACTIVE = "set_definition_active"
    RENEW_CONTENT = "renew_content"
    LIST_DEFINITIONS = "list_definitions"
    LIST_FOR_EDITING = "list_for_editing"
    QUERY_AUDIT = "query_audit"
    SECURITY_EVENTS = "security_events"
    FAILED_EVENTS = "failed_events"
    STATS_BY_ACTOR = "stats_by_actor"
    REVIEW_AUDIT_EVENT = "review_audit_event"
    STEP_UP_ENROLL = "step_up_enroll"
    STEP_UP_CONFIRM = "step_up_confirm"
    USE_PROMPT = "use_prompt"
    VIEW_CATALOG = "view_catalog"


ALL_ROLES: frozenset[Role] = frozenset(Role)
OWNER_ONLY: frozenset[Role] = frozenset({Role.OWNER})
AUDIT_READERS: frozenset[Role] = frozenset({Role.OWNER, Role.MODERATOR})


@dataclass(frozen=True, slots=True)
class PolicyRule:
    """Gate requirements for one operation.

    Attributes:
        allowed_roles: Roles that may invoke the operation.
        is_mutation: True if the operation changes state.
        requires_step_up: Mutations that need a one-time code.
        rate_classes: Limiters the call counts against, in order.
        ip_restricted: Whether the admin IP allow-list applies.
        allowed_tiers: Subscription tiers admitted (None means any).
    """

    allowed_roles: frozenset[Role]
    is_mutation: bool
    rate_classes: tuple[RateLimitClass, ...]
    requires_step_up: bool = False
    ip_restricted: bool = True
    allowed_tiers: frozenset[SubscriptionTier] | None = None


_ADMIN = (RateLimitClass.ADMIN,)
_READ = (RateLimitClass.GENERAL,)

POLICY_RULES: Mapping[Operation, PolicyRule] = MappingProxyType(
    {
        Operation.CREATE_DEFINITION: PolicyRule(OWNER_ONLY, True, _ADMIN),
        Operation.ADD_VERSION: PolicyRule(OWNER_ONLY, True, _ADMIN),
        Operation.ACTIVATE_VERSION: PolicyRule(OWNER_ONLY, True, _ADMIN),
        Operation.DELETE_DEFINITION: PolicyRule(
            OWNER_ONLY,
            True,
            (RateLimitClass.ADMIN, RateLimitClass.DESTRUCTIVE),
            requires_step_up=True,
        ),
        Operation.SET_DEFINITION_ACTIVE: PolicyRule(OWNER_ONLY, True, _ADMIN),
        Operation.RENEW_CONTENT: PolicyRule(OWNER_ONLY, True, _ADMIN),
        Operation.LIST_DEFINITIONS: PolicyRule(OWNER_ONLY, False, _READ),
        Operation.LIST_FOR_EDITING: PolicyRule(
            OWNER_ONLY, False, (RateLimitClass.PROMPT_ACCESS,)
        ),
        Operation.QUERY_AUDIT: PolicyRule(AUDIT_READERS, False, _READ),
        Operation.SECURITY_EVENTS: PolicyRule(AUDIT_READERS, False, _READ),
        Operation.FAILED_EVENTS: PolicyRule(AUDIT_READERS, False, _READ),
        Operation.STATS_BY_ACTOR: PolicyRule(OWNER_ONLY, False, _READ),
        Operation.REVIEW_AUDIT_EVENT: PolicyRule(OWNER_ONLY, True, _ADMIN),
        Operation.STEP_UP_ENROLL: PolicyRule(AUDIT_READERS, True, (RateLimitClass.AUTH,)),
        Operation.STEP_UP_CONFIRM: PolicyRule(AUDIT_READERS, True, (RateLimitClass.AUTH,)),
        Operation.USE_PROMPT: PolicyRule(
            ALL_ROLES, False, (RateLimitClass.TEXT_GENERATION,), ip_restricted=False
        ),
        Operation.VIEW_CATALOG: PolicyRule(ALL_ROLES, False, _READ, ip_restricted=False),
    }
)


def get_rule(operation: Operation) -> PolicyRule | None:
    return POLICY_RULES.get(operation)
