"""Access Gate: fixed-order predicate pipeline for PromptVault operations.

Order of evaluation (first failure wins):
1. Source-IP allow-list (admin operations only)
2. Identity: session claims resolve to a known, active actor
3. Role and subscription tier against the operation's policy rule
4. Session freshness ceiling, independent of token expiry
5. Step-up one-time code for mutating rules that require it
6. Rate limits for every class the rule counts against

Design requirements:
- Deny by default: an operation without a policy rule is rejected
- Each predicate fails with its own stable code
- Failed step-up codes count against the auth limiter; exhaustion locks step-up
- Rate limits are peeked for every class before any class records the call
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Final

from promptvault.access.identity import ActorDirectory, ActorProfile
from promptvault.access.ip_allowlist import IpAllowList
from promptvault.access.policy import Operation, PolicyRule, get_rule
from promptvault.access.roles import Role, SubscriptionTier
from promptvault.access.session import SessionClaims
from promptvault.access.step_up import StepUpRegistry
from promptvault.clock import Clock, utc_now
from promptvault.config import development_bypass
from promptvault.errors import ConfigurationError, PromptVaultError
from promptvault.observability.tracing import set_span_attributes
from promptvault.rate_limit.policies import RateLimitClass, UsageCounter

logger = logging.getLogger(__name__)

ENV_SESSION_MAX_AGE_SECONDS: Final[str] = "PROMPTVAULT_SESSION_MAX_AGE_SECONDS"
ENV_BYPASS_STEP_UP: Final[str] = "PROMPTVAULT_BYPASS_STEP_UP"
DEFAULT_SESSION_MAX_AGE_SECONDS: Final[int] = 2 * 60 * 60

ANONYMOUS_ACTOR: Final[str] = "anonymous"


class GateStage(StrEnum):
    IP_ALLOWLIST = "ip_allowlist"
    IDENTITY = "identity"
    ROLE = "role"
    SESSION = "session"
    STEP_UP = "step_up"
    RATE_LIMIT = "rate_limit"


class GateDenied(PromptVaultError):
    """A gate predicate rejected the request.

    Attributes:
        stage: Predicate that failed.
        actor_id: Actor the request was attributed to ("anonymous" if unknown).
        actor_role: Resolved role, if identity succeeded.
        security_sensitive: True for rate limits on security-sensitive classes.
        retry_after_seconds: Set for rate-limit denials.
    """

    default_code = "FORBIDDEN"
    http_status = 403

    def __init__(
        self,
        message: str,
        *,
        code: str,
        stage: GateStage,
        actor_id: str = ANONYMOUS_ACTOR,
        actor_role: str | None = None,
        http_status: int | None = None,
        security_sensitive: bool = False,
        retry_after_seconds: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        if retry_after_seconds is not None:
            merged["retry_after_seconds"] = retry_after_seconds
        super().__init__(message, code=code, details=merged or None, http_status=http_status)
        self.stage = stage
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.security_sensitive = security_sensitive
        self.retry_after_seconds = retry_after_seconds


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Transport details of the request being authorized."""

    source_ip: str | None
    method: str = "INTERNAL"
    endpoint: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


@dataclass(frozen=True, slots=True)
class ActorContext:
    """Identity of an authorized caller."""

    actor_id: str
    role: Role
    tier: SubscriptionTier | None
    session_id: str
    session_issued_at: datetime


@dataclass(frozen=True)
class GateConfig:
    """Access gate configuration (immutable).

    Attributes:
        session_max_age_seconds: Sessions older than this cannot pass the gate.
        bypass_step_up: Skip the step-up predicate (development only).
    """

    session_max_age_seconds: int = DEFAULT_SESSION_MAX_AGE_SECONDS
    bypass_step_up: bool = False

    def __post_init__(self) -> None:
        if self.session_max_age_seconds <= 0:
            raise ConfigurationError(
                f"{ENV_SESSION_MAX_AGE_SECONDS} must be a positive integer, "
                f"got {self.session_max_age_seconds}"
            )


def load_gate_config() -> GateConfig:
    """Load gate configuration from environment variables.

    Raises:
        ConfigurationError: If a value is malformed.
    """
    raw = os.environ.get(ENV_SESSION_MAX_AGE_SECONDS, "").strip()
    max_age = DEFAULT_SESSION_MAX_AGE_SECONDS
    if raw:
        try:
            max_age = int(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"{ENV_SESSION_MAX_AGE_SECONDS} must be a positive integer, got '{raw}'"
            ) from e
    bypass = development_bypass(ENV_BYPASS_STEP_UP)
    if bypass:
        logger.warning("Step-up challenge bypass is enabled")
    return GateConfig(session_max_age_seconds=max_age, bypass_step_up=bypass)


class AccessGate:
    """Evaluates the predicate pipeline for one operation."""

    def __init__(
        self,
        directory: ActorDirectory,
        ip_allowlist: IpAllowList,
        step_up: StepUpRegistry,
        usage: UsageCounter,
        config: GateConfig | None = None,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._directory = directory
        self._ip_allowlist = ip_allowlist
        self._step_up = step_up
        self._usage = usage
        self._config = config if config is not None else load_gate_config()
        self._clock = clock

    @property
    def usage(self) -> UsageCounter:
        return self._usage

    @property
    def step_up(self) -> StepUpRegistry:
        return self._step_up

    def authorize(
        self,
        operation: Operation,
        claims: SessionClaims | None,
        request: RequestContext,
        *,
        step_up_code: str | None = None,
    ) -> ActorContext:
        """Run every predicate for ``operation`` and return the caller's identity.

        Raises:
            GateDenied: At the first failing predicate.
        """
        try:
            actor = self._evaluate(operation, claims, request, step_up_code)
        except GateDenied as denied:
            self._observe_denial(operation.value, denied, request)
            raise
        set_span_attributes(
            {
                "promptvault.operation": operation.value,
                "promptvault.decision": "ALLOW",
                "promptvault.actor_id": actor.actor_id,
            }
        )
        return actor

    def _evaluate(
        self,
        operation: Operation,
        claims: SessionClaims | None,
        request: RequestContext,
        step_up_code: str | None,
    ) -> ActorContext:
        rule = get_rule(operation)
        if rule is None:
            raise GateDenied(
                "Operation is not permitted",
                code="OPERATION_NOT_ALLOWED",
                stage=GateStage.ROLE,
                actor_id=claims.actor_id if claims else ANONYMOUS_ACTOR,
            )

        source_ip = request.source_ip or "unknown"
        claimed_id = claims.actor_id if claims else ANONYMOUS_ACTOR

        if rule.ip_restricted and not self._ip_allowlist.allows(request.source_ip):
            raise GateDenied(
                "Source address is not allowed for administrative operations",
                code="IP_NOT_ALLOWLISTED",
                stage=GateStage.IP_ALLOWLIST,
                actor_id=claimed_id,
            )

        claims, profile = self._resolve(claims)
        role = profile.role.value
        self._check_role(rule, profile.role, profile.tier, claimed_id)

        age_seconds = (self._clock() - claims.issued_at).total_seconds()
        if age_seconds > self._config.session_max_age_seconds:
            raise GateDenied(
                "Session is too old for this operation, please sign in again",
                code="SESSION_EXPIRED",
                stage=GateStage.SESSION,
                actor_id=claimed_id,
                actor_role=role,
                http_status=401,
            )

        if rule.requires_step_up and rule.is_mutation and not self._config.bypass_step_up:
            self._check_step_up(claimed_id, role, source_ip, step_up_code)

        self._check_rate_limits(rule, claimed_id, role, source_ip)

        return ActorContext(
            actor_id=profile.actor_id,
            role=profile.role,
            tier=profile.tier,
            session_id=claims.session_id,
            session_issued_at=claims.issued_at,
        )

    def _resolve(self, claims: SessionClaims | None) -> tuple[SessionClaims, ActorProfile]:
        if claims is None:
            raise GateDenied(
                "Authentication required",
                code="UNAUTHENTICATED",
                stage=GateStage.IDENTITY,
                http_status=401,
            )
        profile = self._directory.get(claims.actor_id)
        if profile is None:
            raise GateDenied(
                "Unknown actor",
                code="UNKNOWN_ACTOR",
                stage=GateStage.IDENTITY,
                actor_id=claims.actor_id,
            )
        if not profile.is_active:
            raise GateDenied(
                "Actor is inactive",
                code="ACTOR_INACTIVE",
                stage=GateStage.IDENTITY,
                actor_id=claims.actor_id,
                actor_role=profile.role.value,
            )
        return claims, profile

    def identify(self, claims: SessionClaims | None, request: RequestContext) -> ActorContext:
        """Identity predicate only, for the read path.

        Raises:
            GateDenied: If the session does not resolve to an active actor.
        """
        try:
            claims, profile = self._resolve(claims)
        except GateDenied as denied:
            self._observe_denial("identify", denied, request)
            raise
        return ActorContext(
            actor_id=profile.actor_id,
            role=profile.role,
            tier=profile.tier,
            session_id=claims.session_id,
            session_issued_at=claims.issued_at,
        )

    def enforce_rate_limits(
        self, operation: Operation, actor: ActorContext, request: RequestContext
    ) -> None:
        """Rate-limit predicate only, for callers that ran identity separately.

        Raises:
            GateDenied: If any of the operation's rate classes is exhausted.
        """
        rule = get_rule(operation)
        if rule is None:
            raise GateDenied(
                "Operation is not permitted",
                code="OPERATION_NOT_ALLOWED",
                stage=GateStage.ROLE,
                actor_id=actor.actor_id,
            )
        try:
            self._check_rate_limits(
                rule, actor.actor_id, actor.role.value, request.source_ip or "unknown"
            )
        except GateDenied as denied:
            self._observe_denial(operation.value, denied, request)
            raise

    @staticmethod
    def _observe_denial(operation: str, denied: GateDenied, request: RequestContext) -> None:
        logger.info(
            "Gate denied %s at %s: %s",
            operation,
            denied.stage.value,
            denied.code,
            extra={
                "request_id": request.request_id,
                "actor_id": denied.actor_id,
                "decision_code": denied.code,
            },
        )
        set_span_attributes(
            {
                "promptvault.operation": operation,
                "promptvault.decision": denied.code,
                "promptvault.actor_id": denied.actor_id,
            }
        )

    @staticmethod
    def _check_role(
        rule: PolicyRule, role: Role, tier: SubscriptionTier | None, actor_id: str
    ) -> None:
        if role not in rule.allowed_roles:
            raise GateDenied(
                "Insufficient role for this operation",
                code="INSUFFICIENT_ROLE",
                stage=GateStage.ROLE,
                actor_id=actor_id,
                actor_role=role.value,
            )
        if rule.allowed_tiers is not None and tier not in rule.allowed_tiers:
            raise GateDenied(
                "Subscription tier does not include this operation",
                code="INSUFFICIENT_TIER",
                stage=GateStage.ROLE,
                actor_id=actor_id,
                actor_role=role.value,
            )

    def _step_up_locked(self, actor_id: str, role: str, retry_after: int | None) -> GateDenied:
        return GateDenied(
            "Too many failed step-up attempts",
            code="STEP_UP_LOCKED",
            stage=GateStage.STEP_UP,
            actor_id=actor_id,
            actor_role=role,
            http_status=429,
            security_sensitive=True,
            retry_after_seconds=retry_after,
        )

    def _check_step_up(
        self, actor_id: str, role: str, source_ip: str, code: str | None
    ) -> None:
        lock = self._usage.peek(RateLimitClass.AUTH, actor_id, source_ip)
        if not lock.allowed:
            raise self._step_up_locked(actor_id, role, lock.retry_after_seconds)

        if not self._step_up.is_enrolled(actor_id):
            raise GateDenied(
                "Step-up enrollment is required for this operation",
                code="STEP_UP_ENROLLMENT_REQUIRED",
                stage=GateStage.STEP_UP,
                actor_id=actor_id,
                actor_role=role,
            )
        if not code:
            raise GateDenied(
                "A step-up code is required for this operation",
                code="STEP_UP_REQUIRED",
                stage=GateStage.STEP_UP,
                actor_id=actor_id,
                actor_role=role,
            )
        if self._step_up.verify(actor_id, code):
            return

        failure = self._usage.check(RateLimitClass.AUTH, actor_id, source_ip)
        if not failure.allowed:
            raise self._step_up_locked(actor_id, role, failure.retry_after_seconds)
        raise GateDenied(
            "Invalid step-up code",
            code="STEP_UP_INVALID",
            stage=GateStage.STEP_UP,
            actor_id=actor_id,
            actor_role=role,
            details={"attempts_remaining": failure.remaining},
        )

    def _check_rate_limits(
        self, rule: PolicyRule, actor_id: str, role: str, source_ip: str
    ) -> None:
        for rate_class in rule.rate_classes:
            decision = self._usage.peek(rate_class, actor_id, source_ip)
            if not decision.allowed:
                self._raise_rate_limited(rate_class, actor_id, role, decision.retry_after_seconds)
        for rate_class in rule.rate_classes:
            decision = self._usage.check(rate_class, actor_id, source_ip)
            if not decision.allowed:
                self._raise_rate_limited(rate_class, actor_id, role, decision.retry_after_seconds)

    def _raise_rate_limited(
        self,
        rate_class: RateLimitClass,
        actor_id: str,
        role: str,
        retry_after: int | None,
    ) -> None:
        raise GateDenied(
            "Rate limit exceeded",
            code="RATE_LIMITED",
            stage=GateStage.RATE_LIMIT,
            actor_id=actor_id,
            actor_role=role,
            http_status=429,
            security_sensitive=self._usage.policy(rate_class).security_sensitive,
            retry_after_seconds=retry_after,
            details={"rate_class": rate_class.value},
        )
