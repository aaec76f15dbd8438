"""Audit event models for PromptVault.

Callers describe what happened with an ``AuditEntry``. The trail turns it into
an ``AdminAuditEvent`` by assigning an id and timestamp and by deriving the
severity and flags from the action. Entries have no severity or flag fields,
so a caller cannot forge them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MAX_DESCRIPTION_LENGTH = 1000
MAX_REVIEW_NOTES_LENGTH = 500


class AdminAction(StrEnum):
    """Closed set of auditable administrative actions."""

    # Actor management
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    USER_BANNED = "user_banned"
    USER_UNBANNED = "user_unbanned"
    USER_ROLE_CHANGED = "user_role_changed"
    USER_SUBSCRIPTION_CHANGED = "user_subscription_changed"
    USER_PASSWORD_RESET = "user_password_reset"

    # Prompt management
    PROMPT_CREATED = "prompt_created"
    PROMPT_UPDATED = "prompt_updated"
    PROMPT_DELETED = "prompt_deleted"
    PROMPT_ACTIVATED = "prompt_activated"
    PROMPT_DEACTIVATED = "prompt_deactivated"
    PROMPT_VERSION_ADDED = "prompt_version_added"
    PROMPT_CONTENT_VIEWED = "prompt_content_viewed"

    # System
    SETTINGS_UPDATED = "settings_updated"
    SYSTEM_CONFIG_CHANGED = "system_config_changed"
    BACKUP_CREATED = "backup_created"
    BACKUP_RESTORED = "backup_restored"
    LOG_EXPORTED = "log_exported"
    REPORT_GENERATED = "report_generated"
    ANALYTICS_ACCESSED = "analytics_accessed"
    AUDIT_REVIEWED = "audit_reviewed"

    # Security
    LOGIN_FAILED = "login_failed"
    TWO_FACTOR_ENABLED = "2fa_enabled"
    TWO_FACTOR_DISABLED = "2fa_disabled"
    STEP_UP_ENROLLMENT_STARTED = "step_up_enrollment_started"
    STEP_UP_FAILED = "step_up_failed"
    IP_WHITELISTED = "ip_whitelisted"
    IP_BLACKLISTED = "ip_blacklisted"
    SECURITY_ALERT = "security_alert"
    PASSWORD_CHANGED = "password_changed"
    EMAIL_CHANGED = "email_changed"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SECURITY_RATE_LIMIT_EXCEEDED = "security_rate_limit_exceeded"


class TargetType(StrEnum):
    USER = "user"
    PROMPT = "prompt"
    CONVERSATION = "conversation"
    SUBSCRIPTION = "subscription"
    SYSTEM = "system"
    API = "api"
    CONTENT = "content"


class ResultStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    PARTIAL = "partial"
    PENDING = "pending"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReviewStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    FLAGGED = "flagged"
    IGNORED = "ignored"


class RequestInfo(BaseModel):
    """Request context captured with an event."""

    model_config = ConfigDict(frozen=True)

    method: str | None = None
    endpoint: str | None = None
    user_agent: str | None = None
    source_ip: str | None = None
    session_id: str | None = None
    request_id: str | None = None


class ChangeSet(BaseModel):
    """Redacted before/after snapshots of the target."""

    model_config = ConfigDict(frozen=True)

    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


class EventResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ResultStatus = ResultStatus.SUCCESS
    message: str | None = None
    error_code: str | None = None


class EventFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    requires_review: bool = False
    is_security_event: bool = False
    is_compliance: bool = False
    is_automated: bool = False


class EventMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration_ms: int | None = None
    resources_affected: int | None = None
    batch_id: str | None = None
    feature: str | None = None
    version: int | None = None
    tags: list[str] = Field(default_factory=list)


class ReviewAnnotation(BaseModel):
    model_config = ConfigDict(frozen=True)

    reviewed_by: str
    reviewed_at: str
    status: ReviewStatus
    notes: str | None = Field(default=None, max_length=MAX_REVIEW_NOTES_LENGTH)


class AuditEntry(BaseModel):
    """What a caller submits to the trail."""

    model_config = ConfigDict(frozen=True)

    actor_id: str
    actor_role: str | None = None
    action: AdminAction
    target_type: TargetType
    target_id: str | None = None
    target_name: str | None = None
    description: str = Field(max_length=MAX_DESCRIPTION_LENGTH)
    changes: ChangeSet | None = None
    request: RequestInfo = Field(default_factory=RequestInfo)
    result: EventResult = Field(default_factory=EventResult)
    metadata: EventMetadata = Field(default_factory=EventMetadata)


class AdminAuditEvent(BaseModel):
    """Persisted audit event. Immutable except for the review annotation."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    occurred_at: str
    actor_id: str
    actor_role: str | None = None
    action: AdminAction
    target_type: TargetType
    target_id: str | None = None
    target_name: str | None = None
    description: str
    changes: ChangeSet | None = None
    request: RequestInfo
    result: EventResult
    severity: Severity
    flags: EventFlags
    metadata: EventMetadata
    review: ReviewAnnotation | None = None

    def to_record(self) -> dict[str, Any]:
        """Return a JSON-compatible dict for storage."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> AdminAuditEvent:
        return cls.model_validate(record)
