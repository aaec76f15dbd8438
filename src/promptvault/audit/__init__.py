"""PromptVault Audit module - append-only administrative audit trail."""

from promptvault.audit.classification import ACTION_CLASSIFICATION, Classification, classify
from promptvault.audit.events import (
    AdminAction,
    AdminAuditEvent,
    AuditEntry,
    ChangeSet,
    EventMetadata,
    EventResult,
    RequestInfo,
    ResultStatus,
    ReviewStatus,
    Severity,
    TargetType,
)
from promptvault.audit.query import AuditEventsPage, AuditFilters
from promptvault.audit.store import (
    AuditStore,
    AuditStoreError,
    InMemoryAuditStore,
    JsonlAuditStore,
    SqlAuditStore,
    get_audit_store,
)
from promptvault.audit.trail import ActionTrend, ActorStats, AuditEventNotFound, AuditTrail

__all__ = [
    "ACTION_CLASSIFICATION",
    "ActionTrend",
    "ActorStats",
    "AdminAction",
    "AdminAuditEvent",
    "AuditEntry",
    "AuditEventNotFound",
    "AuditEventsPage",
    "AuditFilters",
    "AuditStore",
    "AuditStoreError",
    "AuditTrail",
    "ChangeSet",
    "Classification",
    "EventMetadata",
    "EventResult",
    "InMemoryAuditStore",
    "JsonlAuditStore",
    "RequestInfo",
    "ResultStatus",
    "ReviewStatus",
    "Severity",
    "SqlAuditStore",
    "TargetType",
    "classify",
    "get_audit_store",
]
