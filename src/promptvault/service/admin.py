"""Administrative operations on prompt definitions, the audit trail and step-up.

Every operation runs the same sequence:
1. Validate the input (no side effects, no audit on rejection)
2. Access Gate (denials are audited with status error)
3. The store, trail or registry call, with content sealed through the vault
4. Audit append for the attempt, success or failure
5. An ``OperationResult`` that the API turns into a response envelope

Design requirements:
- A mutation succeeds only after every gate predicate passes
- Every attempt past validation is recorded in the audit trail
- Vault errors are never downgraded; plaintext storage needs an explicit flag
- Unexpected exceptions become INTERNAL_ERROR with a generic message
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Final, TypeVar

from promptvault.access.gate import (
    AccessGate,
    ActorContext,
    GateDenied,
    GateStage,
    RequestContext,
)
from promptvault.access.policy import Operation
from promptvault.access.session import SessionClaims
from promptvault.audit.events import (
    AdminAction,
    AuditEntry,
    ChangeSet,
    EventMetadata,
    EventResult,
    RequestInfo,
    ResultStatus,
    ReviewStatus,
    TargetType,
)
from promptvault.audit.query import AuditFilters, decode_cursor, validate_limit
from promptvault.audit.trail import AuditTrail, validate_hours
from promptvault.clock import as_utc
from promptvault.errors import PromptVaultError, ValidationError
from promptvault.prompts.models import (
    MAX_CHANGELOG_LENGTH,
    DefinitionSpec,
    PageScope,
    PromptCategory,
    PromptType,
    PromptVersion,
    parse_definition_spec,
)
from promptvault.prompts.store import PromptVersionStore, validate_deletion_reason
from promptvault.service.redaction import redact
from promptvault.vault.cipher import ContentVault
from promptvault.vault.envelope import PlaintextContent, SealedContent
from promptvault.vault.keys import VaultUnavailable

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH: Final[int] = 100_000
INTERNAL_ERROR_MESSAGE: Final[str] = "An internal error occurred"

_E = TypeVar("_E", bound=StrEnum)


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one service operation.

    Attributes:
        success: Whether the operation completed.
        code: "OK" on success, otherwise the stable error code.
        message: Display message.
        http_status: Status the API layer responds with.
        data: Payload for successful operations.
        details: Error context (never content or secrets).
        request_id: Correlation id of the request.
    """

    success: bool
    code: str
    message: str
    http_status: int = 200
    data: Any = None
    details: dict[str, Any] | None = None
    request_id: str | None = None

    @classmethod
    def ok(
        cls,
        data: Any,
        *,
        message: str = "OK",
        http_status: int = 200,
        request_id: str | None = None,
    ) -> OperationResult:
        return cls(
            success=True,
            code="OK",
            message=message,
            http_status=http_status,
            data=data,
            request_id=request_id,
        )

    @classmethod
    def failure(cls, error: PromptVaultError, request_id: str | None) -> OperationResult:
        return cls(
            success=False,
            code=error.code,
            message=error.message,
            http_status=error.http_status,
            details=error.details,
            request_id=request_id,
        )

    def to_envelope(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data, "request_id": self.request_id}
        return {
            "success": False,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "request_id": self.request_id,
        }


@dataclass(frozen=True)
class _Target:
    target_type: TargetType
    target_id: str | None = None
    target_name: str | None = None


@dataclass(frozen=True)
class _Outcome:
    """What a successful operation returns and how it is audited."""

    data: Any
    description: str
    target_id: str | None = None
    target_name: str | None = None
    changes: ChangeSet | None = None
    http_status: int = 200
    version: int | None = None


@dataclass
class _Progress:
    """Set once the store has committed, so later failures audit as partial."""

    committed: bool = False


def denial_action(denied: GateDenied) -> AdminAction:
    """Audit action for a gate denial."""
    if denied.stage == GateStage.RATE_LIMIT:
        if denied.security_sensitive:
            return AdminAction.SECURITY_RATE_LIMIT_EXCEEDED
        return AdminAction.RATE_LIMIT_EXCEEDED
    if denied.stage == GateStage.STEP_UP:
        if denied.code == "STEP_UP_LOCKED":
            return AdminAction.SECURITY_RATE_LIMIT_EXCEEDED
        return AdminAction.STEP_UP_FAILED
    return AdminAction.UNAUTHORIZED_ACCESS


def _require_text(value: str | None, field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} must not be empty", details={"field": field_name})
    if len(value) > MAX_CONTENT_LENGTH:
        raise ValidationError(
            f"{field_name} is too long",
            details={"field": field_name, "max_length": MAX_CONTENT_LENGTH},
        )
    return value


def _optional_text(value: str | None, field_name: str) -> str | None:
    if value is None or not value.strip():
        return None
    return _require_text(value, field_name)


def _check_changelog(changelog: str) -> str:
    if len(changelog) > MAX_CHANGELOG_LENGTH:
        raise ValidationError(
            f"Changelog must be at most {MAX_CHANGELOG_LENGTH} characters",
            details={"field": "changelog", "max_length": MAX_CHANGELOG_LENGTH},
        )
    return changelog


def _check_ordinal(ordinal: int) -> int:
    if ordinal < 1:
        raise ValidationError("Version ordinal must be at least 1", details={"provided": ordinal})
    return ordinal


def _coerce(enum_cls: type[_E], value: _E | str | None, field_name: str) -> _E | None:
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"Unknown {field_name}",
            details={"field": field_name, "allowed": [m.value for m in enum_cls]},
        ) from None


class PromptAdminService:
    """Gated administrative operations."""

    def __init__(
        self,
        gate: AccessGate,
        store: PromptVersionStore,
        trail: AuditTrail,
        vault: ContentVault | None,
        *,
        allow_plaintext: bool = False,
    ) -> None:
        self._gate = gate
        self._store = store
        self._trail = trail
        self._vault = vault
        self._allow_plaintext = allow_plaintext

    # -- plumbing ---------------------------------------------------------

    def _protect(self, text: str | None, actor_id: str) -> SealedContent | PlaintextContent | None:
        if text is None:
            return None
        if self._vault is not None:
            return self._vault.protect(text, actor_id)
        if self._allow_plaintext:
            logger.warning("Content vault unavailable, storing content with plaintext marker")
            return PlaintextContent(text=text)
        raise VaultUnavailable("Content vault is not configured")

    def _reveal(self, content: SealedContent | PlaintextContent) -> str:
        if isinstance(content, PlaintextContent):
            return content.text
        if self._vault is None:
            raise VaultUnavailable("Content vault is not configured")
        return self._vault.reveal(content)

    @staticmethod
    def _request_info(claims: SessionClaims | None, request: RequestContext) -> RequestInfo:
        return RequestInfo(
            method=request.method,
            endpoint=request.endpoint,
            user_agent=request.user_agent,
            source_ip=request.source_ip,
            session_id=claims.session_id if claims else None,
            request_id=request.request_id,
        )

    def _rejected(self, error: ValidationError, request: RequestContext) -> OperationResult:
        logger.info(
            "Rejected invalid input: %s",
            error.code,
            extra={"request_id": request.request_id},
        )
        return OperationResult.failure(error, request.request_id)

    def _execute(
        self,
        operation: Operation,
        action: AdminAction,
        claims: SessionClaims | None,
        request: RequestContext,
        target: _Target,
        work: Callable[[ActorContext], _Outcome],
        *,
        step_up_code: str | None = None,
        failure_action: AdminAction | None = None,
        defer_audit: bool = False,
        progress: _Progress | None = None,
    ) -> OperationResult:
        info = self._request_info(claims, request)

        try:
            actor = self._gate.authorize(operation, claims, request, step_up_code=step_up_code)
        except GateDenied as denied:
            self._trail.record(
                AuditEntry(
                    actor_id=denied.actor_id,
                    actor_role=denied.actor_role,
                    action=denial_action(denied),
                    target_type=target.target_type,
                    target_id=target.target_id,
                    target_name=target.target_name,
                    description=f"{operation.value} denied: {denied.code}",
                    request=info,
                    result=EventResult(
                        status=ResultStatus.ERROR,
                        message=denied.message,
                        error_code=denied.code,
                    ),
                    metadata=EventMetadata(feature=operation.value),
                )
            )
            return OperationResult.failure(denied, request.request_id)

        def audit_error(code: str, message: str) -> None:
            status = ResultStatus.ERROR
            if progress is not None and progress.committed:
                status = ResultStatus.PARTIAL
            self._trail.record(
                AuditEntry(
                    actor_id=actor.actor_id,
                    actor_role=actor.role.value,
                    action=failure_action or action,
                    target_type=target.target_type,
                    target_id=target.target_id,
                    target_name=target.target_name,
                    description=f"{operation.value} failed: {code}",
                    request=info,
                    result=EventResult(status=status, message=message, error_code=code),
                    metadata=EventMetadata(feature=operation.value),
                )
            )

        try:
            outcome = work(actor)
        except PromptVaultError as e:
            logger.info(
                "%s failed: %s",
                operation.value,
                e.code,
                extra={"request_id": request.request_id, "actor_id": actor.actor_id},
            )
            audit_error(e.code, e.message)
            return OperationResult.failure(e, request.request_id)
        except Exception:
            logger.exception(
                "Unexpected error in %s",
                operation.value,
                extra={"request_id": request.request_id, "actor_id": actor.actor_id},
            )
            audit_error("INTERNAL_ERROR", INTERNAL_ERROR_MESSAGE)
            return OperationResult(
                success=False,
                code="INTERNAL_ERROR",
                message=INTERNAL_ERROR_MESSAGE,
                http_status=500,
                request_id=request.request_id,
            )

        entry = AuditEntry(
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            action=action,
            target_type=target.target_type,
            target_id=outcome.target_id or target.target_id,
            target_name=outcome.target_name or target.target_name,
            description=outcome.description,
            changes=outcome.changes,
            request=info,
            result=EventResult(status=ResultStatus.SUCCESS),
            metadata=EventMetadata(feature=operation.value, version=outcome.version),
        )
        if defer_audit:
            self._trail.record_deferred(entry)
        else:
            self._trail.record(entry)
        return OperationResult.ok(
            outcome.data, http_status=outcome.http_status, request_id=request.request_id
        )

    # -- prompt definitions -----------------------------------------------

    def create_definition(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        *,
        spec: DefinitionSpec | Mapping[str, Any],
        content: str,
        system_instruction: str | None = None,
        changelog: str = "Initial version",
    ) -> OperationResult:
        """Create a definition whose first version is active."""
        try:
            parsed = spec if isinstance(spec, DefinitionSpec) else parse_definition_spec(dict(spec))
            body = _require_text(content, "content")
            system = _optional_text(system_instruction, "system_instruction")
            _check_changelog(changelog)
        except ValidationError as e:
            return self._rejected(e, request)

        progress = _Progress()

        def work(actor: ActorContext) -> _Outcome:
            definition = self._store.create_definition(
                parsed,
                self._protect(body, actor.actor_id),
                author=actor.actor_id,
                system_instruction=self._protect(system, actor.actor_id),
                changelog=changelog,
            )
            progress.committed = True
            view = definition.metadata_view()
            return _Outcome(
                data=view,
                description=f"Created prompt definition '{definition.key}'",
                target_id=definition.definition_id,
                target_name=definition.name,
                changes=ChangeSet(after=redact(view)),
                http_status=201,
                version=1,
            )

        return self._execute(
            Operation.CREATE_DEFINITION,
            AdminAction.PROMPT_CREATED,
            claims,
            request,
            _Target(TargetType.PROMPT, target_name=parsed.name),
            work,
            progress=progress,
        )

    def add_version(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        definition_id: str,
        *,
        content: str,
        system_instruction: str | None = None,
        changelog: str = "",
    ) -> OperationResult:
        """Append an inactive version to a definition."""
        try:
            body = _require_text(content, "content")
            system = _optional_text(system_instruction, "system_instruction")
            _check_changelog(changelog)
        except ValidationError as e:
            return self._rejected(e, request)

        progress = _Progress()

        def work(actor: ActorContext) -> _Outcome:
            ordinal = self._store.add_version(
                definition_id,
                self._protect(body, actor.actor_id),
                author=actor.actor_id,
                system_instruction=self._protect(system, actor.actor_id),
                changelog=changelog,
            )
            progress.committed = True
            return _Outcome(
                data={"definition_id": definition_id, "ordinal": ordinal},
                description=f"Added version {ordinal}",
                changes=ChangeSet(after={"ordinal": ordinal, "changelog": changelog}),
                http_status=201,
                version=ordinal,
            )

        return self._execute(
            Operation.ADD_VERSION,
            AdminAction.PROMPT_VERSION_ADDED,
            claims,
            request,
            _Target(TargetType.PROMPT, definition_id),
            work,
            progress=progress,
        )

    def activate_version(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        definition_id: str,
        ordinal: int,
    ) -> OperationResult:
        """Make one version the active version."""
        try:
            _check_ordinal(ordinal)
        except ValidationError as e:
            return self._rejected(e, request)

        progress = _Progress()

        def work(actor: ActorContext) -> _Outcome:
            before = self._store.get_definition(definition_id).current_version
            definition = self._store.activate_version(
                definition_id, ordinal, activated_by=actor.actor_id
            )
            progress.committed = True
            return _Outcome(
                data=definition.metadata_view(),
                description=f"Activated version {ordinal}",
                target_name=definition.name,
                changes=ChangeSet(
                    before={"current_version": before},
                    after={"current_version": definition.current_version},
                ),
                version=ordinal,
            )

        return self._execute(
            Operation.ACTIVATE_VERSION,
            AdminAction.PROMPT_ACTIVATED,
            claims,
            request,
            _Target(TargetType.PROMPT, definition_id),
            work,
            progress=progress,
        )

    def list_for_editing(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        definition_id: str,
    ) -> OperationResult:
        """Return a definition with every version body decrypted."""

        def version_view(version: PromptVersion) -> dict[str, Any]:
            return {
                "ordinal": version.ordinal,
                "is_active": version.is_active,
                "author": version.author,
                "changelog": version.changelog,
                "created_at": version.created_at,
                "encrypted": version.content.kind == "sealed",
                "content": self._reveal(version.content),
                "system_instruction": (
                    self._reveal(version.system_instruction)
                    if version.system_instruction is not None
                    else None
                ),
            }

        def work(actor: ActorContext) -> _Outcome:
            definition = self._store.get_definition(definition_id)
            data = definition.metadata_view()
            data["versions"] = [version_view(v) for v in definition.versions]
            return _Outcome(
                data=data,
                description=f"Viewed {len(definition.versions)} version bodies for editing",
                target_name=definition.name,
            )

        return self._execute(
            Operation.LIST_FOR_EDITING,
            AdminAction.PROMPT_CONTENT_VIEWED,
            claims,
            request,
            _Target(TargetType.PROMPT, definition_id),
            work,
            defer_audit=True,
        )

    def delete_definition(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        definition_id: str,
        *,
        reason: str,
        step_up_code: str | None = None,
    ) -> OperationResult:
        """Tombstone a definition. Needs a justification and a step-up code."""
        try:
            stripped = validate_deletion_reason(reason)
        except ValidationError as e:
            return self._rejected(e, request)

        progress = _Progress()

        def work(actor: ActorContext) -> _Outcome:
            definition = self._store.delete_definition(
                definition_id, deleted_by=actor.actor_id, reason=stripped
            )
            progress.committed = True
            return _Outcome(
                data={"definition_id": definition_id, "deleted": True},
                description=f"Deleted prompt definition '{definition.key}': {stripped}",
                target_name=definition.name,
                changes=ChangeSet(
                    before={"is_active": True},
                    after={"is_active": False, "deleted_reason": stripped},
                ),
            )

        return self._execute(
            Operation.DELETE_DEFINITION,
            AdminAction.PROMPT_DELETED,
            claims,
            request,
            _Target(TargetType.PROMPT, definition_id),
            work,
            step_up_code=step_up_code,
            progress=progress,
        )

    def set_definition_active(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        definition_id: str,
        *,
        is_active: bool,
    ) -> OperationResult:
        """Enable or disable a definition on the read path without touching versions."""
        progress = _Progress()

        def work(actor: ActorContext) -> _Outcome:
            before = self._store.get_definition(definition_id).is_active
            definition = self._store.set_active(
                definition_id, is_active, changed_by=actor.actor_id
            )
            progress.committed = True
            return _Outcome(
                data=definition.metadata_view(),
                description=f"{'Enabled' if is_active else 'Disabled'} prompt definition",
                target_name=definition.name,
                changes=ChangeSet(before={"is_active": before}, after={"is_active": is_active}),
            )

        return self._execute(
            Operation.SET_DEFINITION_ACTIVE,
            AdminAction.PROMPT_ACTIVATED if is_active else AdminAction.PROMPT_DEACTIVATED,
            claims,
            request,
            _Target(TargetType.PROMPT, definition_id),
            work,
            progress=progress,
        )

    def renew_sealed_content(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        definition_id: str,
    ) -> OperationResult:
        """Reseal every version body of a definition with a fresh timestamp.

        Works on envelopes past the staleness bound, which is how expired
        content is brought back into service.
        """
        progress = _Progress()

        def work(actor: ActorContext) -> _Outcome:
            if self._vault is None:
                raise VaultUnavailable("Content vault is not configured")
            renewed = self._store.renew_content(
                definition_id, self._vault.renew, renewed_by=actor.actor_id
            )
            progress.committed = True
            return _Outcome(
                data={"definition_id": definition_id, "renewed_versions": renewed},
                description=f"Renewed sealed content of {renewed} versions",
                changes=ChangeSet(after={"renewed_versions": renewed}),
            )

        return self._execute(
            Operation.RENEW_CONTENT,
            AdminAction.PROMPT_UPDATED,
            claims,
            request,
            _Target(TargetType.PROMPT, definition_id),
            work,
            progress=progress,
        )

    def list_definitions(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        *,
        prompt_type: PromptType | str | None = None,
        category: PromptCategory | str | None = None,
        page_scope: PageScope | str | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> OperationResult:
        """Admin listing of definitions, including disabled and private ones.

        Tombstoned definitions are never listed. Only metadata is returned.
        """
        try:
            type_filter = _coerce(PromptType, prompt_type, "prompt_type")
            category_filter = _coerce(PromptCategory, category, "category")
            scope_filter = _coerce(PageScope, page_scope, "page_scope")
            validate_limit(limit)
            if offset < 0:
                raise ValidationError("offset must not be negative", details={"provided": offset})
        except ValidationError as e:
            return self._rejected(e, request)

        def work(actor: ActorContext) -> _Outcome:
            definitions = self._store.list_definitions(
                prompt_type=type_filter,
                category=category_filter,
                page_scope=scope_filter,
                is_active=is_active,
            )
            page = definitions[offset : offset + limit]
            return _Outcome(
                data={
                    "items": [d.metadata_view() for d in page],
                    "total": len(definitions),
                    "limit": limit,
                    "offset": offset,
                },
                description=f"Listed {len(page)} of {len(definitions)} prompt definitions",
            )

        return self._execute(
            Operation.LIST_DEFINITIONS,
            AdminAction.ANALYTICS_ACCESSED,
            claims,
            request,
            _Target(TargetType.PROMPT, target_name="prompt_catalog"),
            work,
            defer_audit=True,
        )

    # -- audit trail ------------------------------------------------------

    def _read_audit(
        self,
        operation: Operation,
        claims: SessionClaims | None,
        request: RequestContext,
        fetch: Callable[[], Any],
        description: str,
    ) -> OperationResult:
        return self._execute(
            operation,
            AdminAction.ANALYTICS_ACCESSED,
            claims,
            request,
            _Target(TargetType.SYSTEM, target_name="audit_trail"),
            lambda actor: _Outcome(data=fetch(), description=description),
            defer_audit=True,
        )

    def query_audit(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        *,
        filters: AuditFilters | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> OperationResult:
        try:
            validate_limit(limit)
            if cursor:
                decode_cursor(cursor)
        except ValidationError as e:
            return self._rejected(e, request)

        def fetch() -> dict[str, Any]:
            page = self._trail.query(filters, limit=limit, cursor=cursor)
            return {
                "items": [event.to_record() for event in page.items],
                "next_cursor": page.next_cursor,
            }

        return self._read_audit(
            Operation.QUERY_AUDIT, claims, request, fetch, "Queried audit events"
        )

    def security_events(
        self, claims: SessionClaims | None, request: RequestContext, *, hours: int = 24
    ) -> OperationResult:
        try:
            validate_hours(hours)
        except ValidationError as e:
            return self._rejected(e, request)
        return self._read_audit(
            Operation.SECURITY_EVENTS,
            claims,
            request,
            lambda: [e.to_record() for e in self._trail.security_events(hours)],
            f"Listed security events for the last {hours}h",
        )

    def failed_events(
        self, claims: SessionClaims | None, request: RequestContext, *, hours: int = 24
    ) -> OperationResult:
        try:
            validate_hours(hours)
        except ValidationError as e:
            return self._rejected(e, request)
        return self._read_audit(
            Operation.FAILED_EVENTS,
            claims,
            request,
            lambda: [e.to_record() for e in self._trail.failed_events(hours)],
            f"Listed failed events for the last {hours}h",
        )

    def stats_by_actor(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> OperationResult:
        start = as_utc(start) if start is not None else None
        end = as_utc(end) if end is not None else None
        if start is not None and end is not None and start > end:
            return self._rejected(ValidationError("start must not be after end"), request)

        def fetch() -> list[dict[str, Any]]:
            return [
                {
                    "actor_id": s.actor_id,
                    "total": s.total,
                    "success": s.success,
                    "failed": s.failed,
                    "security_events": s.security_events,
                    "success_rate": s.success_rate,
                    "last_activity": s.last_activity,
                }
                for s in self._trail.stats_by_actor(start, end)
            ]

        return self._read_audit(
            Operation.STATS_BY_ACTOR, claims, request, fetch, "Computed per-actor audit statistics"
        )

    def review_audit_event(
        self,
        claims: SessionClaims | None,
        request: RequestContext,
        event_id: str,
        *,
        status: ReviewStatus | str,
        notes: str | None = None,
    ) -> OperationResult:
        """Annotate an audit event with a review decision."""
        try:
            review_status = ReviewStatus(status)
        except ValueError:
            return self._rejected(
                ValidationError(
                    "Unknown review status",
                    details={"allowed": [s.value for s in ReviewStatus]},
                ),
                request,
            )

        def work(actor: ActorContext) -> _Outcome:
            event = self._trail.mark_reviewed(
                event_id, reviewed_by=actor.actor_id, status=review_status, notes=notes
            )
            return _Outcome(
                data=event.to_record(),
                description=f"Reviewed audit event as {review_status.value}",
                changes=ChangeSet(after={"review_status": review_status.value}),
            )

        return self._execute(
            Operation.REVIEW_AUDIT_EVENT,
            AdminAction.AUDIT_REVIEWED,
            claims,
            request,
            _Target(TargetType.SYSTEM, event_id, "audit_event"),
            work,
        )

    # -- step-up ----------------------------------------------------------

    def begin_step_up(
        self, claims: SessionClaims | None, request: RequestContext
    ) -> OperationResult:
        """Start step-up enrollment. The secret and backup codes are returned once."""

        def work(actor: ActorContext) -> _Outcome:
            start = self._gate.step_up.begin_enrollment(actor.actor_id)
            return _Outcome(
                data={
                    "secret": start.secret,
                    "provisioning_uri": start.provisioning_uri,
                    "backup_codes": list(start.backup_codes),
                },
                description="Started step-up enrollment",
                target_id=actor.actor_id,
                http_status=201,
            )

        return self._execute(
            Operation.STEP_UP_ENROLL,
            AdminAction.STEP_UP_ENROLLMENT_STARTED,
            claims,
            request,
            _Target(TargetType.USER),
            work,
        )

    def confirm_step_up(
        self, claims: SessionClaims | None, request: RequestContext, *, code: str
    ) -> OperationResult:
        """Confirm enrollment with a current one-time code."""
        if not code or not code.strip():
            return self._rejected(
                ValidationError("code must not be empty", details={"field": "code"}), request
            )

        def work(actor: ActorContext) -> _Outcome:
            if not self._gate.step_up.confirm_enrollment(actor.actor_id, code):
                raise PromptVaultError(
                    "Invalid step-up code", code="STEP_UP_INVALID", http_status=403
                )
            return _Outcome(
                data={"enabled": True},
                description="Enabled step-up verification",
                target_id=actor.actor_id,
            )

        return self._execute(
            Operation.STEP_UP_CONFIRM,
            AdminAction.TWO_FACTOR_ENABLED,
            claims,
            request,
            _Target(TargetType.USER),
            work,
            failure_action=AdminAction.STEP_UP_FAILED,
        )
