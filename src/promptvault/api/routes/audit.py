"""Admin routes for the audit trail.

Queries order by occurred_at DESC, event_id DESC with cursor pagination.
Naive timestamps in query parameters are taken as UTC.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from promptvault.api.deps import Claims, Container, Context
from promptvault.api.responses import respond
from promptvault.audit.events import (
    MAX_REVIEW_NOTES_LENGTH,
    AdminAction,
    ResultStatus,
    ReviewStatus,
    Severity,
    TargetType,
)
from promptvault.audit.query import DEFAULT_PAGE_LIMIT, AuditFilters

router = APIRouter(prefix="/v1/admin/audit", tags=["Admin: Audit"])


class ReviewRequest(BaseModel):
    status: ReviewStatus
    notes: str | None = Field(default=None, max_length=MAX_REVIEW_NOTES_LENGTH)


@router.get("/events")
def query_events(
    container: Container,
    claims: Claims,
    ctx: Context,
    actor_id: str | None = None,
    action: AdminAction | None = None,
    target_type: TargetType | None = None,
    target_id: str | None = None,
    severity: Severity | None = None,
    result_status: ResultStatus | None = None,
    is_security_event: bool | None = None,
    requires_review: bool | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(default=DEFAULT_PAGE_LIMIT),
    cursor: str | None = None,
) -> JSONResponse:
    filters = AuditFilters(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        severity=severity,
        result_status=result_status,
        is_security_event=is_security_event,
        requires_review=requires_review,
        since=since,
        until=until,
    )
    return respond(
        container.admin.query_audit(claims, ctx, filters=filters, limit=limit, cursor=cursor)
    )


@router.get("/security-events")
def security_events(
    container: Container, claims: Claims, ctx: Context, hours: int = 24
) -> JSONResponse:
    return respond(container.admin.security_events(claims, ctx, hours=hours))


@router.get("/failed-events")
def failed_events(
    container: Container, claims: Claims, ctx: Context, hours: int = 24
) -> JSONResponse:
    return respond(container.admin.failed_events(claims, ctx, hours=hours))


@router.get("/stats")
def stats_by_actor(
    container: Container,
    claims: Claims,
    ctx: Context,
    start: datetime | None = None,
    end: datetime | None = None,
) -> JSONResponse:
    return respond(
        container.admin.stats_by_actor(claims, ctx, start=start, end=end)
    )


@router.post("/events/{event_id}/review")
def review_event(
    event_id: str, body: ReviewRequest, container: Container, claims: Claims, ctx: Context
) -> JSONResponse:
    return respond(
        container.admin.review_audit_event(
            claims, ctx, event_id, status=body.status, notes=body.notes
        )
    )
