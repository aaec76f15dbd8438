"""Admin routes for prompt definitions.

All routes delegate to ``PromptAdminService``, which validates, runs the
access gate, performs the change and records the audit event.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from promptvault.api.deps import STEP_UP_HEADER, Claims, Container, Context
from promptvault.api.responses import respond
from promptvault.audit.query import DEFAULT_PAGE_LIMIT
from promptvault.prompts.models import PageScope, PromptCategory, PromptType

router = APIRouter(prefix="/v1/admin/prompts", tags=["Admin: Prompts"])


class CreatePromptRequest(BaseModel):
    definition: dict[str, Any]
    content: str
    system_instruction: str | None = None
    changelog: str = "Initial version"


class AddVersionRequest(BaseModel):
    content: str
    system_instruction: str | None = None
    changelog: str = ""


class DeletePromptRequest(BaseModel):
    reason: str = Field(description="Justification, at least 5 characters")


class SetActiveRequest(BaseModel):
    is_active: bool


StepUpCode = Annotated[str | None, Header(alias=STEP_UP_HEADER)]


@router.get("")
def list_prompts(
    container: Container,
    claims: Claims,
    ctx: Context,
    prompt_type: PromptType | None = None,
    category: PromptCategory | None = None,
    page_scope: PageScope | None = None,
    is_active: bool | None = None,
    limit: int = Query(default=DEFAULT_PAGE_LIMIT),
    offset: int = 0,
) -> JSONResponse:
    return respond(
        container.admin.list_definitions(
            claims,
            ctx,
            prompt_type=prompt_type,
            category=category,
            page_scope=page_scope,
            is_active=is_active,
            limit=limit,
            offset=offset,
        )
    )


@router.post("")
def create_prompt(
    body: CreatePromptRequest, container: Container, claims: Claims, ctx: Context
) -> JSONResponse:
    return respond(
        container.admin.create_definition(
            claims,
            ctx,
            spec=body.definition,
            content=body.content,
            system_instruction=body.system_instruction,
            changelog=body.changelog,
        )
    )


@router.post("/{definition_id}/versions")
def add_version(
    definition_id: str,
    body: AddVersionRequest,
    container: Container,
    claims: Claims,
    ctx: Context,
) -> JSONResponse:
    return respond(
        container.admin.add_version(
            claims,
            ctx,
            definition_id,
            content=body.content,
            system_instruction=body.system_instruction,
            changelog=body.changelog,
        )
    )


@router.post("/{definition_id}/versions/{ordinal}/activate")
def activate_version(
    definition_id: str, ordinal: int, container: Container, claims: Claims, ctx: Context
) -> JSONResponse:
    return respond(container.admin.activate_version(claims, ctx, definition_id, ordinal))


@router.get("/{definition_id}")
def list_for_editing(
    definition_id: str, container: Container, claims: Claims, ctx: Context
) -> JSONResponse:
    return respond(container.admin.list_for_editing(claims, ctx, definition_id))


@router.delete("/{definition_id}")
def delete_prompt(
    definition_id: str,
    body: DeletePromptRequest,
    container: Container,
    claims: Claims,
    ctx: Context,
    step_up_code: StepUpCode = None,
) -> JSONResponse:
    return respond(
        container.admin.delete_definition(
            claims, ctx, definition_id, reason=body.reason, step_up_code=step_up_code
        )
    )


@router.patch("/{definition_id}")
def set_prompt_active(
    definition_id: str,
    body: SetActiveRequest,
    container: Container,
    claims: Claims,
    ctx: Context,
) -> JSONResponse:
    return respond(
        container.admin.set_definition_active(
            claims, ctx, definition_id, is_active=body.is_active
        )
    )


@router.post("/{definition_id}/reseal")
def renew_sealed_content(
    definition_id: str, container: Container, claims: Claims, ctx: Context
) -> JSONResponse:
    return respond(container.admin.renew_sealed_content(claims, ctx, definition_id))
