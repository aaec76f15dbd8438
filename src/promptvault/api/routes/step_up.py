"""Admin routes for step-up enrollment."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from promptvault.api.deps import Claims, Container, Context
from promptvault.api.responses import respond

router = APIRouter(prefix="/v1/admin/step-up", tags=["Admin: Step-up"])


class ConfirmStepUpRequest(BaseModel):
    code: str


@router.post("/enroll")
def enroll(container: Container, claims: Claims, ctx: Context) -> JSONResponse:
    """Start enrollment. The secret and backup codes are shown only in this response."""
    return respond(container.admin.begin_step_up(claims, ctx))


@router.post("/confirm")
def confirm(
    body: ConfirmStepUpRequest, container: Container, claims: Claims, ctx: Context
) -> JSONResponse:
    return respond(container.admin.confirm_step_up(claims, ctx, code=body.code))
