"""Read-path catalog route: redacted metadata of usable definitions."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from promptvault.api.deps import Claims, Container, Context
from promptvault.api.responses import success
from promptvault.prompts.models import PageScope, PromptCategory, PromptType

router = APIRouter(prefix="/v1", tags=["Catalog"])


@router.get("/prompts")
def list_prompts(
    container: Container,
    claims: Claims,
    ctx: Context,
    prompt_type: PromptType | None = None,
    category: PromptCategory | None = None,
    page_scope: PageScope | None = None,
) -> JSONResponse:
    items = container.reader.catalog(
        claims, ctx, prompt_type=prompt_type, category=category, page_scope=page_scope
    )
    return success(items, request_id=ctx.request_id)
