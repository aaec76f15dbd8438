"""Request-scoped dependencies for PromptVault routes.

Session claims come from ``Authorization: Bearer <session token>``. A missing
or invalid token yields no claims, so the gate reports UNAUTHENTICATED and the
attempt is audited like any other denial.

The source IP is the socket peer address. Set
PROMPTVAULT_TRUST_FORWARDED_FOR=1 behind a trusted reverse proxy to use the
first X-Forwarded-For entry instead.
"""

from __future__ import annotations

import logging
from typing import Annotated, Final

from fastapi import Depends, Request

from promptvault.access.gate import RequestContext
from promptvault.access.session import InvalidSession, SessionClaims
from promptvault.config import env_flag
from promptvault.container import ServiceContainer

logger = logging.getLogger(__name__)

BEARER_PREFIX: Final[str] = "Bearer "
STEP_UP_HEADER: Final[str] = "X-Step-Up-Code"
ENV_TRUST_FORWARDED_FOR: Final[str] = "PROMPTVAULT_TRUST_FORWARDED_FOR"


def get_container(request: Request) -> ServiceContainer:
    container: ServiceContainer = request.app.state.container
    return container


def _extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith(BEARER_PREFIX):
        return auth_header[len(BEARER_PREFIX) :].strip() or None
    return None


def get_session_claims(
    request: Request,
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> SessionClaims | None:
    token = _extract_bearer_token(request)
    if token is None:
        return None
    try:
        return container.sessions.decode(token)
    except InvalidSession as e:
        logger.info(
            "Rejected session token: %s",
            e.code,
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        return None


def _source_ip(request: Request) -> str | None:
    if env_flag(ENV_TRUST_FORWARDED_FOR):
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        source_ip=_source_ip(request),
        method=request.method,
        endpoint=request.url.path,
        user_agent=request.headers.get("User-Agent"),
        request_id=getattr(request.state, "request_id", None),
    )


Container = Annotated[ServiceContainer, Depends(get_container)]
Claims = Annotated[SessionClaims | None, Depends(get_session_claims)]
Context = Annotated[RequestContext, Depends(get_request_context)]
