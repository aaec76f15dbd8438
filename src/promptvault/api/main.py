"""PromptVault FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from promptvault import __version__
from promptvault.api.errors import (
    generic_exception_handler,
    http_exception_handler,
    promptvault_error_handler,
    request_validation_error_handler,
)
from promptvault.api.middleware.request_id import RequestIdMiddleware
from promptvault.api.routes.audit import router as audit_router
from promptvault.api.routes.catalog import router as catalog_router
from promptvault.api.routes.health import router as health_router
from promptvault.api.routes.prompts import router as prompts_router
from promptvault.api.routes.step_up import router as step_up_router
from promptvault.config import validate_environment
from promptvault.container import ServiceContainer, build_container_from_env
from promptvault.errors import PromptVaultError
from promptvault.observability.tracing import configure_tracing, instrument_fastapi


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the PromptVault FastAPI application.

    This factory:
    - Builds the service container from the environment unless one is given
      (the startup secret check runs first and fails closed)
    - Registers RequestIdMiddleware and the error envelope handlers
    - Mounts the health router (no auth) and the /v1 routers

    Args:
        container: Pre-built components, for tests. If None, built from env.

    Returns:
        Configured FastAPI application instance.
    """
    if container is None:
        validate_environment()
        container = build_container_from_env()

    app = FastAPI(
        title="PromptVault API",
        description="Governed, encrypted, audited prompt definitions",
        version=__version__,
    )
    app.state.container = container

    configure_tracing()

    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Flush deferred audit writes."""
        container.close()

    app.add_exception_handler(PromptVaultError, promptvault_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(catalog_router)
    app.include_router(prompts_router)
    app.include_router(audit_router)
    app.include_router(step_up_router)

    return app
