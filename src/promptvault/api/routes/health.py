"""Health check endpoint for the PromptVault API."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from promptvault import __version__

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str
    time: str
    version: str


@router.get("/health", response_model=HealthResponse)
def get_health() -> HealthResponse:
    """Liveness probe. No authentication, no gate, no audit."""
    return HealthResponse(
        status="ok",
        time=datetime.now(UTC).isoformat(),
        version=__version__,
    )
