"""Error taxonomy for PromptVault.

Every failure surfaced to a caller carries a stable machine-readable code, a
display message, and the HTTP status the API layer should use. Components
subclass these bases with their own specific errors.

Design requirements:
- Stable codes: callers branch on ``code``, never on message text
- No secrets or content in ``message`` or ``details``
- Vault failures are fatal and never downgraded
"""

from __future__ import annotations

from typing import Any


class PromptVaultError(Exception):
    """Base class for all PromptVault errors.

    Attributes:
        code: Machine-readable error code (e.g. "DEFINITION_NOT_FOUND").
        message: Human-readable display message.
        http_status: HTTP status the API layer maps this error to.
        details: Optional dict with additional context (no sensitive data).
    """

    default_code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details
        if http_status is not None:
            self.http_status = http_status


class ValidationError(PromptVaultError):
    """Malformed input, rejected before any side effect."""

    default_code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(PromptVaultError):
    """Referenced entity does not exist."""

    default_code = "NOT_FOUND"
    http_status = 404


class ForbiddenError(PromptVaultError):
    """Caller is not allowed to perform the operation."""

    default_code = "FORBIDDEN"
    http_status = 403


class RateLimitedError(PromptVaultError):
    """Rate limit exhausted for the operation class.

    Attributes:
        retry_after_seconds: Seconds until the window admits another call.
    """

    default_code = "RATE_LIMITED"
    http_status = 429

    def __init__(
        self,
        message: str,
        *,
        retry_after_seconds: int,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        merged["retry_after_seconds"] = retry_after_seconds
        super().__init__(message, code=code, details=merged)
        self.retry_after_seconds = retry_after_seconds


class ConflictError(PromptVaultError):
    """State conflict, such as a duplicate key or a lost concurrent update."""

    default_code = "CONFLICT"
    http_status = 409


class ConfigurationError(PromptVaultError):
    """Deployment configuration is missing or invalid."""

    default_code = "CONFIGURATION_ERROR"
    http_status = 500
