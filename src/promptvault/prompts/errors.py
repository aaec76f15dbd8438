"""Version Store errors."""

from __future__ import annotations

from promptvault.errors import ConflictError, NotFoundError


class DefinitionNotFound(NotFoundError):
    default_code = "DEFINITION_NOT_FOUND"


class VersionNotFound(NotFoundError):
    default_code = "VERSION_NOT_FOUND"


class DuplicateKey(ConflictError):
    """A definition with the same key or name already exists."""

    default_code = "DUPLICATE_KEY"


class ConcurrentUpdateError(ConflictError):
    """The definition kept changing underneath the update."""

    default_code = "CONCURRENT_UPDATE"


class ActivationConflict(ConcurrentUpdateError):
    default_code = "ACTIVATION_CONFLICT"
