"""PromptVault persistence helpers."""

from promptvault.persistence.db import (
    DatabaseConfigError,
    ensure_schema,
    get_app_engine,
    is_database_configured,
    make_engine,
)

__all__ = [
    "DatabaseConfigError",
    "ensure_schema",
    "get_app_engine",
    "is_database_configured",
    "make_engine",
]
