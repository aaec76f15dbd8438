"""Database connectivity for PromptVault.

Provides engine creation and schema bootstrap for the SQL-backed prompt and
audit repositories. Works with PostgreSQL and SQLite URLs.

Environment Variables:
    PROMPTVAULT_DATABASE_URL: Connection string (unset means in-memory repositories)

Schema:
    prompt_definitions: one document row per definition, CAS on ``revision``
    audit_events: append-only event rows with query indexes
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, text

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

PROMPTVAULT_DATABASE_URL_ENV = "PROMPTVAULT_DATABASE_URL"

_app_engine: Engine | None = None

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS prompt_definitions (
        definition_id VARCHAR(64) PRIMARY KEY,
        prompt_key VARCHAR(64) NOT NULL UNIQUE,
        name VARCHAR(100) NOT NULL UNIQUE,
        revision INTEGER NOT NULL,
        popularity_score DOUBLE PRECISION NOT NULL DEFAULT 0,
        is_deleted INTEGER NOT NULL DEFAULT 0,
        document TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_events (
        event_id VARCHAR(64) PRIMARY KEY,
        occurred_at VARCHAR(40) NOT NULL,
        actor_id VARCHAR(128) NOT NULL,
        action VARCHAR(64) NOT NULL,
        target_type VARCHAR(32) NOT NULL,
        target_id TEXT,
        severity VARCHAR(16) NOT NULL,
        result_status VARCHAR(16) NOT NULL,
        is_security_event INTEGER NOT NULL,
        requires_review INTEGER NOT NULL,
        document TEXT NOT NULL,
        review TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_audit_actor_time ON audit_events (actor_id, occurred_at)",
    "CREATE INDEX IF NOT EXISTS ix_audit_action_time ON audit_events (action, occurred_at)",
    "CREATE INDEX IF NOT EXISTS ix_audit_target ON audit_events (target_type, target_id)",
    "CREATE INDEX IF NOT EXISTS ix_audit_severity_time ON audit_events (severity, occurred_at)",
    "CREATE INDEX IF NOT EXISTS ix_audit_security_time "
    "ON audit_events (is_security_event, occurred_at)",
)


class DatabaseConfigError(Exception):
    """Raised when database configuration is missing or invalid."""


def is_database_configured() -> bool:
    """Return True if PROMPTVAULT_DATABASE_URL is set."""
    return bool(os.environ.get(PROMPTVAULT_DATABASE_URL_ENV))


def _normalize_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str) -> Engine:
    """Create an engine for the given URL.

    SQLite engines skip the connection pool sizing used for PostgreSQL.
    """
    url = _normalize_url(url)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_size=5, max_overflow=10, pool_pre_ping=True)


def get_app_engine() -> Engine:
    """Get or create the application database engine.

    Raises:
        DatabaseConfigError: If PROMPTVAULT_DATABASE_URL is not set.
    """
    global _app_engine

    if _app_engine is None:
        url = os.environ.get(PROMPTVAULT_DATABASE_URL_ENV)
        if not url:
            raise DatabaseConfigError(
                f"Database URL not configured. Set {PROMPTVAULT_DATABASE_URL_ENV}."
            )
        _app_engine = make_engine(url)
        logger.info("Created application database engine")

    return _app_engine


def ensure_schema(engine: Engine) -> None:
    """Create tables and indexes if they do not exist."""
    with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(text(statement))


def reset_engines() -> None:
    """Dispose the cached engine (used by tests)."""
    global _app_engine
    if _app_engine is not None:
        _app_engine.dispose()
        _app_engine = None
