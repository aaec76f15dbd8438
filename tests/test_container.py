"""Tests for component wiring from the environment.

Tests cover:
1. In-memory and SQL repositories selected by PROMPTVAULT_DATABASE_URL
2. Vault failures are fatal unless the plaintext fallback is enabled
3. The app factory runs the startup secret check
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from promptvault.api.main import create_app
from promptvault.container import build_container_from_env
from promptvault.errors import ConfigurationError
from promptvault.persistence.db import DatabaseConfigError, get_app_engine, reset_engines
from promptvault.prompts.repository import InMemoryPromptRepository, SqlPromptRepository
from promptvault.vault.keys import VaultUnavailable


@pytest.fixture(autouse=True)
def fresh_engine() -> Iterator[None]:
    reset_engines()
    yield
    reset_engines()


class TestBuildFromEnv:
    """build_container_from_env."""

    def test_in_memory_by_default(self) -> None:
        container = build_container_from_env()

        assert isinstance(container.store.repository, InMemoryPromptRepository)
        assert container.vault is not None
        container.close()

    def test_sql_when_database_configured(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv("PROMPTVAULT_DATABASE_URL", f"sqlite:///{tmp_path / 'pv.db'}")

        container = build_container_from_env()

        assert isinstance(container.store.repository, SqlPromptRepository)
        assert get_app_engine() is get_app_engine()
        container.close()

    def test_vault_missing_is_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PROMPTVAULT_MASTER_SECRET")

        with pytest.raises(VaultUnavailable):
            build_container_from_env()

    def test_plaintext_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PROMPTVAULT_MASTER_SECRET")
        monkeypatch.setenv("PROMPTVAULT_ALLOW_PLAINTEXT", "1")

        container = build_container_from_env()

        assert container.vault is None
        container.close()

    def test_engine_requires_url(self) -> None:
        with pytest.raises(DatabaseConfigError):
            get_app_engine()


class TestCreateApp:
    """App factory without a prebuilt container."""

    def test_fails_closed_on_weak_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTVAULT_SESSION_SECRET", "short")

        with pytest.raises(ConfigurationError):
            create_app()

    def test_builds_from_env(self) -> None:
        app = create_app()

        assert app.version == "0.1.0"
        app.state.container.close()
