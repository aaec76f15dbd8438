"""Tests for deployment environment and startup secret checks.

Tests cover:
1. Environment detection, unknown values treated as production
2. Development bypass flags are ignored in production
3. Startup secret check reports missing and weak secrets
"""

from __future__ import annotations

import pytest

from promptvault.config import (
    Environment,
    check_environment,
    development_bypass,
    env_flag,
    get_environment,
    is_production,
    validate_environment,
)
from promptvault.errors import ConfigurationError


class TestEnvironment:
    """PROMPTVAULT_ENV handling."""

    def test_default_is_development(self) -> None:
        assert get_environment() == Environment.DEVELOPMENT
        assert is_production() is False

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("production", Environment.PRODUCTION),
            (" Staging ", Environment.STAGING),
            ("development", Environment.DEVELOPMENT),
            ("prod", Environment.PRODUCTION),
        ],
    )
    def test_values(
        self, monkeypatch: pytest.MonkeyPatch, raw: str, expected: Environment
    ) -> None:
        monkeypatch.setenv("PROMPTVAULT_ENV", raw)

        assert get_environment() == expected


class TestFlags:
    """Boolean flags and bypasses."""

    @pytest.mark.parametrize(
        "raw,expected",
        [("1", True), ("TRUE", True), ("yes", True), ("0", False), ("", False)],
    )
    def test_env_flag(self, monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
        monkeypatch.setenv("PROMPTVAULT_BYPASS_STEP_UP", raw)

        assert env_flag("PROMPTVAULT_BYPASS_STEP_UP") is expected

    def test_bypass_honored_outside_production(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTVAULT_BYPASS_STEP_UP", "1")
        monkeypatch.setenv("PROMPTVAULT_ENV", "staging")

        assert development_bypass("PROMPTVAULT_BYPASS_STEP_UP") is True

    def test_bypass_ignored_in_production(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTVAULT_BYPASS_STEP_UP", "1")
        monkeypatch.setenv("PROMPTVAULT_ENV", "production")

        assert development_bypass("PROMPTVAULT_BYPASS_STEP_UP") is False


class TestSecretCheck:
    """Startup validation."""

    def test_all_present(self) -> None:
        report = validate_environment()

        assert report.ok is True
        assert report.missing == ()
        assert report.weak == ()

    def test_missing_and_weak(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PROMPTVAULT_MASTER_SECRET")
        monkeypatch.setenv("PROMPTVAULT_SESSION_SECRET", "too-short")

        report = check_environment()

        assert report.ok is False
        assert report.missing == ("PROMPTVAULT_MASTER_SECRET",)
        assert report.weak == ("PROMPTVAULT_SESSION_SECRET",)

    def test_validate_fails_closed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PROMPTVAULT_ROTATION_SECRET")

        with pytest.raises(ConfigurationError) as exc_info:
            validate_environment()

        assert exc_info.value.details == {
            "missing": ["PROMPTVAULT_ROTATION_SECRET"],
            "weak": [],
        }
