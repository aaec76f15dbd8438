"""Tests for the PromptVault operator CLI.

Tests cover:
1. check-env exit codes and output without secret values
2. session issue produces a token the service accepts
3. audit commands read the JSONL log
4. Failures exit 1 with a JSON error
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from promptvault.access.session import SessionTokenCodec
from promptvault.audit import (
    AdminAction,
    AuditEntry,
    AuditTrail,
    EventResult,
    JsonlAuditStore,
    ResultStatus,
    TargetType,
)
from promptvault.cli import main
from tests.helpers import MASTER_SECRET, OWNER_ID, STANDARD_ID


def run(capsys: pytest.CaptureFixture[str], *argv: str) -> tuple[int, dict[str, Any]]:
    exit_code = main(list(argv))
    return exit_code, json.loads(capsys.readouterr().out)


@pytest.fixture
def audit_log(tmp_path: Path) -> Path:
    path = tmp_path / "cli-audit.jsonl"
    trail = AuditTrail(JsonlAuditStore(path))
    trail.record(
        AuditEntry(
            actor_id=OWNER_ID,
            actor_role="owner",
            action=AdminAction.PROMPT_CREATED,
            target_type=TargetType.PROMPT,
            description="Created prompt definition 'punctuation'",
        )
    )
    trail.record(
        AuditEntry(
            actor_id=STANDARD_ID,
            actor_role="standard",
            action=AdminAction.UNAUTHORIZED_ACCESS,
            target_type=TargetType.PROMPT,
            description="delete_definition denied: INSUFFICIENT_ROLE",
            result=EventResult(status=ResultStatus.ERROR, error_code="INSUFFICIENT_ROLE"),
        )
    )
    return path


class TestCheckEnv:
    """Startup secret check."""

    def test_ok(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code, output = run(capsys, "check-env")

        assert exit_code == 0
        assert output == {
            "environment": "development",
            "missing": [],
            "success": True,
            "weak": [],
        }

    def test_missing_secret(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.delenv("PROMPTVAULT_SESSION_SECRET")

        exit_code, output = run(capsys, "check-env")

        assert exit_code == 1
        assert output["missing"] == ["PROMPTVAULT_SESSION_SECRET"]
        assert MASTER_SECRET not in json.dumps(output)


class TestSessionIssue:
    """Token issuing."""

    def test_issue(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code, output = run(capsys, "session", "issue", "--actor", OWNER_ID)

        assert exit_code == 0
        claims = SessionTokenCodec.from_env().decode(output["token"])
        assert claims.actor_id == OWNER_ID

    def test_issue_without_secret(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.delenv("PROMPTVAULT_SESSION_SECRET")

        exit_code, output = run(capsys, "session", "issue", "--actor", OWNER_ID)

        assert exit_code == 1
        assert output["code"] == "CONFIGURATION_ERROR"


class TestAuditCommands:
    """Queries over the JSONL log."""

    def test_security_events(self, capsys: pytest.CaptureFixture[str], audit_log: Path) -> None:
        exit_code, output = run(capsys, "audit", "security-events", "--log", str(audit_log))

        assert exit_code == 0
        assert [item["actor_id"] for item in output["items"]] == [STANDARD_ID]

    def test_failed_events_from_env_path(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
        audit_log: Path,
    ) -> None:
        monkeypatch.setenv("PROMPTVAULT_AUDIT_LOG_PATH", str(audit_log))

        exit_code, output = run(capsys, "audit", "failed-events", "--hours", "1")

        assert exit_code == 0
        assert [item["result"]["error_code"] for item in output["items"]] == [
            "INSUFFICIENT_ROLE"
        ]

    def test_stats(self, capsys: pytest.CaptureFixture[str], audit_log: Path) -> None:
        exit_code, output = run(capsys, "audit", "stats", "--log", str(audit_log))

        assert exit_code == 0
        by_actor = {item["actor_id"]: item for item in output["items"]}
        assert by_actor[OWNER_ID]["success"] == 1
        assert by_actor[STANDARD_ID]["security_events"] == 1

    def test_stats_bad_timestamp(
        self, capsys: pytest.CaptureFixture[str], audit_log: Path
    ) -> None:
        exit_code, output = run(
            capsys, "audit", "stats", "--start", "yesterday", "--log", str(audit_log)
        )

        assert exit_code == 1
        assert output["code"] == "VALIDATION_ERROR"

    def test_hours_out_of_range(
        self, capsys: pytest.CaptureFixture[str], audit_log: Path
    ) -> None:
        exit_code, output = run(
            capsys, "audit", "security-events", "--hours", "0", "--log", str(audit_log)
        )

        assert exit_code == 1
        assert output["success"] is False

    def test_missing_log_is_empty(
        self, capsys: pytest.CaptureFixture[str], tmp_path: Path
    ) -> None:
        exit_code, output = run(
            capsys, "audit", "security-events", "--log", str(tmp_path / "none.jsonl")
        )

        assert exit_code == 0
        assert output["items"] == []


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0
    assert "usage: promptvault" in capsys.readouterr().out
