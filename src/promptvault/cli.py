"""PromptVault CLI - operator commands.

Usage:
    python -m promptvault check-env
    python -m promptvault session issue --actor ID
    python -m promptvault audit security-events [--hours N] [--log PATH]
    python -m promptvault audit failed-events [--hours N] [--log PATH]
    python -m promptvault audit stats [--start ISO] [--end ISO] [--log PATH]

Audit commands read the JSONL audit log (PROMPTVAULT_AUDIT_LOG_PATH or --log).
Output is deterministic JSON on stdout.

Exit codes:
    0: Success
    1: Failure (bad configuration, invalid input, internal error)
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from promptvault.access.session import SessionTokenCodec
from promptvault.audit.store import JsonlAuditStore
from promptvault.audit.trail import AuditTrail
from promptvault.clock import parse_iso
from promptvault.config import check_environment
from promptvault.errors import PromptVaultError


def _output_json(data: Any) -> None:
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(code: str, message: str) -> dict[str, Any]:
    return {"success": False, "code": code, "message": message}


def _trail(args: argparse.Namespace) -> AuditTrail:
    return AuditTrail(JsonlAuditStore(args.log))


def cmd_check_env(args: argparse.Namespace) -> int:
    """Report missing or weak secrets without printing their values."""
    report = check_environment()
    _output_json(
        {
            "success": report.ok,
            "environment": report.environment.value,
            "missing": list(report.missing),
            "weak": list(report.weak),
        }
    )
    return 0 if report.ok else 1


def cmd_session_issue(args: argparse.Namespace) -> int:
    token = SessionTokenCodec.from_env().issue(args.actor)
    _output_json({"success": True, "actor_id": args.actor, "token": token})
    return 0


def cmd_audit_security_events(args: argparse.Namespace) -> int:
    events = _trail(args).security_events(args.hours)
    _output_json({"success": True, "items": [e.to_record() for e in events]})
    return 0


def cmd_audit_failed_events(args: argparse.Namespace) -> int:
    events = _trail(args).failed_events(args.hours)
    _output_json({"success": True, "items": [e.to_record() for e in events]})
    return 0


def cmd_audit_stats(args: argparse.Namespace) -> int:
    try:
        start = parse_iso(args.start) if args.start else None
        end = parse_iso(args.end) if args.end else None
    except ValueError as e:
        _output_json(_make_error_result("VALIDATION_ERROR", f"Invalid timestamp: {e}"))
        return 1
    stats = _trail(args).stats_by_actor(start, end)
    _output_json(
        {
            "success": True,
            "items": [
                {
                    "actor_id": s.actor_id,
                    "total": s.total,
                    "success": s.success,
                    "failed": s.failed,
                    "security_events": s.security_events,
                    "success_rate": s.success_rate,
                    "last_activity": s.last_activity,
                }
                for s in stats
            ],
        }
    )
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="promptvault",
        description="PromptVault - governed prompt definitions CLI",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    check_parser = subparsers.add_parser(
        "check-env",
        help="Check that required secrets are present and strong enough",
    )
    check_parser.set_defaults(handler=cmd_check_env)

    # session issue
    session_parser = subparsers.add_parser("session", help="Session token operations")
    session_subparsers = session_parser.add_subparsers(dest="session_command")
    issue_parser = session_subparsers.add_parser("issue", help="Issue a signed session token")
    issue_parser.add_argument("--actor", required=True, metavar="ID", help="Actor id")
    issue_parser.set_defaults(handler=cmd_session_issue)

    # audit security-events | failed-events | stats
    audit_parser = subparsers.add_parser("audit", help="Audit trail queries")
    audit_subparsers = audit_parser.add_subparsers(dest="audit_command")
    for name, handler, description in [
        ("security-events", cmd_audit_security_events, "Security events in the trailing window"),
        ("failed-events", cmd_audit_failed_events, "Failed events in the trailing window"),
    ]:
        window_parser = audit_subparsers.add_parser(name, help=description)
        window_parser.add_argument("--hours", type=int, default=24, help="Window size in hours")
        window_parser.add_argument("--log", metavar="PATH", help="JSONL audit log path")
        window_parser.set_defaults(handler=handler)

    stats_parser = audit_subparsers.add_parser("stats", help="Per-actor activity summary")
    stats_parser.add_argument("--start", metavar="ISO", help="Window start (ISO-8601)")
    stats_parser.add_argument("--end", metavar="ISO", help="Window end (ISO-8601)")
    stats_parser.add_argument("--log", metavar="PATH", help="JSONL audit log path")
    stats_parser.set_defaults(handler=cmd_audit_stats)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    parser = create_parser()
    args = parser.parse_args(argv)

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 0 if args.command is None else 1

    try:
        exit_code: int = handler(args)
        return exit_code
    except PromptVaultError as e:
        _output_json(_make_error_result(e.code, e.message))
        return 1
    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        _output_json(_make_error_result("INTERNAL_ERROR", type(e).__name__))
        return 1


if __name__ == "__main__":
    sys.exit(main())
