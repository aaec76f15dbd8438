#!/usr/bin/env python3
"""Run the PromptVault quality gates.

Every gate runs with check=True, so the first failing gate stops the run
and its exit code is returned.

Usage:
    python scripts/run_gates.py            # format, lint, typecheck, test
    python scripts/run_gates.py lint       # one gate
    python scripts/run_gates.py --list     # show available gates
"""

from __future__ import annotations

import argparse
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent


def run_command(name: str, cmd: list[str]) -> None:
    print(f"\n{'=' * 60}")
    print(f"Running: {name}")
    print(f"Command: {' '.join(cmd)}")
    print("=" * 60)
    subprocess.run(cmd, cwd=REPO_ROOT, check=True)
    print(f"PASSED: {name}")


def gate_format() -> None:
    run_command("Format (ruff)", ["ruff", "format", "--check", "src", "tests", "scripts"])


def gate_lint() -> None:
    run_command("Lint (ruff)", ["ruff", "check", "src", "tests", "scripts"])


def gate_typecheck() -> None:
    run_command(
        "Typecheck (mypy)",
        [sys.executable, "-m", "mypy", "src/promptvault", "--ignore-missing-imports"],
    )


def gate_test() -> None:
    run_command("Test (pytest)", [sys.executable, "-m", "pytest", "-q"])


GATES: dict[str, Callable[[], None]] = {
    "format": gate_format,
    "lint": gate_lint,
    "typecheck": gate_typecheck,
    "test": gate_test,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="PromptVault quality gates")
    parser.add_argument("gates", nargs="*", choices=[*GATES, "all"], default=["all"])
    parser.add_argument("--list", action="store_true", help="List gates and exit")
    args = parser.parse_args(argv)

    if args.list:
        print("\n".join(GATES))
        return 0

    selected = list(GATES) if "all" in args.gates else args.gates
    try:
        for name in selected:
            GATES[name]()
    except subprocess.CalledProcessError as e:
        print(f"\nGATE FAILED (exit code {e.returncode})")
        return e.returncode

    print("\nALL SELECTED GATES PASSED")
    return 0


if __name__ == "__main__":
    sys.exit(main())
