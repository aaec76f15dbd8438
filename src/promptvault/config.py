"""Deployment environment and startup secret checks for PromptVault.

Each component owns its own environment variables and ``load_*_config()``
loader. This module holds what is shared: the deployment environment (which
decides whether development bypasses are honored) and the startup check that
all long-term secrets are present and strong enough.

Environment Variables:
    PROMPTVAULT_ENV: development | staging | production (default: development)
    PROMPTVAULT_MASTER_SECRET: Vault master secret (min 32 chars)
    PROMPTVAULT_ROTATION_SECRET: Vault rotation-layer secret (min 32 chars)
    PROMPTVAULT_SESSION_SECRET: Session token signing secret (min 32 chars)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from promptvault.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_DEPLOYMENT: Final[str] = "PROMPTVAULT_ENV"
ENV_MASTER_SECRET: Final[str] = "PROMPTVAULT_MASTER_SECRET"
ENV_ROTATION_SECRET: Final[str] = "PROMPTVAULT_ROTATION_SECRET"
ENV_SESSION_SECRET: Final[str] = "PROMPTVAULT_SESSION_SECRET"

MIN_SECRET_LENGTH: Final[int] = 32

REQUIRED_SECRETS: Final[tuple[str, ...]] = (
    ENV_MASTER_SECRET,
    ENV_ROTATION_SECRET,
    ENV_SESSION_SECRET,
)


class Environment(StrEnum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def get_environment() -> Environment:
    """Return the configured deployment environment.

    Unknown values are treated as production so that development bypasses
    are never honored by accident.
    """
    raw = os.environ.get(ENV_DEPLOYMENT, "").strip().lower()
    if not raw:
        return Environment.DEVELOPMENT
    try:
        return Environment(raw)
    except ValueError:
        logger.warning("Unknown %s value %r, treating as production", ENV_DEPLOYMENT, raw)
        return Environment.PRODUCTION


def is_production() -> bool:
    """Return True when running in production."""
    return get_environment() == Environment.PRODUCTION


def env_flag(name: str) -> bool:
    """Read a boolean flag ("1", "true", "yes") from the environment."""
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


def development_bypass(name: str) -> bool:
    """Return True only if the bypass flag is set and we are not in production."""
    if not env_flag(name):
        return False
    if is_production():
        logger.warning("Ignoring %s in production", name)
        return False
    return True


@dataclass(frozen=True, slots=True)
class EnvironmentReport:
    """Result of the startup secret check.

    Attributes:
        environment: Detected deployment environment.
        missing: Required secrets that are not set.
        weak: Required secrets shorter than MIN_SECRET_LENGTH.
    """

    environment: Environment
    missing: tuple[str, ...]
    weak: tuple[str, ...]

    @property
    def ok(self) -> bool:
        return not self.missing and not self.weak


def check_environment() -> EnvironmentReport:
    """Inspect required secrets without raising."""
    missing: list[str] = []
    weak: list[str] = []
    for name in REQUIRED_SECRETS:
        value = os.environ.get(name, "")
        if not value:
            missing.append(name)
        elif len(value) < MIN_SECRET_LENGTH:
            weak.append(name)
    return EnvironmentReport(
        environment=get_environment(),
        missing=tuple(missing),
        weak=tuple(weak),
    )


def validate_environment() -> EnvironmentReport:
    """Fail closed if any required secret is missing or weak.

    Raises:
        ConfigurationError: If the environment is not safe to start.
    """
    report = check_environment()
    if not report.ok:
        raise ConfigurationError(
            "Environment is missing required secrets or secrets are too short",
            details={"missing": list(report.missing), "weak": list(report.weak)},
        )
    logger.info("Environment validated: env=%s", report.environment.value)
    return report
