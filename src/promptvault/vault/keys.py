"""Key material configuration and derivation for the Content Vault.

Environment Variables:
    PROMPTVAULT_MASTER_SECRET: Secret for the master (GCM) layer key
    PROMPTVAULT_ROTATION_SECRET: Secret for the rotation (CTR) layer key
    PROMPTVAULT_ENVELOPE_MAX_AGE_SECONDS: Staleness bound (default: 86400)
    PROMPTVAULT_ALLOW_PLAINTEXT: "1" to store plaintext when the vault is unavailable

Long-term keys are derived with scrypt once per vault instance. Actor keys are
derived per call with HKDF and are never cached or logged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from promptvault.config import (
    ENV_MASTER_SECRET,
    ENV_ROTATION_SECRET,
    MIN_SECRET_LENGTH,
    env_flag,
)
from promptvault.errors import PromptVaultError

ENV_ENVELOPE_MAX_AGE_SECONDS: Final[str] = "PROMPTVAULT_ENVELOPE_MAX_AGE_SECONDS"
ENV_ALLOW_PLAINTEXT: Final[str] = "PROMPTVAULT_ALLOW_PLAINTEXT"

DEFAULT_ENVELOPE_MAX_AGE_SECONDS: Final[int] = 24 * 60 * 60
KEY_LENGTH: Final[int] = 32

_MASTER_SALT: Final[bytes] = b"promptvault/master/v1"
_ROTATION_SALT: Final[bytes] = b"promptvault/rotation/v1"
_ACTOR_INFO: Final[bytes] = b"promptvault/actor/v1"
_SCRYPT_N: Final[int] = 2**14
_SCRYPT_R: Final[int] = 8
_SCRYPT_P: Final[int] = 1


class VaultUnavailable(PromptVaultError):
    """Vault secrets are missing or too weak to derive keys."""

    default_code = "VAULT_UNAVAILABLE"
    http_status = 503


@dataclass(frozen=True)
class VaultConfig:
    """Vault configuration (immutable).

    Attributes:
        master_secret: Secret for the master layer.
        rotation_secret: Secret for the rotation layer.
        max_age_seconds: Envelopes older than this are rejected on open.
    """

    master_secret: str = field(repr=False)
    rotation_secret: str = field(repr=False)
    max_age_seconds: int = DEFAULT_ENVELOPE_MAX_AGE_SECONDS

    def __post_init__(self) -> None:
        for name, value in (
            (ENV_MASTER_SECRET, self.master_secret),
            (ENV_ROTATION_SECRET, self.rotation_secret),
        ):
            if len(value) < MIN_SECRET_LENGTH:
                raise VaultUnavailable(
                    f"{name} must be at least {MIN_SECRET_LENGTH} characters",
                    details={"variable": name},
                )
        if self.max_age_seconds <= 0:
            raise VaultUnavailable(
                f"{ENV_ENVELOPE_MAX_AGE_SECONDS} must be a positive integer, "
                f"got {self.max_age_seconds}"
            )


def load_vault_config() -> VaultConfig:
    """Load vault configuration from environment variables.

    Raises:
        VaultUnavailable: If a secret is missing or invalid.
    """
    master = os.environ.get(ENV_MASTER_SECRET, "")
    rotation = os.environ.get(ENV_ROTATION_SECRET, "")
    if not master or not rotation:
        raise VaultUnavailable(
            "Vault secrets are not configured",
            details={"required": [ENV_MASTER_SECRET, ENV_ROTATION_SECRET]},
        )

    raw_age = os.environ.get(ENV_ENVELOPE_MAX_AGE_SECONDS, "").strip()
    max_age = DEFAULT_ENVELOPE_MAX_AGE_SECONDS
    if raw_age:
        try:
            max_age = int(raw_age)
        except ValueError as e:
            raise VaultUnavailable(
                f"{ENV_ENVELOPE_MAX_AGE_SECONDS} must be a positive integer, got '{raw_age}'"
            ) from e

    return VaultConfig(master_secret=master, rotation_secret=rotation, max_age_seconds=max_age)


def plaintext_fallback_enabled() -> bool:
    """Return True if content may be stored unencrypted when the vault is down."""
    return env_flag(ENV_ALLOW_PLAINTEXT)


def _scrypt(secret: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


def derive_master_key(secret: str) -> bytes:
    return _scrypt(secret, _MASTER_SALT)


def derive_rotation_key(secret: str) -> bytes:
    return _scrypt(secret, _ROTATION_SALT)


def derive_actor_key(master_key: bytes, actor_id: str) -> bytes:
    """Derive the actor-scoped CBC key from the actor identifier."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=master_key,
        info=_ACTOR_INFO,
    )
    return hkdf.derive(actor_id.encode("utf-8"))
