"""Envelope and stored-content models for the Content Vault.

An ``EncryptedEnvelope`` is the serialized output of the three-pass seal. A
``StoredContent`` is what the Version Store persists for a version body: either
a sealed envelope bound to the actor whose scoped key produced it, or an
explicitly marked plaintext body for deployments where encryption is disabled.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

ENVELOPE_FORMAT_VERSION = 1


class EnvelopeMeta(BaseModel):
    """Per-envelope parameters required to reverse the three passes.

    IVs and the GCM tag are hex encoded. ``digest`` is the first eight hex
    characters of the SHA-256 of the plaintext.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    iv1: str
    iv2: str
    iv3: str
    tag: str
    digest: str
    created_at_ms: int
    version: int = ENVELOPE_FORMAT_VERSION


class EncryptedEnvelope(BaseModel):
    """Base64 ciphertext plus the metadata needed to open it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ciphertext: str
    meta: EnvelopeMeta


class SealedContent(BaseModel):
    """Content sealed by the vault for a specific actor."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["sealed"] = "sealed"
    envelope: EncryptedEnvelope
    sealed_for: str

    @property
    def encrypted(self) -> bool:
        return True


class PlaintextContent(BaseModel):
    """Unencrypted content, stored only when plaintext fallback is enabled."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["plaintext"] = "plaintext"
    text: str
    encrypted: Literal[False] = False


StoredContent = Annotated[SealedContent | PlaintextContent, Field(discriminator="kind")]
