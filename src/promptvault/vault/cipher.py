"""Content Vault: three-pass symmetric encryption with per-actor keys.

Seal pipeline (each pass with a fresh random IV):
1. AES-256-GCM under the master key; the 16-byte tag is detached into meta
2. AES-256-CBC (PKCS7) under the actor-scoped key
3. AES-256-CTR under the rotation key

Open reverses the passes strictly in order CTR -> CBC -> GCM, then re-verifies
the plaintext digest.

Design requirements:
- Stateless apart from the long-term keys derived at construction
- Fail closed: any decrypt anomaly is an IntegrityFailure, never a partial result
- Staleness: envelopes older than the configured bound are rejected
- Plaintext, keys and IVs are never logged
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from promptvault.clock import Clock, to_epoch_ms, utc_now
from promptvault.errors import PromptVaultError
from promptvault.vault.envelope import (
    ENVELOPE_FORMAT_VERSION,
    EncryptedEnvelope,
    EnvelopeMeta,
    PlaintextContent,
    SealedContent,
)
from promptvault.vault.keys import (
    VaultConfig,
    derive_actor_key,
    derive_master_key,
    derive_rotation_key,
    load_vault_config,
)

logger = logging.getLogger(__name__)

GCM_IV_BYTES = 12
BLOCK_IV_BYTES = 16
GCM_TAG_BYTES = 16
DIGEST_HEX_CHARS = 8


class IntegrityFailure(PromptVaultError):
    """Envelope could not be authenticated or its digest does not match."""

    default_code = "INTEGRITY_FAILURE"
    http_status = 500


class ExpiredEnvelope(PromptVaultError):
    """Envelope is older than the staleness bound."""

    default_code = "ENVELOPE_EXPIRED"
    http_status = 500


def content_digest(plaintext: str) -> str:
    """Return the short SHA-256 digest recorded in envelope metadata."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()[:DIGEST_HEX_CHARS]


def _unhex(value: str, expected_len: int, field_name: str) -> bytes:
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise IntegrityFailure(
            "Malformed envelope", details={"field": field_name}
        ) from e
    if len(raw) != expected_len:
        raise IntegrityFailure("Malformed envelope", details={"field": field_name})
    return raw


class ContentVault:
    """Seals and opens content with master, actor and rotation keys."""

    def __init__(self, config: VaultConfig, *, clock: Clock = utc_now) -> None:
        self._master_key = derive_master_key(config.master_secret)
        self._rotation_key = derive_rotation_key(config.rotation_secret)
        self._max_age_ms = config.max_age_seconds * 1000
        self._clock = clock

    @classmethod
    def from_env(cls, *, clock: Clock = utc_now) -> ContentVault:
        """Build a vault from environment secrets.

        Raises:
            VaultUnavailable: If secrets are missing or too weak.
        """
        return cls(load_vault_config(), clock=clock)

    @property
    def max_age_seconds(self) -> int:
        return self._max_age_ms // 1000

    def seal(self, plaintext: str, actor_id: str) -> EncryptedEnvelope:
        """Encrypt plaintext through the three passes for the given actor."""
        data = plaintext.encode("utf-8")

        iv1 = os.urandom(GCM_IV_BYTES)
        gcm_out = AESGCM(self._master_key).encrypt(iv1, data, None)
        layer1, tag = gcm_out[:-GCM_TAG_BYTES], gcm_out[-GCM_TAG_BYTES:]

        iv2 = os.urandom(BLOCK_IV_BYTES)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(layer1) + padder.finalize()
        actor_key = derive_actor_key(self._master_key, actor_id)
        encryptor = Cipher(algorithms.AES(actor_key), modes.CBC(iv2)).encryptor()
        layer2 = encryptor.update(padded) + encryptor.finalize()

        iv3 = os.urandom(BLOCK_IV_BYTES)
        encryptor = Cipher(algorithms.AES(self._rotation_key), modes.CTR(iv3)).encryptor()
        layer3 = encryptor.update(layer2) + encryptor.finalize()

        return EncryptedEnvelope(
            ciphertext=base64.b64encode(layer3).decode("ascii"),
            meta=EnvelopeMeta(
                iv1=iv1.hex(),
                iv2=iv2.hex(),
                iv3=iv3.hex(),
                tag=tag.hex(),
                digest=content_digest(plaintext),
                created_at_ms=to_epoch_ms(self._clock()),
            ),
        )

    def is_stale(self, envelope: EncryptedEnvelope) -> bool:
        return to_epoch_ms(self._clock()) - envelope.meta.created_at_ms > self._max_age_ms

    def open(self, envelope: EncryptedEnvelope, actor_id: str) -> str:
        """Decrypt an envelope sealed for ``actor_id``.

        Raises:
            ExpiredEnvelope: If the envelope is older than the staleness bound.
            IntegrityFailure: On any authentication, padding or digest mismatch.
        """
        if self.is_stale(envelope):
            raise ExpiredEnvelope(
                "Envelope is older than the staleness bound",
                details={"max_age_seconds": self.max_age_seconds},
            )
        return self._decrypt(envelope, actor_id)

    def _decrypt(self, envelope: EncryptedEnvelope, actor_id: str) -> str:
        meta = envelope.meta
        if meta.version != ENVELOPE_FORMAT_VERSION:
            raise IntegrityFailure(
                "Unsupported envelope format", details={"version": meta.version}
            )

        iv1 = _unhex(meta.iv1, GCM_IV_BYTES, "iv1")
        iv2 = _unhex(meta.iv2, BLOCK_IV_BYTES, "iv2")
        iv3 = _unhex(meta.iv3, BLOCK_IV_BYTES, "iv3")
        tag = _unhex(meta.tag, GCM_TAG_BYTES, "tag")
        try:
            layer3 = base64.b64decode(envelope.ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise IntegrityFailure("Malformed envelope", details={"field": "ciphertext"}) from e

        decryptor = Cipher(algorithms.AES(self._rotation_key), modes.CTR(iv3)).decryptor()
        layer2 = decryptor.update(layer3) + decryptor.finalize()

        actor_key = derive_actor_key(self._master_key, actor_id)
        try:
            decryptor = Cipher(algorithms.AES(actor_key), modes.CBC(iv2)).decryptor()
            padded = decryptor.update(layer2) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            layer1 = unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            logger.warning("Vault open failed at actor layer")
            raise IntegrityFailure("Envelope failed integrity verification") from e

        try:
            data = AESGCM(self._master_key).decrypt(iv1, layer1 + tag, None)
        except InvalidTag as e:
            logger.warning("Vault open failed at master layer")
            raise IntegrityFailure("Envelope failed integrity verification") from e

        try:
            plaintext = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IntegrityFailure("Envelope failed integrity verification") from e

        if not hmac.compare_digest(content_digest(plaintext), meta.digest):
            logger.warning("Vault open failed digest verification")
            raise IntegrityFailure("Envelope digest mismatch")

        return plaintext

    def reseal(
        self,
        envelope: EncryptedEnvelope,
        actor_id: str,
        new_actor_id: str | None = None,
    ) -> EncryptedEnvelope:
        """Open and seal again with fresh IVs and timestamp.

        Renewal skips the staleness bound, so stored content can be renewed
        after it has expired. Authentication and digest checks still apply.
        """
        plaintext = self._decrypt(envelope, actor_id)
        return self.seal(plaintext, new_actor_id or actor_id)

    def renew(self, content: SealedContent | PlaintextContent) -> SealedContent | PlaintextContent:
        """Reseal stored content for the same actor. Plaintext passes through."""
        if isinstance(content, PlaintextContent):
            return content
        envelope = self.reseal(content.envelope, content.sealed_for)
        return SealedContent(envelope=envelope, sealed_for=content.sealed_for)

    def protect(self, plaintext: str, actor_id: str) -> SealedContent:
        """Seal plaintext into storable content bound to ``actor_id``."""
        return SealedContent(envelope=self.seal(plaintext, actor_id), sealed_for=actor_id)

    def reveal(self, content: SealedContent | PlaintextContent) -> str:
        """Return the plaintext of stored content, opening it if sealed."""
        if isinstance(content, PlaintextContent):
            return content.text
        return self.open(content.envelope, content.sealed_for)
