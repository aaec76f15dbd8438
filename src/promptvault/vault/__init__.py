"""Content Vault: layered encryption for stored prompt content."""

from promptvault.vault.cipher import (
    ContentVault,
    ExpiredEnvelope,
    IntegrityFailure,
    content_digest,
)
from promptvault.vault.envelope import (
    EncryptedEnvelope,
    EnvelopeMeta,
    PlaintextContent,
    SealedContent,
    StoredContent,
)
from promptvault.vault.keys import (
    VaultConfig,
    VaultUnavailable,
    load_vault_config,
    plaintext_fallback_enabled,
)

__all__ = [
    "ContentVault",
    "EncryptedEnvelope",
    "EnvelopeMeta",
    "ExpiredEnvelope",
    "IntegrityFailure",
    "PlaintextContent",
    "SealedContent",
    "StoredContent",
    "VaultConfig",
    "VaultUnavailable",
    "content_digest",
    "load_vault_config",
    "plaintext_fallback_enabled",
]
