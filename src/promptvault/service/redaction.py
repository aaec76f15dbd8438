"""Redaction of sensitive fields before data leaves the service.

Applied to audit change snapshots and to anything returned on the read path.
Matching is case-insensitive on dict keys and recurses through lists.
"""

from __future__ import annotations

from typing import Any, Final

REDACTED: Final[str] = "[REDACTED]"

REDACTION_BLOCKLIST: Final[frozenset[str]] = frozenset(
    {
        "content",
        "system_instruction",
        "envelope",
        "ciphertext",
        "text",
        "password",
        "secret",
        "api_key",
        "token",
        "session_token",
        "step_up_code",
        "backup_codes",
        "private_key",
    }
)


def is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return key_lower in REDACTION_BLOCKLIST or key_lower.endswith(("_secret", "_token"))


def redact(value: Any) -> Any:
    """Return a copy of ``value`` with sensitive fields replaced by a marker."""
    if isinstance(value, dict):
        return {
            key: REDACTED if isinstance(key, str) and is_sensitive_key(key) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(item) for item in value]
    return value
