"""HMAC-signed session tokens.

A token carries the actor id, a session id, and its issue and expiry times.
The gate enforces its own freshness ceiling on ``issued_at`` on top of the
token's expiry, so a long-lived token cannot be used for admin operations.

Token format: base64url(JSON payload + "sig"), where sig is the HMAC-SHA256 of
the canonical payload JSON.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final

from promptvault.clock import Clock, utc_now
from promptvault.config import ENV_SESSION_SECRET, MIN_SECRET_LENGTH
from promptvault.errors import ConfigurationError, PromptVaultError

logger = logging.getLogger(__name__)

ENV_SESSION_TTL_SECONDS: Final[str] = "PROMPTVAULT_SESSION_TTL_SECONDS"
DEFAULT_SESSION_TTL_SECONDS: Final[int] = 12 * 60 * 60

_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("actor_id", "sid", "iat", "exp", "sig")


class InvalidSession(PromptVaultError):
    default_code = "INVALID_SESSION"
    http_status = 401


@dataclass(frozen=True, slots=True)
class SessionClaims:
    """Validated session token contents.

    Attributes:
        actor_id: Actor the session belongs to.
        session_id: Opaque session identifier.
        issued_at: When the session was established.
        expires_at: When the token stops being accepted.
        token_hash: Short SHA-256 of the raw token, safe for logs.
    """

    actor_id: str
    session_id: str
    issued_at: datetime
    expires_at: datetime
    token_hash: str


def _sign(payload: dict[str, Any], secret: bytes) -> str:
    payload_json = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hmac.new(secret, payload_json.encode("utf-8"), hashlib.sha256).hexdigest()


class SessionTokenCodec:
    """Issues and validates session tokens."""

    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        if len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"{ENV_SESSION_SECRET} must be at least {MIN_SECRET_LENGTH} characters"
            )
        if ttl_seconds <= 0:
            raise ConfigurationError(f"{ENV_SESSION_TTL_SECONDS} must be positive")
        self._secret = secret.encode("utf-8")
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @classmethod
    def from_env(cls, *, clock: Clock = utc_now) -> SessionTokenCodec:
        """Build a codec from PROMPTVAULT_SESSION_SECRET.

        Raises:
            ConfigurationError: If the secret is missing or weak.
        """
        secret = os.environ.get(ENV_SESSION_SECRET, "")
        if not secret:
            raise ConfigurationError(f"{ENV_SESSION_SECRET} is not configured")
        raw_ttl = os.environ.get(ENV_SESSION_TTL_SECONDS, "").strip()
        try:
            ttl = int(raw_ttl) if raw_ttl else DEFAULT_SESSION_TTL_SECONDS
        except ValueError as e:
            raise ConfigurationError(
                f"{ENV_SESSION_TTL_SECONDS} must be an integer, got '{raw_ttl}'"
            ) from e
        return cls(secret, ttl_seconds=ttl, clock=clock)

    def issue(
        self,
        actor_id: str,
        *,
        session_id: str | None = None,
        issued_at: datetime | None = None,
    ) -> str:
        """Create a signed token for the actor."""
        iat = int((issued_at or self._clock()).timestamp())
        payload: dict[str, Any] = {
            "actor_id": actor_id,
            "sid": session_id or str(uuid.uuid4()),
            "iat": iat,
            "exp": iat + self._ttl_seconds,
        }
        payload["sig"] = _sign(payload, self._secret)
        token_json = json.dumps(payload, separators=(",", ":"))
        return base64.urlsafe_b64encode(token_json.encode("utf-8")).decode("ascii").rstrip("=")

    def decode(self, token: str) -> SessionClaims:
        """Validate a token and return its claims.

        Raises:
            InvalidSession: If the token is malformed, forged or expired.
        """
        try:
            padded = token + "=" * (-len(token) % 4)
            payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise InvalidSession("Malformed session token") from e

        if not isinstance(payload, dict) or any(f not in payload for f in _REQUIRED_FIELDS):
            raise InvalidSession("Malformed session token")

        provided_sig = payload.pop("sig")
        if not isinstance(provided_sig, str) or not hmac.compare_digest(
            provided_sig, _sign(payload, self._secret)
        ):
            raise InvalidSession("Invalid session token signature")

        try:
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=UTC)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=UTC)
        except (TypeError, ValueError, OverflowError) as e:
            raise InvalidSession("Malformed session token") from e

        if self._clock() > expires_at:
            raise InvalidSession("Session token has expired", code="SESSION_TOKEN_EXPIRED")

        return SessionClaims(
            actor_id=str(payload["actor_id"]),
            session_id=str(payload["sid"]),
            issued_at=issued_at,
            expires_at=expires_at,
            token_hash=hashlib.sha256(token.encode("utf-8")).hexdigest()[:16],
        )
