"""Step-up one-time-code challenge (RFC 6238 TOTP plus backup codes).

Design requirements:
- Only confirmed enrollments gate operations
- A time step accepted once is never accepted again for the same actor
- Backup codes are stored as SHA-256 hashes and accepted exactly once
- Secrets and codes never appear in logs
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
from dataclasses import dataclass, field
from typing import Final

import pyotp
from pyotp.utils import strings_equal

from promptvault.clock import Clock, utc_now
from promptvault.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

TOTP_DIGITS: Final[int] = 6
TOTP_PERIOD_SECONDS: Final[int] = 30
TOTP_WINDOW_STEPS: Final[int] = 1
SECRET_BASE32_CHARS: Final[int] = 32
BACKUP_CODE_COUNT: Final[int] = 10
BACKUP_CODE_BYTES: Final[int] = 4
DEFAULT_ISSUER: Final[str] = "PromptVault"


class StepUpNotEnrolled(ConflictError):
    default_code = "STEP_UP_NOT_ENROLLED"


def generate_secret() -> str:
    """Return a random 160-bit base32 secret."""
    return pyotp.random_base32(length=SECRET_BASE32_CHARS)


def _totp(secret_b32: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret_b32, digits=TOTP_DIGITS, interval=TOTP_PERIOD_SECONDS)


def hotp(secret_b32: str, counter: int) -> str:
    """RFC 4226 HMAC-SHA1 one-time code."""
    return pyotp.HOTP(secret_b32, digits=TOTP_DIGITS).at(counter)


def totp_step(timestamp: float, period: int = TOTP_PERIOD_SECONDS) -> int:
    return int(timestamp // period)


def totp(secret_b32: str, timestamp: float) -> str:
    return _totp(secret_b32).at(int(timestamp))


def provisioning_uri(secret_b32: str, account: str, issuer: str = DEFAULT_ISSUER) -> str:
    return _totp(secret_b32).provisioning_uri(name=account, issuer_name=issuer)


def _hash_code(code: str) -> str:
    return hashlib.sha256(code.strip().upper().encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class EnrollmentStart:
    """Material shown to the actor once, at enrollment time.

    Attributes:
        secret: Base32 TOTP secret.
        provisioning_uri: otpauth:// URI for authenticator apps.
        backup_codes: One-time recovery codes in clear (only returned here).
    """

    secret: str
    provisioning_uri: str
    backup_codes: tuple[str, ...]


@dataclass
class _Enrollment:
    secret: str
    confirmed: bool = False
    last_step: int | None = None
    backup_hashes: set[str] = field(default_factory=set)


class StepUpRegistry:
    """Per-actor TOTP enrollments. Thread-safe."""

    def __init__(self, *, clock: Clock = utc_now, issuer: str = DEFAULT_ISSUER) -> None:
        self._clock = clock
        self._issuer = issuer
        self._enrollments: dict[str, _Enrollment] = {}
        self._lock = threading.Lock()

    def begin_enrollment(self, actor_id: str) -> EnrollmentStart:
        """Start (or restart) enrollment. Replaces any unconfirmed secret.

        Raises:
            ConflictError: If the actor already has a confirmed enrollment.
        """
        secret = generate_secret()
        codes = tuple(
            secrets.token_hex(BACKUP_CODE_BYTES).upper() for _ in range(BACKUP_CODE_COUNT)
        )
        with self._lock:
            existing = self._enrollments.get(actor_id)
            if existing is not None and existing.confirmed:
                raise ConflictError(
                    "Step-up is already enabled for this actor",
                    code="STEP_UP_ALREADY_ENROLLED",
                )
            self._enrollments[actor_id] = _Enrollment(
                secret=secret, backup_hashes={_hash_code(c) for c in codes}
            )
        logger.info("Step-up enrollment started for actor %s", actor_id)
        return EnrollmentStart(
            secret=secret,
            provisioning_uri=provisioning_uri(secret, actor_id, self._issuer),
            backup_codes=codes,
        )

    def confirm_enrollment(self, actor_id: str, code: str) -> bool:
        """Confirm a pending enrollment with a current TOTP code.

        Returns:
            True if confirmed, False if the code is wrong.

        Raises:
            StepUpNotEnrolled: If no enrollment was started.
        """
        with self._lock:
            enrollment = self._enrollments.get(actor_id)
            if enrollment is None:
                raise StepUpNotEnrolled("No step-up enrollment in progress")
            if enrollment.confirmed:
                return True
            step = self._match_totp(enrollment, code)
            if step is None:
                return False
            enrollment.last_step = step
            enrollment.confirmed = True
        logger.info("Step-up enabled for actor %s", actor_id)
        return True

    def is_enrolled(self, actor_id: str) -> bool:
        with self._lock:
            enrollment = self._enrollments.get(actor_id)
            return enrollment is not None and enrollment.confirmed

    def verify(self, actor_id: str, code: str | None) -> bool:
        """Check a TOTP or backup code for a confirmed enrollment."""
        if not code or not code.strip():
            return False
        with self._lock:
            enrollment = self._enrollments.get(actor_id)
            if enrollment is None or not enrollment.confirmed:
                return False
            step = self._match_totp(enrollment, code)
            if step is not None:
                enrollment.last_step = step
                return True
            hashed = _hash_code(code)
            if hashed in enrollment.backup_hashes:
                enrollment.backup_hashes.discard(hashed)
                logger.info("Backup code consumed for actor %s", actor_id)
                return True
        return False

    def disable(self, actor_id: str) -> bool:
        with self._lock:
            return self._enrollments.pop(actor_id, None) is not None

    def remaining_backup_codes(self, actor_id: str) -> int:
        with self._lock:
            enrollment = self._enrollments.get(actor_id)
            return len(enrollment.backup_hashes) if enrollment else 0

    def _match_totp(self, enrollment: _Enrollment, code: str) -> int | None:
        """Return the matching step inside the window, skipping replayed steps."""
        candidate = code.strip()
        if len(candidate) != TOTP_DIGITS or not candidate.isdigit():
            return None
        generator = _totp(enrollment.secret)
        current = generator.timecode(self._clock())
        for step in range(current - TOTP_WINDOW_STEPS, current + TOTP_WINDOW_STEPS + 1):
            if enrollment.last_step is not None and step <= enrollment.last_step:
                continue
            try:
                expected = generator.generate_otp(step)
            except ValueError as e:
                raise ValidationError("Stored step-up secret is malformed") from e
            if strings_equal(expected, candidate):
                return step
        return None
