"""Static severity and flag classification for audit actions.

The table is built once at import and exposed read-only. ``classify`` is the
only way the trail obtains severity and flags, so the same action always
yields the same classification.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from promptvault.audit.events import AdminAction, EventFlags, Severity

A = AdminAction

_CRITICAL: Final[frozenset[AdminAction]] = frozenset(
    {A.SECURITY_RATE_LIMIT_EXCEEDED, A.TWO_FACTOR_DISABLED}
)
_HIGH: Final[frozenset[AdminAction]] = frozenset(
    {
        A.USER_DELETED,
        A.USER_BANNED,
        A.PROMPT_DELETED,
        A.SYSTEM_CONFIG_CHANGED,
        A.SECURITY_ALERT,
        A.IP_WHITELISTED,
        A.IP_BLACKLISTED,
        A.UNAUTHORIZED_ACCESS,
        A.STEP_UP_FAILED,
    }
)
_MEDIUM: Final[frozenset[AdminAction]] = frozenset(
    {
        A.USER_ROLE_CHANGED,
        A.USER_SUBSCRIPTION_CHANGED,
        A.PROMPT_ACTIVATED,
        A.PROMPT_DEACTIVATED,
        A.SETTINGS_UPDATED,
        A.LOGIN_FAILED,
        A.RATE_LIMIT_EXCEEDED,
        A.PROMPT_CONTENT_VIEWED,
    }
)

SECURITY_ACTIONS: Final[frozenset[AdminAction]] = frozenset(
    {
        A.LOGIN_FAILED,
        A.SECURITY_ALERT,
        A.IP_WHITELISTED,
        A.IP_BLACKLISTED,
        A.TWO_FACTOR_ENABLED,
        A.TWO_FACTOR_DISABLED,
        A.PASSWORD_CHANGED,
        A.EMAIL_CHANGED,
        A.UNAUTHORIZED_ACCESS,
        A.STEP_UP_FAILED,
        A.SECURITY_RATE_LIMIT_EXCEEDED,
    }
)
REVIEW_ACTIONS: Final[frozenset[AdminAction]] = frozenset(
    {
        A.USER_DELETED,
        A.PROMPT_DELETED,
        A.SYSTEM_CONFIG_CHANGED,
        A.SECURITY_ALERT,
        A.USER_BANNED,
    }
)
COMPLIANCE_ACTIONS: Final[frozenset[AdminAction]] = frozenset(
    {
        A.PROMPT_DELETED,
        A.USER_DELETED,
        A.LOG_EXPORTED,
        A.BACKUP_RESTORED,
        A.TWO_FACTOR_DISABLED,
    }
)
AUTOMATED_ACTIONS: Final[frozenset[AdminAction]] = frozenset(
    {
        A.BACKUP_CREATED,
        A.REPORT_GENERATED,
        A.RATE_LIMIT_EXCEEDED,
        A.SECURITY_RATE_LIMIT_EXCEEDED,
    }
)


@dataclass(frozen=True, slots=True)
class Classification:
    severity: Severity
    flags: EventFlags


def _severity_for(action: AdminAction) -> Severity:
    if action in _CRITICAL:
        return Severity.CRITICAL
    if action in _HIGH:
        return Severity.HIGH
    if action in _MEDIUM:
        return Severity.MEDIUM
    return Severity.LOW


def _build_table() -> Mapping[AdminAction, Classification]:
    return MappingProxyType(
        {
            action: Classification(
                severity=_severity_for(action),
                flags=EventFlags(
                    requires_review=action in REVIEW_ACTIONS,
                    is_security_event=action in SECURITY_ACTIONS,
                    is_compliance=action in COMPLIANCE_ACTIONS,
                    is_automated=action in AUTOMATED_ACTIONS,
                ),
            )
            for action in AdminAction
        }
    )


ACTION_CLASSIFICATION: Final[Mapping[AdminAction, Classification]] = _build_table()


def classify(action: AdminAction | str) -> Classification:
    """Return the severity and flags for an action.

    Raises:
        ValueError: If the action is not a known AdminAction.
    """
    return ACTION_CLASSIFICATION[AdminAction(action)]
