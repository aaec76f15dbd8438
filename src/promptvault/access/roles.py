"""Actor roles and subscription tiers consumed from the identity collaborator."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    """Actor roles.

    Owner alone is trusted with vault operations. Moderators can read the
    audit trail. Standard actors only use prompts.
    """

    STANDARD = "standard"
    MODERATOR = "moderator"
    OWNER = "owner"


class SubscriptionTier(StrEnum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"
