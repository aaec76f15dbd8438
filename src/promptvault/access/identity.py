"""Actor directory consumed from the identity collaborator.

PromptVault only needs an actor's role, subscription tier and active flag.
The directory can be backed by anything that implements ``ActorDirectory``;
the bundled implementation is in-memory and can be seeded from
PROMPTVAULT_ACTORS_JSON:

    {"actor-1": {"role": "owner", "tier": "premium", "is_active": true}}
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Final, Protocol, runtime_checkable

from promptvault.access.roles import Role, SubscriptionTier
from promptvault.errors import ConfigurationError

logger = logging.getLogger(__name__)

ACTORS_JSON_ENV: Final[str] = "PROMPTVAULT_ACTORS_JSON"


@dataclass(frozen=True, slots=True)
class ActorProfile:
    actor_id: str
    role: Role
    tier: SubscriptionTier | None = None
    is_active: bool = True


@runtime_checkable
class ActorDirectory(Protocol):
    def get(self, actor_id: str) -> ActorProfile | None:
        """Return the actor's profile, or None if unknown."""
        ...


class InMemoryActorDirectory:
    def __init__(self, profiles: Iterable[ActorProfile] = ()) -> None:
        self._profiles = {p.actor_id: p for p in profiles}
        self._lock = threading.Lock()

    def get(self, actor_id: str) -> ActorProfile | None:
        with self._lock:
            return self._profiles.get(actor_id)

    def put(self, profile: ActorProfile) -> None:
        with self._lock:
            self._profiles[profile.actor_id] = profile


def _parse_profile(actor_id: str, value: object) -> ActorProfile:
    """Build a profile, rejecting unknown roles or tiers (fail closed)."""
    if not isinstance(value, dict):
        raise ConfigurationError(f"{ACTORS_JSON_ENV} entry for {actor_id!r} must be an object")
    try:
        role = Role(str(value.get("role", "")).strip().lower())
        raw_tier = value.get("tier")
        tier = SubscriptionTier(str(raw_tier).strip().lower()) if raw_tier else None
    except ValueError as e:
        raise ConfigurationError(
            f"{ACTORS_JSON_ENV} entry for {actor_id!r} has an unknown role or tier"
        ) from e
    return ActorProfile(
        actor_id=actor_id,
        role=role,
        tier=tier,
        is_active=bool(value.get("is_active", True)),
    )


def load_actor_directory() -> InMemoryActorDirectory:
    """Seed an in-memory directory from PROMPTVAULT_ACTORS_JSON.

    Returns an empty directory if the variable is unset.

    Raises:
        ConfigurationError: If the JSON is malformed or names an unknown role.
    """
    raw = os.environ.get(ACTORS_JSON_ENV)
    if not raw:
        return InMemoryActorDirectory()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{ACTORS_JSON_ENV} is not valid JSON") from e
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"{ACTORS_JSON_ENV} must be a JSON object")

    profiles = [_parse_profile(str(actor_id), value) for actor_id, value in parsed.items()]
    logger.info("Loaded %d actor profiles from %s", len(profiles), ACTORS_JSON_ENV)
    return InMemoryActorDirectory(profiles)
