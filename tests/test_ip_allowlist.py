"""Tests for the admin IP allow-list and the actor directory.

Tests cover:
1. Address and CIDR matching, IPv4-mapped IPv6 normalization
2. Environment loading (unset, empty, bypass ignored in production)
3. Actor directory seeding from PROMPTVAULT_ACTORS_JSON
"""

from __future__ import annotations

import json

import pytest

from promptvault.access import (
    ActorProfile,
    IpAllowList,
    Role,
    SubscriptionTier,
    load_actor_directory,
    normalize_ip,
)
from promptvault.errors import ConfigurationError


class TestIpAllowList:
    """Matching."""

    @pytest.mark.parametrize(
        "source_ip,allowed",
        [
            ("127.0.0.1", True),
            ("10.1.2.3", True),
            ("::ffff:10.1.2.3", True),
            ("2001:db8::7", True),
            ("11.0.0.1", False),
            ("203.0.113.9", False),
            ("2001:db9::1", False),
            ("not-an-ip", False),
            ("", False),
            (None, False),
        ],
    )
    def test_allows(self, source_ip: str | None, allowed: bool) -> None:
        allowlist = IpAllowList(["127.0.0.1", "10.0.0.0/8", "2001:db8::/32"])

        assert allowlist.allows(source_ip) is allowed

    def test_invalid_entry(self) -> None:
        with pytest.raises(ConfigurationError):
            IpAllowList(["10.0.0.0/33"])

    def test_blank_entries_ignored(self) -> None:
        assert len(IpAllowList([" ", "", "127.0.0.1"]).networks) == 1

    def test_bypass_allows_everything(self) -> None:
        assert IpAllowList([], bypass=True).allows("203.0.113.9") is True

    def test_normalize_ip(self) -> None:
        assert str(normalize_ip("::ffff:127.0.0.1")) == "127.0.0.1"
        assert str(normalize_ip(" ::1 ")) == "::1"
        assert normalize_ip("localhost") is None


class TestIpAllowListFromEnv:
    """Environment loading."""

    def test_unset_means_loopback(self) -> None:
        allowlist = IpAllowList.from_env()

        assert allowlist.allows("127.0.0.1") is True
        assert allowlist.allows("::1") is True
        assert allowlist.allows("10.0.0.1") is False

    def test_empty_denies_all(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTVAULT_ADMIN_IP_ALLOWLIST", "")

        assert IpAllowList.from_env().allows("127.0.0.1") is False

    def test_list_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTVAULT_ADMIN_IP_ALLOWLIST", "192.168.1.0/24, 10.0.0.5")

        allowlist = IpAllowList.from_env()

        assert allowlist.allows("192.168.1.77") is True
        assert allowlist.allows("10.0.0.5") is True
        assert allowlist.allows("127.0.0.1") is False

    def test_bypass_in_development(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTVAULT_BYPASS_IP_CHECK", "1")

        assert IpAllowList.from_env().allows("203.0.113.9") is True

    def test_bypass_ignored_in_production(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTVAULT_BYPASS_IP_CHECK", "true")
        monkeypatch.setenv("PROMPTVAULT_ENV", "production")

        allowlist = IpAllowList.from_env()

        assert allowlist.bypass is False
        assert allowlist.allows("203.0.113.9") is False


class TestActorDirectory:
    """Seeding from the environment."""

    def test_unset_is_empty(self) -> None:
        assert load_actor_directory().get("owner-1") is None

    def test_loads_profiles(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(
            "PROMPTVAULT_ACTORS_JSON",
            json.dumps(
                {
                    "owner-1": {"role": "Owner", "tier": "enterprise"},
                    "reader-1": {"role": "standard", "is_active": False},
                }
            ),
        )

        directory = load_actor_directory()

        assert directory.get("owner-1") == ActorProfile(
            "owner-1", Role.OWNER, SubscriptionTier.ENTERPRISE
        )
        reader = directory.get("reader-1")
        assert reader is not None
        assert reader.tier is None
        assert reader.is_active is False

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            "[]",
            json.dumps({"a": "owner"}),
            json.dumps({"a": {"role": "superuser"}}),
            json.dumps({"a": {"role": "owner", "tier": "platinum"}}),
        ],
    )
    def test_rejects_bad_json(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("PROMPTVAULT_ACTORS_JSON", raw)

        with pytest.raises(ConfigurationError):
            load_actor_directory()
