"""Source-IP allow-list for administrative operations.

Entries are single addresses or CIDR blocks. IPv4-mapped IPv6 addresses
(``::ffff:10.0.0.1``) are normalized to their IPv4 form before matching.

Environment Variables:
    PROMPTVAULT_ADMIN_IP_ALLOWLIST: Comma-separated addresses/CIDRs.
        Unset means loopback only; set but empty denies everything.
    PROMPTVAULT_BYPASS_IP_CHECK: Development-only bypass (ignored in production).
"""

from __future__ import annotations

import ipaddress
import logging
import os
from collections.abc import Iterable
from typing import Final

from promptvault.config import development_bypass
from promptvault.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_ADMIN_IP_ALLOWLIST: Final[str] = "PROMPTVAULT_ADMIN_IP_ALLOWLIST"
ENV_BYPASS_IP_CHECK: Final[str] = "PROMPTVAULT_BYPASS_IP_CHECK"
DEFAULT_ALLOWLIST: Final[tuple[str, ...]] = ("127.0.0.1", "::1")

IpNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def normalize_ip(raw: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse an address, unwrapping IPv4-mapped IPv6. Returns None if invalid."""
    try:
        address = ipaddress.ip_address(raw.strip())
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


class IpAllowList:
    """Matches source addresses against allowed networks."""

    def __init__(self, entries: Iterable[str], *, bypass: bool = False) -> None:
        networks: list[IpNetwork] = []
        for entry in entries:
            entry = entry.strip()
            if not entry:
                continue
            try:
                networks.append(ipaddress.ip_network(entry, strict=False))
            except ValueError as e:
                raise ConfigurationError(
                    f"{ENV_ADMIN_IP_ALLOWLIST} contains an invalid entry: '{entry}'"
                ) from e
        self._networks = tuple(networks)
        self._bypass = bypass

    @classmethod
    def from_env(cls) -> IpAllowList:
        raw = os.environ.get(ENV_ADMIN_IP_ALLOWLIST)
        entries = DEFAULT_ALLOWLIST if raw is None else tuple(raw.split(","))
        bypass = development_bypass(ENV_BYPASS_IP_CHECK)
        if bypass:
            logger.warning("Admin IP allow-list bypass is enabled")
        return cls(entries, bypass=bypass)

    @property
    def bypass(self) -> bool:
        return self._bypass

    @property
    def networks(self) -> tuple[IpNetwork, ...]:
        return self._networks

    def allows(self, source_ip: str | None) -> bool:
        if self._bypass:
            return True
        if not source_ip:
            return False
        address = normalize_ip(source_ip)
        if address is None:
            return False
        return any(
            address.version == network.version and address in network
            for network in self._networks
        )
