"""
classification/subnets.py

LAN membership test for addresses seen in the accounting feed.

SubnetSet is built once at startup from the configured CIDR strings and is
read-only afterwards, so ticks may share it without locking. Networks are
bucketed by IP version; an address is only ever compared against prefixes
of its own family.

Classification:
  - local    : the address lies inside ANY configured subnet
  - external : everything else, including strings that are not IP literals
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable

logger = logging.getLogger(__name__)


class SubnetConfigError(ValueError):
    """The configured subnet list is empty or contains an invalid prefix."""


def parse_subnet(cidr: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    """
    Parse one CIDR string. Host bits are allowed ('192.168.1.5/24').

    Raises:
        SubnetConfigError: if ``cidr`` is not a valid network prefix.
    """
    try:
        return ipaddress.ip_network(cidr.strip(), strict=False)
    except (ValueError, TypeError, AttributeError) as exc:
        raise SubnetConfigError(f"Invalid LAN subnet {cidr!r}: {exc}") from exc


class SubnetSet:
    """
    Ordered, immutable collection of validated LAN prefixes.

    Args:
        subnets: CIDR strings, e.g. ['192.168.0.0/24', 'fd00::/8'].

    Raises:
        SubnetConfigError: if ``subnets`` is empty or any entry is invalid.
    """

    __slots__ = ("_networks", "_by_version")

    def __init__(self, subnets: Iterable[str]) -> None:
        networks = tuple(parse_subnet(s) for s in subnets)
        if not networks:
            raise SubnetConfigError(
                "Invalid sub nets value. Expected at least one LAN subnet"
            )
        self._networks = networks
        self._by_version = {
            4: tuple(n for n in networks if n.version == 4),
            6: tuple(n for n in networks if n.version == 6),
        }
        logger.info("LAN subnets: %s", ", ".join(str(n) for n in networks))

    @property
    def networks(self) -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
        return self._networks

    def is_local(self, address: str) -> bool:
        """True if ``address`` falls inside any configured subnet."""
        try:
            addr = ipaddress.ip_address(address)
        except ValueError:
            return False
        return any(addr in net for net in self._by_version[addr.version])

    def local_addresses(self, addresses: Iterable[str]) -> frozenset[str]:
        """Return the subset of ``addresses`` classified as local."""
        return frozenset(a for a in addresses if self.is_local(a))

    def __len__(self) -> int:
        return len(self._networks)

    def __repr__(self) -> str:
        return f"SubnetSet({[str(n) for n in self._networks]!r})"
