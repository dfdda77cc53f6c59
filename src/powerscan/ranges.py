"""
Address range registry.

Collects the (start, end) address pairs that the range-oriented backends
(SNMP, XML/HTTP, NUT, IPMI) walk through. Ranges come from the command
line (-s/-e pairs, -m CIDR) or from local subnet auto-discovery, and are
scanned in the order they were recorded.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterator, Optional

import netifaces

from ._types import AddressRange

logger = logging.getLogger(__name__)

AUTO_FAMILIES = {
    "auto": (netifaces.AF_INET, netifaces.AF_INET6),
    "auto4": (netifaces.AF_INET,),
    "auto6": (netifaces.AF_INET6,),
}


def cidr_to_range(cidr: str) -> tuple[str, str]:
    """
    Convert a CIDR network into its inclusive first/last address pair.

    Host bits are ignored, so "192.168.1.17/24" yields
    ("192.168.1.0", "192.168.1.255").

    Raises:
        ValueError: if the string is not a valid CIDR specification
    """
    if "/" not in cidr:
        raise ValueError(f"Not a CIDR net/mask specification: {cidr}")
    network = ipaddress.ip_network(cidr.strip(), strict=False)
    return str(network.network_address), str(network.broadcast_address)


def _prefix_length(family: int, netmask: str) -> int:
    """Get the prefix length of a netmask as reported by netifaces."""
    # IPv6 masks look like "ffff:ffff:ffff:ffff::/64"
    if "/" in netmask:
        return int(netmask.rsplit("/", 1)[1])
    if family == netifaces.AF_INET6:
        return ipaddress.IPv6Network(f"::/{netmask}").prefixlen
    return ipaddress.IPv4Network(f"0.0.0.0/{netmask}").prefixlen


class AddressRangeRegistry:
    """
    Ordered collection of address ranges.

    Appending is O(1) and preserves insertion order. The registry does
    not de-duplicate: overlapping or repeated ranges are scanned again.
    """

    def __init__(self):
        self._ranges: list[AddressRange] = []
        self._auto_family: Optional[str] = None

    def add_range(self, start: Optional[str], end: Optional[str]) -> int:
        """
        Record a range to scan.

        If only one end is given the range covers that single address,
        and both ends refer to the same value. Giving neither is a no-op.

        Returns the number of recorded ranges.
        """
        if start is None and end is None:
            logger.debug("add_range: skip, no addresses were provided")
            return len(self._ranges)

        if start is None:
            logger.debug(f"add_range: only end address was provided, setting start to same: {end}")
            start = end
        if end is None:
            logger.debug(f"add_range: only start address was provided, setting end to same: {start}")
            end = start

        self._ranges.append(AddressRange(start=start, end=end))
        logger.debug(f"Recorded IP address range #{len(self._ranges)}: [{start} .. {end}]")
        return len(self._ranges)

    def add_cidr(self, cidr: str) -> int:
        """Record the range covered by a CIDR network."""
        logger.debug(f"Processing CIDR net/mask: {cidr}")
        start, end = cidr_to_range(cidr)
        logger.debug(f"Extracted IP address range from CIDR net/mask: {start} => {end}")
        return self.add_range(start, end)

    def clear(self) -> None:
        """Forget every recorded range."""
        self._ranges.clear()

    def auto_discover(self, family: str = "auto") -> int:
        """
        Record the subnets of the local network interfaces.

        Only interfaces that can broadcast and are not loopback are used.
        Honoured once per registry: the address family chosen by the first
        request sticks, and later requests are ignored with a warning.

        Args:
            family: "auto" (IPv4 and IPv6), "auto4" or "auto6"

        Returns the number of recorded ranges.
        """
        if family not in AUTO_FAMILIES:
            raise ValueError(f"Unknown auto-discovery mode: {family}")

        if self._auto_family is not None:
            logger.warning("Duplicate request for connected subnet scan ignored")
            return len(self._ranges)
        self._auto_family = family

        for cidr in self._local_subnets(AUTO_FAMILIES[family]):
            self.add_cidr(cidr)
        return len(self._ranges)

    def _local_subnets(self, families: tuple[int, ...]) -> list[str]:
        """List CIDR networks of broadcast-capable, non-loopback interfaces."""
        subnets = []

        for iface in netifaces.interfaces():
            addresses = netifaces.ifaddresses(iface)

            # netifaces exposes no interface flags; an interface with an
            # IPv4 broadcast address is taken as broadcast-capable, and any
            # interface with an assigned address as up and running.
            can_broadcast = any(
                addr.get("broadcast") for addr in addresses.get(netifaces.AF_INET, [])
            )

            for family in (netifaces.AF_INET, netifaces.AF_INET6):
                for addr in addresses.get(family, []):
                    ip = addr.get("addr", "").split("%", 1)[0]
                    netmask = addr.get("netmask", "")
                    if not ip or not netmask:
                        continue

                    logger.debug(
                        f"Discovering interfaces: Interface: {iface}\tAddress: {ip}"
                        f"\tMask: {netmask}\tBroadcast: {can_broadcast}"
                    )

                    # TODO: skip link-local networks (169.254.0.0/16, fe80::/10)
                    # so auto-discovery does not queue huge worthless scans
                    try:
                        if ipaddress.ip_address(ip).is_loopback:
                            continue
                        cidr = f"{ip}/{_prefix_length(family, netmask)}"
                    except ValueError as e:
                        logger.debug(f"Skipping address {ip} on {iface}: {e}")
                        continue

                    if can_broadcast and family in families:
                        subnets.append(cidr)

        if subnets:
            logger.info(f"Auto-detected network ranges: {subnets}")
        else:
            logger.warning("Could not auto-detect network ranges")
        return subnets

    def __len__(self) -> int:
        return len(self._ranges)

    def __bool__(self) -> bool:
        return bool(self._ranges)

    def __iter__(self) -> Iterator[AddressRange]:
        return iter(tuple(self._ranges))


class RangeArgumentFolder:
    """
    Turn the ordered -s / -e / -m command-line arguments into ranges.

    A start and an end pair up into one range. A lone address followed by
    another address of the same kind, or by a CIDR request, becomes a
    single-address range of its own.
    """

    def __init__(self, registry: AddressRangeRegistry):
        self.registry = registry
        self._start: Optional[str] = None
        self._end: Optional[str] = None

    def start(self, address: str) -> None:
        if self._start is not None:
            self.flush()
        self._start = address
        if self._end is not None:
            self.flush()

    def end(self, address: str) -> None:
        if self._end is not None:
            self.flush()
        self._end = address
        if self._start is not None:
            self.flush()

    def mask(self, value: str) -> None:
        self.flush()
        if value in AUTO_FAMILIES:
            self.registry.auto_discover(value)
        else:
            self.registry.add_cidr(value)

    def flush(self) -> None:
        """Save whatever half or whole range is pending."""
        if self._start is not None or self._end is not None:
            self.registry.add_range(self._start, self._end)
        self._start = None
        self._end = None
