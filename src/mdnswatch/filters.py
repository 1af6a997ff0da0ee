"""Source-address allow-list deciding which traffic is tracked and displayed."""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterator, List, Union

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class AddressFilter:
    """
    Brief: Allow-list of source addresses with an address-family default.

    Inputs (constructor):
      - family: 4 or 6; when no explicit addresses are configured, only sources
        of this family match.

    Outputs:
      - AddressFilter instance.

    Example:
      >>> f = AddressFilter(family=4)
      >>> f.matches(ipaddress.ip_address("10.0.0.1"))
      True
      >>> _ = f.add("10.0.0.2")
      >>> f.matches(ipaddress.ip_address("10.0.0.1"))
      False
    """

    def __init__(self, family: int = 4) -> None:
        if family not in (4, 6):
            raise ValueError(f"address family must be 4 or 6, got {family!r}")
        self.family = family
        self._addresses: List[IPAddress] = []

    def add(self, address: Union[str, IPAddress]) -> IPAddress:
        """Brief: Add an address to the allow-list and return the parsed form."""
        addr = ipaddress.ip_address(address)
        # Newest first.
        self._addresses.insert(0, addr)
        logger.debug("Added address filter %s", addr)
        return addr

    def clear(self) -> None:
        self._addresses.clear()

    @property
    def exactly_one(self) -> bool:
        """True when a single address is configured; host tracking is then skipped."""
        return len(self._addresses) == 1

    def matches(self, address: IPAddress) -> bool:
        if not self._addresses:
            return address.version == self.family
        return address in self._addresses

    def __len__(self) -> int:
        return len(self._addresses)

    def __bool__(self) -> bool:
        return bool(self._addresses)

    def __iter__(self) -> Iterator[IPAddress]:
        return iter(self._addresses)
