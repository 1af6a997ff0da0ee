"""
Per-source-address host records.

A HostRegistry is created per address family. Entries are created lazily the
first time a packet is attributed to an address and live until the session
ends; counters only ever grow.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from .constants import (
    OP_KIND_COUNT,
    PACKET_CLASS_COUNT,
    TYPE_A,
    TYPE_AAAA,
    TYPE_HINFO,
    TYPE_PTR,
    OpKind,
    PacketClass,
)
from .filters import IPAddress
from .wire import WireRecord, same_name, split_character_strings

logger = logging.getLogger(__name__)


def reverse_name(address: IPAddress) -> str:
    """
    Brief: Compute the reverse-lookup name for an address.

    Inputs:
      - address: IPv4Address or IPv6Address.

    Outputs:
      - str: absolute name under in-addr.arpa. (dotted-decimal reversed) or
        ip6.arpa. (nibble reversed), with trailing dot.

    Example:
      >>> reverse_name(ipaddress.ip_address("192.168.1.20"))
      '20.1.168.192.in-addr.arpa.'
    """
    return address.reverse_pointer + "."


@dataclass
class HostEntry:
    """Traffic counters and learned identity for one source address."""

    address: IPAddress
    reverse_name: str = ""
    packet_counts: List[int] = field(default_factory=lambda: [0] * PACKET_CLASS_COUNT)
    total_ops: int = 0
    op_counts: List[int] = field(default_factory=lambda: [0] * OP_KIND_COUNT)
    hostname: str = ""
    hardware_info: str = ""
    software_info: str = ""
    query_attempts: int = 0
    last_query_time: Optional[float] = None

    @property
    def total_packets(self) -> int:
        return sum(self.packet_counts)

    def count_packet(self, packet_class: PacketClass) -> None:
        self.packet_counts[packet_class] += 1

    def count_op(self, kind: OpKind) -> None:
        self.total_ops += 1
        self.op_counts[kind] += 1

    def learn_hostname(self, name: str) -> bool:
        """Brief: Set the hostname if still unknown; returns True when it changed."""
        if self.hostname or not name:
            return False
        self.hostname = name
        # A newly learned name restarts the follow-up query budget for HINFO.
        self.query_attempts = 0
        return True

    def record_host_info(self, record: WireRecord) -> None:
        """
        Brief: Pull hostname or hardware/software text out of an answer record.

        Inputs:
          - record: decoded answer or additional record with nonzero TTL.

        Outputs:
          - None; updates hostname from A/AAAA owner names or from a PTR whose
            owner is this host's reverse name, and HINFO text once the
            hostname is known.
        """
        if not self.hostname:
            if record.rtype in (TYPE_A, TYPE_AAAA):
                # The address in the rdata is not checked against the source.
                self.learn_hostname(record.name)
            elif record.rtype == TYPE_PTR and same_name(record.name, self.reverse_name):
                self.learn_hostname(record.target or "")
            return

        if record.rtype == TYPE_HINFO and not self.hardware_info:
            strings = split_character_strings(record.raw_rdata)
            if strings is None or len(strings) < 2:
                return
            hardware, software = strings[0], strings[1]
            self.hardware_info = hardware.decode("utf-8", errors="replace")
            self.software_info = software.decode("utf-8", errors="replace")


class HostRegistry:
    """
    Brief: Insertion-ordered collection of HostEntry keyed by address.

    Inputs (constructor):
      - family: 4 or 6, used in log messages and reports.
      - max_hosts: optional capacity ceiling; when reached, new hosts are not
        created and callers skip per-host accounting.

    Outputs:
      - HostRegistry instance.

    Example:
      >>> reg = HostRegistry(4)
      >>> e = reg.get_or_create(ipaddress.ip_address("10.0.0.1"))
      >>> reg.find(ipaddress.ip_address("10.0.0.1")) is e
      True
    """

    def __init__(self, family: int, max_hosts: Optional[int] = None) -> None:
        self.family = family
        self.max_hosts = max_hosts
        self._entries: List[HostEntry] = []
        self._index: Dict[IPAddress, HostEntry] = {}
        self._exhausted_logged = False

    def find(self, address: IPAddress) -> Optional[HostEntry]:
        return self._index.get(address)

    def get_or_create(self, address: IPAddress) -> Optional[HostEntry]:
        """
        Brief: Return the entry for address, creating it on first sighting.

        Inputs:
          - address: source address of the packet.

        Outputs:
          - HostEntry, or None when the registry cannot grow.
        """
        entry = self._index.get(address)
        if entry is not None:
            return entry

        if self.max_hosts is not None and len(self._entries) >= self.max_hosts:
            if not self._exhausted_logged:
                logger.warning(
                    "IPv%d host registry full at %d entries; further hosts are untracked",
                    self.family,
                    len(self._entries),
                )
                self._exhausted_logged = True
            return None

        try:
            entry = HostEntry(address=address, reverse_name=reverse_name(address))
            self._entries.append(entry)
        except MemoryError:
            return None
        self._index[address] = entry
        return entry

    def sorted_by_packets(self) -> List[HostEntry]:
        """Entries ordered by total packets, descending; ties keep first-seen order."""
        return sorted(self._entries, key=lambda e: e.total_packets, reverse=True)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HostEntry]:
        return iter(self._entries)
