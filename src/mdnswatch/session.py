"""
MonitorSession: the single owner of all state for one capture.

All mutation happens on the thread that calls ``classify``; a capture layer
that receives on several threads must funnel packets into one consumer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional, Union

from .activity import ActivityStat, ServiceTypeAggregator
from .classifier import PacketClassifier
from .constants import REPORT_TOP_HOSTS, REPORT_TOP_SERVICES, Origin, PacketClass
from .display import PacketDisplay
from .filters import AddressFilter, IPAddress
from .hosts import HostEntry, HostRegistry
from .packet import Packet
from .report import SummaryReporter, top_hosts
from .resolution import ActiveResolver

logger = logging.getLogger(__name__)


@dataclass
class PacketTotals:
    """Running packet and record counters, readable at any time."""

    query: int = 0
    legacy: int = 0
    response: int = 0
    bad: int = 0
    probes: int = 0
    goodbyes: int = 0
    questions: int = 0
    legacy_questions: int = 0
    answers: int = 0
    additionals: int = 0

    @property
    def multicast_total(self) -> int:
        return self.query + self.legacy + self.response

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class MonitorSession:
    """
    Brief: Owns the address filter, host registries, service-type aggregator,
    running totals, display and resolver for one capture.

    Inputs (constructor):
      - family: default address family (4 or 6) tracked when no filters exist.
      - interface_index: only packets from this interface are processed (0 = all).
      - display: PacketDisplay (stdout when omitted).
      - resolver: ActiveResolver, or None to disable follow-up queries.
      - max_hosts: optional capacity limit per host registry.
      - clock: wall-clock time source used for the summary.

    Outputs:
      - MonitorSession instance.

    Example:
      >>> lines = []
      >>> s = MonitorSession(display=PacketDisplay(sink=lines.append))
      >>> s.totals.query
      0
    """

    def __init__(
        self,
        *,
        family: int = 4,
        interface_index: int = 0,
        display: Optional[PacketDisplay] = None,
        resolver: Optional[ActiveResolver] = None,
        max_hosts: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.filters = AddressFilter(family)
        self.interface_index = interface_index
        self.display = display or PacketDisplay()
        self.resolver = resolver
        self.hosts_v4 = HostRegistry(4, max_hosts=max_hosts)
        self.hosts_v6 = HostRegistry(6, max_hosts=max_hosts)
        self.activity = ServiceTypeAggregator()
        self.totals = PacketTotals()
        self.clock = clock
        self.started_at = clock()
        self.ended_at: Optional[float] = None
        self.classifier = PacketClassifier(self)

    # Filters ------------------------------------------------------------

    def add_filter(self, address: Union[str, IPAddress]) -> IPAddress:
        return self.filters.add(address)

    def clear_filters(self) -> None:
        self.filters.clear()

    @property
    def track_hosts(self) -> bool:
        """Per-host tracking is pointless when watching exactly one address."""
        return not self.filters.exactly_one

    # Hosts --------------------------------------------------------------

    def registry_for(self, address: IPAddress) -> HostRegistry:
        return self.hosts_v4 if address.version == 4 else self.hosts_v6

    def got_packet_from_host(
        self, address: IPAddress, packet_class: PacketClass, origin: Origin
    ) -> Optional[HostEntry]:
        """
        Brief: Look up or create the sender's entry and count the packet.

        Inputs:
          - address: packet source
          - packet_class: query / legacy / response / bad
          - origin: self-originated traffic is not counted

        Outputs:
          - HostEntry, or None when tracking is off or the registry is full.
        """
        if not self.track_hosts:
            return None
        entry = self.registry_for(address).get_or_create(address)
        if entry is None:
            return None
        if origin is Origin.EXTERNAL:
            entry.count_packet(packet_class)
        return entry

    def analyse_host(self, entry: HostEntry, interface_index: int) -> None:
        if self.resolver is not None:
            self.resolver.evaluate(entry, interface_index or None)

    # Packets ------------------------------------------------------------

    def accepts(self, packet: Packet) -> bool:
        if self.interface_index and packet.interface_index != self.interface_index:
            return False
        return self.filters.matches(packet.source)

    def classify(self, packet: Packet) -> bool:
        """
        Brief: Process one received packet.

        Inputs:
          - packet: Packet from the transport

        Outputs:
          - bool: True when the packet passed the interface/address filters.
        """
        if not self.accepts(packet):
            return False
        self.classifier.classify(packet)
        return True

    # Reporting ----------------------------------------------------------

    def report_top_services(self, n: int = REPORT_TOP_SERVICES) -> List[ActivityStat]:
        return self.activity.top(n)

    def report_top_hosts(self, n: int = REPORT_TOP_HOSTS, family: Optional[int] = None) -> List[HostEntry]:
        registry = self.hosts_v6 if (family or self.filters.family) == 6 else self.hosts_v4
        return top_hosts(registry, n)

    def report_summary(
        self, top_services: int = REPORT_TOP_SERVICES, top_hosts: int = REPORT_TOP_HOSTS
    ) -> None:
        if self.ended_at is None:
            self.ended_at = self.clock()
        SummaryReporter(self, top_services=top_services, top_hosts=top_hosts).report(self.ended_at)

    def close(self) -> None:
        """Mark the end of capture and release filters and aggregates."""
        if self.ended_at is None:
            self.ended_at = self.clock()
        self.clear_filters()
        self.activity.clear()
        logger.debug("Session closed")
