"""
End-of-capture summary: duration, packet/record totals with per-minute rates,
busiest service types and busiest hosts.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from .activity import ActivityStat
from .constants import (
    DIRECTED_ATTEMPTS,
    REPORT_TOP_HOSTS,
    REPORT_TOP_SERVICES,
    OpKind,
    PacketClass,
)
from .hosts import HostEntry, HostRegistry

if TYPE_CHECKING:  # pragma: no cover
    from .session import MonitorSession

logger = logging.getLogger(__name__)

OP_BANNER = "Total Ops   Probe   Goodbye  BrowseQ  BrowseA ResolveQ ResolveA"
HOST_BANNER_SUFFIX = "    Pkts    Query   LegacyQ Response"
UNKNOWN_SOFTWARE = "*** Unknown (Jaguar, Windows, etc.) ***"


def rate_per_minute(count: int, elapsed_seconds: float) -> int:
    """
    Brief: Average events per minute over the capture.

    Inputs:
      - count: number of events
      - elapsed_seconds: capture duration

    Outputs:
      - int rate. Captures longer than 10 s use whole seconds; shorter ones
        use milliseconds with a 1 ms floor.

    Example:
      >>> rate_per_minute(120, 60.0)
      120
      >>> rate_per_minute(5, 0.0)
      300000
    """
    whole_seconds = int(elapsed_seconds)
    if whole_seconds > 10:
        return count * 60 // whole_seconds
    millis = max(1, int(elapsed_seconds * 1000))
    return count * 60000 // millis


def _clock_text(moment: datetime) -> str:
    return f"{moment.hour:3d}:{moment.minute:02d}:{moment.second:02d}.{moment.microsecond:06d}"


def _duration_text(seconds: float) -> str:
    whole = int(seconds)
    micros = int(round((seconds - whole) * 1_000_000))
    if micros >= 1_000_000:
        whole += 1
        micros -= 1_000_000
    h, rem = divmod(whole, 3600)
    m, s = divmod(rem, 60)
    return f"{h:3d}:{m:02d}:{s:02d}.{micros:06d}"


def _op_columns(total: int, counts: List[int]) -> str:
    return f"{total:8d} " + " ".join(
        f"{counts[k]:8d}"
        for k in (
            OpKind.PROBE,
            OpKind.GOODBYE,
            OpKind.BROWSE_QUERY,
            OpKind.BROWSE_ANSWER,
            OpKind.RESOLVE_QUERY,
            OpKind.RESOLVE_ANSWER,
        )
    )


def top_hosts(registry: HostRegistry, n: int) -> List[HostEntry]:
    """Busiest n hosts by total packets; ties keep registry order."""
    return registry.sorted_by_packets()[: max(0, n)]


class SummaryReporter:
    """
    Brief: Renders the final report for a MonitorSession to its display sink.

    Inputs (constructor):
      - session: finished (or still running) MonitorSession
      - top_services / top_hosts: table sizes

    Outputs:
      - SummaryReporter instance; call report() once at shutdown.
    """

    def __init__(
        self,
        session: "MonitorSession",
        top_services: int = REPORT_TOP_SERVICES,
        top_hosts: int = REPORT_TOP_HOSTS,
    ) -> None:
        self.session = session
        self.top_services = top_services
        self.top_hosts = top_hosts

    def _out(self, text: str = "") -> None:
        self.session.display.line(text)

    def report(self, ended_at: Optional[float] = None) -> None:
        session = self.session
        end = ended_at if ended_at is not None else session.clock()
        elapsed = max(0.0, end - session.started_at)

        self._out()
        self._out()
        self._out(f"Started      {_clock_text(datetime.fromtimestamp(session.started_at))}")
        self._out(f"End          {_clock_text(datetime.fromtimestamp(end))}")
        self._out(f"Captured for {_duration_text(elapsed)}")

        if not session.filters:
            text = "Unique source addresses seen on network:"
            if len(session.hosts_v4):
                text += f" {len(session.hosts_v4)} (IPv4)"
            if len(session.hosts_v6):
                text += f" {len(session.hosts_v6)} (IPv6)"
            if not len(session.hosts_v4) and not len(session.hosts_v6):
                text += " None"
            self._out(text)
        self._out()

        totals = session.totals
        rows = [
            ("Modern Query        Packets:      ", totals.query),
            ("Legacy Query        Packets:      ", totals.legacy),
            ("Multicast Response  Packets:      ", totals.response),
            ("Total     Multicast Packets:      ", totals.multicast_total),
            None,
            ("Total New Service Probes:         ", totals.probes),
            ("Total Goodbye Announcements:      ", totals.goodbyes),
            ("Total Query Questions:            ", totals.questions),
            ("Total Queries from Legacy Clients:", totals.legacy_questions),
            ("Total Answers/Announcements:      ", totals.answers),
            ("Total Additional Records:         ", totals.additionals),
        ]
        for row in rows:
            if row is None:
                self._out()
                continue
            label, count = row
            self._out(f"{label}{count:7d}   (avg{rate_per_minute(count, elapsed):5d}/min)")
        self._out()

        self.report_services(session.activity.top(self.top_services))

        if session.track_hosts:
            self.report_hosts(top_hosts(session.hosts_v4, self.top_hosts), len(session.hosts_v4))
            self.report_hosts(top_hosts(session.hosts_v6, self.top_hosts), len(session.hosts_v6))

    def report_services(self, stats: List[ActivityStat]) -> None:
        for i, stat in enumerate(stats):
            if i == 0:
                self._out(f"{'Service Type':<25}{OP_BANNER}")
            self._out(f"{stat.name:<25}{_op_columns(stat.total_ops, stat.op_counts)}")

    def report_hosts(self, entries: List[HostEntry], registry_size: int) -> None:
        if registry_size:
            self._out()
            self._out(f"{'Source Address':<25}{OP_BANNER}{HOST_BANNER_SUFFIX}")
        for entry in entries:
            address = str(entry.address)
            if len(address) > 25:
                head = f"{address}\n{'':25}"
            else:
                head = f"{address:<25}"
            text = head + _op_columns(entry.total_ops, entry.op_counts)
            text += (
                f" {entry.total_packets:8d} {entry.packet_counts[PacketClass.QUERY]:8d}"
                f" {entry.packet_counts[PacketClass.LEGACY]:8d}"
                f" {entry.packet_counts[PacketClass.RESPONSE]:8d}"
            )
            if entry.packet_counts[PacketClass.BAD]:
                text += f"Bad: {entry.packet_counts[PacketClass.BAD]:8d}"
            for line in text.split("\n"):
                self._out(line)

            software = entry.software_info
            if not software and entry.query_attempts > DIRECTED_ATTEMPTS:
                software = UNKNOWN_SOFTWARE
            if entry.hostname or entry.hardware_info or software:
                self._out(f"{entry.hostname:<45} {entry.hardware_info:<14} {software}")
