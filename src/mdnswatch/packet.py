"""Inbound datagram as handed from the transport to the session."""

from __future__ import annotations

from dataclasses import dataclass

from .constants import Origin
from .filters import IPAddress


@dataclass(frozen=True)
class Packet:
    """
    Brief: One received UDP payload plus addressing metadata.

    Fields:
      - data: raw DNS message bytes
      - source / source_port: sender
      - destination: address the datagram was sent to (group or unicast)
      - interface_index: receiving interface, 0 when unknown
      - origin: Origin.SELF when the transport matched it to a query we sent
    """

    data: bytes
    source: IPAddress
    source_port: int
    destination: IPAddress
    interface_index: int = 0
    origin: Origin = Origin.EXTERNAL

    @property
    def external(self) -> bool:
        return self.origin is Origin.EXTERNAL
