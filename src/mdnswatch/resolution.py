"""
Opportunistic unicast follow-up queries that fill in a host's name and HINFO.

Each host gets at most MAX_QUERY_ATTEMPTS queries per target (learning a
hostname resets the budget for the HINFO step), no more than one per
QUERY_RETRY_INTERVAL. Queries are fire-and-forget; any reply arrives later
as an ordinary packet.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .constants import (
    DIRECTED_ATTEMPTS,
    MAX_QUERY_ATTEMPTS,
    MDNS_GROUP_V4,
    MDNS_GROUP_V6,
    MDNS_PORT,
    QUERY_RETRY_INTERVAL,
    TYPE_HINFO,
    TYPE_PTR,
)
from .filters import IPAddress
from .hosts import HostEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryRequest:
    """
    Brief: One outbound query for the transport to send.

    Fields:
      - name: question name
      - qtype: question type (PTR or HINFO)
      - target: destination address (the host, or the mDNS group)
      - port: destination port
      - interface_index: interface to send on; None lets the transport use its
        unicast reply socket
    """

    name: str
    qtype: int
    target: IPAddress
    port: int = MDNS_PORT
    interface_index: Optional[int] = None

    @property
    def multicast(self) -> bool:
        return self.target.is_multicast


class ResolutionState(enum.Enum):
    GAVE_UP = "gave-up"
    THROTTLED = "throttled"
    NEED_HOSTNAME = "need-hostname"
    NEED_HOST_INFO = "need-host-info"
    COMPLETE = "complete"


def _group_for(address: IPAddress) -> IPAddress:
    return MDNS_GROUP_V4 if address.version == 4 else MDNS_GROUP_V6


class ActiveResolver:
    """
    Brief: Per-host retry state machine for reverse-name and HINFO lookups.

    Inputs (constructor):
      - send: callable taking a QueryRequest; failures are the sender's concern.
      - clock: monotonic time source in seconds (injectable for tests).
      - enabled: when False, evaluate() never sends.
      - max_attempts / retry_interval: limits, defaulting to 4 and 1 second.

    Outputs:
      - ActiveResolver instance.
    """

    def __init__(
        self,
        send: Callable[[QueryRequest], None],
        *,
        clock: Callable[[], float] = time.monotonic,
        enabled: bool = True,
        max_attempts: int = MAX_QUERY_ATTEMPTS,
        retry_interval: float = QUERY_RETRY_INTERVAL,
    ) -> None:
        self._send = send
        self._clock = clock
        self.enabled = enabled
        self.max_attempts = max_attempts
        self.retry_interval = retry_interval
        self.queries_sent = 0

    def state(self, entry: HostEntry, now: Optional[float] = None) -> ResolutionState:
        """Brief: Classify where a host stands in the resolution workflow."""
        if entry.query_attempts >= self.max_attempts:
            return ResolutionState.GAVE_UP
        if now is None:
            now = self._clock()
        if (
            entry.query_attempts
            and entry.last_query_time is not None
            and now - entry.last_query_time < self.retry_interval
        ):
            return ResolutionState.THROTTLED
        if not entry.hostname:
            return ResolutionState.NEED_HOSTNAME
        if not entry.hardware_info:
            return ResolutionState.NEED_HOST_INFO
        return ResolutionState.COMPLETE

    def evaluate(self, entry: HostEntry, interface_index: Optional[int] = None) -> Optional[QueryRequest]:
        """
        Brief: Decide whether to query a host now and send the query if so.

        Inputs:
          - entry: host that just sent a packet.
          - interface_index: interface the packet arrived on.

        Outputs:
          - The QueryRequest that was sent, or None.
        """
        if not self.enabled:
            return None
        now = self._clock()
        state = self.state(entry, now)
        if state is ResolutionState.NEED_HOSTNAME:
            if not entry.reverse_name:
                return None
            return self._query(entry, entry.reverse_name, TYPE_PTR, interface_index, now)
        if state is ResolutionState.NEED_HOST_INFO:
            return self._query(entry, entry.hostname, TYPE_HINFO, interface_index, now)
        return None

    def _query(
        self,
        entry: HostEntry,
        name: str,
        qtype: int,
        interface_index: Optional[int],
        now: float,
    ) -> QueryRequest:
        entry.last_query_time = now
        entry.query_attempts += 1

        # Some hosts run more than one responder and the directed query may
        # reach the wrong one, so later attempts go to the group instead.
        if entry.query_attempts > DIRECTED_ATTEMPTS:
            request = QueryRequest(
                name=name,
                qtype=qtype,
                target=_group_for(entry.address),
                interface_index=interface_index,
            )
        else:
            request = QueryRequest(name=name, qtype=qtype, target=entry.address)

        logger.debug(
            "Query %d for %s: %s type %d -> %s",
            entry.query_attempts,
            entry.address,
            name,
            qtype,
            request.target,
        )
        self.queries_sent += 1
        self._send(request)
        return request
