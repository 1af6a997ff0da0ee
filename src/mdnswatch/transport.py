"""
UDP transport: multicast listeners, unicast query sockets, and correlation of
replies with the follow-up queries this process sent.
"""

from __future__ import annotations

import ipaddress
import logging
import random
import selectors
import socket
import struct
import time
from typing import Callable, Dict, List, Optional, Tuple

from cachetools import TTLCache
from dnslib import DNSError, DNSHeader, DNSQuestion, DNSRecord
from dnslib.label import DNSLabelError

from .constants import MDNS_GROUP_V4, MDNS_GROUP_V6, MDNS_PORT, Origin
from .filters import IPAddress
from .packet import Packet
from .resolution import QueryRequest
from .wire import MessageView, WireError, decode_question

logger = logging.getLogger(__name__)

RECV_SIZE = 9000
OUTSTANDING_WINDOW = 60.0
OUTSTANDING_LIMIT = 256


class TransportError(Exception):
    """
    Brief: Sockets could not be opened or configured.

    Inputs:
      - message: description

    Outputs:
      - Exception instance
    """

    pass


class OutstandingQueries:
    """
    Brief: Recently sent follow-up queries, used to tag replies as self-originated.

    Inputs (constructor):
      - window: seconds a sent query stays eligible for matching.
      - limit: maximum remembered queries; the least recently sent go first.
      - clock: monotonic time source, used as the cache timer.

    Outputs:
      - OutstandingQueries instance.
    """

    def __init__(
        self,
        window: float = OUTSTANDING_WINDOW,
        limit: int = OUTSTANDING_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window
        self.limit = limit
        self._sent: "TTLCache[int, Tuple[str, int]]" = TTLCache(
            maxsize=limit, ttl=window, timer=clock
        )

    def new_id(self) -> int:
        """Pick a non-zero transaction id not currently outstanding."""
        while True:
            txid = random.getrandbits(16)
            if txid and txid not in self._sent:
                return txid

    def remember(self, txid: int, name: str, qtype: int) -> None:
        self._sent[txid] = (name.rstrip(".").lower(), int(qtype))

    def origin_of(self, data: bytes) -> Origin:
        """
        Brief: Decide whether a packet answers (or is) one of our queries.

        Inputs:
          - data: raw DNS message

        Outputs:
          - Origin.SELF when the header id matches a sent query, or when a
            response echoes a sent question; Origin.EXTERNAL otherwise.
        """
        self._sent.expire()
        if not self._sent:
            return Origin.EXTERNAL
        try:
            msg = MessageView(data)
        except WireError:
            return Origin.EXTERNAL
        if msg.id and msg.id in self._sent:
            return Origin.SELF
        if msg.is_response and msg.num_questions:
            try:
                question, _ = decode_question(msg, msg.first_record)
            except WireError:
                return Origin.EXTERNAL
            key = (question.name.rstrip(".").lower(), question.qtype)
            if key in self._sent.values():
                return Origin.SELF
        return Origin.EXTERNAL

    def __len__(self) -> int:
        self._sent.expire()
        return len(self._sent)


def build_query(request: QueryRequest, txid: int) -> bytes:
    """Brief: Wire-format query for a QueryRequest using dnslib."""
    record = DNSRecord(DNSHeader(id=txid, rd=0), q=DNSQuestion(request.name, request.qtype))
    return record.pack()


def _strip_scope(host: str) -> str:
    return host.split("%", 1)[0]


def parse_pktinfo(
    family: int, ancdata: List[Tuple[int, int, bytes]]
) -> Tuple[Optional[IPAddress], int]:
    """
    Brief: Extract destination address and interface index from ancillary data.

    Inputs:
      - family: socket.AF_INET or socket.AF_INET6
      - ancdata: list returned by socket.recvmsg

    Outputs:
      - (destination or None, interface index or 0)
    """
    for level, kind, cdata in ancdata:
        if (
            family == socket.AF_INET
            and level == socket.IPPROTO_IP
            and kind == getattr(socket, "IP_PKTINFO", -1)
            and len(cdata) >= 12
        ):
            (ifindex,) = struct.unpack("@i", cdata[:4])
            return ipaddress.IPv4Address(bytes(cdata[8:12])), ifindex
        if (
            family == socket.AF_INET6
            and level == socket.IPPROTO_IPV6
            and kind == getattr(socket, "IPV6_PKTINFO", -1)
            and len(cdata) >= 20
        ):
            (ifindex,) = struct.unpack("@I", cdata[16:20])
            return ipaddress.IPv6Address(bytes(cdata[:16])), ifindex
    return None, 0


class _Endpoint:
    """One open socket plus what to assume when pktinfo is unavailable."""

    def __init__(self, sock: socket.socket, family: int, default_destination: IPAddress) -> None:
        self.sock = sock
        self.family = family
        self.default_destination = default_destination


class MulticastListener:
    """
    Brief: Receives mDNS traffic and sends follow-up queries.

    Inputs (constructor):
      - ipv4 / ipv6: which families to listen on.
      - interface_index: interface for IPv6 group membership (0 = default).
      - port: listening port (5353).
      - outstanding: OutstandingQueries used for origin tagging.

    Outputs:
      - MulticastListener; call open() before poll()/send_query().
    """

    def __init__(
        self,
        *,
        ipv4: bool = True,
        ipv6: bool = False,
        interface_index: int = 0,
        port: int = MDNS_PORT,
        outstanding: Optional[OutstandingQueries] = None,
    ) -> None:
        self.ipv4 = ipv4
        self.ipv6 = ipv6
        self.interface_index = interface_index
        self.port = port
        self.outstanding = outstanding or OutstandingQueries()
        self.selector = selectors.DefaultSelector()
        self._endpoints: List[_Endpoint] = []
        self._unicast: Dict[int, socket.socket] = {}

    # Setup --------------------------------------------------------------

    def open(self) -> None:
        try:
            if self.ipv4:
                self._add(self._open_multicast_v4(), socket.AF_INET, MDNS_GROUP_V4)
                sock = self._open_unicast(socket.AF_INET)
                self._unicast[4] = sock
                self._add(sock, socket.AF_INET, ipaddress.IPv4Address("0.0.0.0"))
            if self.ipv6:
                self._add(self._open_multicast_v6(), socket.AF_INET6, MDNS_GROUP_V6)
                sock = self._open_unicast(socket.AF_INET6)
                self._unicast[6] = sock
                self._add(sock, socket.AF_INET6, ipaddress.IPv6Address("::"))
        except OSError as e:
            self.close()
            raise TransportError(f"Failed to open mDNS sockets: {e}") from e
        logger.info(
            "Listening for mDNS on port %d (IPv4=%s IPv6=%s)", self.port, self.ipv4, self.ipv6
        )

    def _add(self, sock: socket.socket, family: int, default_destination: IPAddress) -> None:
        sock.setblocking(False)
        endpoint = _Endpoint(sock, family, default_destination)
        self._endpoints.append(endpoint)
        self.selector.register(sock, selectors.EVENT_READ, endpoint)

    @staticmethod
    def _enable_pktinfo(sock: socket.socket, family: int) -> None:
        try:
            if family == socket.AF_INET and hasattr(socket, "IP_PKTINFO"):
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_PKTINFO, 1)
            elif family == socket.AF_INET6 and hasattr(socket, "IPV6_RECVPKTINFO"):
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_RECVPKTINFO, 1)
        except OSError:
            logger.debug("Packet info not available; destinations will be assumed")

    def _open_multicast_v4(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(("", self.port))
        mreq = struct.pack("=4s4s", MDNS_GROUP_V4.packed, socket.inet_aton("0.0.0.0"))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        self._enable_pktinfo(sock, socket.AF_INET)
        return sock

    def _open_multicast_v6(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.bind(("::", self.port))
        mreq = MDNS_GROUP_V6.packed + struct.pack("@I", self.interface_index)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
        self._enable_pktinfo(sock, socket.AF_INET6)
        return sock

    def _open_unicast(self, family: int) -> socket.socket:
        sock = socket.socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        if family == socket.AF_INET:
            sock.bind(("0.0.0.0", 0))
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 255)
        else:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.bind(("::", 0))
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_HOPS, 255)
        self._enable_pktinfo(sock, family)
        return sock

    # Receive ------------------------------------------------------------

    def _receive(self, endpoint: _Endpoint) -> Optional[Packet]:
        ancsize = socket.CMSG_SPACE(32) if hasattr(socket, "CMSG_SPACE") else 0
        try:
            if ancsize:
                data, ancdata, _flags, addr = endpoint.sock.recvmsg(RECV_SIZE, ancsize)
            else:
                data, addr = endpoint.sock.recvfrom(RECV_SIZE)
                ancdata = []
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as e:
            logger.warning("Receive failed: %s", e)
            return None

        destination, ifindex = parse_pktinfo(endpoint.family, ancdata)
        try:
            source = ipaddress.ip_address(_strip_scope(addr[0]))
        except ValueError:
            logger.debug("Ignoring packet from unparseable address %r", addr)
            return None
        return Packet(
            data=bytes(data),
            source=source,
            source_port=int(addr[1]),
            destination=destination or endpoint.default_destination,
            interface_index=ifindex,
            origin=self.outstanding.origin_of(data),
        )

    def poll(self, timeout: Optional[float]) -> List[Packet]:
        """
        Brief: Wait up to timeout seconds and return every packet now readable.

        Inputs:
          - timeout: seconds, or None to block.

        Outputs:
          - list of Packet (possibly empty).
        """
        packets: List[Packet] = []
        for key, _mask in self.selector.select(timeout):
            packet = self._receive(key.data)
            if packet is not None:
                packets.append(packet)
        return packets

    # Send ---------------------------------------------------------------

    def send_query(self, request: QueryRequest) -> None:
        """
        Brief: Send a follow-up query; failures are logged, never raised.

        Inputs:
          - request: QueryRequest from the resolver

        Outputs:
          - None
        """
        sock = self._unicast.get(request.target.version)
        if sock is None:
            logger.debug("No IPv%d socket for query to %s", request.target.version, request.target)
            return

        txid = self.outstanding.new_id()
        try:
            wire = build_query(request, txid)
        except (DNSError, DNSLabelError, UnicodeError, ValueError) as e:
            logger.warning("Could not build query for %s: %s", request.name, e)
            return
        self.outstanding.remember(txid, request.name, request.qtype)

        try:
            if request.multicast and request.interface_index:
                self._select_multicast_interface(sock, request)
            sock.sendto(wire, (str(request.target), request.port))
        except OSError as e:
            logger.warning("Failed to send query for %s to %s: %s", request.name, request.target, e)

    @staticmethod
    def _select_multicast_interface(sock: socket.socket, request: QueryRequest) -> None:
        index = int(request.interface_index or 0)
        if request.target.version == 6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, index)
        else:
            # struct ip_mreqn: group, local address, interface index
            mreqn = struct.pack("=4s4si", b"\x00" * 4, b"\x00" * 4, index)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, mreqn)

    # Teardown -----------------------------------------------------------

    def close(self) -> None:
        for endpoint in self._endpoints:
            try:
                self.selector.unregister(endpoint.sock)
            except (KeyError, ValueError):
                pass
            endpoint.sock.close()
        self._endpoints.clear()
        self._unicast.clear()
        self.selector.close()
