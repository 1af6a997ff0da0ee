"""Protocol constants and classification enums shared across mdnswatch."""

from __future__ import annotations

import enum
import ipaddress

MDNS_PORT = 5353
MDNS_GROUP_V4 = ipaddress.IPv4Address("224.0.0.251")
MDNS_GROUP_V6 = ipaddress.IPv6Address("ff02::fb")

# Record types referenced by the classifier. dnslib's QTYPE bimap is used for
# display names; these numeric values are what appears on the wire.
TYPE_A = 1
TYPE_PTR = 12
TYPE_HINFO = 13
TYPE_TXT = 16
TYPE_AAAA = 28
TYPE_SRV = 33
TYPE_OPT = 41
TYPE_NSEC = 47
TYPE_NSEC3 = 50
TYPE_ANY = 255

CLASS_IN = 1
CLASS_ANY = 255
# Top bit of the class field: unicast-response in questions, cache-flush in
# records.
CLASS_TOP_BIT = 0x8000

HEADER_SIZE = 12
NORMAL_MAX_MESSAGE_DATA = 1440
# Above this many payload bytes a packet risks fragmentation.
OVERSIZED_THRESHOLD = HEADER_SIZE + NORMAL_MAX_MESSAGE_DATA
# A truncated packet smaller than this is flagged as suspicious.
SMALL_TRUNCATED_THRESHOLD = HEADER_SIZE + NORMAL_MAX_MESSAGE_DATA - 192

MAX_LABEL_LENGTH = 63

REPORT_TOP_SERVICES = 15
REPORT_TOP_HOSTS = 15

# Active resolution limits.
MAX_QUERY_ATTEMPTS = 4
QUERY_RETRY_INTERVAL = 1.0
DIRECTED_ATTEMPTS = 2


class OpKind(enum.IntEnum):
    """Six-way operation classification used by hosts and service types."""

    PROBE = 0
    GOODBYE = 1
    BROWSE_QUERY = 2
    BROWSE_ANSWER = 3
    RESOLVE_QUERY = 4
    RESOLVE_ANSWER = 5

    @property
    def resolve_variant(self) -> "OpKind":
        """Map a browse query/answer onto its resolve counterpart."""
        if self is OpKind.BROWSE_QUERY:
            return OpKind.RESOLVE_QUERY
        if self is OpKind.BROWSE_ANSWER:
            return OpKind.RESOLVE_ANSWER
        return self


OP_KIND_COUNT = len(OpKind)


class PacketClass(enum.IntEnum):
    """Per-host packet classes: query, legacy query, response, malformed."""

    QUERY = 0
    LEGACY = 1
    RESPONSE = 2
    BAD = 3


PACKET_CLASS_COUNT = len(PacketClass)


class Origin(enum.Enum):
    """Whether an inbound packet answers a query this process sent."""

    EXTERNAL = "external"
    SELF = "self"


class Section(enum.Enum):
    QUESTION = "QUESTION"
    ANSWER = "ANSWER"
    AUTHORITY = "AUTHORITY"
    ADDITIONAL = "ADDITIONAL"
