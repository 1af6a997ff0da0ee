"""
Text rendering of decoded traffic and inline diagnostics.

Output goes to a sink callable (stdout by default), one line per call. This
is the monitor's primary output and is deliberately separate from logging;
diagnostics are additionally logged at DEBUG level.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import sys
from datetime import datetime
from typing import Callable, List, Optional

from .constants import (
    SMALL_TRUNCATED_THRESHOLD,
    TYPE_A,
    TYPE_AAAA,
    TYPE_HINFO,
    TYPE_NSEC,
    TYPE_OPT,
    TYPE_PTR,
    TYPE_SRV,
    TYPE_TXT,
)
from .filters import IPAddress
from .wire import MessageView, Question, WireRecord, split_character_strings, type_name

logger = logging.getLogger(__name__)

MAX_WIDTH = 132
_HEX = "0123456789ABCDEF"

Sink = Callable[[str], None]


def stdout_sink(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


def escape_bytes(data: bytes) -> str:
    """Render bytes as text, escaping backslashes and control/non-ASCII bytes."""
    out: List[str] = []
    for b in data:
        if b == 0x5C:
            out.append("\\\\")
        elif 0x20 <= b < 0x7F:
            out.append(chr(b))
        else:
            out.append("\\0x" + _HEX[b >> 4] + _HEX[b & 0xF])
    return "".join(out)


def hex_dump(data: bytes) -> List[str]:
    """Brief: Classic 16-bytes-per-row hex + ASCII dump."""
    lines: List[str] = []
    for pos in range(0, len(data), 16):
        row = data[pos : pos + 16]
        hexes = "".join(f"{b:02X} " for b in row).ljust(48)
        text = "".join("." if b <= 0x20 or b >= 0x7E else chr(b) for b in row)
        lines.append(hexes + text)
    return lines


def render_rdata(record: WireRecord) -> str:
    """
    Brief: Human-readable rdata for a record.

    Inputs:
      - record: decoded WireRecord

    Outputs:
      - str without width limiting.
    """
    raw = record.raw_rdata
    rtype = record.rtype
    if rtype == TYPE_A and len(raw) == 4:
        return str(ipaddress.IPv4Address(raw))
    if rtype == TYPE_AAAA and len(raw) == 16:
        return str(ipaddress.IPv6Address(raw))
    if rtype in (TYPE_PTR, TYPE_SRV) and record.rdata is not None:
        if rtype == TYPE_SRV:
            return f"{record.target}:{record.rdata.port}"
        return record.target or ""
    if rtype in (TYPE_TXT, TYPE_HINFO):
        strings = split_character_strings(raw)
        if strings is None:
            return escape_bytes(raw)
        return "\\ ".join(escape_bytes(s) for s in strings if s)
    if rtype == TYPE_OPT and isinstance(record.rdata, list):
        return " ".join(str(opt) for opt in record.rdata)
    if rtype == TYPE_NSEC and record.rdata is not None:
        return str(record.rdata)
    return escape_bytes(raw)


def interface_name(index: int) -> str:
    if not index:
        return "any"
    try:
        return socket.if_indextoname(index)
    except (OSError, ValueError):
        return "?"


class PacketDisplay:
    """
    Brief: Formats packet headers, records and diagnostics to a line sink.

    Inputs (constructor):
      - sink: callable receiving each output line (default: stdout).
      - clock: wall-clock source for packet timestamps.

    Outputs:
      - PacketDisplay instance.
    """

    def __init__(
        self,
        sink: Optional[Sink] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.sink: Sink = sink or stdout_sink
        self._clock = clock

    def line(self, text: str) -> None:
        self.sink(text)

    def packet_header(
        self,
        msg: MessageView,
        source: IPAddress,
        source_port: int,
        destination: IPAddress,
        interface_index: int,
        legacy: bool,
    ) -> None:
        if msg.is_response:
            ptype = "-R- "
        elif legacy:
            ptype = "-LQ-"
        else:
            ptype = "-Q- "

        now = self._clock()
        self.line("")
        self.line(
            f"{now.hour}:{now.minute:02d}:{now.second:02d}.{now.microsecond:06d} "
            f"Interface {interface_index}/{interface_name(interface_index)}"
        )

        text = (
            f"{str(source):<16} {ptype}             Q:{msg.num_questions:3d}  "
            f"Ans:{msg.num_answers:3d}  Auth:{msg.num_authorities:3d}  "
            f"Add:{msg.num_additionals:3d}  Size:{msg.length:5d} bytes"
        )
        if msg.id:
            text += f"  ID:{msg.id}"
        if not destination.is_multicast:
            text += f"   To: {destination}"
        if msg.truncated:
            if msg.is_response:
                text += "   Truncated"
            else:
                text += "   Truncated (KA list continues in next packet)"
        self.line(text)

        if msg.truncated and msg.length < SMALL_TRUNCATED_THRESHOLD:
            self.warning(
                source,
                "WARNING: Packet suspiciously small. Payload size (excluding IP and UDP headers)",
            )
            self.warning(
                source,
                f"should usually be closer to {SMALL_TRUNCATED_THRESHOLD + 192} bytes "
                "before truncation becomes necessary.",
            )

    def question(self, source: IPAddress, tag: str, question: Question) -> None:
        self.line(f"{str(source):<16} {tag:<5} {type_name(question.qtype):<5}      {question.name}")

    def record(self, source: IPAddress, tag: str, record: WireRecord) -> None:
        prefix = (
            f"{str(source):<16} {tag:<5} {type_name(record.rtype):<5}"
            f"{record.ttl:5d} {record.name} -> "
        )
        if record.rdata_error:
            self.line(prefix + "**** ERROR: FAILED TO READ RDATA ****")
            return
        rdata = render_rdata(record)
        if record.rtype != TYPE_NSEC:
            rdata = rdata[: max(0, MAX_WIDTH - len(prefix))]
        self.line(prefix + rdata)

    def warning(self, source: IPAddress, message: str) -> None:
        logger.debug("%s: %s", source, message)
        self.line(f"{str(source):<16} **** {message}")

    def anomaly(self, source: IPAddress, message: str) -> None:
        """Protocol anomaly: non-fatal, shown inline with the (?) tag."""
        logger.debug("%s: anomaly: %s", source, message)
        self.line(f"{str(source):<16} (?)   **** ERROR: {message}")

    def decode_error(self, source: IPAddress, section_name: str, data: bytes) -> None:
        logger.debug("%s: failed to read %s", source, section_name)
        self.line(f"{str(source):<16} **** ERROR: FAILED TO READ {section_name} ****")
        for row in hex_dump(data):
            self.line(row)

    def dump(self, data: bytes) -> None:
        for row in hex_dump(data):
            self.line(row)
