"""
Decode primitives for multicast DNS packets, built on dnslib.

The classifier walks a message one record at a time so that a decode failure
in one section can be reported precisely and stop the walk there. dnslib's
whole-message ``DNSRecord.parse`` is all-or-nothing, so this module drives
``DNSHeader.parse`` / ``DNSQuestion.parse`` / ``RR.parse`` directly against a
shared ``DNSBuffer``.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from dnslib import QTYPE, RR, DNSError, DNSHeader, DNSQuestion
from dnslib.bimap import BimapError
from dnslib.buffer import BufferError as DNSBufferError
from dnslib.label import DNSBuffer, DNSLabel, DNSLabelError

from .constants import (
    CLASS_ANY,
    CLASS_TOP_BIT,
    HEADER_SIZE,
    TYPE_ANY,
    TYPE_PTR,
    TYPE_SRV,
    Section,
)

logger = logging.getLogger(__name__)

_DECODE_ERRORS = (
    DNSError,
    DNSBufferError,
    BimapError,
    DNSLabelError,
    struct.error,
    UnicodeError,
    IndexError,
    ValueError,
)


class WireError(ValueError):
    """
    Brief: A question or record could not be decoded.

    Inputs:
      - message: description
      - offset: byte offset where decoding of the failed item started

    Outputs:
      - Exception instance
    """

    def __init__(self, message: str, offset: int) -> None:
        super().__init__(message)
        self.offset = offset


def type_name(rtype: int) -> str:
    """Return the mnemonic for a record type, e.g. 12 -> 'PTR', 65534 -> 'TYPE65534'."""
    name = str(QTYPE.get(rtype))
    return f"TYPE{rtype}" if name.isdigit() else name


def label_to_str(label: DNSLabel) -> str:
    """Render a dnslib label as an absolute name with trailing dot."""
    text = str(label)
    return text if text.endswith(".") else text + "."


def same_name(a: str, b: str) -> bool:
    """Case-insensitive comparison of two names, ignoring a trailing dot."""
    return a.rstrip(".").lower() == b.rstrip(".").lower()


@dataclass
class Question:
    label: DNSLabel
    name: str
    qtype: int
    qclass: int
    unicast_response: bool


@dataclass
class WireRecord:
    """One decoded resource record plus the wire details the monitor needs."""

    label: DNSLabel
    name: str
    rtype: int
    rclass: int
    cache_flush: bool
    ttl: int
    rdata: Any
    raw_rdata: bytes
    type_offset: int
    section: Section
    rdata_error: bool = False

    @property
    def target(self) -> Optional[str]:
        """Target name for PTR and SRV records."""
        if self.rdata is None:
            return None
        if self.rtype == TYPE_PTR:
            return label_to_str(self.rdata.label)
        if self.rtype == TYPE_SRV:
            return label_to_str(self.rdata.target)
        return None


class MessageView:
    """
    Brief: A received packet with its parsed header and a mutable byte buffer.

    Inputs (constructor):
      - data: raw UDP payload.

    Outputs:
      - MessageView; raises WireError when the header is incomplete.
    """

    def __init__(self, data: bytes) -> None:
        self.buffer = DNSBuffer(data)
        if len(self.buffer.data) < HEADER_SIZE:
            raise WireError("packet shorter than DNS header", 0)
        try:
            self.header = DNSHeader.parse(self.buffer)
        except _DECODE_ERRORS as exc:
            raise WireError(f"bad header: {exc}", 0) from exc

    @property
    def data(self) -> bytearray:
        return self.buffer.data

    @property
    def length(self) -> int:
        return len(self.buffer.data)

    @property
    def id(self) -> int:
        return int(self.header.id)

    @property
    def is_response(self) -> bool:
        return bool(self.header.qr)

    @property
    def opcode(self) -> int:
        return int(self.header.opcode)

    @property
    def truncated(self) -> bool:
        return bool(self.header.tc)

    @property
    def is_standard_query(self) -> bool:
        return not self.is_response and self.opcode == 0

    @property
    def is_standard_response(self) -> bool:
        return self.is_response and self.opcode == 0

    @property
    def num_questions(self) -> int:
        return int(self.header.q)

    @property
    def num_answers(self) -> int:
        return int(self.header.a)

    @property
    def num_authorities(self) -> int:
        return int(self.header.auth)

    @property
    def num_additionals(self) -> int:
        return int(self.header.ar)

    @property
    def first_record(self) -> int:
        return HEADER_SIZE

    def zero_type_and_class(self, record: WireRecord) -> None:
        """Overwrite a record's type and class with zeros in the packet bytes."""
        start = record.type_offset
        self.buffer.data[start : start + 4] = b"\x00\x00\x00\x00"


def decode_message(data: bytes) -> MessageView:
    return MessageView(data)


def decode_question(msg: MessageView, cursor: int) -> Tuple[Question, int]:
    """
    Brief: Decode the question starting at cursor.

    Inputs:
      - msg: MessageView
      - cursor: byte offset of the question

    Outputs:
      - (Question, offset just past it); raises WireError on failure.
    """
    buf = msg.buffer
    buf.offset = cursor
    try:
        q = DNSQuestion.parse(buf)
    except _DECODE_ERRORS as exc:
        raise WireError(f"bad question: {exc}", cursor) from exc
    qclass = int(q.qclass)
    return (
        Question(
            label=q.qname,
            name=label_to_str(q.qname),
            qtype=int(q.qtype),
            qclass=qclass & ~CLASS_TOP_BIT,
            unicast_response=bool(qclass & CLASS_TOP_BIT),
        ),
        buf.offset,
    )


def decode_record(msg: MessageView, cursor: int, section: Section) -> Tuple[WireRecord, int]:
    """
    Brief: Decode the resource record starting at cursor.

    Inputs:
      - msg: MessageView
      - cursor: byte offset of the record
      - section: which section the record belongs to

    Outputs:
      - (WireRecord, offset just past it); raises WireError when the owner
        name or fixed fields cannot be read. A record whose rdata alone fails
        to decode is returned with rdata=None and rdata_error=True.
    """
    buf = msg.buffer
    buf.offset = cursor
    try:
        label = buf.decode_name()
        type_offset = buf.offset
        rtype, rclass, ttl, rdlength = buf.unpack("!HHIH")
    except _DECODE_ERRORS as exc:
        raise WireError(f"bad record header: {exc}", cursor) from exc

    rdata_start = buf.offset
    rdata_end = rdata_start + rdlength
    if rdata_end > len(buf.data):
        raise WireError("record data runs past end of packet", cursor)

    rdata: Any = None
    rdata_error = False
    buf.offset = cursor
    try:
        # dnslib yields an empty string for zero-length rdata.
        rdata = RR.parse(buf).rdata or None
    except _DECODE_ERRORS:
        rdata_error = True

    record = WireRecord(
        label=label,
        name=label_to_str(label),
        rtype=rtype,
        rclass=rclass & ~CLASS_TOP_BIT,
        cache_flush=bool(rclass & CLASS_TOP_BIT),
        ttl=ttl,
        rdata=rdata,
        raw_rdata=bytes(buf.data[rdata_start:rdata_end]),
        type_offset=type_offset,
        section=section,
        rdata_error=rdata_error,
    )
    return record, rdata_end


def _skip_question(msg: MessageView, cursor: int) -> int:
    return decode_question(msg, cursor)[1]


def _skip_record(msg: MessageView, cursor: int) -> int:
    buf = msg.buffer
    buf.offset = cursor
    try:
        buf.decode_name()
        _rtype, _rclass, _ttl, rdlength = buf.unpack("!HHIH")
    except _DECODE_ERRORS as exc:
        raise WireError(f"bad record header: {exc}", cursor) from exc
    end = buf.offset + rdlength
    if end > len(buf.data):
        raise WireError("record data runs past end of packet", cursor)
    return end


def locate_answers(msg: MessageView) -> int:
    """Offset of the first answer record; raises WireError if questions are bad."""
    cursor = msg.first_record
    for _ in range(msg.num_questions):
        cursor = _skip_question(msg, cursor)
    return cursor


def locate_authorities(msg: MessageView) -> int:
    """Offset of the first authority record; raises WireError on bad input."""
    cursor = locate_answers(msg)
    for _ in range(msg.num_answers):
        cursor = _skip_record(msg, cursor)
    return cursor


def record_answers_question(record: WireRecord, question: Question) -> bool:
    """
    Brief: Whether a record is a candidate answer for a question.

    Inputs:
      - record: decoded record
      - question: decoded question

    Outputs:
      - bool: True when type matches (or question is ANY), class matches (or
        question class is ANY) and names are equal ignoring case.
    """
    if record.rdata_error:
        return False
    if question.qtype != TYPE_ANY and record.rtype != question.qtype:
        return False
    if question.qclass != CLASS_ANY and record.rclass != question.qclass:
        return False
    return same_name(record.name, question.name)


def split_character_strings(raw: bytes) -> Optional[List[bytes]]:
    """
    Brief: Split rdata made of length-prefixed character strings (TXT, HINFO).

    Inputs:
      - raw: rdata bytes

    Outputs:
      - list of bytes, or None when a length prefix runs past the end.

    Example:
      >>> split_character_strings(b"\\x03abc\\x02de")
      [b'abc', b'de']
    """
    out: List[bytes] = []
    pos = 0
    while pos < len(raw):
        length = raw[pos]
        end = pos + 1 + length
        if end > len(raw):
            return None
        out.append(bytes(raw[pos + 1 : end]))
        pos = end
    return out
