"""
Packet classification: turns one decoded multicast DNS message into display
lines, per-service-type counters and per-host counters.

Framing decides the path:
  - multicast destination + standard query    -> query walk
  - multicast destination + standard response -> response walk
  - unicast destination + standard response   -> host-info extraction only
  - anything else on multicast                -> counted as a bad packet
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Tuple

from .constants import (
    MDNS_PORT,
    OVERSIZED_THRESHOLD,
    TYPE_NSEC3,
    TYPE_OPT,
    OpKind,
    PacketClass,
    Section,
)
from .hosts import HostEntry
from .packet import Packet
from .wire import (
    MessageView,
    Question,
    WireError,
    WireRecord,
    decode_message,
    decode_question,
    decode_record,
    locate_answers,
    locate_authorities,
    record_answers_question,
    type_name,
)

if TYPE_CHECKING:  # pragma: no cover
    from .session import MonitorSession

logger = logging.getLogger(__name__)


class SectionAbort(Exception):
    """Raised inside a walk when a section item fails to decode."""

    def __init__(self, label: str, offset: int) -> None:
        super().__init__(label)
        self.label = label
        self.offset = offset


class PacketClassifier:
    """
    Brief: Walks message sections and updates the owning session's state.

    Inputs (constructor):
      - session: MonitorSession holding registries, aggregator, totals,
        display and resolver.

    Outputs:
      - PacketClassifier instance.
    """

    def __init__(self, session: "MonitorSession") -> None:
        self.session = session

    @property
    def display(self):
        return self.session.display

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    def classify(self, packet: Packet) -> None:
        """
        Brief: Classify one packet that already passed the address filter.

        Inputs:
          - packet: received Packet

        Outputs:
          - None
        """
        session = self.session
        try:
            msg = decode_message(packet.data)
        except WireError:
            session.got_packet_from_host(packet.source, PacketClass.BAD, packet.origin)
            session.totals.bad += 1
            self.display.decode_error(packet.source, "HEADER", packet.data)
            return

        if not packet.destination.is_multicast:
            if msg.is_standard_query:
                self.display.line(f"Unicast query from {packet.source}")
            elif msg.is_standard_response:
                self.process_unicast_response(msg, packet)
            return

        if msg.is_standard_query:
            self.process_query(msg, packet)
        elif msg.is_standard_response:
            self.process_response(msg, packet)
        else:
            logger.debug(
                "Unknown DNS packet type %04X from %s (ignored)",
                msg.header.bitmap,
                packet.source,
            )
            session.got_packet_from_host(packet.source, PacketClass.BAD, packet.origin)
            session.totals.bad += 1

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _question(msg: MessageView, cursor: int) -> Tuple[Question, int]:
        try:
            return decode_question(msg, cursor)
        except WireError as exc:
            raise SectionAbort("QUESTION", exc.offset) from exc

    @staticmethod
    def _record(
        msg: MessageView, cursor: int, section: Section, label: str
    ) -> Tuple[WireRecord, int]:
        try:
            return decode_record(msg, cursor, section)
        except WireError as exc:
            raise SectionAbort(label, exc.offset) from exc

    @staticmethod
    def find_update(
        msg: MessageView, auth_cursor: Optional[int], question: Question
    ) -> Optional[WireRecord]:
        """
        Brief: Find an authority record proposing data for a question (a probe).

        Inputs:
          - msg: MessageView
          - auth_cursor: offset of the authority section, or None if unknown
          - question: decoded question

        Outputs:
          - The first matching authority WireRecord, or None.
        """
        if auth_cursor is None:
            return None
        cursor = auth_cursor
        for _ in range(msg.num_authorities):
            try:
                record, cursor = decode_record(msg, cursor, Section.AUTHORITY)
            except WireError:
                return None
            if record_answers_question(record, question):
                return record
        return None

    def _size_check(self, msg: MessageView, packet: Packet, num_opts: int) -> None:
        num_records = msg.num_answers + msg.num_authorities + msg.num_additionals - num_opts
        if msg.length > OVERSIZED_THRESHOLD and num_records > 1:
            src = packet.source
            self.display.warning(src, f"ERROR: Oversized packet with {num_records} records.")
            self.display.warning(
                src,
                "Many network devices cannot receive packets larger than "
                f"{40 + 8 + OVERSIZED_THRESHOLD} bytes.",
            )
            self.display.warning(
                src,
                "To minimize interoperability failures, oversized packets MUST be "
                "limited to a single resource record.",
            )

    def _opt_check(self, msg: MessageView, packet: Packet, num_opts: int) -> None:
        if num_opts > 1:
            self.display.warning(packet.source, "ERROR: MULTIPLE OPT RECORDS ****")
            self.display.dump(bytes(msg.data[msg.first_record :]))

    def _abort(self, msg: MessageView, packet: Packet, abort: SectionAbort) -> None:
        self.display.decode_error(packet.source, abort.label, bytes(msg.data[abort.offset :]))

    # ------------------------------------------------------------------ #
    # Multicast query
    # ------------------------------------------------------------------ #

    def process_query(self, msg: MessageView, packet: Packet) -> None:
        session = self.session
        legacy = packet.source_port != MDNS_PORT
        entry = session.got_packet_from_host(
            packet.source, PacketClass.LEGACY if legacy else PacketClass.QUERY, packet.origin
        )

        self.display.packet_header(
            msg,
            packet.source,
            packet.source_port,
            packet.destination,
            packet.interface_index,
            legacy,
        )
        if packet.external:
            if legacy:
                session.totals.legacy += 1
            else:
                session.totals.query += 1

        try:
            self._walk_query(msg, packet, entry, legacy)
        except SectionAbort as abort:
            self._abort(msg, packet, abort)
            return

        if entry is not None:
            session.analyse_host(entry, packet.interface_index)

    def _walk_query(
        self, msg: MessageView, packet: Packet, entry: Optional[HostEntry], legacy: bool
    ) -> None:
        session = self.session
        display = self.display
        src = packet.source
        num_opts = 0

        try:
            auth_cursor: Optional[int] = locate_authorities(msg)
        except WireError:
            auth_cursor = None

        cursor = msg.first_record
        for _ in range(msg.num_questions):
            question, cursor = self._question(msg, cursor)
            update = self.find_update(msg, auth_cursor, question)
            if update is not None:
                session.totals.probes += 1
                display.record(src, "(PU)" if question.unicast_response else "(PM)", update)
                session.activity.record(entry, question.name, OpKind.PROBE, question.qtype)
                # Shown here with its question; blank it so the authority walk skips it.
                msg.zero_type_and_class(update)
                continue

            tag = "(QU)" if question.unicast_response else "(QM)"
            if legacy:
                session.totals.legacy_questions += 1
                tag = "(LQ)"
            else:
                session.totals.questions += 1
            display.question(src, tag, question)
            if packet.external:
                session.activity.record(entry, question.name, OpKind.BROWSE_QUERY, question.qtype)

        for i in range(msg.num_answers):
            record, cursor = self._record(msg, cursor, Section.ANSWER, "KNOWN ANSWER")
            display.record(src, "(KA)", record)
            if record.rtype == TYPE_OPT:
                num_opts += 1
                display.warning(src, "ERROR: OPT RECORD IN ANSWER SECTION ****")

            # A known-answer list spread over several packets costs the network
            # about one query per packet, so the first answer of a packet
            # without questions stands in for one.
            if msg.num_questions == 0 and i == 0:
                session.activity.record(entry, record.name, OpKind.BROWSE_QUERY, record.rtype)

        for _ in range(msg.num_authorities):
            record, cursor = self._record(msg, cursor, Section.AUTHORITY, "AUTHORITY")
            if record.rtype or record.rclass:
                display.record(src, "(AU)", record)
            if record.rtype == TYPE_OPT:
                num_opts += 1
                display.warning(src, "ERROR: OPT RECORD IN AUTHORITY SECTION ****")

        for _ in range(msg.num_additionals):
            record, cursor = self._record(msg, cursor, Section.ADDITIONAL, "ADDITIONAL")
            display.record(src, "(OP)" if record.rtype == TYPE_OPT else "(AD)", record)
            if record.rtype == TYPE_OPT:
                num_opts += 1

        self._size_check(msg, packet, num_opts)
        self._opt_check(msg, packet, num_opts)

    # ------------------------------------------------------------------ #
    # Multicast response
    # ------------------------------------------------------------------ #

    def process_response(self, msg: MessageView, packet: Packet) -> None:
        session = self.session
        entry = session.got_packet_from_host(packet.source, PacketClass.RESPONSE, packet.origin)

        self.display.packet_header(
            msg,
            packet.source,
            packet.source_port,
            packet.destination,
            packet.interface_index,
            False,
        )
        if packet.external:
            session.totals.response += 1

        try:
            self._walk_response(msg, packet, entry)
        except SectionAbort as abort:
            self._abort(msg, packet, abort)
            return

        if entry is not None:
            session.analyse_host(entry, packet.interface_index)

    def _walk_response(self, msg: MessageView, packet: Packet, entry: Optional[HostEntry]) -> None:
        session = self.session
        display = self.display
        src = packet.source
        num_opts = 0

        cursor = msg.first_record
        for _ in range(msg.num_questions):
            question, cursor = self._question(msg, cursor)
            display.anomaly(
                src,
                "SHOULD NOT HAVE Q IN mDNS RESPONSE **** "
                f"{type_name(question.qtype):<5} {question.name}",
            )

        for _ in range(msg.num_answers):
            record, cursor = self._record(msg, cursor, Section.ANSWER, "ANSWER")
            if record.ttl:
                session.totals.answers += 1
                display.record(src, "(AN)" if record.cache_flush else "(AN+)", record)
                if packet.external:
                    session.activity.record(entry, record.name, OpKind.BROWSE_ANSWER, record.rtype)
                if entry is not None:
                    entry.record_host_info(record)
            else:
                session.totals.goodbyes += 1
                display.record(src, "(DE)", record)
                session.activity.record(entry, record.name, OpKind.GOODBYE, record.rtype)
            if record.rtype == TYPE_OPT:
                num_opts += 1
                display.warning(src, "ERROR: OPT RECORD IN ANSWER SECTION ****")

        for _ in range(msg.num_authorities):
            record, cursor = self._record(msg, cursor, Section.AUTHORITY, "AUTHORITY")
            display.record(src, "(AU)", record)
            if record.rtype == TYPE_OPT:
                num_opts += 1
                display.warning(src, "ERROR: OPT RECORD IN AUTHORITY SECTION ****")
            elif record.rtype != TYPE_NSEC3:
                display.anomaly(
                    src,
                    "SHOULD NOT HAVE AUTHORITY IN mDNS RESPONSE **** "
                    f"{type_name(record.rtype):<5} {record.name}",
                )

        for _ in range(msg.num_additionals):
            record, cursor = self._record(msg, cursor, Section.ADDITIONAL, "ADDITIONAL")
            session.totals.additionals += 1
            if record.rtype == TYPE_OPT:
                num_opts += 1
                tag = "(OP)"
            else:
                tag = "(AD)" if record.cache_flush else "(AD+)"
            display.record(src, tag, record)
            if entry is not None:
                entry.record_host_info(record)

        self._size_check(msg, packet, num_opts)
        self._opt_check(msg, packet, num_opts)

    # ------------------------------------------------------------------ #
    # Unicast response
    # ------------------------------------------------------------------ #

    def process_unicast_response(self, msg: MessageView, packet: Packet) -> None:
        """
        Brief: Harvest host info from a unicast reply (typically to our own query).

        Inputs:
          - msg: MessageView
          - packet: received Packet

        Outputs:
          - None; nothing is displayed. Decoding stops at the first bad record.
        """
        entry = self.session.got_packet_from_host(
            packet.source, PacketClass.RESPONSE, packet.origin
        )
        try:
            cursor = locate_answers(msg)
        except WireError:
            return

        total = msg.num_answers + msg.num_authorities + msg.num_additionals
        for _ in range(total):
            try:
                record, cursor = decode_record(msg, cursor, Section.ANSWER)
            except WireError:
                logger.debug("Unreadable record in unicast response from %s", packet.source)
                return
            if record.ttl and entry is not None:
                entry.record_host_info(record)
