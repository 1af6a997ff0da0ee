"""
Per-service-type activity counters.

Service types are keyed by the two underscore-prefixed labels of a queried or
answered name (``_http._tcp`` in ``My Printer._http._tcp.local.``). This is
a cheap heuristic rather than full DNS-SD validation: names that do not fit
the pattern are simply not counted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from dnslib.label import DNSLabel

from .constants import MAX_LABEL_LENGTH, OP_KIND_COUNT, TYPE_PTR, TYPE_SRV, TYPE_TXT, OpKind
from .hosts import HostEntry

logger = logging.getLogger(__name__)

ServiceType = Tuple[bytes, bytes]
NameLike = Union[str, bytes, DNSLabel, Sequence[bytes]]


def name_labels(name: NameLike) -> Tuple[bytes, ...]:
    """
    Brief: Split a name into raw labels.

    Inputs:
      - name: dnslib DNSLabel, a tuple of label bytes, or dotted text.

    Outputs:
      - tuple of label bytes without the root label.

    Example:
      >>> name_labels("_http._tcp.local.")
      (b'_http', b'_tcp', b'local')
    """
    if isinstance(name, DNSLabel):
        return tuple(name.label)
    if isinstance(name, (tuple, list)):
        return tuple(bytes(p) for p in name)
    if isinstance(name, bytes):
        name = name.decode("utf-8", errors="replace")
    text = str(name).rstrip(".")
    if not text:
        return ()
    return tuple(part.encode("utf-8") for part in text.split("."))


def _valid_label(label: bytes) -> bool:
    return 1 <= len(label) <= MAX_LABEL_LENGTH


def extract_service_type(name: NameLike) -> Optional[ServiceType]:
    """
    Brief: Pull the two-label service type out of a name.

    Inputs:
      - name: queried or answered name.

    Outputs:
      - (label1, label2) lowercased, or None when the name does not start with
        at most one ordinary label followed by two underscore labels.

    Example:
      >>> extract_service_type("Office._ipp._tcp.local.")
      (b'_ipp', b'_tcp')
      >>> extract_service_type("host.local.") is None
      True
    """
    labels = name_labels(name)
    if not labels or not _valid_label(labels[0]):
        return None

    idx = 0 if labels[0].startswith(b"_") else 1
    picked: List[bytes] = []
    for _ in range(2):
        if idx >= len(labels):
            return None
        label = labels[idx]
        if not _valid_label(label) or not label.startswith(b"_"):
            return None
        picked.append(label.lower())
        idx += 1
    return (picked[0], picked[1])


def service_type_name(service_type: ServiceType) -> str:
    return ".".join(label.decode("utf-8", errors="replace") for label in service_type)


@dataclass
class ActivityStat:
    service_type: ServiceType
    total_ops: int = 0
    op_counts: List[int] = field(default_factory=lambda: [0] * OP_KIND_COUNT)
    reported: bool = False

    @property
    def name(self) -> str:
        return service_type_name(self.service_type)

    def count_op(self, kind: OpKind) -> None:
        self.total_ops += 1
        self.op_counts[kind] += 1


def effective_op(op: OpKind, rtype: int) -> Optional[OpKind]:
    """
    Brief: Apply record-type gating to an operation.

    Inputs:
      - op: operation as classified from the packet framing.
      - rtype: record or question type the operation is attached to.

    Outputs:
      - The operation to count, or None to drop it. Probes and goodbyes pass
        through unchanged; SRV/TXT turn browse operations into resolve ones;
        anything other than PTR is dropped.
    """
    if op in (OpKind.PROBE, OpKind.GOODBYE):
        return op
    if rtype in (TYPE_SRV, TYPE_TXT):
        return op.resolve_variant
    if rtype != TYPE_PTR:
        return None
    return op


class ServiceTypeAggregator:
    """
    Brief: Service-type keyed activity counters with first-seen ordering.

    Inputs (constructor):
      - None

    Outputs:
      - ServiceTypeAggregator instance.

    Example:
      >>> agg = ServiceTypeAggregator()
      >>> _ = agg.record(None, "_http._tcp.local.", OpKind.BROWSE_QUERY, 12)
      >>> [s.name for s in agg.top(5)]
      ['_http._tcp']
    """

    def __init__(self) -> None:
        self._stats: Dict[ServiceType, ActivityStat] = {}

    def record(
        self,
        entry: Optional[HostEntry],
        name: NameLike,
        op: OpKind,
        rtype: int,
    ) -> Optional[ActivityStat]:
        """
        Brief: Count one operation against a service type and (optionally) a host.

        Inputs:
          - entry: HostEntry of the sender, or None when untracked.
          - name: name the operation concerns.
          - op: classified operation.
          - rtype: record/question type, used for browse/resolve gating.

        Outputs:
          - ActivityStat that was incremented, or None when nothing was counted.
        """
        kind = effective_op(op, rtype)
        if kind is None:
            return None

        service_type = extract_service_type(name)
        if service_type is None:
            return None

        stat = self._stats.get(service_type)
        if stat is None:
            stat = ActivityStat(service_type=service_type)
            self._stats[service_type] = stat

        stat.count_op(kind)
        if entry is not None:
            entry.count_op(kind)
        return stat

    def get(self, name: NameLike) -> Optional[ActivityStat]:
        service_type = extract_service_type(name)
        if service_type is None:
            return None
        return self._stats.get(service_type)

    def top(self, n: int) -> List[ActivityStat]:
        """
        Brief: Select up to n service types with the most operations.

        Inputs:
          - n: maximum number of entries.

        Outputs:
          - list of ActivityStat, busiest first. Ties go to the type seen first.
        """
        for stat in self._stats.values():
            stat.reported = False

        selected: List[ActivityStat] = []
        for _ in range(max(0, n)):
            best: Optional[ActivityStat] = None
            best_ops = 0
            for stat in self._stats.values():
                if not stat.reported and stat.total_ops > best_ops:
                    best = stat
                    best_ops = stat.total_ops
            if best is None:
                break
            best.reported = True
            selected.append(best)
        return selected

    def clear(self) -> None:
        self._stats.clear()

    def __len__(self) -> int:
        return len(self._stats)

    def __iter__(self) -> Iterator[ActivityStat]:
        return iter(self._stats.values())
