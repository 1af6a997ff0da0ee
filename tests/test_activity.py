"""
Brief: Tests for mdnswatch.activity service-type extraction and aggregation.

Inputs:
  - None

Outputs:
  - None
"""

import ipaddress

import pytest

from mdnswatch.activity import (
    ServiceTypeAggregator,
    effective_op,
    extract_service_type,
    name_labels,
)
from mdnswatch.constants import TYPE_A, TYPE_ANY, TYPE_PTR, TYPE_SRV, TYPE_TXT, OpKind
from mdnswatch.hosts import HostEntry


@pytest.mark.parametrize(
    "name,expected",
    [
        ("_http._tcp.local.", (b"_http", b"_tcp")),
        ("Office Printer._ipp._tcp.local.", (b"_ipp", b"_tcp")),
        ("_HTTP._TCP.local", (b"_http", b"_tcp")),
        ("_printer._sub._http._tcp.local.", (b"_printer", b"_sub")),
        ("host.local.", None),
        ("a.b._http._tcp.local.", None),
        ("_http.local.", None),
        ("_http.", None),
        ("", None),
        ("x" * 64 + "._http._tcp.local.", None),
    ],
)
def test_extract_service_type(name, expected):
    """
    Brief: At most one ordinary label, then two underscore labels.

    Inputs:
      - name: candidate name

    Outputs:
      - None: Asserts extracted pair or None
    """
    assert extract_service_type(name) == expected


def test_name_labels_accepts_label_tuples():
    assert name_labels((b"_a", b"_b")) == (b"_a", b"_b")
    assert name_labels(b"_a._b.local.") == (b"_a", b"_b", b"local")


@pytest.mark.parametrize(
    "op,rtype,expected",
    [
        (OpKind.BROWSE_QUERY, TYPE_PTR, OpKind.BROWSE_QUERY),
        (OpKind.BROWSE_QUERY, TYPE_SRV, OpKind.RESOLVE_QUERY),
        (OpKind.BROWSE_ANSWER, TYPE_TXT, OpKind.RESOLVE_ANSWER),
        (OpKind.BROWSE_ANSWER, TYPE_PTR, OpKind.BROWSE_ANSWER),
        (OpKind.BROWSE_QUERY, TYPE_A, None),
        (OpKind.BROWSE_ANSWER, TYPE_ANY, None),
        (OpKind.PROBE, TYPE_ANY, OpKind.PROBE),
        (OpKind.GOODBYE, TYPE_SRV, OpKind.GOODBYE),
        (OpKind.GOODBYE, TYPE_A, OpKind.GOODBYE),
    ],
)
def test_effective_op_gating(op, rtype, expected):
    assert effective_op(op, rtype) == expected


def test_record_counts_service_and_host():
    """
    Brief: One operation increments both the service type and the host.

    Inputs:
      - PTR browse query, SRV resolve query, A query (dropped)

    Outputs:
      - None: Asserts counters and dedupe of service types
    """
    agg = ServiceTypeAggregator()
    host = HostEntry(address=ipaddress.ip_address("10.0.0.1"))
    agg.record(host, "_http._tcp.local.", OpKind.BROWSE_QUERY, TYPE_PTR)
    agg.record(host, "Site._HTTP._tcp.local.", OpKind.BROWSE_QUERY, TYPE_SRV)
    assert agg.record(host, "_http._tcp.local.", OpKind.BROWSE_QUERY, TYPE_A) is None
    assert agg.record(host, "host.local.", OpKind.BROWSE_QUERY, TYPE_PTR) is None

    assert len(agg) == 1
    stat = agg.get("_http._tcp.local.")
    assert stat.name == "_http._tcp"
    assert stat.total_ops == 2
    assert stat.op_counts[OpKind.BROWSE_QUERY] == 1
    assert stat.op_counts[OpKind.RESOLVE_QUERY] == 1
    assert host.total_ops == 2


def test_record_without_host():
    agg = ServiceTypeAggregator()
    stat = agg.record(None, "_ipp._tcp.local.", OpKind.GOODBYE, TYPE_SRV)
    assert stat.op_counts[OpKind.GOODBYE] == 1


def test_top_prefers_first_seen_on_ties_and_is_repeatable():
    """
    Brief: Selection is by strict greater-than so the earlier type wins ties.

    Inputs:
      - three service types with counts 2, 3, 2

    Outputs:
      - None: Asserts order, truncation and repeat calls
    """
    agg = ServiceTypeAggregator()
    for name, count in (("_a._tcp.local.", 2), ("_b._tcp.local.", 3), ("_c._tcp.local.", 2)):
        for _ in range(count):
            agg.record(None, name, OpKind.BROWSE_QUERY, TYPE_PTR)

    assert [s.name for s in agg.top(15)] == ["_b._tcp", "_a._tcp", "_c._tcp"]
    assert [s.name for s in agg.top(2)] == ["_b._tcp", "_a._tcp"]
    assert [s.name for s in agg.top(2)] == ["_b._tcp", "_a._tcp"]
    assert agg.top(0) == []


def test_clear_empties_aggregator():
    agg = ServiceTypeAggregator()
    agg.record(None, "_a._tcp.local.", OpKind.PROBE, TYPE_ANY)
    agg.clear()
    assert len(agg) == 0
    assert list(agg) == []
