"""
Brief: Tests for mdnswatch.resolution.ActiveResolver retry and throttle rules.

Inputs:
  - None

Outputs:
  - None
"""

import ipaddress

from mdnswatch.constants import MDNS_GROUP_V4, MDNS_GROUP_V6, TYPE_HINFO, TYPE_PTR
from mdnswatch.hosts import HostEntry, reverse_name
from mdnswatch.resolution import ActiveResolver, QueryRequest, ResolutionState


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def _entry(text="192.168.1.20"):
    addr = ipaddress.ip_address(text)
    return HostEntry(address=addr, reverse_name=reverse_name(addr))


def _resolver(**kwargs):
    sent = []
    clock = FakeClock()
    return ActiveResolver(sent.append, clock=clock, **kwargs), sent, clock


def test_first_query_asks_reverse_name_directly():
    """
    Brief: An unknown host gets a directed PTR query for its reverse name.

    Inputs:
      - fresh host entry

    Outputs:
      - None: Asserts the QueryRequest and bookkeeping
    """
    resolver, sent, clock = _resolver()
    entry = _entry()
    request = resolver.evaluate(entry, interface_index=2)
    assert request == QueryRequest(
        name="20.1.168.192.in-addr.arpa.", qtype=TYPE_PTR, target=entry.address
    )
    assert sent == [request]
    assert not request.multicast
    assert entry.query_attempts == 1
    assert entry.last_query_time == clock.now
    assert resolver.queries_sent == 1


def test_throttle_within_retry_interval():
    """
    Brief: A second packet 0.5 s later sends nothing; 1.5 s later sends again.

    Inputs:
      - clock advanced by 0.5 s then 1.0 s

    Outputs:
      - None: Asserts throttling and attempt count
    """
    resolver, sent, clock = _resolver()
    entry = _entry()
    resolver.evaluate(entry)
    clock.now += 0.5
    assert resolver.state(entry) is ResolutionState.THROTTLED
    assert resolver.evaluate(entry) is None
    clock.now += 1.0
    assert resolver.evaluate(entry) is not None
    assert entry.query_attempts == 2
    assert len(sent) == 2


def test_later_attempts_go_to_group_then_give_up():
    """
    Brief: Attempts 3 and 4 go to the multicast group; a fifth is never sent.

    Inputs:
      - five evaluations 1.5 s apart

    Outputs:
      - None: Asserts targets and give-up state
    """
    resolver, sent, clock = _resolver()
    entry = _entry()
    for _ in range(5):
        resolver.evaluate(entry, interface_index=3)
        clock.now += 1.5

    assert [r.target for r in sent] == [entry.address, entry.address, MDNS_GROUP_V4, MDNS_GROUP_V4]
    assert [r.interface_index for r in sent] == [None, None, 3, 3]
    assert sent[2].multicast
    assert entry.query_attempts == 4
    assert resolver.state(entry) is ResolutionState.GAVE_UP

    clock.now += 3600.0
    assert resolver.evaluate(entry, interface_index=3) is None
    assert len(sent) == 4
    assert resolver.state(entry) is ResolutionState.GAVE_UP


def test_ipv6_host_retries_on_ipv6_group():
    resolver, sent, clock = _resolver()
    entry = _entry("fe80::10")
    for _ in range(3):
        resolver.evaluate(entry)
        clock.now += 2
    assert sent[-1].target == MDNS_GROUP_V6


def test_learned_hostname_switches_to_hinfo_with_fresh_budget():
    """
    Brief: Once the hostname is known, HINFO is asked for it with attempts reset.

    Inputs:
      - host that exhausted attempts, then learned a hostname

    Outputs:
      - None: Asserts HINFO query sent immediately
    """
    resolver, sent, clock = _resolver()
    entry = _entry()
    entry.query_attempts = 4
    assert resolver.evaluate(entry) is None

    entry.learn_hostname("printer.local.")
    assert resolver.state(entry) is ResolutionState.NEED_HOST_INFO
    request = resolver.evaluate(entry)
    assert request.name == "printer.local."
    assert request.qtype == TYPE_HINFO
    assert request.target == entry.address


def test_complete_host_is_left_alone():
    resolver, sent, _ = _resolver()
    entry = _entry()
    entry.hostname = "printer.local."
    entry.hardware_info = "Intel"
    assert resolver.state(entry) is ResolutionState.COMPLETE
    assert resolver.evaluate(entry) is None
    assert sent == []


def test_disabled_resolver_never_sends():
    resolver, sent, _ = _resolver(enabled=False)
    entry = _entry()
    assert resolver.evaluate(entry) is None
    assert sent == []
    assert entry.query_attempts == 0
