"""
Brief: Tests for mdnswatch.main argument handling, startup errors and the capture loop.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import threading

import pytest

import mdnswatch.main as main_mod
from mdns_packets import browse_query, make_packet
from mdnswatch.config import AppConfig, ConfigError, load_config
from mdnswatch.display import PacketDisplay
from mdnswatch.session import MonitorSession
from mdnswatch.transport import TransportError


class FakeListener:
    """Stand-in for MulticastListener; poll() plays back scripted batches."""

    def __init__(self, batches=(), open_error=None, **kwargs):
        self.kwargs = kwargs
        self.batches = list(batches)
        self.open_error = open_error
        self.interface_index = 0
        self.opened = False
        self.closed = False
        self.sent = []

    def open(self):
        if self.open_error:
            raise self.open_error
        self.opened = True

    def poll(self, timeout):
        if not self.batches:
            raise KeyboardInterrupt
        return self.batches.pop(0)

    def send_query(self, request):
        self.sent.append(request)

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def quiet_process_state(monkeypatch):
    """
    Brief: Keep main() from replacing signal handlers or root log handlers.

    Inputs:
      - monkeypatch

    Outputs:
      - list of init_logging calls (cfg, level_override)
    """
    calls = []
    monkeypatch.setattr(main_mod.signal, "signal", lambda *a, **k: None)

    def fake_init_logging(cfg, level_override=None):
        calls.append((cfg, level_override))

    monkeypatch.setattr(main_mod, "init_logging", fake_init_logging)
    return calls


def test_parser_options():
    args = main_mod.build_parser().parse_args(
        ["-i", "en0", "-6", "--no-active", "--log-level", "debug", "10.0.0.1", "10.0.0.2"]
    )
    assert args.interface == "en0"
    assert args.ipv6 is True
    assert args.no_active is True
    assert args.log_level == "debug"
    assert args.hosts == ["10.0.0.1", "10.0.0.2"]
    assert args.config is None


def test_build_session_applies_filters_and_resolver():
    """
    Brief: build_session wires filters, family and the resolver enable flag.

    Inputs:
      - config with one literal filter and active queries disabled

    Outputs:
      - None: Asserts session state
    """
    cfg = load_config({"monitor": {"filters": ["10.0.0.1"], "active_queries": False, "ipv6": True}})
    listener = FakeListener()
    session = main_mod.build_session(cfg, listener)
    assert [str(a) for a in session.filters] == ["10.0.0.1"]
    assert session.filters.family == 6
    assert session.resolver is not None
    assert session.resolver.enabled is False


def test_build_session_without_listener_has_no_resolver():
    session = main_mod.build_session(AppConfig(), None)
    assert session.resolver is None


def test_run_survives_packet_errors(caplog, monkeypatch):
    """
    Brief: An exception while classifying one packet is logged and the loop continues.

    Inputs:
      - session whose first classify call raises

    Outputs:
      - None: Asserts logged error and second packet processed
    """
    caplog.set_level(logging.ERROR, logger="mdnswatch.main")
    session = MonitorSession(display=PacketDisplay(sink=lambda line: None))
    real_classify = session.classify
    calls = []

    def flaky(packet):
        calls.append(packet)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return real_classify(packet)

    monkeypatch.setattr(session, "classify", flaky)
    stop = threading.Event()
    listener = FakeListener(batches=[[make_packet(browse_query()), make_packet(browse_query())]])

    def poll(timeout):
        if listener.batches:
            return listener.batches.pop(0)
        stop.set()
        return []

    listener.poll = poll
    main_mod.run(session, listener, stop, poll_interval=0)
    assert len(calls) == 2
    assert session.totals.query == 1
    assert any("Unhandled error while processing packet" in r.getMessage() for r in caplog.records)


def test_main_captures_until_interrupted(monkeypatch, capsys):
    """
    Brief: main opens the listener, processes packets and prints a summary.

    Inputs:
      - fake listener returning one batch, then KeyboardInterrupt

    Outputs:
      - None: Asserts exit code 0, summary on stdout and listener closed
    """
    created = {}

    def factory(**kwargs):
        listener = FakeListener(batches=[[make_packet(browse_query())]], **kwargs)
        created["listener"] = listener
        return listener

    monkeypatch.setattr(main_mod, "MulticastListener", factory)
    rc = main_mod.main(["--no-active", "--log-level", "error"])
    out = capsys.readouterr().out

    assert rc == 0
    listener = created["listener"]
    assert listener.opened and listener.closed
    assert listener.kwargs["ipv6"] is False
    assert "Modern Query        Packets:            1" in out
    assert "_http._tcp" in out
    assert listener.sent == []


def test_main_listens_on_ipv6_for_ipv6_filters(monkeypatch):
    created = {}

    def factory(**kwargs):
        created["listener"] = FakeListener(**kwargs)
        return created["listener"]

    monkeypatch.setattr(main_mod, "MulticastListener", factory)
    assert main_mod.main(["--log-level", "error", "fe80::1"]) == 0
    assert created["listener"].kwargs["ipv6"] is True


def test_main_config_error_returns_one(tmp_path, caplog, quiet_process_state):
    bad = tmp_path / "bad.yaml"
    bad.write_text("monitor:\n  nonsense: 1\n")
    caplog.set_level(logging.ERROR)
    assert main_mod.main(["--config", str(bad)]) == 1
    assert any("Invalid configuration" in r.getMessage() for r in caplog.records)
    assert quiet_process_state == [(None, None)]


def test_main_unresolvable_filter_returns_one(monkeypatch):
    def fail(host, family=4):
        raise ConfigError(f"Cannot resolve filter host {host!r}")

    monkeypatch.setattr(main_mod, "resolve_filter_host", fail)
    monkeypatch.setattr(main_mod, "MulticastListener", lambda **kw: FakeListener(**kw))
    assert main_mod.main(["--log-level", "crit", "ghost.local"]) == 1


def test_main_transport_error_returns_one(monkeypatch):
    monkeypatch.setattr(
        main_mod,
        "MulticastListener",
        lambda **kw: FakeListener(open_error=TransportError("bind failed"), **kw),
    )
    assert main_mod.main(["--log-level", "crit"]) == 1
