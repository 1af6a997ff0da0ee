"""
Command-line entry point: watch mDNS traffic until interrupted, then print a
summary of service-type activity and the busiest hosts.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List, Optional

from . import __version__
from .config import (
    AppConfig,
    ConfigError,
    apply_cli_overrides,
    init_logging,
    parse_config_file,
    resolve_filter_host,
    resolve_interface,
)
from .display import PacketDisplay
from .resolution import ActiveResolver
from .session import MonitorSession
from .transport import MulticastListener, TransportError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mdnswatch",
        description="Passive mDNS / DNS-SD traffic monitor with activity summaries",
    )
    parser.add_argument("hosts", nargs="*", help="Only watch packets from these hosts")
    parser.add_argument("-i", "--interface", default=None, help="Interface name or index")
    parser.add_argument(
        "-6", dest="ipv6", action="store_true", help="Listen for and track IPv6 by default"
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument(
        "--no-active",
        dest="no_active",
        action="store_true",
        help="Never send follow-up PTR/HINFO queries",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=None,
        help="debug, info, warn, error or crit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_session(cfg: AppConfig, listener: Optional[MulticastListener]) -> MonitorSession:
    """
    Brief: Construct a MonitorSession (and resolver) from a validated config.

    Inputs:
      - cfg: AppConfig after CLI overrides
      - listener: transport used to send follow-up queries; None disables them

    Outputs:
      - MonitorSession with filters applied

    Raises:
      - ConfigError: unknown interface or unresolvable filter host.
    """
    monitor = cfg.monitor
    family = 6 if monitor.ipv6 else 4
    resolver = None
    if listener is not None:
        resolver = ActiveResolver(listener.send_query, enabled=monitor.active_queries)
    session = MonitorSession(
        family=family,
        interface_index=resolve_interface(monitor.interface),
        display=PacketDisplay(),
        resolver=resolver,
        max_hosts=monitor.max_hosts,
    )
    for host in monitor.filters:
        address = session.add_filter(resolve_filter_host(host, family))
        logger.info("Watching %s (%s)", host, address)
    return session


def run(
    session: MonitorSession,
    listener: MulticastListener,
    shutdown_event: threading.Event,
    poll_interval: float = POLL_INTERVAL,
) -> None:
    """
    Brief: Receive and classify packets until shutdown_event is set.

    Inputs:
      - session: MonitorSession owning all state
      - listener: open MulticastListener
      - shutdown_event: set by signal handlers
      - poll_interval: seconds between shutdown checks when idle

    Outputs:
      - None
    """
    while not shutdown_event.is_set():
        for packet in listener.poll(poll_interval):
            try:
                session.classify(packet)
            except Exception:
                logger.exception("Unhandled error while processing packet from %s", packet.source)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Brief: Parse arguments, load configuration, capture until SIGINT/SIGTERM.

    Inputs:
      - argv: command-line arguments (sys.argv[1:] when None)

    Outputs:
      - int exit code: 0 on a clean stop, 1 on configuration or socket errors

    Example:
      CLI:
        mdnswatch -i en0 192.168.1.20
    """
    args = build_parser().parse_args(argv)

    try:
        cfg = parse_config_file(args.config) if args.config else AppConfig()
        cfg = apply_cli_overrides(cfg, args)
    except ConfigError as e:
        init_logging(None, args.log_level)
        logger.error("%s", e)
        return 1

    init_logging(cfg.logging.model_dump())
    monitor = cfg.monitor

    listen_v6 = monitor.ipv6 or any(":" in host for host in monitor.filters)
    listener = MulticastListener(
        ipv4=True,
        ipv6=listen_v6,
        interface_index=0,
    )

    try:
        session = build_session(cfg, listener)
        listener.interface_index = session.interface_index
        listener.open()
    except ConfigError as e:
        logger.error("%s", e)
        return 1
    except TransportError as e:
        logger.error("%s", e)
        return 1

    shutdown_event = threading.Event()
    exit_code = 0

    def _request_shutdown(signum, _frame):
        if shutdown_event.is_set():
            return
        logger.info("Received %s, stopping capture", signal.Signals(signum).name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _request_shutdown)
        except (OSError, ValueError):  # pragma: no cover - not on the main thread
            logger.warning("Could not install %s handler", sig)

    logger.info("Capture started")
    try:
        run(session, listener, shutdown_event)
    except KeyboardInterrupt:
        shutdown_event.set()
    except Exception:
        logger.exception("Unhandled exception during capture")
        exit_code = 1
    finally:
        listener.close()
        session.report_summary(top_services=monitor.top_services, top_hosts=monitor.top_hosts)
        session.close()
        logger.info("Capture stopped")

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
