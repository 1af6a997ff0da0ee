"""
Root logger setup for the mdnswatch CLI.

Brief:
  Decoded traffic is written to the display sink, not to logging. The logger
  carries lifecycle events, send failures and registry exhaustion, formatted
  with bracketed lowercase level tags.

Inputs:
  - a logging config mapping (see init_logging)

Outputs:
  - configured root logger
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_LEVEL_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def level_tag(levelno: int) -> str:
    return _LEVEL_TAGS.get(levelno, f"[lvl{levelno}]")


class BracketLevelFormatter(logging.Formatter):
    """UTC ISO-8601 timestamps and ``[info]``-style level tags."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = level_tag(record.levelno)
        return super().format(record)


class SyslogFormatter(logging.Formatter):
    """No timestamp; syslog adds its own. Prefixed with the program tag."""

    def __init__(self, tag: str = "mdnswatch") -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = level_tag(record.levelno)
        return f"{self.tag}: {record.level_tag} {record.name}: {record.getMessage()}"


def resolve_level(value: Any, default: int = logging.INFO) -> int:
    """Brief: Map a level name ("debug", "warn", ...) to a logging constant."""
    if value is None:
        return default
    return LEVELS.get(str(value).strip().lower(), default)


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    if isinstance(syslog_cfg, dict):
        address = syslog_cfg.get("address", "/dev/log")
        if isinstance(address, (list, tuple)):
            address = (str(address[0]), int(address[1]))
        facility = getattr(
            logging.handlers.SysLogHandler,
            f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
            logging.handlers.SysLogHandler.LOG_USER,
        )
        tag = str(syslog_cfg.get("tag", "mdnswatch"))
    else:
        address = "/dev/log"
        facility = logging.handlers.SysLogHandler.LOG_USER
        tag = "mdnswatch"
    handler = logging.handlers.SysLogHandler(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter(tag))
    return handler


def init_logging(cfg: Optional[Dict[str, Any]], level_override: Optional[str] = None) -> None:
    """
    Brief: Configure the root logger once at startup.

    Inputs:
      - cfg: mapping with optional keys
          - level: debug, info, warn, error, crit (default: info)
          - stderr: log to stderr (default: True)
          - file: path of a log file to append to
          - syslog: True, or a dict with address / facility / tag
      - level_override: level from the command line; wins over cfg["level"]

    Outputs:
      - None

    Example:
      >>> init_logging({"level": "debug", "stderr": True})
    """
    cfg = cfg or {}
    level = resolve_level(level_override or cfg.get("level"))

    formatter = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            root.addHandler(_syslog_handler(syslog_cfg))
        except (OSError, ValueError) as e:
            root.warning("Failed to configure syslog: %s", e)

    logging.captureWarnings(True)
