"""
Brief: Tests for mdnswatch.config.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers
from pathlib import Path

from mdnswatch.config.logging_config import (
    BracketLevelFormatter,
    SyslogFormatter,
    init_logging,
    resolve_level,
)


def test_init_logging_adds_stderr_handler():
    """
    Brief: init_logging configures root logger with a stderr handler by default.

    Inputs:
      - cfg: minimal dict with level

    Outputs:
      - None: Asserts StreamHandler present and level applied
    """
    init_logging({"level": "debug"})
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)


def test_level_override_wins_over_config():
    init_logging({"level": "debug", "stderr": False}, level_override="error")
    assert logging.getLogger().level == logging.ERROR


def test_stderr_can_be_disabled():
    init_logging({"stderr": False})
    assert logging.getLogger().handlers == []


def test_init_logging_file_handler_writes(tmp_path):
    """
    Brief: init_logging creates parent dirs and writes formatted entries.

    Inputs:
      - cfg: nested file path and level

    Outputs:
      - None: Asserts file contains message with bracketed tag
    """
    log_path = tmp_path / "logs" / "mdnswatch.log"
    init_logging({"level": "info", "stderr": False, "file": str(log_path)})
    logging.getLogger("mdnswatch.test").info("file message")
    for h in logging.getLogger().handlers:
        h.flush()
    content = Path(log_path).read_text()
    assert "file message" in content
    assert "[info] mdnswatch.test:" in content


def test_init_logging_syslog(monkeypatch):
    """
    Brief: init_logging attaches a syslog handler for True or dict config.

    Inputs:
      - syslog: True, then a dict with address/facility/tag

    Outputs:
      - None: Asserts handler arguments and formatter tag
    """
    created = {}

    class DummySysLogHandler(logging.Handler):
        LOG_USER = 8
        LOG_LOCAL0 = 128

        def __init__(self, address=None, facility=None):
            super().__init__()
            created["address"] = address
            created["facility"] = facility

        def emit(self, record):
            pass

        def setFormatter(self, fmt):
            created["formatter"] = fmt

    monkeypatch.setattr(logging.handlers, "SysLogHandler", DummySysLogHandler)

    init_logging({"stderr": False, "syslog": True})
    assert created["address"] == "/dev/log"
    assert created["facility"] == 8

    created.clear()
    init_logging(
        {
            "stderr": False,
            "syslog": {"address": ["localhost", 514], "facility": "local0", "tag": "watch"},
        }
    )
    assert created["address"] == ("localhost", 514)
    assert created["facility"] == 128
    assert created["formatter"].tag == "watch"


def test_init_logging_syslog_failure_warns(monkeypatch):
    """
    Brief: init_logging logs a warning if syslog handler setup fails.

    Inputs:
      - monkeypatch: make SysLogHandler raise OSError

    Outputs:
      - None: Asserts warning emitted
    """

    class FailingSysLogHandler:
        LOG_USER = 8

        def __init__(self, *a, **kw):
            raise OSError("no syslog")

    monkeypatch.setattr(logging.handlers, "SysLogHandler", FailingSysLogHandler)

    caught = {}
    root = logging.getLogger()

    def fake_warning(msg, *args, **kwargs):
        caught["msg"] = msg % args if args else str(msg)

    monkeypatch.setattr(root, "warning", fake_warning)
    init_logging({"stderr": False, "syslog": True})
    assert "Failed to configure syslog: no syslog" in caught["msg"]


def test_formatters_produce_expected_tags():
    """
    Brief: BracketLevelFormatter and SyslogFormatter include bracketed tags.

    Inputs:
      - LogRecord instances at different levels

    Outputs:
      - None: Asserts formatted strings contain expected tags
    """
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")
    rec = logging.LogRecord("n", logging.ERROR, __file__, 1, "m", (), None)
    rec.created = 0.0
    out = fmt.format(rec)
    assert out.startswith("1970-01-01T00:00:00Z [error] n: m")

    s = SyslogFormatter()
    rec2 = logging.LogRecord("n2", logging.WARNING, __file__, 2, "m2", (), None)
    assert s.format(rec2) == "mdnswatch: [warn] n2: m2"

    rec3 = logging.LogRecord("n3", 25, __file__, 3, "m3", (), None)
    assert "[lvl25]" in s.format(rec3)


def test_resolve_level_aliases():
    assert resolve_level("WARN") == logging.WARNING
    assert resolve_level("crit") == logging.CRITICAL
    assert resolve_level(None) == logging.INFO
    assert resolve_level("bogus") == logging.INFO
