"""
Brief: Global pytest configuration enforcing per-test 10s timeout.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'mdnswatch' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


@pytest.fixture(autouse=True)
def restore_root_logger():
    """
    Brief: Drop handlers installed by init_logging so tests do not leak them.

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers and not type(h).__module__.startswith("_pytest"):
            root.removeHandler(h)
            close = getattr(h, "close", None)
            if close is not None:
                close()
    root.setLevel(level)


@pytest.fixture
def lines():
    """
    Brief: Collected display output for a session under test.

    Inputs:
      - None

    Outputs:
      - list: every line written to the display sink
    """
    return []


@pytest.fixture
def session(lines):
    """
    Brief: MonitorSession writing to an in-memory sink with no resolver.

    Inputs:
      - lines: fixture list receiving display output

    Outputs:
      - MonitorSession instance
    """
    from mdnswatch.display import PacketDisplay
    from mdnswatch.session import MonitorSession

    return MonitorSession(display=PacketDisplay(sink=lines.append))
