"""Pytest configuration shared by every suite.

What:
  Establish project import paths and reset the cached runtime configuration
  around every test.

Why:
  The suites import the ``mailroute`` package straight from the source tree.
  Prepending ``mailroute/src`` to ``sys.path`` keeps them independent from any
  installed wheel. The runtime configuration is cached process-wide, so the
  autouse fixture keeps tests from leaking state into each other.

How:
  Compute the project root relative to this file, inject the source directory
  into ``sys.path`` when present, and point ``MAILROUTE_CONFIG_PATH`` at the
  canned fixture for every test.

Interfaces:
  :func:`runtime_config` (autouse fixture), :data:`DATA_DIR`.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailroute" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from mailroute.config.loader import reset_runtime_config

DATA_DIR = Path(__file__).resolve().parent / "data"
CONFIG_PATH = DATA_DIR / "config.yaml"


@pytest.fixture(autouse=True)
def runtime_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file and clear the cache around each test."""

    monkeypatch.setenv("MAILROUTE_CONFIG_PATH", str(CONFIG_PATH))
    reset_runtime_config()
    try:
        yield
    finally:
        reset_runtime_config()
