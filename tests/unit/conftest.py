"""Pytest fixtures for unit tests.

What:
  Make ``tests/unit`` importable so suites can share :mod:`fakes`, and expose
  a fresh fake backend plus an in-memory audit log.

Invariants & Safety:
  - Each test receives fresh fakes to eliminate state leakage.
"""

import sys
from pathlib import Path

import pytest

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeMailBackend, FakeMessage, MemoryAuditLog


@pytest.fixture
def backend() -> FakeMailBackend:
    return FakeMailBackend(
        [
            FakeMessage("m1", "invoices@billing.vendor.example", "Invoice 1"),
            FakeMessage("m2", "alerts@monitor.example", "CPU high"),
            FakeMessage("m3", "friend@gmail.com", "Lunch"),
            FakeMessage("m4", None, "No sender"),
        ]
    )


@pytest.fixture
def audit() -> MemoryAuditLog:
    return MemoryAuditLog()
