"""mailroute test suites.

What:
  Marks ``tests`` as a package so the CLI wiring tests at the top level import
  the shared :mod:`tests.conftest` deterministically.

Invariants & Safety:
  - Importing this package has no side effects; path setup and the runtime
    configuration fixture live in ``conftest.py``.
"""
