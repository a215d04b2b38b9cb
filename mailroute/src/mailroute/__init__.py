"""
Module: mailroute.__init__

What:
  Aggregate package exports for the mailroute shared-inbox routing engine and
  expose the primary namespace segments (configuration, core logic, mail
  backends, audit trail, and utilities).

Why:
  Centralising the exports keeps the CLI and external adapters stable while
  the internal layout evolves.

Interfaces:
  - config: Runtime configuration, rule schema, and rule store.
  - core: Matcher, batch services, runner, and read-only analytics.
  - mail: Mail backend contract and the offline snapshot backend.
  - audit: Audit entries and sinks.
  - utils: Logging and identifier helpers.

Invariants:
  - The package never re-exports helpers that could log message subjects or
    bodies.
"""

__all__ = [
    "audit",
    "config",
    "core",
    "mail",
    "utils",
]

__version__ = "0.1.0"
