"""Expose the public utility surface for mailroute.

What:
  Re-export logging and identifier helpers that other packages import without
  knowing the underlying module layout.

Interfaces:
  ``JsonLogger``, ``get_logger``, ``new_run_id``, ``stable_id``.
"""

from .logging import JsonLogger, get_logger
from .ids import new_run_id, stable_id

__all__ = [
    "JsonLogger",
    "get_logger",
    "new_run_id",
    "stable_id",
]
