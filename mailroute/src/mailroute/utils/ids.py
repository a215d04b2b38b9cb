"""Generate run identifiers and stable digests for mailroute artifacts.

What:
  Provide minimal helpers for creating unique run IDs and short
  deterministic identifiers derived from text keys.

Why:
  Run IDs correlate log lines of one batch invocation; stable identifiers let
  the suggestion engine return the same id for the same sender and proposal
  type across calls so operators can dismiss or track them.

How:
  Combines ISO8601 timestamps with random suffixes for run IDs and wraps
  ``hashlib`` for short ids.

Interfaces:
  :func:`new_run_id`, :func:`stable_id`.

Invariants & Safety:
  - Run IDs always include timezone-aware timestamps.
  - ``stable_id`` is a pure function of its inputs.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone


def new_run_id() -> str:
    """Return a unique identifier such as ``2024-01-01T00:00:00+00:00#1a2b3c``."""

    timestamp = datetime.now(timezone.utc).isoformat()
    suffix = secrets.token_hex(3)
    return f"{timestamp}#{suffix}"


def stable_id(prefix: str, key: str, *, length: int = 10) -> str:
    """Derive a short deterministic identifier from ``key``.

    Args:
      prefix: Namespace prepended to the digest (``suggestion`` etc.).
      key: Text that uniquely describes the identified object.
      length: Number of hex characters kept from the digest.

    Returns:
      Identifier of the form ``<prefix>-<hex>``.
    """

    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:length]
    return f"{prefix}-{digest}"
