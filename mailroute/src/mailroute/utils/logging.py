"""mailroute logging helpers with deterministic JSON emission and redaction.

What:
  Offer a tiny facade over Python streams so every mailroute component can emit
  JSON log lines with consistent fields and automatic removal of message
  content.

Why:
  Batch runs touch many messages at once and operators investigate failures by
  grepping logs. A structured layout keeps parsing trivial while preventing
  subjects or previews of third-party mail from leaking into shared log
  storage.

How:
  Provide a :class:`JsonLogger` dataclass that accepts a target stream and
  enforces uppercase severity levels. Keyword context is scrubbed via a
  recursive redaction helper before being serialised with ``json.dump``.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`.

Invariants & Safety:
  - Every payload includes an ISO8601 timestamp, severity, message, and
    component name.
  - Known content keys (``subject``, ``body``, ``preview``, ``snippet``) are
    replaced with ``[redacted]`` even inside nested dictionaries and lists.
  - Streams are flushed after every write.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"subject", "body", "preview", "snippet"})


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Emits single-line JSON entries that include timestamps, severity, a
      component tag, and optional supplemental fields.

    Why:
      Centralising structured logging avoids duplicating the redaction logic
      and guarantees a uniform schema for test assertions and log tooling.

    How:
      Stores the destination stream and component label, then exposes
      :meth:`log`, :meth:`info`, :meth:`warning`, and :meth:`error`.
    """

    stream: Any = field(default_factory=lambda: sys.stderr)
    component: str = "mailroute"

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Emit a structured JSON log entry.

        Args:
          level: Human-readable severity (e.g., ``"info"`` or ``"error"``).
          message: Core log message, usually a snake_case event name.
          extra: Optional context dictionary that will be redacted recursively.
        """

        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            payload.update(self._redact(extra))
        json.dump(payload, self.stream, separators=(",", ":"), default=str)
        self.stream.write("\n")
        self.stream.flush()

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("ERROR", message, extra=kwargs)

    def child(self, component: str) -> "JsonLogger":
        """Return a logger sharing this stream under another component name."""

        return JsonLogger(stream=self.stream, component=component)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Remove content-bearing keys from a payload recursively.

        What:
          Produces a copy of ``data`` where predefined fields are replaced with
          a sentinel ``[redacted]`` string.

        Why:
          Previews carry subjects of third-party messages. Redacting them at the
          logging boundary keeps batch diagnostics shareable.

        How:
          Walks dictionaries and lists, applying the sentinel to known keys
          while preserving structure for downstream parsing.

        Args:
          data: Arbitrary metadata to sanitise.

        Returns:
          A copy of ``data`` with sensitive values masked.
        """

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS:
                result[key] = REDACTED
            elif isinstance(value, dict):
                result[key] = JsonLogger._redact(value)
            elif isinstance(value, list):
                result[key] = [
                    JsonLogger._redact(item) if isinstance(item, dict) else item for item in value
                ]
            else:
                result[key] = value
        return result


def get_logger(component: str) -> JsonLogger:
    """Construct a :class:`JsonLogger` for the requested component.

    Args:
      component: Logical subsystem name to include in log payloads.

    Returns:
      Configured :class:`JsonLogger` writing to ``stderr`` so command output on
      ``stdout`` stays machine-readable.
    """

    return JsonLogger(component=component)
