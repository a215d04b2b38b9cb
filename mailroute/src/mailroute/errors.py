"""Error taxonomy shared by the rule engine, its collaborators, and the CLI.

What:
  Declare the exception types that separate configuration mistakes, rejected
  requests, per-message backend failures, and timeouts.

Why:
  Callers react differently to each family: configuration and request errors
  abort the whole invocation, while backend failures and timeouts are captured
  on the message they belong to and never stop a batch. Keeping the hierarchy
  in one module lets every subsystem raise and catch the same types.

How:
  ``RuleConfigError`` and ``RequestError`` carry a machine-readable ``code``
  that surfaces unchanged in CLI output. ``ItemTimeoutError`` derives from the
  builtin :class:`TimeoutError` so generic timeout handlers still apply.

Interfaces:
  :class:`MailrouteError`, :class:`RuleConfigError`, :class:`RequestError`,
  :class:`MailBackendError`, :class:`ItemTimeoutError`.

Invariants & Safety:
  - ``code`` values are stable identifiers; human-readable context goes into
    ``detail``.
  - Audit failures have no exception type here because they never reach a
    caller.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class MailrouteError(Exception):
    """Base class for every error raised by mailroute."""


class RuleConfigError(MailrouteError):
    """Raised when a rule definition is malformed or unsafe to persist."""

    def __init__(self, code: str, detail: str = "") -> None:
        super().__init__(f"{code}: {detail}" if detail else code)
        self.code = code
        self.detail = detail


class RequestError(MailrouteError):
    """Raised before any batch work starts when a request cannot be served.

    Attributes:
      code: Stable identifier such as ``rule_not_found``.
      status: HTTP-equivalent status code for API callers.
      errors: Structured field errors for ``invalid_request``.
    """

    def __init__(
        self,
        code: str,
        detail: str = "",
        *,
        status: int = 400,
        errors: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(f"{code}: {detail}" if detail else code)
        self.code = code
        self.detail = detail
        self.status = status
        self.errors = errors or []

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code}
        if self.detail:
            payload["detail"] = self.detail
        if self.errors:
            payload["errors"] = self.errors
        return payload


class MailBackendError(MailrouteError):
    """Raised by mail backends when a remote operation fails."""


class ItemTimeoutError(TimeoutError):
    """Raised when a single unit of batch work exceeds its time budget."""

    def __init__(self, label: str) -> None:
        super().__init__(f"timeout:{label}")
        self.label = label
