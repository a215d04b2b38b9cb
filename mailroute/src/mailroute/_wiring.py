"""Helper utilities bridging the CLI with runtime subsystems.

What:
  Provide reusable helpers used by :mod:`mailroute.cli` to resolve intervals,
  compute backoff delays, build the services a command needs, and run
  coroutines from synchronous Typer commands.

Why:
  Isolating these pieces keeps the command implementations concise and lets
  tests swap the mail backend or the audit sink without touching the CLI.

How:
  ``build_context`` reads the runtime configuration once and assembles the
  rule store, the mailbox snapshot, the audit log, and the application
  service. ``run_sync`` drives a coroutine to completion with
  :func:`asyncio.run`.

Interfaces:
  ``resolve_interval``, ``exponential_backoff``, ``EngineContext``,
  ``build_context``, ``run_sync``.

Invariants & Safety:
  - ``exponential_backoff`` clamps values between the configured base and cap
    to avoid unbounded sleep times.
  - The mailbox snapshot is written back only when ``persist`` is called, so
    dry runs leave it untouched.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, TypeVar

from .audit.log import JsonlAuditLog
from .config.schema import RuntimeConfig
from .config.store import YamlRuleStore
from .core.apply import RuleApplicationService
from .errors import MailrouteError
from .mail.snapshot import SnapshotMailBackend
from .utils.logging import get_logger


T = TypeVar("T")


def resolve_interval(runtime: Any, override: Optional[int]) -> int:
    """Determine the polling interval for the watch command.

    Prefer ``override`` when positive, then ``runtime.runner.interval_s``,
    then a default of ``900`` seconds.
    """

    if override is not None and override > 0:
        return override
    runner = getattr(runtime, "runner", None)
    interval = getattr(runner, "interval_s", None)
    if isinstance(interval, int) and interval > 0:
        return interval
    return 900


def exponential_backoff(
    *,
    base: int = 5,
    factor: float = 2.0,
    cap: int = 300,
    failures: int = 0,
) -> int:
    """Return an exponential backoff delay for ``failures`` retries.

    Args:
      base: Smallest delay returned.
      factor: Multiplicative growth factor.
      cap: Maximum delay permitted.
      failures: Number of consecutive failures (zero-indexed).

    Returns:
      Delay in whole seconds.
    """

    delay = base * (factor ** max(failures, 0))
    if delay < base:
        delay = base
    if delay > cap:
        delay = cap
    return int(delay)


@dataclass
class EngineContext:
    """Services assembled for one CLI invocation."""

    runtime: RuntimeConfig
    rules: YamlRuleStore
    backend: SnapshotMailBackend
    audit: JsonlAuditLog
    service: RuleApplicationService

    def persist(self) -> None:
        """Write mailbox mutations back to the snapshot file."""

        self.backend.save()


def build_context(runtime: RuntimeConfig) -> EngineContext:
    """Assemble the rule store, mailbox, audit log, and application service.

    Raises:
      MailrouteError: When no mailbox snapshot is configured.
    """

    if runtime.paths.mailbox is None:
        raise MailrouteError("paths.mailbox is not configured")
    rules = YamlRuleStore(runtime.paths.rules, org_domain=runtime.organization.email_domain)
    backend = SnapshotMailBackend.from_file(runtime.paths.mailbox)
    audit = JsonlAuditLog(runtime.paths.audit_log)
    service = RuleApplicationService(
        backend,
        rules,
        audit=audit,
        settings=runtime.batch,
        logger=get_logger("mailroute.apply"),
        too_many_matches=runtime.inspector.too_many_matches,
    )
    return EngineContext(runtime=runtime, rules=rules, backend=backend, audit=audit, service=service)


def run_sync(awaitable: Awaitable[T]) -> T:
    """Run ``awaitable`` to completion on a fresh event loop."""

    async def _runner() -> T:
        return await awaitable

    return asyncio.run(_runner())


__all__ = [
    "EngineContext",
    "build_context",
    "exponential_backoff",
    "resolve_interval",
    "run_sync",
]
