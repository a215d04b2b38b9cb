"""Audit trail of rule runs and manual mailbox actions.

What:
  Model audit entries, define the sink protocol the engine writes to, and
  provide a JSON-lines implementation plus the best-effort recording helper.

Why:
  Audit entries feed rule statistics and suggestion mining, but an audit
  outage must never fail a message that was otherwise routed correctly.
  :func:`record_best_effort` is therefore the only way the engine writes.

How:
  :class:`AuditEntry` is a Pydantic model serialised one JSON object per line
  by :class:`JsonlAuditLog`, which does its file I/O on a worker thread.
  Reads return the newest entries first.

Interfaces:
  :class:`AuditEntry`, :class:`AuditLog`, :class:`JsonlAuditLog`,
  :func:`record_best_effort`.

Invariants & Safety:
  - Entries never carry message subjects or bodies, only identifiers,
    addresses, and label names.
  - Malformed lines in the log file are skipped on read, never fatal.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as _PydanticValidationError

from ..core.batch import with_timeout
from ..utils.logging import JsonLogger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEntry(BaseModel):
    """One recorded action.

    ``action`` is free-form; the engine writes ``label``, ``assign``,
    ``rule_preview``, ``rule_apply``, ``assignee_rule_preview``,
    ``assignee_rule_apply``, ``rule_run_all_preview`` and
    ``rule_run_all_apply``. Manual actions such as ``mute`` or ``takeover``
    come from other tools sharing the log.
    """

    model_config = ConfigDict(extra="forbid")

    ts: datetime = Field(default_factory=_utcnow)
    actor_email: str
    action: str
    message_id: Optional[str] = None
    label: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("ts")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @property
    def rule_id(self) -> Optional[str]:
        value = self.metadata.get("rule_id")
        return value if isinstance(value, str) and value else None


class AuditLog(Protocol):
    """Fire-and-forget sink for audit entries."""

    async def record(self, entry: AuditEntry) -> None:
        ...

    async def entries(self, limit: Optional[int] = None) -> List[AuditEntry]:
        ...


class JsonlAuditLog:
    """Append-only audit log stored as JSON lines."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def record(self, entry: AuditEntry) -> None:
        line = json.dumps(entry.model_dump(mode="json"), separators=(",", ":"), ensure_ascii=False)
        await asyncio.to_thread(self._append, line)

    async def entries(self, limit: Optional[int] = None) -> List[AuditEntry]:
        """Return recorded entries, newest first, at most ``limit`` of them."""

        return await asyncio.to_thread(self._read, limit)

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

    def _read(self, limit: Optional[int]) -> List[AuditEntry]:
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        parsed: List[AuditEntry] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                parsed.append(AuditEntry.model_validate(json.loads(line)))
            except (json.JSONDecodeError, _PydanticValidationError):
                continue
        parsed.sort(key=lambda item: item.ts, reverse=True)
        if limit is not None:
            parsed = parsed[:limit]
        return parsed


async def record_best_effort(
    audit: Optional[AuditLog],
    entry: AuditEntry,
    logger: JsonLogger,
    *,
    timeout_s: Optional[float] = None,
) -> bool:
    """Record ``entry`` and report success without ever raising.

    A slow sink is abandoned after ``timeout_s`` seconds like any other
    failure.

    Returns:
      ``True`` when the sink accepted the entry.
    """

    if audit is None:
        return False
    try:
        if timeout_s is None:
            await audit.record(entry)
        else:
            await with_timeout(audit.record(entry), timeout_s, f"audit:{entry.action}")
    except Exception as exc:
        logger.warning(
            "audit_write_failed",
            action=entry.action,
            message_id=entry.message_id,
            error=str(exc),
        )
        return False
    return True


__all__ = ["AuditEntry", "AuditLog", "JsonlAuditLog", "record_best_effort"]
