"""Per-rule activity statistics derived from the audit log."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..audit.log import AuditEntry
from ..config.schema import AssigneeRule, LabelRule


LABEL_SUMMARY_ACTIONS = {"preview": "rule_preview", "apply": "rule_apply"}
ASSIGNEE_SUMMARY_ACTIONS = {"preview": "assignee_rule_preview", "apply": "assignee_rule_apply"}
SUMMARY_FIELDS = ("processed", "matched", "applied", "skipped", "failed")


@dataclass
class RuleStats:
    rule_id: str
    rule_type: str
    last_preview_at: Optional[datetime] = None
    last_apply_at: Optional[datetime] = None
    applied_7d: int = 0
    applied_30d: int = 0
    last_apply_summary: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_type": self.rule_type,
            "last_preview_at": self.last_preview_at.isoformat() if self.last_preview_at else None,
            "last_apply_at": self.last_apply_at.isoformat() if self.last_apply_at else None,
            "applied_7d": self.applied_7d,
            "applied_30d": self.applied_30d,
            "last_apply_summary": self.last_apply_summary,
        }


def _mentions(entry: AuditEntry, rule_id: str, batch: bool) -> bool:
    if entry.rule_id == rule_id:
        return True
    if not batch:
        return False
    rule_ids = entry.metadata.get("rule_ids")
    return isinstance(rule_ids, list) and rule_id in rule_ids


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def _later(current: Optional[datetime], candidate: datetime) -> datetime:
    return candidate if current is None or candidate > current else current


def _collect(
    stats: RuleStats,
    entries: Iterable[AuditEntry],
    actions: Dict[str, str],
    now: datetime,
    *,
    per_item_action: Optional[str] = None,
) -> None:
    week = now - timedelta(days=7)
    month = now - timedelta(days=30)
    last_apply_entry: Optional[AuditEntry] = None

    for entry in entries:
        if not _mentions(entry, stats.rule_id, per_item_action is not None):
            continue
        if entry.action == actions["preview"]:
            stats.last_preview_at = _later(stats.last_preview_at, entry.ts)
            continue
        if entry.action == actions["apply"]:
            stats.last_apply_at = _later(stats.last_apply_at, entry.ts)
            if last_apply_entry is None or entry.ts > last_apply_entry.ts:
                last_apply_entry = entry
            if per_item_action is not None:
                continue
            amount = _count(entry.metadata.get("matched"))
        elif per_item_action is not None and entry.action == per_item_action and entry.rule_id == stats.rule_id:
            amount = 1
        else:
            continue
        if entry.ts >= month:
            stats.applied_30d += amount
        if entry.ts >= week:
            stats.applied_7d += amount

    if last_apply_entry is not None:
        stats.last_apply_summary = {
            name: _count(last_apply_entry.metadata.get(name)) for name in SUMMARY_FIELDS
        }


def compute_rule_stats(
    entries: Sequence[AuditEntry],
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    now: Optional[datetime] = None,
) -> List[RuleStats]:
    """Summarise audit activity for every configured rule.

    Label rules count the ``matched`` total of their ``rule_apply``
    summaries. Assignee rule summaries cover every rule of a batch, so
    assignee rules count their per-message ``assign`` entries instead and
    use summaries only for timestamps and the last apply summary.
    """

    now = now or datetime.now(timezone.utc)
    result: List[RuleStats] = []
    for rule in label_rules:
        stats = RuleStats(rule_id=rule.id, rule_type="label")
        _collect(stats, entries, LABEL_SUMMARY_ACTIONS, now)
        result.append(stats)
    for rule in assignee_rules:
        stats = RuleStats(rule_id=rule.id, rule_type="assignee")
        _collect(stats, entries, ASSIGNEE_SUMMARY_ACTIONS, now, per_item_action="assign")
        result.append(stats)
    return result


__all__ = ["RuleStats", "compute_rule_stats"]
