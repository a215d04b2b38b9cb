"""Unit tests for per-rule audit statistics."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fakes import assignee_rule, label_rule

from mailroute.audit.log import AuditEntry
from mailroute.core.stats import compute_rule_stats

NOW = datetime(2024, 5, 20, tzinfo=timezone.utc)


def _entry(action, days, message_id=None, **metadata) -> AuditEntry:
    return AuditEntry(
        ts=NOW - timedelta(days=days),
        actor_email="taro@example.jp",
        action=action,
        message_id=message_id,
        metadata=metadata,
    )


def test_label_rule_stats_sum_matched_counts():
    entries = [
        _entry("rule_preview", 1, rule_id="lr-1", matched=9),
        _entry("rule_apply", 2, rule_id="lr-1", processed=5, matched=4, applied=3, skipped=1, failed=0),
        _entry("rule_apply", 10, rule_id="lr-1", processed=2, matched=2, applied=2),
        _entry("rule_apply", 40, rule_id="lr-1", matched=100),
        _entry("rule_apply", 1, rule_id="lr-other", matched=50),
        _entry("rule_apply", 1, matched=70),
        _entry("label", 1, "m1", rule_id="lr-1"),
    ]

    (stats,) = compute_rule_stats(entries, [label_rule("lr-1", ["A"], from_domain="v.example")], [], NOW)

    assert stats.rule_type == "label"
    assert stats.last_preview_at == NOW - timedelta(days=1)
    assert stats.last_apply_at == NOW - timedelta(days=2)
    assert stats.applied_7d == 4
    assert stats.applied_30d == 6
    assert stats.last_apply_summary == {"processed": 5, "matched": 4, "applied": 3, "skipped": 1, "failed": 0}


def test_assignee_rule_stats_count_per_message_assignments():
    entries = [
        _entry("assignee_rule_preview", 3, rule_ids=["ar-1", "ar-2"]),
        _entry("assignee_rule_apply", 2, rule_ids=["ar-1", "ar-2"], processed=4, matched=3, applied=3),
        _entry("assign", 2, "m1", rule_id="ar-1"),
        _entry("assign", 2, "m2", rule_id="ar-1"),
        _entry("assign", 2, "m3", rule_id="ar-2"),
        _entry("assign", 20, "m4", rule_id="ar-1"),
        _entry("label", 2, "m1", rule_id="ar-1"),
    ]
    rules = [
        assignee_rule("ar-1", "oncall@example.jp", from_domain="monitor.example"),
        assignee_rule("ar-2", "finance@example.jp", from_domain="vendor.example"),
    ]

    first, second = compute_rule_stats(entries, [], rules, NOW)

    assert (first.rule_id, first.applied_7d, first.applied_30d) == ("ar-1", 2, 3)
    assert (second.rule_id, second.applied_7d, second.applied_30d) == ("ar-2", 1, 1)
    assert first.last_preview_at == NOW - timedelta(days=3)
    assert first.last_apply_summary["matched"] == 3
    assert second.last_apply_summary == first.last_apply_summary


def test_rules_without_activity():
    (stats,) = compute_rule_stats([], [label_rule("lr-1", ["A"], from_domain="v.example")], [], NOW)

    assert stats.to_dict() == {
        "rule_id": "lr-1",
        "rule_type": "label",
        "last_preview_at": None,
        "last_apply_at": None,
        "applied_7d": 0,
        "applied_30d": 0,
        "last_apply_summary": None,
    }
