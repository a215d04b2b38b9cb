"""Unit tests for rule matching, label unions, and assignee selection."""

from __future__ import annotations

from types import SimpleNamespace

from fakes import assignee_rule, label_rule

from mailroute.config.schema import LabelRule
from mailroute.core.matcher import (
    explain_rules,
    match_label_rules,
    match_one,
    order_assignee_rules,
    pick_assignee_rule,
)


def test_match_one_prefers_exact_email():
    rule = label_rule("r1", ["A"], from_email="Ops <ops@vendor.example>", from_domain="vendor.example")
    result = match_one("ops@vendor.example", rule)
    assert result.ok and result.reason == "from_email"


def test_match_one_falls_back_to_domain():
    rule = label_rule("r1", ["A"], from_email="ops@vendor.example", from_domain="vendor.example")
    result = match_one("Billing <billing@Vendor.Example>", rule)
    assert result.ok and result.reason == "from_domain"


def test_match_one_domain_is_exact_not_suffix():
    rule = label_rule("r1", ["A"], from_domain="vendor.example")
    assert match_one("x@mail.vendor.example", rule).ok is False
    assert match_one("x@evilvendor.example", rule).reason == "no_match"


def test_match_one_unresolvable_sender_is_invalid():
    rule = label_rule("r1", ["A"], from_domain="vendor.example")
    result = match_one(None, rule)
    assert result.ok is False
    assert result.reason == "invalid_rule"
    assert match_one("garbage", rule).reason == "invalid_rule"


def test_match_one_rule_without_discriminant_is_invalid():
    rule = SimpleNamespace(id="broken", match=SimpleNamespace(from_email=None, from_domain=None))
    assert match_one("a@b.example", rule).reason == "invalid_rule"


def test_label_union_is_deduplicated_in_rule_order():
    rules = [
        label_rule("r1", ["Vendor", "Billing"], from_domain="vendor.example"),
        label_rule("r2", ["Billing", "Urgent"], from_email="billing@vendor.example"),
        label_rule("r3", ["Other"], from_domain="other.example"),
    ]
    result = match_label_rules("billing@vendor.example", rules)
    assert result.labels == ["Vendor", "Billing", "Urgent"]
    assert result.rule_ids == ["r1", "r2"]


def test_first_assignment_directive_wins():
    first = LabelRule.model_validate(
        {
            "id": "r1",
            "match": {"from_domain": "vendor.example"},
            "label_names": ["A"],
            "assign_to": {"kind": "assignee", "assignee_email": "first@example.jp"},
        }
    )
    second = LabelRule.model_validate(
        {
            "id": "r2",
            "match": {"from_domain": "vendor.example"},
            "label_names": ["B"],
            "assign_to": {"kind": "self"},
        }
    )
    result = match_label_rules("x@vendor.example", [first, second])
    assert result.assign_to.kind == "assignee"
    assert result.assign_to.assignee_email == "first@example.jp"


def test_disabled_and_empty_rule_sets_never_match():
    disabled = label_rule("r1", ["A"], from_domain="vendor.example").model_copy(update={"enabled": False})
    assert match_label_rules("x@vendor.example", [disabled]).matched is False
    assert match_label_rules("x@vendor.example", []).matched is False
    assert pick_assignee_rule("x@vendor.example", []) is None


def test_lower_priority_assignee_rule_wins():
    rules = [
        assignee_rule("late", "b@example.jp", priority=10, from_domain="example.com"),
        assignee_rule("early", "a@example.jp", priority=0, from_domain="example.com"),
    ]
    winner = pick_assignee_rule("someone@example.com", rules)
    assert winner.id == "early"
    assert winner.assignee_email == "a@example.jp"


def test_priority_beats_a_more_specific_sender_match():
    rules = [
        assignee_rule("exact", "b@org.com", priority=5, from_email="x@example.com"),
        assignee_rule("domain", "a@org.com", priority=1, from_domain="example.com"),
    ]
    winner = pick_assignee_rule("x@example.com", rules)
    assert winner.id == "domain"
    assert winner.assignee_email == "a@org.com"


def test_overlapping_label_rules_union_instead_of_first_wins():
    rules = [
        label_rule("r1", ["VIP"], from_domain="example.com"),
        label_rule("r2", ["Priority"], from_email="vip@example.com"),
    ]
    result = match_label_rules("vip@example.com", rules)
    assert result.labels == ["VIP", "Priority"]
    assert result.rule_ids == ["r1", "r2"]
    assert match_label_rules("other@example.com", rules).labels == ["VIP"]


def test_priority_ties_keep_document_order():
    rules = [
        assignee_rule("first", "a@example.jp", priority=5, from_domain="vendor.example"),
        assignee_rule("second", "b@example.jp", priority=5, from_domain="vendor.example"),
    ]
    assert pick_assignee_rule("x@vendor.example", rules).id == "first"
    assert [rule.id for rule in order_assignee_rules(list(reversed(rules)))] == ["second", "first"]


def test_disabled_assignee_rules_are_skipped():
    rules = [
        assignee_rule("off", "a@example.jp", priority=0, enabled=False, from_domain="vendor.example"),
        assignee_rule("on", "b@example.jp", priority=9, from_domain="vendor.example"),
    ]
    assert pick_assignee_rule("x@vendor.example", rules).id == "on"


def test_explain_rules_reports_decisions():
    label_rules = [
        label_rule("l1", ["Vendor"], from_domain="vendor.example"),
        label_rule("l2", ["Other"], from_domain="other.example"),
    ]
    assignee_rules = [
        assignee_rule("a-late", "b@example.jp", priority=5, from_domain="vendor.example"),
        assignee_rule("a-early", "a@example.jp", priority=1, from_email="x@vendor.example"),
        assignee_rule("a-off", "c@example.jp", enabled=False, from_domain="vendor.example"),
    ]

    report = explain_rules("m1", "X <x@vendor.example>", label_rules, assignee_rules)

    assert report["sender"] == "x@vendor.example"
    assert report["labels"] == ["Vendor"]
    assert [entry["matched"] for entry in report["label_rules"]] == [True, False]
    decisions = {entry["rule_id"]: entry["decision"] for entry in report["assignee_rules"]}
    assert decisions == {"a-early": "selected", "a-late": "shadowed", "a-off": "disabled"}
    assert report["assignee"] == "a@example.jp"
    assert report["assignee_rule_id"] == "a-early"
