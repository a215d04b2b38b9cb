"""Match senders against label and assignee rules.

What:
  Evaluate one rule against one sender (:func:`match_one`), combine label
  rules by union (:func:`match_label_rules`), pick the single winning assignee
  rule (:func:`pick_assignee_rule`), and explain every rule's verdict for one
  message (:func:`explain_rules`).

Why:
  Both rule families share the same sender condition but differ in
  precedence. Label rules are additive because a message can carry many
  labels; assignee rules are single-winner because a message has one owner.
  Keeping both policies in one module makes the precedence rules easy to
  audit and test.

How:
  The sender is normalised once per call. An exact address condition is
  checked before the domain condition; domains are compared by equality with
  the part after ``@``. Assignee rules are ordered by ``(priority, position)``
  so that equal priorities fall back to document order deterministically.

Interfaces:
  :class:`MatchResult`, :class:`LabelMatch`, :func:`match_one`,
  :func:`match_label_rules`, :func:`pick_assignee_rule`,
  :func:`order_assignee_rules`, :func:`explain_rules`.

Invariants & Safety:
  - Disabled rules never match.
  - No helper raises on malformed senders or rules; they simply do not match.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from ..config.schema import AssigneeRule, AssignToSelf, AssignToSpecific, LabelRule
from .normalize import normalize_domain, normalize_email_address, sender_domain


MatchReason = Literal["from_email", "from_domain", "no_match", "invalid_rule"]
AssignDirective = Union[AssignToSelf, AssignToSpecific]
Rule = Union[LabelRule, AssigneeRule]


@dataclass(frozen=True)
class MatchResult:
    """Outcome of evaluating one rule against one sender."""

    ok: bool
    reason: MatchReason

    @classmethod
    def hit(cls, reason: MatchReason) -> "MatchResult":
        return cls(ok=True, reason=reason)

    @classmethod
    def miss(cls, reason: MatchReason = "no_match") -> "MatchResult":
        return cls(ok=False, reason=reason)


@dataclass
class LabelMatch:
    """Combined decision of every matching label rule."""

    labels: List[str] = field(default_factory=list)
    assign_to: Optional[AssignDirective] = None
    rule_ids: List[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return bool(self.labels) or self.assign_to is not None


def match_one(sender: Optional[str], rule: Rule) -> MatchResult:
    """Evaluate ``rule``'s match condition against ``sender``.

    The enabled flag is not consulted here; callers filter disabled rules.
    """

    email = normalize_email_address(sender)
    if email is None:
        return MatchResult.miss("invalid_rule")
    rule_email = normalize_email_address(rule.match.from_email)
    rule_domain = normalize_domain(rule.match.from_domain)
    if rule_email is None and rule_domain is None:
        return MatchResult.miss("invalid_rule")
    if rule_email is not None and rule_email == email:
        return MatchResult.hit("from_email")
    if rule_domain is not None and sender_domain(email) == rule_domain:
        return MatchResult.hit("from_domain")
    return MatchResult.miss()


def match_label_rules(sender: Optional[str], rules: Sequence[LabelRule]) -> LabelMatch:
    """Union the labels of every enabled rule matching ``sender``.

    Labels keep the order in which matching rules list them. The first
    assignment directive encountered in rule order wins.
    """

    result = LabelMatch()
    for rule in rules:
        if not rule.enabled:
            continue
        if not match_one(sender, rule).ok:
            continue
        result.rule_ids.append(rule.id)
        for name in rule.label_names:
            if name not in result.labels:
                result.labels.append(name)
        if result.assign_to is None and rule.assign_to is not None:
            result.assign_to = rule.assign_to
    return result


def order_assignee_rules(rules: Sequence[AssigneeRule]) -> List[AssigneeRule]:
    """Return enabled assignee rules in evaluation order.

    Ties on ``priority`` keep their position in ``rules``.
    """

    enabled = [(index, rule) for index, rule in enumerate(rules) if rule.enabled]
    enabled.sort(key=lambda pair: (pair[1].priority, pair[0]))
    return [rule for _, rule in enabled]


def pick_assignee_rule(sender: Optional[str], rules: Sequence[AssigneeRule]) -> Optional[AssigneeRule]:
    """Return the first enabled rule, in priority order, matching ``sender``."""

    for rule in order_assignee_rules(rules):
        if match_one(sender, rule).ok:
            return rule
    return None


def explain_rules(
    message_id: str,
    sender: Optional[str],
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
) -> Dict[str, Any]:
    """Describe how each rule treats one message.

    Every label rule is listed with its match reason and the labels it would
    contribute. Assignee rules are listed in evaluation order with the winner
    marked; rules after the winner are reported as ``shadowed`` when they
    would also have matched.
    """

    email = normalize_email_address(sender)
    label_entries = []
    for rule in label_rules:
        result = match_one(sender, rule) if rule.enabled else MatchResult.miss()
        label_entries.append(
            {
                "rule_id": rule.id,
                "enabled": rule.enabled,
                "matched": result.ok,
                "reason": result.reason if rule.enabled else "disabled",
                "labels": list(rule.label_names) if result.ok else [],
            }
        )
    combined = match_label_rules(sender, label_rules)

    winner = pick_assignee_rule(sender, assignee_rules)
    assignee_entries = []
    ordered = order_assignee_rules(assignee_rules)
    disabled = [rule for rule in assignee_rules if not rule.enabled]
    for rule in ordered:
        result = match_one(sender, rule)
        if winner is not None and rule.id == winner.id:
            decision = "selected"
        elif result.ok:
            decision = "shadowed"
        else:
            decision = "no_match"
        assignee_entries.append(
            {
                "rule_id": rule.id,
                "priority": rule.priority,
                "enabled": True,
                "matched": result.ok,
                "reason": result.reason,
                "assignee_email": rule.assignee_email,
                "decision": decision,
            }
        )
    for rule in disabled:
        assignee_entries.append(
            {
                "rule_id": rule.id,
                "priority": rule.priority,
                "enabled": False,
                "matched": False,
                "reason": "disabled",
                "assignee_email": rule.assignee_email,
                "decision": "disabled",
            }
        )

    return {
        "message_id": message_id,
        "sender": email,
        "label_rules": label_entries,
        "labels": combined.labels,
        "assign_to": combined.assign_to.model_dump() if combined.assign_to else None,
        "assignee_rules": assignee_entries,
        "assignee": winner.assignee_email if winner else None,
        "assignee_rule_id": winner.id if winner else None,
    }


__all__ = [
    "MatchResult",
    "LabelMatch",
    "match_one",
    "match_label_rules",
    "order_assignee_rules",
    "pick_assignee_rule",
    "explain_rules",
]
