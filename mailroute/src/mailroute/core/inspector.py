"""Read-only diagnostics over the rule configuration.

What:
  Detect conflicting rule pairs, dangerously broad rules, rules that never
  hit recent mail, and per-rule hit statistics over a bounded sample.

Why:
  Rules accumulate over time and are edited by different operators. Two
  rules fighting over the same sender, a rule on ``gmail.com``, or a rule
  that no longer matches anything are all invisible until they cause a
  misrouted message. The inspector surfaces them without mutating anything.

How:
  Conflicts are computed statically from rule conditions
  (:func:`detect_conflicts`). Danger and activity are empirical: one listing
  of the latest messages (and one of the latest unassigned messages for
  assignee rules) is matched locally, plus one narrowed listing per rule to
  estimate its match volume. Sampling failures are logged and leave the
  empirical sections empty.

Interfaces:
  :func:`conditions_overlap`, :func:`detect_conflicts`,
  :func:`inspect_rules`, :class:`InspectionReport`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.schema import AssigneeRule, AssignToSpecific, InspectorSettings, LabelRule, RuleMatch
from ..mail.backend import MailBackend, MessageSummary
from ..utils.logging import JsonLogger, get_logger
from .batch import map_with_concurrency, with_timeout
from .matcher import match_one
from .normalize import sender_domain
from .runner import build_search_query
from .safety import broad_domain_warning, broad_match_domain


@dataclass
class InspectionReport:
    """Findings of one inspection run."""

    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    dangerous: List[Dict[str, Any]] = field(default_factory=list)
    inactive: List[Dict[str, Any]] = field(default_factory=list)
    hit_stats: List[Dict[str, Any]] = field(default_factory=list)
    sample_size: int = 0
    sampled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflicts": self.conflicts,
            "dangerous": self.dangerous,
            "inactive": self.inactive,
            "hit_stats": self.hit_stats,
            "sample_size": self.sample_size,
            "sampled": self.sampled,
        }


def _condition(match: RuleMatch) -> Dict[str, str]:
    return match.model_dump(exclude_none=True)


def conditions_overlap(first: RuleMatch, second: RuleMatch) -> bool:
    """Return ``True`` when some sender satisfies both conditions."""

    if first.from_email and second.from_email and first.from_email == second.from_email:
        return True
    if first.from_domain and second.from_domain and first.from_domain == second.from_domain:
        return True
    if first.from_email and second.from_domain and sender_domain(first.from_email) == second.from_domain:
        return True
    if second.from_email and first.from_domain and sender_domain(second.from_email) == first.from_domain:
        return True
    return False


def _shared_condition(first: RuleMatch, second: RuleMatch) -> Dict[str, str]:
    if first.from_email and first.from_email == second.from_email:
        return {"from_email": first.from_email}
    if first.from_domain and first.from_domain == second.from_domain:
        return {"from_domain": first.from_domain}
    condition: Dict[str, str] = {}
    for match in (first, second):
        if match.from_email:
            condition.setdefault("from_email", match.from_email)
        if match.from_domain:
            condition.setdefault("from_domain", match.from_domain)
    return condition


def detect_conflicts(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
) -> List[Dict[str, Any]]:
    """List enabled rule pairs whose conditions overlap but whose decisions differ.

    - ``label_label``: different label sets (order-insensitive).
    - ``assignee_assignee``: different assignees; ``same_priority`` marks
      pairs whose winner depends only on document order.
    - ``cross_type``: a label rule assigning a fixed member and an assignee
      rule assigning someone else.
    """

    conflicts: List[Dict[str, Any]] = []
    labels = [rule for rule in label_rules if rule.enabled]
    assignees = [rule for rule in assignee_rules if rule.enabled]

    for index, first in enumerate(labels):
        for second in labels[index + 1:]:
            if not conditions_overlap(first.match, second.match):
                continue
            if sorted(first.label_names) == sorted(second.label_names):
                continue
            conflicts.append(
                {
                    "type": "label_label",
                    "rule_ids": [first.id, second.id],
                    "match": _shared_condition(first.match, second.match),
                    "results": [
                        {"rule_id": first.id, "result": list(first.label_names)},
                        {"rule_id": second.id, "result": list(second.label_names)},
                    ],
                }
            )

    for index, first in enumerate(assignees):
        for second in assignees[index + 1:]:
            if not conditions_overlap(first.match, second.match):
                continue
            if first.assignee_email == second.assignee_email:
                continue
            conflicts.append(
                {
                    "type": "assignee_assignee",
                    "rule_ids": [first.id, second.id],
                    "match": _shared_condition(first.match, second.match),
                    "same_priority": first.priority == second.priority,
                    "results": [
                        {"rule_id": first.id, "result": first.assignee_email},
                        {"rule_id": second.id, "result": second.assignee_email},
                    ],
                }
            )

    for label_rule in labels:
        if not isinstance(label_rule.assign_to, AssignToSpecific):
            continue
        target = label_rule.assign_to.assignee_email
        for assignee_rule in assignees:
            if not conditions_overlap(label_rule.match, assignee_rule.match):
                continue
            if assignee_rule.assignee_email == target:
                continue
            conflicts.append(
                {
                    "type": "cross_type",
                    "rule_ids": [label_rule.id, assignee_rule.id],
                    "match": _shared_condition(label_rule.match, assignee_rule.match),
                    "results": [
                        {"rule_id": label_rule.id, "result": target},
                        {"rule_id": assignee_rule.id, "result": assignee_rule.assignee_email},
                    ],
                }
            )
    return conflicts


class _Sampler:
    """Fetch sample listings for one inspection run."""

    def __init__(self, backend: MailBackend, settings: InspectorSettings, logger: JsonLogger, timeout_s: float):
        self._backend = backend
        self._settings = settings
        self._logger = logger
        self._timeout_s = timeout_s

    async def sample(self, unassigned_only: bool) -> Optional[List[MessageSummary]]:
        try:
            page = await with_timeout(
                self._backend.list_candidate_messages(
                    query="",
                    max_results=self._settings.sample_size,
                    unassigned_only=unassigned_only,
                ),
                self._timeout_s,
                "inspect:sample",
            )
        except Exception as exc:
            self._logger.warning("inspector_sample_failed", unassigned_only=unassigned_only, error=str(exc))
            return None
        return await self._with_senders(page.messages)

    async def _with_senders(self, messages: List[MessageSummary]) -> List[MessageSummary]:
        async def complete(message: MessageSummary) -> MessageSummary:
            if message.sender:
                return message
            meta = await self._backend.get_routing_metadata(message.id)
            return MessageSummary(id=message.id, sender=meta.sender_email, subject=meta.subject)

        return await map_with_concurrency(
            messages,
            complete,
            concurrency=3,
            timeout_s=self._timeout_s,
            on_error=lambda message, exc: message,
        )

    async def volume(self, query: str) -> Optional[int]:
        """Count messages matching ``query``, capped just above the threshold."""

        limit = self._settings.too_many_matches + 1
        try:
            page = await with_timeout(
                self._backend.list_candidate_messages(query=query, max_results=limit),
                self._timeout_s,
                f"inspect:{query}",
            )
        except Exception as exc:
            self._logger.warning("inspector_sample_failed", query=query, error=str(exc))
            return None
        return len(page.messages) + (1 if page.next_page_token else 0)


def _hits(rule: Any, sample: List[MessageSummary]) -> List[MessageSummary]:
    return [message for message in sample if match_one(message.sender, rule).ok]


async def inspect_rules(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    backend: MailBackend,
    settings: Optional[InspectorSettings] = None,
    *,
    logger: Optional[JsonLogger] = None,
    timeout_s: float = 6.0,
) -> InspectionReport:
    """Inspect the rule set; never mutates the backend.

    Args:
      label_rules: Label rules, enabled or not; disabled rules are ignored.
      assignee_rules: Assignee rules, enabled or not.
      backend: Mail backend used for sampling only.
      settings: Sample sizes and thresholds.
      logger: Structured logger for sampling failures.
      timeout_s: Deadline for each backend call.
    """

    settings = settings or InspectorSettings()
    logger = logger or get_logger("mailroute.inspector")
    sampler = _Sampler(backend, settings, logger, timeout_s)
    report = InspectionReport(
        conflicts=detect_conflicts(label_rules, assignee_rules),
        sample_size=settings.sample_size,
    )

    families: List[tuple] = [
        ("label", [rule for rule in label_rules if rule.enabled], False),
        ("assignee", [rule for rule in assignee_rules if rule.enabled], True),
    ]
    for rule_type, rules, unassigned_only in families:
        for rule in rules:
            broad = broad_match_domain(rule.match)
            if broad:
                warning = broad_domain_warning(broad)
                report.dangerous.append(
                    {
                        "rule_id": rule.id,
                        "rule_type": rule_type,
                        "reason": "broad_domain",
                        "match": _condition(rule.match),
                        "message": warning["message"],
                    }
                )
            count = await sampler.volume(build_search_query(rule))
            if count is not None and count > settings.too_many_matches:
                report.dangerous.append(
                    {
                        "rule_id": rule.id,
                        "rule_type": rule_type,
                        "reason": "too_many_matches",
                        "match": _condition(rule.match),
                        "message": f"matches more than {settings.too_many_matches} messages",
                        "preview_count": count,
                    }
                )

        if not rules:
            continue
        sample = await sampler.sample(unassigned_only)
        if sample is None:
            continue
        report.sampled = True
        for rule in rules:
            hits = _hits(rule, sample)
            if not hits:
                report.inactive.append(
                    {
                        "rule_id": rule.id,
                        "rule_type": rule_type,
                        "match": _condition(rule.match),
                        "message": f"no hits in the latest {len(sample)} messages",
                    }
                )
                continue
            report.hit_stats.append(
                {
                    "rule_id": rule.id,
                    "rule_type": rule_type,
                    "hit_count": len(hits),
                    "samples": [
                        {"id": message.id, "subject": message.subject, "from": message.sender}
                        for message in hits[: settings.hit_samples]
                    ],
                }
            )
    return report


__all__ = ["InspectionReport", "conditions_overlap", "detect_conflicts", "inspect_rules"]
