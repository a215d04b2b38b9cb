"""Mine the audit log for rules the team keeps applying by hand.

What:
  Group recent manual ``label``, ``mute`` and ``assign``/``takeover`` actions
  by sender and propose a label, mute or assignee rule for every sender that
  enough distinct operators have handled often enough.

Why:
  Repeated manual routing is the clearest signal that a rule is missing. The
  distinct-actor threshold keeps one operator's habits from becoming a
  team-wide rule.

How:
  Audit entries inside the trailing window are resolved to a sender through
  the mail backend (unresolvable messages are dropped), grouped per
  normalised sender address, and filtered by the action and actor
  thresholds. Senders already covered by an enabled rule of the matching
  family are suppressed. Suggestion identifiers are derived from the
  suggestion type and sender so repeated runs agree.

Interfaces:
  :func:`generate_rule_suggestions`, :class:`SuggestionsResult`.
"""
from __future__ import annotations

from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..audit.log import AuditEntry, AuditLog
from ..config.schema import AssigneeRule, LabelRule, SuggestionSettings
from ..mail.backend import MailBackend
from ..utils.ids import stable_id
from ..utils.logging import JsonLogger, get_logger
from .batch import with_timeout
from .normalize import normalize_email_address, sender_domain
from .safety import broad_domain_warning, is_broad_domain


MAX_LISTED_ACTORS = 5
ASSIGN_ACTIONS = frozenset({"assign", "takeover"})


@dataclass
class SuggestionsResult:
    suggestions: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"suggestions": self.suggestions, "warnings": self.warnings}


@dataclass
class _SenderGroup:
    email: str
    domain: Optional[str]
    entries: List[AuditEntry] = field(default_factory=list)

    @property
    def actors(self) -> List[str]:
        return list(OrderedDict.fromkeys(entry.actor_email for entry in self.entries))


def _is_rule_sourced(entry: AuditEntry) -> bool:
    return entry.metadata.get("source") == "rule"


def _covered(group: _SenderGroup, rules: Sequence[Any]) -> bool:
    for rule in rules:
        if not rule.enabled:
            continue
        if rule.match.from_email and rule.match.from_email == group.email:
            return True
        if rule.match.from_domain and rule.match.from_domain == group.domain:
            return True
    return False


def _mute_rules(rules: Sequence[LabelRule], muted_label: str) -> List[LabelRule]:
    needle = muted_label.lower()
    return [rule for rule in rules if any(needle in name.lower() for name in rule.label_names)]


class _SenderResolver:
    """Resolve message ids to normalised senders, once per message."""

    def __init__(self, backend: MailBackend, logger: JsonLogger, timeout_s: float):
        self._backend = backend
        self._logger = logger
        self._timeout_s = timeout_s
        self._cache: Dict[str, Optional[str]] = {}

    async def resolve(self, message_id: str) -> Optional[str]:
        if message_id in self._cache:
            return self._cache[message_id]
        sender: Optional[str] = None
        try:
            meta = await with_timeout(
                self._backend.get_routing_metadata(message_id),
                self._timeout_s,
                f"suggest:{message_id}",
            )
            sender = normalize_email_address(meta.sender_email)
        except Exception as exc:
            self._logger.warning("suggestion_sender_failed", message_id=message_id, error=str(exc))
        self._cache[message_id] = sender
        return sender


async def _group_by_sender(entries: Sequence[AuditEntry], resolver: _SenderResolver) -> List[_SenderGroup]:
    groups: "OrderedDict[str, _SenderGroup]" = OrderedDict()
    for entry in entries:
        if not entry.message_id:
            continue
        email = await resolver.resolve(entry.message_id)
        if email is None:
            continue
        group = groups.get(email)
        if group is None:
            group = groups[email] = _SenderGroup(email=email, domain=sender_domain(email))
        group.entries.append(entry)
    return list(groups.values())


def _build(
    kind: str,
    group: _SenderGroup,
    reason: str,
    proposed: Dict[str, Any],
) -> Dict[str, Any]:
    sender: Dict[str, str] = {"from_email": group.email}
    if group.domain:
        sender["from_domain"] = group.domain
    warnings: List[Dict[str, str]] = []
    if group.domain and is_broad_domain(group.domain):
        warnings.append(broad_domain_warning(group.domain))
    actors = group.actors
    return {
        "id": stable_id("suggestion", f"{kind}:{group.email}:{group.domain or ''}"),
        "type": kind,
        "sender": sender,
        "reason": reason,
        "evidence_count": len(group.entries),
        "actor_count": len(actors),
        "actors": actors[:MAX_LISTED_ACTORS],
        "proposed_rule": dict(proposed, match={"from_email": group.email}),
        "warnings": warnings,
    }


def _passes(group: _SenderGroup, settings: SuggestionSettings) -> bool:
    return len(group.entries) >= settings.min_actions and len(group.actors) >= settings.min_actors


def _top(values: Sequence[Optional[str]]) -> Optional[str]:
    counts = Counter(value for value in values if value)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


async def generate_rule_suggestions(
    audit: AuditLog,
    backend: MailBackend,
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    settings: Optional[SuggestionSettings] = None,
    now: Optional[datetime] = None,
    *,
    logger: Optional[JsonLogger] = None,
    timeout_s: float = 6.0,
) -> SuggestionsResult:
    """Propose rules for senders repeatedly handled by hand.

    Args:
      audit: Audit log to mine; at most ``settings.log_limit`` newest entries
        are read.
      backend: Mail backend used to resolve message senders.
      label_rules: Existing label rules, used for coverage suppression.
      assignee_rules: Existing assignee rules, used for coverage suppression.
      settings: Window and thresholds.
      now: Reference time for the trailing window.

    Returns:
      Suggestions in ``auto_label``, ``auto_mute``, ``auto_assign`` order plus
      a global warning when any suggestion targets a broad domain.
    """

    settings = settings or SuggestionSettings()
    logger = logger or get_logger("mailroute.suggestions")
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=settings.window_days)

    entries = [entry for entry in await audit.entries(limit=settings.log_limit) if entry.ts >= cutoff]
    resolver = _SenderResolver(backend, logger, timeout_s)
    result = SuggestionsResult()

    label_entries = [e for e in entries if e.action == "label" and e.label and not _is_rule_sourced(e)]
    for group in await _group_by_sender(label_entries, resolver):
        if _covered(group, label_rules) or not _passes(group, settings):
            continue
        top_label = _top([entry.label for entry in group.entries])
        if top_label is None:
            continue
        result.suggestions.append(
            _build(
                "auto_label",
                group,
                f"{len(group.actors)} members labelled {top_label} {len(group.entries)} times",
                {"label_names": [top_label]},
            )
        )

    mute_entries = [e for e in entries if e.action == "mute"]
    mute_rules = _mute_rules(label_rules, settings.muted_label)
    for group in await _group_by_sender(mute_entries, resolver):
        if _covered(group, mute_rules) or not _passes(group, settings):
            continue
        result.suggestions.append(
            _build(
                "auto_mute",
                group,
                f"{len(group.actors)} members muted this sender {len(group.entries)} times",
                {"label_names": [settings.muted_label]},
            )
        )

    assign_entries = [
        e
        for e in entries
        if e.action in ASSIGN_ACTIONS and not _is_rule_sourced(e) and e.metadata.get("assignee_email")
    ]
    for group in await _group_by_sender(assign_entries, resolver):
        if _covered(group, assignee_rules) or not _passes(group, settings):
            continue
        assignee = _top([str(entry.metadata.get("assignee_email")) for entry in group.entries])
        if assignee is None:
            continue
        result.suggestions.append(
            _build(
                "auto_assign",
                group,
                f"{len(group.actors)} members assigned {assignee} {len(group.entries)} times",
                {"assignee_email": assignee},
            )
        )

    if any(suggestion["warnings"] for suggestion in result.suggestions):
        result.warnings.append(
            {
                "type": "broad_domain",
                "message": "some suggestions target broad domains; review before saving",
            }
        )
    return result


__all__ = ["SuggestionsResult", "generate_rule_suggestions"]
