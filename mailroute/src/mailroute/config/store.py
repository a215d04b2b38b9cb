"""Filesystem-backed rule store.

What:
  Provide read access to label and assignee rules for the rule engine and the
  authoring operations (upsert, delete) that validate rules before they are
  persisted to ``rules.yaml``.

Why:
  The engine must see the latest configuration on every invocation, so the
  store never caches parsed rules. Authoring is the single place where
  configuration errors surface to the operator, so every write goes through
  the same validation as a load plus the broad-domain confirmation check.

How:
  Each read parses the document afresh with :func:`parse_rules`. Writes follow
  the load-modify-save cycle of the status store, replacing the file
  atomically with :func:`os.replace` so a crash never leaves a truncated
  document behind. A missing file is an empty rule set.

Interfaces:
  :class:`RuleStore` protocol, :class:`YamlRuleStore`.

Invariants & Safety:
  - Rules keep the order in which they appear in the document; that order is
    the tie-break for equal assignee priorities.
  - Assignee emails are validated against the organisation domain before any
    write.
"""
from __future__ import annotations

import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping, Optional, Protocol, Union

from pydantic import BaseModel
from pydantic import ValidationError as _PydanticValidationError

from ..core.safety import broad_match_domain
from ..errors import RuleConfigError
from .loader import dump_rules, parse_rules, rule_config_error
from .schema import AssigneeRule, LabelRule, RulesDocument


RulePayload = Union[Mapping[str, Any], BaseModel]


class RuleStore(Protocol):
    """Read-only view of the rule configuration used by the engine."""

    def get_label_rules(self) -> List[LabelRule]:
        ...

    def get_assignee_rules(self) -> List[AssigneeRule]:
        ...

    def get_enabled_label_rules(self) -> List[LabelRule]:
        ...

    def get_enabled_assignee_rules(self) -> List[AssigneeRule]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_payload(rule: RulePayload) -> dict[str, Any]:
    if isinstance(rule, BaseModel):
        return rule.model_dump(mode="json", exclude_none=True)
    return dict(rule)


class YamlRuleStore:
    """Rule store persisted as a single YAML document.

    Args:
      path: Location of ``rules.yaml``.
      org_domain: Organisation email domain assignee addresses must use.
    """

    def __init__(self, path: Union[str, Path], org_domain: Optional[str] = None):
        self._path = Path(path)
        self._org_domain = org_domain

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RulesDocument:
        """Parse the current document, returning an empty one when absent."""

        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return RulesDocument()
        return parse_rules(text, self._org_domain)

    def save(self, document: RulesDocument) -> None:
        """Atomically replace the document on disk."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f".{self._path.name}.tmp")
        tmp_path.write_bytes(dump_rules(document))
        os.replace(tmp_path, self._path)

    def get_label_rules(self) -> List[LabelRule]:
        return list(self.load().label_rules)

    def get_assignee_rules(self) -> List[AssigneeRule]:
        return list(self.load().assignee_rules)

    def get_enabled_label_rules(self) -> List[LabelRule]:
        return [rule for rule in self.get_label_rules() if rule.enabled]

    def get_enabled_assignee_rules(self) -> List[AssigneeRule]:
        return [rule for rule in self.get_assignee_rules() if rule.enabled]

    def upsert_label_rule(self, rule: RulePayload, *, now: Optional[datetime] = None) -> LabelRule:
        """Validate and persist a label rule, replacing any rule with the same id.

        Raises:
          RuleConfigError: ``missing_match``, ``empty_labels``,
            ``invalid_assignee_email``, or ``invalid_rule``.
        """

        payload = _as_payload(rule)
        payload.setdefault("id", f"lr-{secrets.token_hex(4)}")
        validated = self._validate(LabelRule, payload)
        document = self.load()
        rules = list(document.label_rules)
        stored = self._stamp(validated, rules, now)
        document.label_rules = self._replace(rules, stored)
        self._check_unique(document, stored.id, "label")
        self.save(document)
        return stored

    def upsert_assignee_rule(self, rule: RulePayload, *, now: Optional[datetime] = None) -> AssigneeRule:
        """Validate and persist an assignee rule.

        A domain rule on a broad domain is only accepted when
        ``safety.dangerous_domain_confirm`` is set.

        Raises:
          RuleConfigError: ``missing_match``, ``invalid_assignee_email``,
            ``broad_domain_unconfirmed``, or ``invalid_rule``.
        """

        payload = _as_payload(rule)
        payload.setdefault("id", f"ar-{secrets.token_hex(4)}")
        validated = self._validate(AssigneeRule, payload)
        broad = broad_match_domain(validated.match)
        if broad and not validated.safety.dangerous_domain_confirm:
            raise RuleConfigError(
                "broad_domain_unconfirmed",
                f"{broad} is a broad domain; set safety.dangerous_domain_confirm to save this rule",
            )
        document = self.load()
        rules = list(document.assignee_rules)
        stored = self._stamp(validated, rules, now)
        document.assignee_rules = self._replace(rules, stored)
        self._check_unique(document, stored.id, "assignee")
        self.save(document)
        return stored

    def delete_rule(self, rule_id: str) -> bool:
        """Remove the rule with ``rule_id`` from either family.

        Returns:
          ``True`` when a rule was removed.
        """

        document = self.load()
        label_rules = [rule for rule in document.label_rules if rule.id != rule_id]
        assignee_rules = [rule for rule in document.assignee_rules if rule.id != rule_id]
        removed = len(label_rules) != len(document.label_rules) or len(assignee_rules) != len(
            document.assignee_rules
        )
        if removed:
            document.label_rules = label_rules
            document.assignee_rules = assignee_rules
            self.save(document)
        return removed

    def _validate(self, model: type, payload: dict[str, Any]) -> Any:
        try:
            return model.model_validate(payload, context={"org_domain": self._org_domain})
        except _PydanticValidationError as exc:
            raise rule_config_error(exc) from exc

    @staticmethod
    def _stamp(rule: Any, existing: list, now: Optional[datetime]) -> Any:
        timestamp = now or _utcnow()
        previous = next((item for item in existing if item.id == rule.id), None)
        created_at = previous.created_at if previous and previous.created_at else rule.created_at
        return rule.model_copy(update={"created_at": created_at or timestamp, "updated_at": timestamp})

    @staticmethod
    def _replace(rules: list, stored: Any) -> list:
        for index, item in enumerate(rules):
            if item.id == stored.id:
                rules[index] = stored
                return rules
        rules.append(stored)
        return rules

    @staticmethod
    def _check_unique(document: RulesDocument, rule_id: str, family: str) -> None:
        others = document.assignee_rules if family == "label" else document.label_rules
        if any(rule.id == rule_id for rule in others):
            raise RuleConfigError("duplicate_rule_id", f"rule id {rule_id} is used by another rule family")


__all__ = ["RuleStore", "YamlRuleStore"]
