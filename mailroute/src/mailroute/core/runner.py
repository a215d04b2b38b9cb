"""Run every enabled label rule in one budgeted sweep.

What:
  Iterate the enabled label rules, let the backend pre-filter candidates with
  a narrow ``from:`` query per rule, and run the shared per-message apply
  logic restricted to that rule, under a global item budget and a per-rule
  sub-budget.

Why:
  "Apply all rules" runs on a schedule. Without query narrowing and budgets a
  single pass could scan the whole mailbox and exhaust the backend quota.

How:
  For each rule, fetch ``min(max_per_rule, remaining)`` candidates, process
  them through :meth:`RuleApplicationService.run_label_batch`, and subtract
  the candidates fetched from the global budget. The sweep stops and marks
  the result ``truncated`` as soon as the budget is spent, even with rules
  left to run. A rule that filled its own budget is marked ``truncated`` too.
  Request budgets are clamped to the configured ones.

Interfaces:
  :func:`build_search_query`, :class:`MultiRuleRunner`, :class:`RunResult`,
  :class:`RuleRunResult`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..audit.log import AuditEntry
from ..config.schema import AssigneeRule, LabelRule, RunnerSettings
from ..config.store import RuleStore
from ..utils.ids import new_run_id
from ..utils.logging import JsonLogger, get_logger
from .apply import LabelRunContext, RuleApplicationService
from .requests import RunAllRequest


MAX_FAILED_IDS = 10


def build_search_query(rule: Union[LabelRule, AssigneeRule]) -> str:
    """Return the backend search expression narrowing candidates for ``rule``."""

    _, value = rule.match.discriminant
    if not value:
        return ""
    return f"from:{value}"


@dataclass
class RuleRunResult:
    """Counters for one rule of a sweep."""

    rule_id: str
    query: str
    candidates: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)
    truncated: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "rule_id": self.rule_id,
            "query": self.query,
            "candidates": self.candidates,
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "failed_ids": list(self.failed_ids),
            "truncated": self.truncated,
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class RunResult:
    """Outcome of a full sweep."""

    run_id: str
    mode: str
    max_total: int
    max_per_rule: int
    truncated: bool = False
    per_rule: List[RuleRunResult] = field(default_factory=list)

    @property
    def totals(self) -> Dict[str, int]:
        return {
            "rules": len(self.per_rule),
            "candidates": sum(item.candidates for item in self.per_rule),
            "applied": sum(item.applied for item in self.per_rule),
            "skipped": sum(item.skipped for item in self.per_rule),
            "failed": sum(item.failed for item in self.per_rule),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "max_total": self.max_total,
            "max_per_rule": self.max_per_rule,
            "truncated": self.truncated,
            "totals": self.totals,
            "per_rule": [item.to_dict() for item in self.per_rule],
        }


class MultiRuleRunner:
    """Sweep all enabled label rules under global and per-rule budgets."""

    def __init__(
        self,
        service: RuleApplicationService,
        rules: RuleStore,
        settings: Optional[RunnerSettings] = None,
        logger: Optional[JsonLogger] = None,
    ):
        self._service = service
        self._rules = rules
        self._settings = settings or RunnerSettings()
        self._logger = logger or get_logger("mailroute.runner")

    async def run(self, request: RunAllRequest, actor_email: str) -> RunResult:
        """Execute one sweep.

        Request budgets can only lower the configured ones. Candidate listing
        failures for a rule are recorded on that rule and the sweep moves on
        to the next rule.
        """

        max_total = min(request.max_total or self._settings.max_total, self._settings.max_total)
        max_per_rule = min(request.max_per_rule or self._settings.max_per_rule, self._settings.max_per_rule)
        result = RunResult(
            run_id=new_run_id(),
            mode="dry_run" if request.dry_run else "apply",
            max_total=max_total,
            max_per_rule=max_per_rule,
        )
        rules = self._rules.get_enabled_label_rules()
        remaining = max_total

        for index, rule in enumerate(rules):
            budget = min(max_per_rule, remaining)
            rule_result = await self._run_rule(rule, budget, request.dry_run, actor_email)
            remaining -= rule_result.candidates
            result.per_rule.append(rule_result)
            self._logger.info(
                "rule_run_completed",
                run_id=result.run_id,
                rule_id=rule.id,
                candidates=rule_result.candidates,
                applied=rule_result.applied,
                skipped=rule_result.skipped,
                failed=rule_result.failed,
            )
            if remaining <= 0:
                result.truncated = True
                self._logger.info(
                    "run_truncated",
                    run_id=result.run_id,
                    rules_skipped=len(rules) - index - 1,
                )
                break

        if request.log:
            await self._service.record(
                AuditEntry(
                    actor_email=actor_email,
                    action="rule_run_all_preview" if request.dry_run else "rule_run_all_apply",
                    metadata={
                        "source": "rule",
                        "run_id": result.run_id,
                        "rule_ids": [item.rule_id for item in result.per_rule],
                        "truncated": result.truncated,
                        **result.totals,
                    },
                )
            )
        return result

    async def _run_rule(self, rule: LabelRule, budget: int, dry_run: bool, actor_email: str) -> RuleRunResult:
        query = build_search_query(rule)
        rule_result = RuleRunResult(rule_id=rule.id, query=query)
        try:
            ids, _, more = await self._service.fetch_candidates(None, budget, query=query)
        except Exception as exc:
            self._logger.warning("rule_candidates_failed", rule_id=rule.id, error=str(exc))
            rule_result.error = str(exc)
            return rule_result
        ids = ids[:budget]
        rule_result.candidates = len(ids)
        rule_result.truncated = more or len(ids) >= budget
        if not ids:
            return rule_result

        context = LabelRunContext(
            actor_email=actor_email,
            dry_run=dry_run,
            label_ids=await self._service.resolve_label_ids([rule]),
            rule_id=rule.id,
        )
        outcomes = await self._service.run_label_batch(ids, [rule], context)
        for outcome in outcomes:
            if outcome.status == "applied":
                rule_result.applied += 1
            elif outcome.status == "skipped":
                rule_result.skipped += 1
            else:
                rule_result.failed += 1
                if len(rule_result.failed_ids) < MAX_FAILED_IDS:
                    rule_result.failed_ids.append(outcome.message_id)
        return rule_result


__all__ = ["build_search_query", "RuleRunResult", "RunResult", "MultiRuleRunner"]
