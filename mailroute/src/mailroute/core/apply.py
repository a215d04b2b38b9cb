"""Apply label and assignee rules to batches of messages.

What:
  Orchestrate candidate selection, per-message routing metadata lookup,
  matching, the idempotency diff against current state, and, outside
  dry-run, the label and assignment mutations plus best-effort audit
  entries. Results are reported as ``applied``, ``skipped`` or ``failed``
  partitions of the processed ids.

Why:
  The backend is shared by many operators and is rate-limited, so batches
  must be bounded, re-runnable without double-applying, and tolerant of
  individual failures. Dry-run previews must be exactly what apply would do
  minus the mutations, which is why both modes share one code path.

How:
  Request-level checks (unknown or disabled rule, empty candidate list) raise
  :class:`~mailroute.errors.RequestError` before any per-message work. The
  per-message core (:meth:`RuleApplicationService.process_label_message`) is
  run through :func:`~mailroute.core.batch.map_with_concurrency`; every
  backend call is wrapped in :func:`~mailroute.core.batch.with_timeout` and
  any exception becomes a ``failed`` outcome for that message only.
  Assignments are always non-forced, so an owner who claimed a message first
  is never overwritten.

Interfaces:
  :class:`RuleApplicationService`, :class:`ItemOutcome`,
  :class:`ApplyResponse`, :class:`LabelRunContext`.

Invariants & Safety:
  - Dry-run never calls ``apply_label_change`` or ``set_assignment``.
  - Every processed id has exactly one outcome.
  - Audit failures are logged and never change an outcome.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..audit.log import AuditEntry, AuditLog, record_best_effort
from ..config.schema import AssigneeRule, AssignToSelf, BatchSettings, LabelRule
from ..config.store import RuleStore
from ..errors import ItemTimeoutError, MailBackendError, RequestError
from ..mail.backend import MailBackend, MessageSummary
from ..utils.logging import JsonLogger, get_logger
from .batch import NoopTestingHooks, TestingHooks, map_with_concurrency, with_timeout
from .matcher import AssignDirective, match_label_rules, order_assignee_rules, pick_assignee_rule
from .requests import ApplyRequest, AssigneeApplyRequest
from .safety import broad_domain_warning, broad_match_domain


# One deadline per suspension point: metadata, labels, assignment, audit.
_SUSPENSION_POINTS = 4
_DEFAULT_ASSIGNEE_PREVIEW = 200


@dataclass
class ItemOutcome:
    """Result of processing one message."""

    message_id: str
    status: str
    reason: Optional[str] = None
    error: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    assigned_to: Optional[str] = None
    rule_id: Optional[str] = None
    sender: Optional[str] = None
    subject: Optional[str] = None

    @classmethod
    def applied(cls, message_id: str, **kwargs: Any) -> "ItemOutcome":
        return cls(message_id=message_id, status="applied", **kwargs)

    @classmethod
    def skipped(cls, message_id: str, reason: str, **kwargs: Any) -> "ItemOutcome":
        return cls(message_id=message_id, status="skipped", reason=reason, **kwargs)

    @classmethod
    def failed(cls, message_id: str, error: str) -> "ItemOutcome":
        return cls(message_id=message_id, status="failed", error=error)


@dataclass
class LabelRunContext:
    """Per-request state shared by every message of a label batch."""

    actor_email: str
    dry_run: bool
    label_ids: Dict[str, Optional[str]] = field(default_factory=dict)
    rule_id: Optional[str] = None


@dataclass
class ApplyResponse:
    """Partitioned outcomes of a preview or apply request."""

    dry_run: bool
    outcomes: List[ItemOutcome]
    processed: int
    truncated: bool
    max: int
    rule_id: Optional[str] = None
    preview_samples: int = 10
    warnings: List[Dict[str, str]] = field(default_factory=list)

    def _with_status(self, status: str) -> List[ItemOutcome]:
        return [item for item in self.outcomes if item.status == status]

    @property
    def applied(self) -> List[str]:
        return [item.message_id for item in self._with_status("applied")]

    @property
    def skipped(self) -> List[str]:
        return [item.message_id for item in self._with_status("skipped")]

    @property
    def failed(self) -> List[Dict[str, str]]:
        return [{"id": item.message_id, "error": item.error or ""} for item in self._with_status("failed")]

    @property
    def assigned_count(self) -> int:
        return sum(1 for item in self._with_status("applied") if item.assigned_to)

    def preview(self) -> Optional[Dict[str, Any]]:
        if not self.dry_run:
            return None
        applied = self._with_status("applied")
        return {
            "matched_count": len(applied),
            "matched_ids": [item.message_id for item in applied],
            "samples": [
                {
                    "id": item.message_id,
                    "subject": item.subject,
                    "from": item.sender,
                    "labels": list(item.labels),
                    "assigned_to": item.assigned_to,
                    "rule_id": item.rule_id,
                }
                for item in applied[: self.preview_samples]
            ],
            "max": self.max,
            "truncated": self.truncated,
            "assigned_count": self.assigned_count,
            "warnings": list(self.warnings),
        }

    def summary(self) -> Dict[str, Any]:
        """Counters recorded in request-level audit entries."""

        return {
            "processed": self.processed,
            "matched": len(self.applied),
            "applied": len(self.applied),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "truncated": self.truncated,
            "max": self.max,
        }

    def to_dict(self) -> Dict[str, Any]:
        applied_details = []
        for item in self._with_status("applied"):
            detail: Dict[str, Any] = {"id": item.message_id, "labels": list(item.labels), "assigned_to": item.assigned_to}
            if item.rule_id:
                detail["rule_id"] = item.rule_id
            applied_details.append(detail)
        return {
            "dry_run": self.dry_run,
            "rule_id": self.rule_id,
            "applied": self.applied,
            "applied_details": applied_details,
            "skipped": self.skipped,
            "skipped_details": [
                {"id": item.message_id, "reason": item.reason} for item in self._with_status("skipped")
            ],
            "failed": self.failed,
            "processed": self.processed,
            "truncated": self.truncated,
            "assigned_count": self.assigned_count,
            "preview": self.preview(),
        }


class RuleApplicationService:
    """Run label and assignee rules against the mail backend.

    Args:
      backend: Mail backend the batches read from and mutate.
      rules: Rule store; read once per request, never cached.
      audit: Optional audit sink for per-message and summary entries.
      settings: Batch limits; defaults match :class:`BatchSettings`.
      hooks: Test injection points, :class:`NoopTestingHooks` by default.
      logger: Structured logger.
      too_many_matches: Preview match count above which assignee previews
        carry a ``too_many`` warning.
    """

    def __init__(
        self,
        backend: MailBackend,
        rules: RuleStore,
        audit: Optional[AuditLog] = None,
        settings: Optional[BatchSettings] = None,
        hooks: Optional[TestingHooks] = None,
        logger: Optional[JsonLogger] = None,
        *,
        too_many_matches: int = 200,
    ):
        self._backend = backend
        self._rules = rules
        self._audit = audit
        self._settings = settings or BatchSettings()
        self._hooks = hooks or NoopTestingHooks()
        self._logger = logger or get_logger("mailroute.apply")
        self._too_many_matches = too_many_matches

    @property
    def settings(self) -> BatchSettings:
        return self._settings

    @property
    def backend(self) -> MailBackend:
        return self._backend

    async def _call(self, awaitable: Any, label: str) -> Any:
        return await with_timeout(awaitable, self._settings.item_timeout_s, label)

    def _failure(self, message_id: str, exc: BaseException) -> ItemOutcome:
        event = "item_timeout" if isinstance(exc, ItemTimeoutError) else "item_failed"
        self._logger.warning(event, message_id=message_id, error=str(exc))
        return ItemOutcome.failed(message_id, str(exc) or type(exc).__name__)

    async def record(self, entry: AuditEntry) -> None:
        """Write ``entry`` to the audit sink without ever failing the caller."""

        if self._audit is None:
            return
        await record_best_effort(
            self._audit,
            entry,
            self._logger,
            timeout_s=self._settings.item_timeout_s,
        )

    async def fetch_candidates(
        self,
        message_ids: Optional[Sequence[str]],
        limit: int,
        *,
        query: str = "",
        unassigned_only: bool = False,
    ) -> Tuple[List[str], Dict[str, MessageSummary], bool]:
        """Return candidate ids, listing summaries, and whether more exist.

        Explicit ids are used as given; otherwise the latest ``limit``
        messages matching ``query`` are listed.
        """

        if message_ids is not None:
            return list(message_ids), {}, False
        page = await self._call(
            self._backend.list_candidate_messages(query=query, max_results=limit, unassigned_only=unassigned_only),
            f"list:{query or 'latest'}",
        )
        summaries = {message.id: message for message in page.messages}
        return page.ids, summaries, page.next_page_token is not None

    async def resolve_label_ids(self, rules: Sequence[LabelRule]) -> Dict[str, Optional[str]]:
        """Resolve every label referenced by enabled ``rules`` to its backend id.

        Labels that cannot be resolved map to ``None`` and are treated as
        absent from every message.
        """

        names: List[str] = []
        for rule in rules:
            if not rule.enabled:
                continue
            for name in rule.label_names:
                if name not in names:
                    names.append(name)

        async def resolve(name: str) -> Optional[str]:
            return await self._call(self._backend.resolve_label_id(name), f"label:{name}")

        def unresolved(name: str, exc: BaseException) -> Optional[str]:
            self._logger.warning("label_resolve_failed", label=name, error=str(exc))
            return None

        resolved = await map_with_concurrency(
            names,
            resolve,
            concurrency=self._settings.concurrency,
            on_error=unresolved,
        )
        return dict(zip(names, resolved))

    def _assignee_for(self, directive: Optional[AssignDirective], actor_email: str) -> Optional[str]:
        if directive is None:
            return None
        if isinstance(directive, AssignToSelf):
            return actor_email
        return directive.assignee_email

    async def process_label_message(
        self,
        message_id: str,
        rules: Sequence[LabelRule],
        context: LabelRunContext,
    ) -> ItemOutcome:
        """Evaluate and, outside dry-run, apply ``rules`` to one message.

        Raises:
          Exception: Backend errors and timeouts propagate so the batch can
            record them as ``failed``.
        """

        await self._hooks.before_item(message_id)
        meta = await self._call(self._backend.get_routing_metadata(message_id), f"metadata:{message_id}")
        sender = meta.sender_email
        if not sender:
            return ItemOutcome.skipped(message_id, "missing_from", subject=meta.subject)

        match = match_label_rules(sender, rules)
        target = self._assignee_for(match.assign_to, context.actor_email)
        if not match.labels and target is None:
            return ItemOutcome.skipped(message_id, "no_match", sender=sender, subject=meta.subject)

        present = set(meta.current_label_ids)
        to_add = [
            name
            for name in match.labels
            if context.label_ids.get(name) is None or context.label_ids[name] not in present
        ]
        needs_assignment = target is not None and meta.current_assignee is None
        if not to_add and not needs_assignment:
            return ItemOutcome.skipped(message_id, "already_labeled", sender=sender, subject=meta.subject)

        if context.dry_run:
            return ItemOutcome.applied(
                message_id,
                labels=to_add,
                assigned_to=target if needs_assignment else None,
                rule_id=context.rule_id,
                sender=sender,
                subject=meta.subject,
            )

        await self._hooks.before_mutation(message_id)
        if to_add:
            change = await self._call(
                self._backend.apply_label_change(message_id, add=to_add, remove=()),
                f"apply:{message_id}",
            )
            if change.failed:
                raise MailBackendError(change.failed[0].get("error") or "label_change_failed")

        assigned_to = None
        if needs_assignment and target is not None:
            assigned_to = await self._assign_non_destructive(message_id, target, context.rule_id)

        await self.record(
            AuditEntry(
                actor_email=context.actor_email,
                action="label",
                message_id=message_id,
                metadata={
                    "source": "rule",
                    "rule_id": context.rule_id,
                    "rule_ids": list(match.rule_ids),
                    "labels": to_add,
                    "assigned_to": assigned_to,
                },
            )
        )
        return ItemOutcome.applied(
            message_id,
            labels=to_add,
            assigned_to=assigned_to,
            rule_id=context.rule_id,
            sender=sender,
            subject=meta.subject,
        )

    async def _assign_non_destructive(self, message_id: str, target: str, rule_id: Optional[str]) -> Optional[str]:
        """Assign after labels succeeded; losing a race is a partial success."""

        try:
            result = await self._call(
                self._backend.set_assignment(message_id, target, force=False),
                f"assign:{message_id}",
            )
        except Exception as exc:
            self._logger.warning("assignment_failed", message_id=message_id, rule_id=rule_id, error=str(exc))
            return None
        if result.current_assignee_slug:
            self._logger.info(
                "assignment_skipped",
                message_id=message_id,
                rule_id=rule_id,
                current_assignee=result.current_assignee_slug,
            )
            return None
        return target

    async def run_label_batch(
        self,
        message_ids: Sequence[str],
        rules: Sequence[LabelRule],
        context: LabelRunContext,
    ) -> List[ItemOutcome]:
        """Process ``message_ids`` with bounded concurrency and item deadlines."""

        return await map_with_concurrency(
            list(message_ids),
            lambda message_id: self.process_label_message(message_id, rules, context),
            concurrency=self._settings.concurrency,
            timeout_s=self._settings.item_timeout_s * _SUSPENSION_POINTS,
            on_error=self._failure,
            label=lambda message_id: f"item:{message_id}",
        )

    def _label_filter(self, rules: Sequence[LabelRule], request: ApplyRequest) -> List[LabelRule]:
        if request.rule_id is None:
            return [rule for rule in rules if rule.enabled]
        selected = [rule for rule in rules if rule.id == request.rule_id]
        if not selected:
            raise RequestError("rule_not_found", request.rule_id, status=404)
        if not request.dry_run and not selected[0].enabled:
            raise RequestError("rule_disabled", request.rule_id)
        return selected

    async def apply_label_rules(self, request: ApplyRequest, actor_email: str) -> ApplyResponse:
        """Preview or apply label rules.

        Args:
          request: Filters and mode. ``max`` is clamped to
            ``settings.max_apply_messages``.
          actor_email: Operator on whose behalf changes are made; also the
            target of ``assign_to: self`` directives.

        Raises:
          RequestError: ``rule_not_found``, ``rule_disabled`` or
            ``missing_message_ids``.
        """

        rules = self._rules.get_label_rules()
        effective = self._label_filter(rules, request)
        cap = self._settings.max_apply_messages
        limit = min(request.max or cap, cap)

        source_ids, summaries, more = await self.fetch_candidates(request.message_ids, limit)
        if not source_ids:
            raise RequestError("missing_message_ids", "no candidate messages")
        target_ids = source_ids[:limit]
        truncated = len(source_ids) > limit or more

        context = LabelRunContext(
            actor_email=actor_email,
            dry_run=request.dry_run,
            label_ids=await self.resolve_label_ids(effective),
            rule_id=request.rule_id,
        )
        outcomes = await self.run_label_batch(target_ids, effective, context)
        _fill_from_summaries(outcomes, summaries)

        warnings = [
            broad_domain_warning(rule.match.from_domain or "")
            for rule in effective
            if rule.enabled and _broad(rule)
        ]
        response = ApplyResponse(
            dry_run=request.dry_run,
            outcomes=outcomes,
            processed=len(target_ids),
            truncated=truncated,
            max=limit,
            rule_id=request.rule_id,
            preview_samples=self._settings.preview_samples,
            warnings=warnings,
        )
        if request.log:
            await self.record(
                AuditEntry(
                    actor_email=actor_email,
                    action="rule_preview" if request.dry_run else "rule_apply",
                    metadata={"source": "rule", "rule_id": request.rule_id, **response.summary()},
                )
            )
        return response

    async def process_assignee_message(
        self,
        message_id: str,
        rules: Sequence[AssigneeRule],
        actor_email: str,
        dry_run: bool,
    ) -> ItemOutcome:
        """Pick and, outside dry-run, apply the winning assignee rule."""

        await self._hooks.before_item(message_id)
        meta = await self._call(self._backend.get_routing_metadata(message_id), f"metadata:{message_id}")
        sender = meta.sender_email
        if not sender:
            return ItemOutcome.skipped(message_id, "missing_from", subject=meta.subject)
        rule = pick_assignee_rule(sender, rules)
        if rule is None:
            return ItemOutcome.skipped(message_id, "no_match", sender=sender, subject=meta.subject)
        if not rule.when.unassigned_only:
            return ItemOutcome.skipped(
                message_id, "not_unassigned_only", rule_id=rule.id, sender=sender, subject=meta.subject
            )
        if meta.current_assignee:
            return ItemOutcome.skipped(
                message_id, "already_assigned", rule_id=rule.id, sender=sender, subject=meta.subject
            )
        if dry_run:
            return ItemOutcome.applied(
                message_id, assigned_to=rule.assignee_email, rule_id=rule.id, sender=sender, subject=meta.subject
            )

        await self._hooks.before_mutation(message_id)
        result = await self._call(
            self._backend.set_assignment(message_id, rule.assignee_email, force=False),
            f"assign:{message_id}",
        )
        if result.current_assignee_slug:
            self._logger.info(
                "assignment_skipped",
                message_id=message_id,
                rule_id=rule.id,
                current_assignee=result.current_assignee_slug,
            )
            return ItemOutcome.skipped(
                message_id, "already_assigned", rule_id=rule.id, sender=sender, subject=meta.subject
            )
        await self.record(
            AuditEntry(
                actor_email=actor_email,
                action="assign",
                message_id=message_id,
                metadata={"source": "rule", "rule_id": rule.id, "assignee_email": rule.assignee_email},
            )
        )
        return ItemOutcome.applied(
            message_id, assigned_to=rule.assignee_email, rule_id=rule.id, sender=sender, subject=meta.subject
        )

    async def apply_assignee_rules(self, request: AssigneeApplyRequest, actor_email: str) -> ApplyResponse:
        """Preview or apply assignee rules to the latest unassigned messages.

        Previews default to 200 messages and may go up to
        ``settings.max_preview_messages``; applies are capped at
        ``settings.max_apply_messages``.
        """

        rules = order_assignee_rules(self._rules.get_assignee_rules())
        if request.dry_run:
            cap = self._settings.max_preview_messages
            default = min(_DEFAULT_ASSIGNEE_PREVIEW, cap)
        else:
            cap = self._settings.max_apply_messages
            default = cap
        limit = min(request.max or default, cap)

        target_ids: List[str] = []
        summaries: Dict[str, MessageSummary] = {}
        truncated = False
        if rules:
            source_ids, summaries, more = await self.fetch_candidates(None, limit, unassigned_only=True)
            target_ids = source_ids[:limit]
            truncated = len(source_ids) > limit or more

        outcomes = await map_with_concurrency(
            target_ids,
            lambda message_id: self.process_assignee_message(message_id, rules, actor_email, request.dry_run),
            concurrency=self._settings.concurrency,
            timeout_s=self._settings.item_timeout_s * _SUSPENSION_POINTS,
            on_error=self._failure,
            label=lambda message_id: f"item:{message_id}",
        )
        _fill_from_summaries(outcomes, summaries)

        matched = sum(1 for item in outcomes if item.status == "applied")
        response = ApplyResponse(
            dry_run=request.dry_run,
            outcomes=outcomes,
            processed=len(target_ids),
            truncated=truncated,
            max=limit,
            preview_samples=self._settings.preview_samples,
            warnings=self._assignee_warnings(rules, matched),
        )
        if request.log:
            applied_rules = []
            for item in outcomes:
                if item.status == "applied" and item.rule_id and item.rule_id not in applied_rules:
                    applied_rules.append(item.rule_id)
            await self.record(
                AuditEntry(
                    actor_email=actor_email,
                    action="assignee_rule_preview" if request.dry_run else "assignee_rule_apply",
                    metadata={
                        "source": "rule",
                        "rule_id": applied_rules[0] if applied_rules else None,
                        "rule_ids": applied_rules,
                        **response.summary(),
                    },
                )
            )
        return response

    def _assignee_warnings(self, rules: Sequence[AssigneeRule], matched: int) -> List[Dict[str, str]]:
        warnings: List[Dict[str, str]] = []
        broad = [rule for rule in rules if _broad(rule)]
        if broad:
            warning = broad_domain_warning(broad[0].match.from_domain or "")
            warning["rule_ids"] = ",".join(rule.id for rule in broad)
            warnings.append(warning)
        if matched > self._too_many_matches:
            warnings.append(
                {
                    "type": "too_many",
                    "message": f"{matched} messages matched; narrow the rules before applying",
                }
            )
        return warnings


def _broad(rule: Any) -> bool:
    return broad_match_domain(rule.match) is not None


def _fill_from_summaries(outcomes: List[ItemOutcome], summaries: Dict[str, MessageSummary]) -> None:
    for item in outcomes:
        summary = summaries.get(item.message_id)
        if summary is None:
            continue
        if item.subject is None:
            item.subject = summary.subject
        if item.sender is None:
            item.sender = summary.sender


__all__ = ["ItemOutcome", "LabelRunContext", "ApplyResponse", "RuleApplicationService"]
