"""mailroute command-line interface wiring for operational flows.

What:
  Provide a Typer-based entry point for previewing and applying label and
  assignee rules, sweeping every rule on a schedule, and running the
  read-only analytics (inspection, explain, suggestions, statistics).

Why:
  Operators drive the rule engine from cron jobs and ad-hoc shells. Wiring
  every command through the same runtime loader, rule store, and application
  service keeps their behaviour identical to the library API.

How:
  Each command loads the runtime configuration, assembles the collaborators
  through :func:`mailroute._wiring.build_context`, validates its options into
  a typed request, runs the coroutine, and prints one JSON document on
  stdout. Mailbox mutations are persisted only after a non-dry-run command.
  ``watch`` wraps ``run-all`` inside a loop with capped exponential backoff.

Interfaces:
  ``app`` (Typer application), ``main``.

Invariants & Safety:
  - Exit codes: ``0`` success, ``1`` configuration or backend failure,
    ``2`` request-level error (unknown rule, disabled rule, invalid options).
  - Preview commands never mutate the mailbox snapshot.
  - Diagnostics go to stderr; stdout carries JSON only.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import typer

from ._wiring import EngineContext, build_context, exponential_backoff, resolve_interval, run_sync
from .config.loader import ConfigLoadError, load_runtime_config
from .config.schema import RuntimeConfig
from .core.apply import ApplyResponse
from .core.inspector import inspect_rules
from .core.matcher import explain_rules
from .core.requests import (
    ApplyRequest,
    AssigneeApplyRequest,
    ExplainRequest,
    InspectRequest,
    RunAllRequest,
    SuggestionsRequest,
    parse_request,
    resolve_rule_id,
)
from .core.runner import MultiRuleRunner
from .core.stats import compute_rule_stats
from .core.suggestions import generate_rule_suggestions
from .errors import MailrouteError, RequestError, RuleConfigError
from .utils.logging import get_logger


app = typer.Typer(help="mailroute shared-inbox routing rules")

LOGGER = logging.getLogger("mailroute.cli")


def _emit(payload: Dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _load_runtime(ctx: typer.Context) -> RuntimeConfig:
    config_path = (ctx.obj or {}).get("config_path")
    try:
        return load_runtime_config(config_path)
    except ConfigLoadError as exc:
        LOGGER.error("runtime_load_failed: %s", exc)
        _emit({"error": "config_error", "detail": str(exc)})
        raise typer.Exit(code=1) from exc


def _actor(runtime: RuntimeConfig, actor: Optional[str]) -> str:
    if actor:
        return actor.strip().lower()
    return f"mailroute@{runtime.organization.email_domain}"


def _execute(ctx: typer.Context, action: Callable[[EngineContext], Dict[str, Any]]) -> None:
    """Run ``action`` against a fresh engine context and map errors to exit codes."""

    runtime = _load_runtime(ctx)
    try:
        engine = build_context(runtime)
        payload = action(engine)
    except RequestError as exc:
        LOGGER.warning("request_rejected code=%s detail=%s", exc.code, exc.detail)
        _emit(exc.as_dict())
        raise typer.Exit(code=2) from exc
    except RuleConfigError as exc:
        LOGGER.error("rules_invalid code=%s detail=%s", exc.code, exc.detail)
        _emit({"error": exc.code, "detail": exc.detail})
        raise typer.Exit(code=1) from exc
    except MailrouteError as exc:
        LOGGER.error("command_failed: %s", exc)
        _emit({"error": "backend_error", "detail": str(exc)})
        raise typer.Exit(code=1) from exc
    _emit(payload)


@app.callback()
def _root(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        envvar="MAILROUTE_CONFIG_PATH",
        help="Path to config.yaml",
    ),
) -> None:
    """Shared options for every command."""

    ctx.obj = {"config_path": config}


def _label_run(
    ctx: typer.Context,
    *,
    dry_run: bool,
    rule_id: Optional[str],
    message_ids: Optional[List[str]],
    max_messages: Optional[int],
    actor: Optional[str],
    log: bool,
) -> None:
    def action(engine: EngineContext) -> Dict[str, Any]:
        request = parse_request(
            ApplyRequest,
            {
                "rule_id": resolve_rule_id(rule_id, None, engine.runtime.defaults.rule_id),
                "message_ids": message_ids or None,
                "max": max_messages,
                "dry_run": dry_run,
                "log": log,
            },
        )
        response: ApplyResponse = run_sync(
            engine.service.apply_label_rules(request, _actor(engine.runtime, actor))
        )
        if not dry_run:
            engine.persist()
        return response.to_dict()

    _execute(ctx, action)


@app.command("preview")
def preview(
    ctx: typer.Context,
    rule_id: Optional[str] = typer.Option(None, "--rule-id", help="Restrict to one label rule"),
    message_id: Optional[List[str]] = typer.Option(None, "--message-id", help="Explicit message id (repeatable)"),
    max_messages: Optional[int] = typer.Option(None, "--max", help="Maximum messages to evaluate"),
    actor: Optional[str] = typer.Option(None, "--actor", envvar="MAILROUTE_ACTOR", help="Acting member email"),
    log: bool = typer.Option(False, "--log", help="Record a preview summary in the audit log"),
) -> None:
    """Show what the label rules would do without touching the mailbox."""

    _label_run(
        ctx,
        dry_run=True,
        rule_id=rule_id,
        message_ids=message_id,
        max_messages=max_messages,
        actor=actor,
        log=log,
    )


@app.command("apply")
def apply(
    ctx: typer.Context,
    rule_id: Optional[str] = typer.Option(None, "--rule-id", help="Restrict to one label rule"),
    message_id: Optional[List[str]] = typer.Option(None, "--message-id", help="Explicit message id (repeatable)"),
    max_messages: Optional[int] = typer.Option(None, "--max", help="Maximum messages to process"),
    actor: Optional[str] = typer.Option(None, "--actor", envvar="MAILROUTE_ACTOR", help="Acting member email"),
) -> None:
    """Apply label rules (and their assignment directives) to messages."""

    _label_run(
        ctx,
        dry_run=False,
        rule_id=rule_id,
        message_ids=message_id,
        max_messages=max_messages,
        actor=actor,
        log=True,
    )


def _assignee_run(ctx: typer.Context, *, dry_run: bool, max_messages: Optional[int], actor: Optional[str], log: bool) -> None:
    def action(engine: EngineContext) -> Dict[str, Any]:
        request = parse_request(
            AssigneeApplyRequest,
            {"max": max_messages, "dry_run": dry_run, "log": log},
        )
        response = run_sync(engine.service.apply_assignee_rules(request, _actor(engine.runtime, actor)))
        if not dry_run:
            engine.persist()
        return response.to_dict()

    _execute(ctx, action)


@app.command("assign-preview")
def assign_preview(
    ctx: typer.Context,
    max_messages: Optional[int] = typer.Option(None, "--max", help="Maximum unassigned messages to evaluate"),
    actor: Optional[str] = typer.Option(None, "--actor", envvar="MAILROUTE_ACTOR", help="Acting member email"),
    log: bool = typer.Option(False, "--log", help="Record a preview summary in the audit log"),
) -> None:
    """Show which unassigned messages the assignee rules would claim."""

    _assignee_run(ctx, dry_run=True, max_messages=max_messages, actor=actor, log=log)


@app.command("assign-apply")
def assign_apply(
    ctx: typer.Context,
    max_messages: Optional[int] = typer.Option(None, "--max", help="Maximum unassigned messages to process"),
    actor: Optional[str] = typer.Option(None, "--actor", envvar="MAILROUTE_ACTOR", help="Acting member email"),
) -> None:
    """Assign unassigned messages according to the assignee rules."""

    _assignee_run(ctx, dry_run=False, max_messages=max_messages, actor=actor, log=True)


def _sweep(engine: EngineContext, request: RunAllRequest, actor: str) -> Dict[str, Any]:
    runner = MultiRuleRunner(
        engine.service,
        engine.rules,
        settings=engine.runtime.runner,
        logger=get_logger("mailroute.runner"),
    )
    result = run_sync(runner.run(request, actor))
    if not request.dry_run:
        engine.persist()
    return result.to_dict()


@app.command("run-all")
def run_all(
    ctx: typer.Context,
    dry_run: bool = typer.Option(True, "--dry-run/--apply", help="Preview only (default) or mutate"),
    max_total: Optional[int] = typer.Option(None, "--max-total", help="Global message budget"),
    max_per_rule: Optional[int] = typer.Option(None, "--max-per-rule", help="Per-rule message budget"),
    actor: Optional[str] = typer.Option(None, "--actor", envvar="MAILROUTE_ACTOR", help="Acting member email"),
    log: bool = typer.Option(False, "--log", help="Record a sweep summary in the audit log (always on with --apply)"),
) -> None:
    """Sweep every enabled label rule under global and per-rule budgets."""

    def action(engine: EngineContext) -> Dict[str, Any]:
        request = parse_request(
            RunAllRequest,
            {"dry_run": dry_run, "max_total": max_total, "max_per_rule": max_per_rule, "log": log or not dry_run},
        )
        return _sweep(engine, request, _actor(engine.runtime, actor))

    _execute(ctx, action)


@app.command("watch")
def watch(
    ctx: typer.Context,
    interval: Optional[int] = typer.Option(None, help="Override polling interval in seconds"),
    dry_run: bool = typer.Option(False, "--dry-run/--apply", help="Preview only or mutate (default)"),
    max_cycles: int = typer.Option(0, "--max-cycles", help="Stop after this many cycles (0 runs forever)"),
    actor: Optional[str] = typer.Option(None, "--actor", envvar="MAILROUTE_ACTOR", help="Acting member email"),
) -> None:
    """Run ``run-all`` repeatedly, backing off exponentially after failures."""

    runtime = _load_runtime(ctx)
    base_interval = resolve_interval(runtime=runtime, override=interval)
    failures = 0
    cycles = 0

    try:
        while True:
            cycles += 1
            try:
                engine = build_context(runtime)
                request = RunAllRequest(dry_run=dry_run, log=not dry_run)
                payload = _sweep(engine, request, _actor(runtime, actor))
            except Exception as exc:
                failures += 1
                delay = exponential_backoff(failures=failures - 1)
                LOGGER.error("watch_cycle_failed cycle=%s backoff=%s error=%s", cycles, delay, exc)
                if max_cycles and cycles >= max_cycles:
                    raise typer.Exit(code=1) from exc
                time.sleep(delay)
                continue

            failures = 0
            _emit(payload)
            LOGGER.info(
                "watch_cycle_completed run_id=%s applied=%s truncated=%s",
                payload["run_id"],
                payload["totals"]["applied"],
                payload["truncated"],
            )
            if max_cycles and cycles >= max_cycles:
                return
            time.sleep(base_interval)
    except KeyboardInterrupt:
        LOGGER.info("watch_stopped")
        raise typer.Exit(code=0) from None


@app.command("inspect")
def inspect(
    ctx: typer.Context,
    sample_size: Optional[int] = typer.Option(None, "--sample-size", help="Messages sampled for activity checks"),
) -> None:
    """Report conflicting, dangerous, and inactive rules."""

    def action(engine: EngineContext) -> Dict[str, Any]:
        request = parse_request(InspectRequest, {"sample_size": sample_size})
        settings = engine.runtime.inspector
        if request.sample_size is not None:
            settings = settings.model_copy(update={"sample_size": request.sample_size})
        report = run_sync(
            inspect_rules(
                engine.rules.get_label_rules(),
                engine.rules.get_assignee_rules(),
                engine.backend,
                settings,
                logger=get_logger("mailroute.inspector"),
                timeout_s=engine.runtime.batch.item_timeout_s,
            )
        )
        return report.to_dict()

    _execute(ctx, action)


@app.command("explain")
def explain(ctx: typer.Context, message_id: str = typer.Argument(..., help="Message to explain")) -> None:
    """Explain how every rule treats one message."""

    def action(engine: EngineContext) -> Dict[str, Any]:
        request = parse_request(ExplainRequest, {"message_id": message_id})
        meta = run_sync(engine.backend.get_routing_metadata(request.message_id))
        return explain_rules(
            request.message_id,
            meta.sender_email,
            engine.rules.get_label_rules(),
            engine.rules.get_assignee_rules(),
        )

    _execute(ctx, action)


@app.command("suggest")
def suggest(
    ctx: typer.Context,
    window_days: Optional[int] = typer.Option(None, "--window-days", help="Trailing audit window"),
    min_actions: Optional[int] = typer.Option(None, "--min-actions", help="Minimum manual actions per sender"),
    min_actors: Optional[int] = typer.Option(None, "--min-actors", help="Minimum distinct members per sender"),
) -> None:
    """Propose rules for senders the team keeps routing by hand."""

    def action(engine: EngineContext) -> Dict[str, Any]:
        request = parse_request(
            SuggestionsRequest,
            {"window_days": window_days, "min_actions": min_actions, "min_actors": min_actors},
        )
        overrides = request.model_dump(exclude_none=True)
        settings = engine.runtime.suggestions.model_copy(update=overrides)
        result = run_sync(
            generate_rule_suggestions(
                engine.audit,
                engine.backend,
                engine.rules.get_label_rules(),
                engine.rules.get_assignee_rules(),
                settings,
                logger=get_logger("mailroute.suggestions"),
                timeout_s=engine.runtime.batch.item_timeout_s,
            )
        )
        return result.to_dict()

    _execute(ctx, action)


@app.command("stats")
def stats(ctx: typer.Context) -> None:
    """Summarise recent rule activity from the audit log."""

    def action(engine: EngineContext) -> Dict[str, Any]:
        entries = run_sync(engine.audit.entries())
        rows = compute_rule_stats(
            entries,
            engine.rules.get_label_rules(),
            engine.rules.get_assignee_rules(),
        )
        return {"rules": [row.to_dict() for row in rows]}

    _execute(ctx, action)


def main() -> None:
    """Execute the Typer application entry point."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
