"""Unit tests for the multi-rule runner."""

from __future__ import annotations

import pytest
from fakes import FakeMailBackend, FakeMessage, MemoryAuditLog, StaticRuleStore, label_rule

from mailroute.config.schema import BatchSettings, RunnerSettings
from mailroute.core.apply import RuleApplicationService
from mailroute.core.requests import RunAllRequest, parse_request
from mailroute.core.runner import MultiRuleRunner, build_search_query

ACTOR = "taro@example.jp"


def _mailbox() -> FakeMailBackend:
    return FakeMailBackend(
        [
            FakeMessage("b1", "one@billing.vendor.example"),
            FakeMessage("b2", "two@billing.vendor.example"),
            FakeMessage("b3", "three@billing.vendor.example"),
            FakeMessage("a1", "alerts@monitor.example"),
            FakeMessage("a2", "alerts@monitor.example"),
        ]
    )


def _rules() -> StaticRuleStore:
    return StaticRuleStore(
        [
            label_rule("lr-billing", ["Billing"], from_domain="billing.vendor.example"),
            label_rule("lr-alerts", ["Alerts"], from_email="alerts@monitor.example"),
        ]
    )


def _runner(backend, rules, **settings) -> MultiRuleRunner:
    service = RuleApplicationService(backend, rules, settings=BatchSettings(item_timeout_s=0.5))
    return MultiRuleRunner(service, rules, settings=RunnerSettings(**settings))


def test_build_search_query_uses_discriminant():
    assert build_search_query(label_rule("r", ["A"], from_domain="@Vendor.example")) == "from:vendor.example"
    rule = label_rule("r", ["A"], from_email="ops@vendor.example", from_domain="vendor.example")
    assert build_search_query(rule) == "from:ops@vendor.example"


@pytest.mark.asyncio
async def test_budgets_and_truncation():
    backend = _mailbox()
    runner = _runner(backend, _rules(), max_total=3, max_per_rule=2)

    result = await runner.run(RunAllRequest(dry_run=True), ACTOR)

    assert result.mode == "dry_run"
    assert result.truncated is True
    billing, alerts = result.per_rule
    assert (billing.rule_id, billing.candidates, billing.applied, billing.truncated) == ("lr-billing", 2, 2, True)
    assert (alerts.rule_id, alerts.candidates, alerts.applied) == ("lr-alerts", 1, 1)
    assert backend.list_calls == [
        ("from:billing.vendor.example", 2, False),
        ("from:alerts@monitor.example", 1, False),
    ]
    assert backend.label_changes == []
    assert result.totals["applied"] == 3


@pytest.mark.asyncio
async def test_sweep_stops_when_budget_is_spent():
    backend = _mailbox()
    rules = _rules()
    rules.label_rules.append(label_rule("lr-never", ["Never"], from_domain="never.example"))
    runner = _runner(backend, rules, max_total=3, max_per_rule=3)

    result = await runner.run(RunAllRequest(dry_run=True), ACTOR)

    assert [item.rule_id for item in result.per_rule] == ["lr-billing"]
    assert result.truncated is True


@pytest.mark.asyncio
async def test_apply_mode_mutates_and_request_lowers_settings():
    backend = _mailbox()
    runner = _runner(backend, _rules())

    result = await runner.run(RunAllRequest(dry_run=False, max_total=10, max_per_rule=5), ACTOR)

    assert result.mode == "apply"
    assert result.max_total == 10
    assert result.truncated is False
    assert result.totals["applied"] == 5
    assert backend.messages["a2"].labels == ["Alerts"]


@pytest.mark.asyncio
async def test_request_budgets_never_exceed_settings():
    backend = _mailbox()
    runner = _runner(backend, _rules(), max_total=3, max_per_rule=2)

    request = parse_request(RunAllRequest, {"max_total": 10_000_000, "max_per_rule": 10_000_000})
    result = await runner.run(request, ACTOR)

    assert (result.max_total, result.max_per_rule) == (3, 2)
    assert result.totals["candidates"] == 3
    assert backend.list_calls == [
        ("from:billing.vendor.example", 2, False),
        ("from:alerts@monitor.example", 1, False),
    ]


@pytest.mark.asyncio
async def test_sweep_summary_is_logged_on_request():
    backend = _mailbox()
    audit = MemoryAuditLog()
    rules = _rules()
    service = RuleApplicationService(backend, rules, audit=audit, settings=BatchSettings(item_timeout_s=0.5))
    runner = MultiRuleRunner(service, rules)

    await runner.run(RunAllRequest(dry_run=True), ACTOR)
    assert audit.recorded == []

    result = await runner.run(RunAllRequest(dry_run=True, log=True), ACTOR)

    assert audit.actions() == ["rule_run_all_preview"]
    metadata = audit.recorded[0].metadata
    assert metadata["run_id"] == result.run_id
    assert metadata["rule_ids"] == ["lr-billing", "lr-alerts"]
    assert metadata["applied"] == 5
    assert metadata["source"] == "rule"


@pytest.mark.asyncio
async def test_disabled_rules_are_not_run():
    backend = _mailbox()
    rules = _rules()
    rules.label_rules[0] = rules.label_rules[0].model_copy(update={"enabled": False})
    runner = _runner(backend, rules)

    result = await runner.run(RunAllRequest(dry_run=True), ACTOR)

    assert [item.rule_id for item in result.per_rule] == ["lr-alerts"]


@pytest.mark.asyncio
async def test_listing_failure_is_recorded_per_rule():
    backend = _mailbox()
    backend.fail_listing = True
    runner = _runner(backend, _rules())

    result = await runner.run(RunAllRequest(dry_run=True), ACTOR)

    assert len(result.per_rule) == 2
    assert all(item.error == "listing unavailable" for item in result.per_rule)
    assert result.truncated is False
    assert result.to_dict()["per_rule"][0]["error"] == "listing unavailable"


@pytest.mark.asyncio
async def test_failed_ids_are_capped():
    backend = FakeMailBackend([FakeMessage(f"m{index:02d}", "x@billing.vendor.example") for index in range(12)])
    backend.fail["apply"].update(backend.order)
    runner = _runner(backend, _rules(), max_total=50, max_per_rule=20)

    result = await runner.run(RunAllRequest(dry_run=False), ACTOR)

    billing = result.per_rule[0]
    assert billing.failed == 12
    assert len(billing.failed_ids) == 10
    assert billing.truncated is False
    assert result.to_dict()["run_id"] == result.run_id
