"""Unit tests for the JSON-lines audit log."""

from __future__ import annotations

import asyncio
import io
import json
import threading
from datetime import datetime, timedelta, timezone

import pytest
from fakes import FailingAuditLog, MemoryAuditLog

from mailroute.audit.log import AuditEntry, JsonlAuditLog, record_best_effort
from mailroute.utils.logging import JsonLogger

NOW = datetime(2024, 5, 20, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_round_trip_newest_first(tmp_path):
    log = JsonlAuditLog(tmp_path / "logs" / "audit.jsonl")
    await log.record(AuditEntry(ts=NOW - timedelta(hours=1), actor_email="a@example.jp", action="label", label="X"))
    await log.record(AuditEntry(ts=NOW, actor_email="b@example.jp", action="rule_apply", metadata={"matched": 2}))

    entries = await log.entries()

    assert [entry.action for entry in entries] == ["rule_apply", "label"]
    assert entries[0].metadata == {"matched": 2}
    assert [entry.action for entry in await log.entries(limit=1)] == ["rule_apply"]


@pytest.mark.asyncio
async def test_file_io_runs_off_the_event_loop(tmp_path, monkeypatch):
    log = JsonlAuditLog(tmp_path / "audit.jsonl")
    loop_thread = threading.get_ident()
    seen = []
    append = log._append

    def recording_append(line):
        seen.append(threading.get_ident())
        append(line)

    monkeypatch.setattr(log, "_append", recording_append)
    await asyncio.gather(
        *(log.record(AuditEntry(actor_email="a@example.jp", action="label", message_id=f"m{i}")) for i in range(5))
    )

    assert len(seen) == 5
    assert loop_thread not in seen
    assert sorted(entry.message_id for entry in await log.entries()) == ["m0", "m1", "m2", "m3", "m4"]


@pytest.mark.asyncio
async def test_malformed_lines_are_skipped(tmp_path):
    path = tmp_path / "audit.jsonl"
    good = {"ts": NOW.isoformat(), "actor_email": "a@example.jp", "action": "mute", "message_id": "m1"}
    path.write_text(
        "\n".join(["not json", json.dumps({"action": "missing actor"}), "", json.dumps(good)]) + "\n",
        encoding="utf-8",
    )

    entries = await JsonlAuditLog(path).entries()

    assert [(entry.action, entry.message_id) for entry in entries] == [("mute", "m1")]


@pytest.mark.asyncio
async def test_missing_file_reads_empty(tmp_path):
    assert await JsonlAuditLog(tmp_path / "absent.jsonl").entries() == []


def test_naive_timestamps_are_utc():
    entry = AuditEntry(ts=datetime(2024, 1, 1), actor_email="a@example.jp", action="label")
    assert entry.ts.tzinfo is timezone.utc
    assert entry.rule_id is None


@pytest.mark.asyncio
async def test_record_best_effort_swallows_failures():
    stream = io.StringIO()
    logger = JsonLogger(stream=stream, component="test")
    entry = AuditEntry(actor_email="a@example.jp", action="assign", message_id="m1")

    assert await record_best_effort(MemoryAuditLog(), entry, logger) is True
    assert await record_best_effort(None, entry, logger) is False
    assert await record_best_effort(FailingAuditLog(), entry, logger) is False
    assert await record_best_effort(FailingAuditLog(hang=True), entry, logger, timeout_s=0.01) is False

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert [line["msg"] for line in lines] == ["audit_write_failed", "audit_write_failed"]
    assert lines[0]["message_id"] == "m1"
    assert lines[1]["error"] == "timeout:audit:assign"
