"""Unit tests for the structured JSON logger."""

import io
import json

from mailroute.utils.logging import JsonLogger, get_logger


def test_log_lines_are_single_json_objects():
    stream = io.StringIO()
    logger = JsonLogger(stream=stream, component="engine")

    logger.info("batch_started", count=3)
    logger.child("runner").error("batch_failed", rule_id="lr-1")

    first, second = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert first["lvl"] == "INFO" and first["component"] == "engine" and first["count"] == 3
    assert second["lvl"] == "ERROR" and second["component"] == "runner"
    assert "ts" in first


def test_content_fields_are_redacted_recursively():
    stream = io.StringIO()
    logger = JsonLogger(stream=stream)

    logger.warning(
        "preview",
        subject="secret",
        samples=[{"id": "m1", "subject": "hidden"}],
        nested={"body": "text", "id": "m2"},
    )

    payload = json.loads(stream.getvalue())
    assert payload["lvl"] == "WARN"
    assert payload["subject"] == "[redacted]"
    assert payload["samples"] == [{"id": "m1", "subject": "[redacted]"}]
    assert payload["nested"] == {"body": "[redacted]", "id": "m2"}


def test_get_logger_sets_component():
    assert get_logger("mailroute.cli").component == "mailroute.cli"
