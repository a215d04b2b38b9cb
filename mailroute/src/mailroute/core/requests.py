"""Typed requests accepted by the rule engine.

What:
  Declare the request records for preview/apply, assignee apply, run-all,
  inspection, suggestions, and explain, and convert loosely-typed payloads
  into them.

Why:
  Requests arrive from the CLI, from scheduled jobs, and from HTTP adapters
  outside this package. Validating them in one place turns malformed input
  into a single ``invalid_request`` error with field details before any batch
  work starts.

How:
  Pydantic models with ``extra="forbid"``; :func:`parse_request` wraps
  ``model_validate`` and maps failures to
  :class:`~mailroute.errors.RequestError`. :func:`resolve_rule_id` makes the
  rule-id fallback chain explicit.

Interfaces:
  :class:`ApplyRequest`, :class:`AssigneeApplyRequest`,
  :class:`RunAllRequest`, :class:`InspectRequest`,
  :class:`SuggestionsRequest`, :class:`ExplainRequest`,
  :func:`parse_request`, :func:`resolve_rule_id`.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import RequestError


RequestT = TypeVar("RequestT", bound=BaseModel)


def _clean_ids(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    cleaned: List[str] = []
    for item in value:
        text = str(item).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


class ApplyRequest(BaseModel):
    """Preview or apply label rules to explicit or latest messages.

    ``message_ids=None`` means "fetch the latest messages"; an explicit empty
    list is rejected later as ``missing_message_ids``.
    """

    model_config = ConfigDict(extra="forbid")

    rule_id: Optional[str] = None
    message_ids: Optional[List[str]] = None
    max: Optional[int] = Field(default=None, gt=0)
    dry_run: bool = True
    log: bool = False

    @field_validator("message_ids")
    @classmethod
    def _dedupe(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_ids(value)

    @field_validator("rule_id")
    @classmethod
    def _blank_rule(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class AssigneeApplyRequest(BaseModel):
    """Preview or apply assignee rules to the latest unassigned messages."""

    model_config = ConfigDict(extra="forbid")

    max: Optional[int] = Field(default=None, gt=0)
    dry_run: bool = True
    log: bool = False


class RunAllRequest(BaseModel):
    """Run every enabled label rule under global and per-rule budgets."""

    model_config = ConfigDict(extra="forbid")

    dry_run: bool = True
    max_total: Optional[int] = Field(default=None, gt=0)
    max_per_rule: Optional[int] = Field(default=None, gt=0)
    log: bool = False


class InspectRequest(BaseModel):
    """Inspect rules for conflicts, danger, and inactivity."""

    model_config = ConfigDict(extra="forbid")

    sample_size: Optional[int] = Field(default=None, gt=0)


class SuggestionsRequest(BaseModel):
    """Mine the audit log for rule suggestions."""

    model_config = ConfigDict(extra="forbid")

    window_days: Optional[int] = Field(default=None, gt=0)
    min_actions: Optional[int] = Field(default=None, gt=0)
    min_actors: Optional[int] = Field(default=None, gt=0)


class ExplainRequest(BaseModel):
    """Explain how every rule treats one message."""

    model_config = ConfigDict(extra="forbid")

    message_id: str = Field(min_length=1)


def parse_request(model: Type[RequestT], payload: Optional[Mapping[str, Any]]) -> RequestT:
    """Validate ``payload`` into ``model``.

    Raises:
      RequestError: ``invalid_request`` carrying one entry per failing field.
    """

    try:
        return model.model_validate(dict(payload or {}))
    except ValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ())),
                "message": error.get("msg", ""),
                "type": error.get("type", ""),
            }
            for error in exc.errors()
        ]
        raise RequestError("invalid_request", f"invalid {model.__name__}", errors=errors) from exc


def resolve_rule_id(
    explicit: Optional[str] = None,
    body: Optional[str] = None,
    configured: Optional[str] = None,
) -> Optional[str]:
    """Return the first non-blank rule id.

    Priority: the explicit argument (CLI option or URL segment), then the
    request body, then the operator-configured default.
    """

    for candidate in (explicit, body, configured):
        if candidate is not None and candidate.strip():
            return candidate.strip()
    return None


__all__ = [
    "ApplyRequest",
    "AssigneeApplyRequest",
    "RunAllRequest",
    "InspectRequest",
    "SuggestionsRequest",
    "ExplainRequest",
    "parse_request",
    "resolve_rule_id",
]
