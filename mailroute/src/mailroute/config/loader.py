"""Strict loaders and serializers for mailroute configuration documents.

What:
  Provide helpers to locate, parse, validate, and serialise the runtime
  configuration (``config.yaml``) and the rules document (``rules.yaml``).

Why:
  Both documents are edited by hand outside the application. Centralising the
  parsing logic enforces consistent validation so that the rule engine can
  trust every model it receives, and so that configuration mistakes surface as
  typed errors instead of half-applied batches.

How:
  Resolve candidate file locations based on explicit parameters, the
  ``MAILROUTE_CONFIG_PATH`` environment variable, and defaults. Parse YAML with
  :func:`yaml.safe_load`, validate with the Pydantic models from
  :mod:`mailroute.config.schema`, and translate validation failures into
  :class:`RuntimeConfigError` or :class:`~mailroute.errors.RuleConfigError`.

Interfaces:
  - :func:`load_runtime_config` / :func:`get_runtime_config` /
    :func:`reset_runtime_config`: Manage ``config.yaml`` discovery and caching.
  - :func:`parse_rules`: Parse rules YAML into a :class:`RulesDocument`.
  - :func:`dump_rules`: Serialise a rules document back into YAML bytes.
  - :func:`rule_config_error`: Map Pydantic failures to rule error codes.

Invariants:
  - All external payloads pass strict Pydantic validation before they are
    returned to callers.
  - Only the runtime configuration is cached. Rules documents are parsed fresh
    on every call.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import yaml
from pydantic import ValidationError as _PydanticValidationError

from ..errors import RuleConfigError
from .schema import RulesDocument, RuntimeConfig


RULE_ERROR_CODES = frozenset(
    {
        "missing_match",
        "empty_labels",
        "invalid_assignee_email",
        "broad_domain_unconfirmed",
        "duplicate_rule_id",
        "invalid_rule",
    }
)


class ConfigLoadError(Exception):
    """Base error for configuration file parsing or validation failures.

    What:
      Represent fatal issues encountered while reading configuration files.

    Why:
      Grouping failures under a single type allows the CLI to handle operator
      mistakes separately from backend errors.
    """


class RuntimeConfigError(ConfigLoadError):
    """Error raised when ``config.yaml`` cannot be located, read, or validated."""


_CONFIG_ENV = "MAILROUTE_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("config.yaml"),
    Path("/etc/mailroute/config.yaml"),
)
_RUNTIME_CACHE: Optional[Tuple[Path, RuntimeConfig]] = None


def _candidate_paths(path: Optional[Path]) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    What:
      Produce the ordered list of paths inspected for ``config.yaml``.

    How:
      Accumulate deduplicated paths from the explicit argument, the
      ``MAILROUTE_CONFIG_PATH`` environment variable, and the defaults.

    Args:
      path: Explicit path requested by the caller, or ``None``.

    Yields:
      Candidate paths ordered from most specific to least specific.
    """

    seen: set[Path] = set()
    if path is not None:
        candidate = path.expanduser()
        seen.add(candidate)
        yield candidate
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        candidate = Path(env_path).expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate
    for default in _DEFAULT_LOCATIONS:
        candidate = default.expanduser()
        # NOTE: Deduplicate while preserving the user-visible precedence order.
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse_mapping(text: str, what: str, error_cls: type) -> dict[str, Any]:
    """Parse YAML ``text`` and require a top-level mapping."""

    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise error_cls(f"Invalid YAML in {what}: {exc}") from exc
    if not isinstance(payload, dict):
        raise error_cls(f"{what} must contain a mapping at the top-level")
    return payload


def _load_runtime_from_path(path: Path) -> RuntimeConfig:
    """Load and validate ``config.yaml`` from a specific path.

    Raises:
      RuntimeConfigError: If the file cannot be read or fails validation.
    """

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise RuntimeConfigError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise RuntimeConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    payload = _parse_mapping(text, str(path), RuntimeConfigError)
    try:
        config = RuntimeConfig.model_validate(payload)
    except _PydanticValidationError as exc:
        raise RuntimeConfigError(f"Invalid config.yaml: {exc}") from exc
    return _resolve_relative_paths(config, path.parent)


def _resolve_relative_paths(config: RuntimeConfig, base: Path) -> RuntimeConfig:
    """Anchor relative ``paths`` entries to the directory holding ``config.yaml``."""

    def anchor(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        candidate = Path(value).expanduser()
        if not candidate.is_absolute():
            candidate = base / candidate
        return str(candidate)

    paths = config.paths.model_copy(
        update={
            "rules": anchor(config.paths.rules),
            "audit_log": anchor(config.paths.audit_log),
            "mailbox": anchor(config.paths.mailbox),
        }
    )
    return config.model_copy(update={"paths": paths})


def load_runtime_config(
    path: Optional[Path | str] = None,
    *,
    reload: bool = False,
) -> RuntimeConfig:
    """Resolve, parse, and cache the runtime configuration.

    What:
      Locate ``config.yaml`` using the precedence chain, parse it, and return a
      validated :class:`RuntimeConfig` instance.

    Why:
      Every CLI command needs runtime settings; caching avoids repeated disk IO
      while ``reload`` enables deterministic refreshes during tests.

    How:
      Consult the module cache unless ``reload`` is requested or a different
      explicit path is given, then iterate through candidate paths until an
      existing file is found and store the result.

    Args:
      path: Optional explicit location of ``config.yaml``.
      reload: When ``True`` forces a fresh load bypassing the cache.

    Returns:
      The validated runtime configuration.

    Raises:
      RuntimeConfigError: If no configuration file can be located or validated.
    """

    global _RUNTIME_CACHE

    requested_path = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _RUNTIME_CACHE is not None:
        cached_path, cached_config = _RUNTIME_CACHE
        if requested_path is None or cached_path == requested_path:
            return cached_config

    searched: list[str] = []
    for candidate in _candidate_paths(requested_path):
        if not candidate.exists():
            searched.append(str(candidate))
            continue
        config = _load_runtime_from_path(candidate)
        _RUNTIME_CACHE = (candidate, config)
        return config

    listing = ", ".join(searched) if searched else "<none>"
    raise RuntimeConfigError(f"Unable to locate config.yaml (searched: {listing})")


def get_runtime_config() -> RuntimeConfig:
    """Return the cached runtime configuration, loading it on demand."""

    return load_runtime_config()


def reset_runtime_config() -> None:
    """Clear the runtime configuration cache."""

    global _RUNTIME_CACHE
    _RUNTIME_CACHE = None


def rule_config_error(exc: _PydanticValidationError) -> RuleConfigError:
    """Translate a Pydantic validation failure into a :class:`RuleConfigError`.

    What:
      Pick a stable error code for the first failing field and keep every
      message in ``detail``.

    How:
      Custom validators in :mod:`mailroute.config.schema` raise
      ``PydanticCustomError`` whose type is already a rule error code. Any
      other failure (wrong type, missing field, unknown key) maps to
      ``invalid_rule``.
    """

    errors = exc.errors()
    code = "invalid_rule"
    for error in errors:
        if error.get("type") in RULE_ERROR_CODES:
            code = str(error["type"])
            break
    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg", ""))
        messages.append(f"{location}: {message}" if location else message)
    return RuleConfigError(code, "; ".join(messages))


def parse_rules(yaml_text: str, org_domain: Optional[str] = None) -> RulesDocument:
    """Convert rules YAML into a validated :class:`RulesDocument`.

    What:
      Decode YAML text, ensure it produces a mapping, and validate it with the
      organisation domain as validation context.

    Why:
      Rules are authored by hand; assignee addresses outside the organisation
      or rules without a match condition must be rejected rather than
      silently ignored.

    Args:
      yaml_text: Raw ``rules.yaml`` contents.
      org_domain: Organisation email domain every assignee must belong to.

    Returns:
      A validated :class:`RulesDocument`. An empty document yields no rules.

    Raises:
      RuleConfigError: If parsing fails or the document violates the schema.
    """

    try:
        payload = yaml.safe_load(yaml_text) or {}
    except yaml.YAMLError as exc:
        raise RuleConfigError("invalid_rule", f"Invalid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuleConfigError("invalid_rule", "rules.yaml must contain a mapping at the top-level")
    try:
        return RulesDocument.model_validate(payload, context={"org_domain": org_domain})
    except _PydanticValidationError as exc:
        raise rule_config_error(exc) from exc


def dump_rules(model: RulesDocument) -> bytes:
    """Serialise a :class:`RulesDocument` into canonical YAML bytes.

    Unset optional fields are omitted so hand-edited documents stay short
    after a round trip through the rule store.
    """

    payload = model.model_dump(mode="json", exclude_none=True)
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True).encode("utf-8")


__all__ = [
    "ConfigLoadError",
    "RuntimeConfigError",
    "load_runtime_config",
    "get_runtime_config",
    "reset_runtime_config",
    "rule_config_error",
    "parse_rules",
    "dump_rules",
]
