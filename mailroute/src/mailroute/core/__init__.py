"""Aggregated exports for mailroute's rule-processing core.

What:
  Provide a light-weight package facade exposing the matcher, the batch
  services, and the read-only analytics while deferring imports until they
  are needed.

Why:
  The configuration and audit packages import the normalisers and the batch
  helpers from this package. Eager imports here would pull the application
  service (which itself depends on configuration and audit) into those
  packages and create import cycles.

How:
  Defines ``__all__`` explicitly for static analyzers and implements
  ``__getattr__`` to import submodules on demand.

Interfaces:
  ``match_one``, ``match_label_rules``, ``pick_assignee_rule``,
  ``explain_rules``, ``map_with_concurrency``, ``with_timeout``,
  ``RuleApplicationService``, ``MultiRuleRunner``, ``inspect_rules``,
  ``detect_conflicts``, ``generate_rule_suggestions``,
  ``compute_rule_stats``.

Invariants & Safety:
  - ``__getattr__`` only exposes names from ``__all__``; unexpected attributes
    raise :class:`AttributeError`.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "MatchResult",
    "LabelMatch",
    "match_one",
    "match_label_rules",
    "pick_assignee_rule",
    "explain_rules",
    "is_broad_domain",
    "map_with_concurrency",
    "with_timeout",
    "RuleApplicationService",
    "ApplyResponse",
    "MultiRuleRunner",
    "RunResult",
    "InspectionReport",
    "inspect_rules",
    "detect_conflicts",
    "generate_rule_suggestions",
    "compute_rule_stats",
]

_OWNERS = {
    "MatchResult": "matcher",
    "LabelMatch": "matcher",
    "match_one": "matcher",
    "match_label_rules": "matcher",
    "pick_assignee_rule": "matcher",
    "explain_rules": "matcher",
    "is_broad_domain": "safety",
    "map_with_concurrency": "batch",
    "with_timeout": "batch",
    "RuleApplicationService": "apply",
    "ApplyResponse": "apply",
    "MultiRuleRunner": "runner",
    "RunResult": "runner",
    "InspectionReport": "inspector",
    "inspect_rules": "inspector",
    "detect_conflicts": "inspector",
    "generate_rule_suggestions": "suggestions",
    "compute_rule_stats": "stats",
}


def __getattr__(name: str) -> Any:
    """Resolve attributes lazily from the owning submodule.

    Raises:
      AttributeError: If ``name`` is not part of the public surface.
    """

    owner = _OWNERS.get(name)
    if owner is None:
        raise AttributeError(name)
    from importlib import import_module

    module = import_module(f"{__name__}.{owner}")
    return getattr(module, name)
