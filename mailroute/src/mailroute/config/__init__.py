"""mailroute configuration package.

What:
  Provide a cohesive import surface for configuration loading, validation, and
  rule persistence helpers used by the engine and the CLI.

How:
  Re-export the loader helpers, the Pydantic schema classes, and the rule
  store. Keeping ``__all__`` explicit documents the supported surface.

Interfaces:
  - load_runtime_config / get_runtime_config / reset_runtime_config: Resolve
    ``config.yaml`` and expose a cached runtime configuration object.
  - parse_rules / dump_rules: Transform rules YAML to and from the
    in-memory models.
  - YamlRuleStore / RuleStore: Fresh-snapshot rule access and authoring.
  - LabelRule / AssigneeRule / RulesDocument / RuntimeConfig: Pydantic models.
"""

from .loader import (
    ConfigLoadError,
    RuntimeConfigError,
    dump_rules,
    get_runtime_config,
    load_runtime_config,
    parse_rules,
    reset_runtime_config,
)
from .schema import (
    AssigneeRule,
    AssignToSelf,
    AssignToSpecific,
    LabelRule,
    RuleMatch,
    RulesDocument,
    RuntimeConfig,
)
from .store import RuleStore, YamlRuleStore

__all__ = [
    "ConfigLoadError",
    "RuntimeConfigError",
    "parse_rules",
    "dump_rules",
    "get_runtime_config",
    "load_runtime_config",
    "reset_runtime_config",
    "AssigneeRule",
    "AssignToSelf",
    "AssignToSpecific",
    "LabelRule",
    "RuleMatch",
    "RulesDocument",
    "RuntimeConfig",
    "RuleStore",
    "YamlRuleStore",
]
