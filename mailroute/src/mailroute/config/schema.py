"""Pydantic models describing mailroute configuration and rule documents."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo
from pydantic import field_validator, model_validator
from pydantic_core import PydanticCustomError

from ..core.normalize import normalize_domain, normalize_email_address, normalize_org_email


class OrganizationConfig(BaseModel):
    """Identity of the organisation operating the shared inbox."""

    model_config = ConfigDict(extra="forbid")

    email_domain: str

    @field_validator("email_domain")
    @classmethod
    def _normalise_domain(cls, value: str) -> str:
        domain = normalize_domain(value)
        if domain is None:
            raise ValueError("email_domain must be a dotted domain")
        return domain


class BatchSettings(BaseModel):
    """Concurrency and size limits applied to every batch touching the backend."""

    model_config = ConfigDict(extra="forbid")

    concurrency: int = Field(default=3, gt=0, le=16)
    item_timeout_s: float = Field(default=6.0, gt=0)
    max_apply_messages: int = Field(default=50, gt=0)
    max_preview_messages: int = Field(default=500, gt=0)
    preview_samples: int = Field(default=10, ge=0)


class RunnerSettings(BaseModel):
    """Budgets for the multi-rule runner and its scheduled loop."""

    model_config = ConfigDict(extra="forbid")

    max_total: int = Field(default=100, gt=0)
    max_per_rule: int = Field(default=50, gt=0)
    interval_s: int = Field(default=900, gt=0)


class InspectorSettings(BaseModel):
    """Sampling parameters for empirical rule inspection."""

    model_config = ConfigDict(extra="forbid")

    sample_size: int = Field(default=50, gt=0)
    hit_samples: int = Field(default=5, ge=0)
    too_many_matches: int = Field(default=200, gt=0)


class SuggestionSettings(BaseModel):
    """Thresholds controlling rule suggestions mined from the audit log."""

    model_config = ConfigDict(extra="forbid")

    window_days: int = Field(default=14, gt=0)
    min_actions: int = Field(default=3, gt=0)
    min_actors: int = Field(default=2, gt=0)
    log_limit: int = Field(default=1000, gt=0)
    muted_label: str = Field(default="Muted", min_length=1)


class PathsConfig(BaseModel):
    """Filesystem layout used by the CLI collaborators."""

    model_config = ConfigDict(extra="forbid")

    rules: str
    audit_log: str
    mailbox: Optional[str] = None


class DefaultsConfig(BaseModel):
    """Operator defaults applied when a request leaves a field unset."""

    model_config = ConfigDict(extra="forbid")

    rule_id: Optional[str] = None


class RuntimeConfig(BaseModel):
    """Root configuration loaded from ``config.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    organization: OrganizationConfig
    paths: PathsConfig
    batch: BatchSettings = Field(default_factory=BatchSettings)
    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    inspector: InspectorSettings = Field(default_factory=InspectorSettings)
    suggestions: SuggestionSettings = Field(default_factory=SuggestionSettings)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)


class RuleMatch(BaseModel):
    """Sender condition shared by both rule families.

    ``from_email`` is an exact address, ``from_domain`` the sender's domain.
    When both are present the address is checked first and the domain is the
    fallback; the address is the discriminant used for queries and conflicts.
    """

    model_config = ConfigDict(extra="forbid")

    from_email: Optional[str] = None
    from_domain: Optional[str] = None

    @model_validator(mode="after")
    def _normalise(self) -> "RuleMatch":
        email = None
        domain = None
        if self.from_email:
            email = normalize_email_address(self.from_email)
            if email is None:
                raise PydanticCustomError("invalid_rule", "from_email is not an address: {value}", {"value": self.from_email})
        if self.from_domain:
            domain = normalize_domain(self.from_domain)
            if domain is None:
                raise PydanticCustomError("invalid_rule", "from_domain is not a domain: {value}", {"value": self.from_domain})
        if email is None and domain is None:
            raise PydanticCustomError("missing_match", "match requires from_email or from_domain")
        self.from_email = email
        self.from_domain = domain
        return self

    @property
    def discriminant(self) -> Tuple[str, str]:
        """Return ``("from_email", addr)`` or ``("from_domain", domain)``."""

        if self.from_email:
            return ("from_email", self.from_email)
        return ("from_domain", self.from_domain or "")


def _assignee_email(value: str, info: ValidationInfo) -> str:
    org_domain = (info.context or {}).get("org_domain")
    if org_domain:
        email = normalize_org_email(value, org_domain)
    else:
        email = normalize_email_address(value)
    if email is None:
        raise PydanticCustomError(
            "invalid_assignee_email",
            "assignee email {value} is not an organisation address",
            {"value": value},
        )
    return email


class AssignToSelf(BaseModel):
    """Assign the message to whoever invoked the rule run."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["self"] = "self"


class AssignToSpecific(BaseModel):
    """Assign the message to a fixed organisation member."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["assignee"] = "assignee"
    assignee_email: str

    @field_validator("assignee_email")
    @classmethod
    def _validate_email(cls, value: str, info: ValidationInfo) -> str:
        return _assignee_email(value, info)


AssignTo = Annotated[Union[AssignToSelf, AssignToSpecific], Field(discriminator="kind")]


class LabelRule(BaseModel):
    """Condition-to-labels mapping, union-evaluated across all matches."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    enabled: bool = True
    match: RuleMatch
    label_names: List[str]
    assign_to: Optional[AssignTo] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("label_names")
    @classmethod
    def _normalise_labels(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for name in value:
            cleaned = str(name).strip()
            if cleaned and cleaned not in seen:
                seen.append(cleaned)
        if not seen:
            raise PydanticCustomError("empty_labels", "label_names must contain at least one label")
        return seen


class AssigneeWhen(BaseModel):
    """Firing conditions for an assignee rule."""

    model_config = ConfigDict(extra="forbid")

    unassigned_only: bool = True


class AssigneeSafety(BaseModel):
    """Operator acknowledgements recorded at authoring time."""

    model_config = ConfigDict(extra="forbid")

    dangerous_domain_confirm: bool = False


class AssigneeRule(BaseModel):
    """Condition-to-single-assignee mapping, lower priority evaluated first."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    enabled: bool = True
    priority: int = 0
    match: RuleMatch
    assignee_email: str
    when: AssigneeWhen = Field(default_factory=AssigneeWhen)
    safety: AssigneeSafety = Field(default_factory=AssigneeSafety)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("assignee_email")
    @classmethod
    def _validate_email(cls, value: str, info: ValidationInfo) -> str:
        return _assignee_email(value, info)


class RulesDocument(BaseModel):
    """Top-level rules document persisted by the rule store."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    label_rules: List[LabelRule] = Field(default_factory=list)
    assignee_rules: List[AssigneeRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> "RulesDocument":
        seen = set()
        for rule in [*self.label_rules, *self.assignee_rules]:
            if rule.id in seen:
                raise PydanticCustomError("duplicate_rule_id", "rule id {rule_id} is used twice", {"rule_id": rule.id})
            seen.add(rule.id)
        return self
