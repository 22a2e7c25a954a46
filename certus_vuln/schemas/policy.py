"""Policy, rule, exception and evaluation models.

Policy records are fetched by the persistence layer and handed to the policy
engine already materialized. They accept both snake_case field names and the
camelCase keys the API stores (``ruleType``, ``targetValue``, ``expiresAt``).

Rule conditions are stored upstream as free-form JSON. They are parsed here
into a tagged union keyed by ``rule_type``:

- SEVERITY_THRESHOLD -> SeverityThresholdConditions
- CVSS_THRESHOLD     -> CvssThresholdConditions
- CVE_BLOCKLIST      -> CveBlocklistConditions

Conditions that do not fit the shape declared by their rule type parse to
``None`` and the rule matches nothing.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from certus_vuln.core.clock import ensure_utc
from certus_vuln.schemas.normalized_vulnerability import NormalizedVulnerability, Severity


class RuleType(str, Enum):
    SEVERITY_THRESHOLD = "SEVERITY_THRESHOLD"
    CVSS_THRESHOLD = "CVSS_THRESHOLD"
    CVE_BLOCKLIST = "CVE_BLOCKLIST"


class RuleAction(str, Enum):
    BLOCK = "BLOCK"
    WARN = "WARN"


class ExceptionType(str, Enum):
    CVE = "CVE"


class ExceptionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class _RecordModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _enum_text(value: Any) -> Any:
    """Store enum members as their upper-cased value; leave other input to validation."""
    if isinstance(value, Enum):
        value = value.value
    return value.upper() if isinstance(value, str) else value


# ============================================================================
# Rule conditions (tagged by rule type)
# ============================================================================


class SeverityThresholdConditions(_RecordModel):
    """Matches findings whose severity is in the configured set."""

    severity: list[Severity] = Field(..., description="One severity or a list of severities")

    @field_validator("severity", mode="before")
    @classmethod
    def _wrap_and_upper(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [item.upper() if isinstance(item, str) else item for item in value]
        return value

    def matches(self, finding: NormalizedVulnerability) -> bool:
        return finding.severity in self.severity


class CvssBound(_RecordModel):
    gte: float


class CvssThresholdConditions(_RecordModel):
    """Matches findings whose CVSS v3 score is at least ``cvss_score.gte``."""

    cvss_score: CvssBound

    def matches(self, finding: NormalizedVulnerability) -> bool:
        return finding.cvss_v3_score is not None and finding.cvss_v3_score >= self.cvss_score.gte


class CveBlocklistConditions(_RecordModel):
    """Matches findings whose CVE id is on the blocklist."""

    cve_ids: list[str]

    def matches(self, finding: NormalizedVulnerability) -> bool:
        return finding.cve_id in self.cve_ids


RuleConditions = Union[SeverityThresholdConditions, CvssThresholdConditions, CveBlocklistConditions]

CONDITION_MODELS: dict[RuleType, type[RuleConditions]] = {
    RuleType.SEVERITY_THRESHOLD: SeverityThresholdConditions,
    RuleType.CVSS_THRESHOLD: CvssThresholdConditions,
    RuleType.CVE_BLOCKLIST: CveBlocklistConditions,
}


def parse_conditions(rule_type: str, conditions: Any) -> Optional[RuleConditions]:
    """Parse raw conditions into the variant declared by ``rule_type``.

    Args:
        rule_type: Declared rule type (unknown values are tolerated)
        conditions: Raw conditions JSON

    Returns:
        The typed conditions, or None when the type is unknown or the payload
        does not fit the expected shape.
    """
    try:
        model = CONDITION_MODELS[RuleType(rule_type)]
    except ValueError:
        return None
    if not isinstance(conditions, dict):
        return None
    try:
        return model.model_validate(conditions)
    except ValidationError:
        return None


# ============================================================================
# Policy records
# ============================================================================


class PolicyRule(_RecordModel):
    """One condition + action pair owned by a policy.

    ``rule_type`` and ``action`` are kept as plain strings so that records
    written by a newer version still load. Rules with an unknown type never
    match; rules with an action other than BLOCK or WARN are skipped.
    """

    id: str = Field(..., description="Rule identifier")
    rule_type: str = Field(..., description="SEVERITY_THRESHOLD | CVSS_THRESHOLD | CVE_BLOCKLIST")
    conditions: Any = Field(default_factory=dict, description="Raw conditions JSON")
    action: str = Field(..., description="BLOCK or WARN; rules with other actions are skipped")
    priority: int = Field(0, description="Higher priorities evaluate first")
    message: Optional[str] = Field(None, description="Message shown with the violation")

    @field_validator("action", mode="before")
    @classmethod
    def _action_text(cls, value: Any) -> Any:
        return _enum_text(value)

    @property
    def known_action(self) -> Optional[RuleAction]:
        try:
            return RuleAction(self.action)
        except ValueError:
            return None

    def parsed_conditions(self) -> Optional[RuleConditions]:
        return parse_conditions(self.rule_type, self.conditions)


class PolicyException(_RecordModel):
    """A scoped, possibly time-limited override for one target value.

    Only CVE exceptions are applied; other exception types load but are ignored.
    """

    id: str = Field(..., description="Exception identifier")
    exception_type: str = Field(ExceptionType.CVE.value, description="What target_value refers to")
    target_value: str = Field(..., description="e.g. the excepted CVE id")
    status: ExceptionStatus = Field(ExceptionStatus.PENDING, description="Approval status")
    expires_at: Optional[datetime] = Field(None, description="No expiry when absent")
    reason: Optional[str] = Field(None, description="Justification recorded by the requester")

    @field_validator("exception_type", mode="before")
    @classmethod
    def _exception_type_text(cls, value: Any) -> Any:
        return _enum_text(value)

    @field_validator("expires_at")
    @classmethod
    def _expires_at_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def is_active(self, now: datetime) -> bool:
        """Approved and not yet expired at ``now``."""
        if self.status != ExceptionStatus.APPROVED:
            return False
        return self.expires_at is None or self.expires_at > ensure_utc(now)


class Policy(_RecordModel):
    id: str
    name: str
    is_active: bool = True
    rules: list[PolicyRule] = Field(default_factory=list)
    exceptions: list[PolicyException] = Field(default_factory=list)


# ============================================================================
# Evaluation output
# ============================================================================


class PolicyViolation(_RecordModel):
    rule_id: str
    rule_name: str
    action: RuleAction
    message: Optional[str] = None
    severity: Severity = Field(..., description="Highest severity among matched findings")
    count: int
    cve_ids: list[str] = Field(default_factory=list)


class BlockedBy(_RecordModel):
    policy_id: str
    policy_name: str
    rule_id: str


class PolicyEvaluation(_RecordModel):
    """Outcome of evaluating a set of policies against one scan's findings."""

    allowed: bool = True
    blocked_by: Optional[BlockedBy] = None
    violations: list[PolicyViolation] = Field(default_factory=list)
    warnings: list[PolicyViolation] = Field(default_factory=list)
    applied_exceptions: list[PolicyException] = Field(default_factory=list)
