"""Escalation rule definition schemas.

Typed form of an escalation rule. Persisted rules round-trip through
``EscalationRuleDefinition.model_validate`` so malformed JSON in the
database fails at load time rather than during evaluation.
"""

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from regcomms.models.incident import IncidentSeverity
from regcomms.models.stakeholder import CommunicationChannel, StakeholderRole


class EscalationTrigger(str, enum.Enum):
    """Event category a rule can fire on."""

    INCIDENT_CREATED = "INCIDENT_CREATED"
    SEVERITY_UPGRADE = "SEVERITY_UPGRADE"
    THRESHOLD_BREACH = "THRESHOLD_BREACH"
    SLA_VIOLATION = "SLA_VIOLATION"
    CUSTOMER_IMPACT = "CUSTOMER_IMPACT"
    DATA_BREACH = "DATA_BREACH"
    SERVICE_OUTAGE = "SERVICE_OUTAGE"
    REGULATORY_DEADLINE = "REGULATORY_DEADLINE"
    NO_RESPONSE = "NO_RESPONSE"
    MANUAL = "MANUAL"


class ConditionOperator(str, enum.Enum):
    """Operators understood by the condition evaluator."""

    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    CONTAINS = "CONTAINS"
    IN = "IN"


class RuleCondition(BaseModel):
    """Field path, operator and literal.

    ``operator`` is kept as a plain string so a rule carrying an operator
    this version does not know still loads; such a condition evaluates false.
    """

    field: str = Field(min_length=1)
    operator: str
    value: Any = None


class RuleTrigger(BaseModel):
    """One trigger entry; all of its conditions must hold."""

    trigger: EscalationTrigger
    conditions: list[RuleCondition] = Field(default_factory=list)


class SeverityPolicy(BaseModel):
    """Whom to notify, how, and when to escalate for one severity."""

    severity: IncidentSeverity
    stakeholder_roles: list[StakeholderRole] = Field(min_length=1)
    channels: list[CommunicationChannel] = Field(min_length=1)
    time_to_notify_minutes: int = Field(default=0, ge=0)
    require_acknowledgment: bool = True
    escalate_if_no_ack_minutes: int = Field(default=0, ge=0)
    escalate_to: list[StakeholderRole] = Field(default_factory=list)

    @property
    def escalates(self) -> bool:
        return bool(self.escalate_to) and self.escalate_if_no_ack_minutes > 0


class RegulatoryRequirement(BaseModel):
    """Statutory notification deadline attached to a rule."""

    regulation: str = Field(min_length=1)
    article: str = Field(min_length=1)
    deadline_hours: float = Field(gt=0)
    mandatory_recipients: list[StakeholderRole] = Field(default_factory=list)


class EscalationRuleDefinition(BaseModel):
    """A complete escalation rule."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(min_length=1, max_length=100)
    name: str
    description: str = ""
    is_active: bool = True
    triggers: list[RuleTrigger] = Field(min_length=1)
    severity_policies: list[SeverityPolicy] = Field(default_factory=list)
    regulatory_requirements: list[RegulatoryRequirement] = Field(default_factory=list)
    priority: int = 100

    @model_validator(mode="after")
    def validate_unique_severity(self) -> "EscalationRuleDefinition":
        """At most one policy may apply to a given severity."""
        seen: set[IncidentSeverity] = set()
        for policy in self.severity_policies:
            if policy.severity in seen:
                msg = f"rule {self.id} defines more than one policy for {policy.severity.value}"
                raise ValueError(msg)
            seen.add(policy.severity)
        return self

    def policy_for(self, severity: IncidentSeverity) -> SeverityPolicy | None:
        for policy in self.severity_policies:
            if policy.severity == severity:
                return policy
        return None

    def to_row(self) -> dict[str, Any]:
        """Column values for the ``escalation_rules`` table."""
        return self.model_dump(mode="json")
