"""Escalation path schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from regcomms.models.escalation_path import EscalationPathStatus
from regcomms.models.incident import IncidentSeverity
from regcomms.models.stakeholder import CommunicationChannel, StakeholderRole
from regcomms.schemas.escalation_rule import EscalationTrigger


class EscalationLevel(BaseModel):
    """One step of an escalation path."""

    level: int = Field(ge=1)
    stakeholder_roles: list[StakeholderRole]
    channels: list[CommunicationChannel]
    trigger_after_minutes: int = Field(ge=0)
    triggered: bool = False
    triggered_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None


def load_levels(raw: list[dict[str, Any]]) -> list[EscalationLevel]:
    return [EscalationLevel.model_validate(item) for item in raw]


def dump_levels(levels: list[EscalationLevel]) -> list[dict[str, Any]]:
    return [level.model_dump(mode="json") for level in levels]


class EscalationPathResponse(BaseModel):
    """Response schema for an escalation path."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    incident_id: uuid.UUID
    rule_id: str
    current_level: int
    max_level: int
    levels: list[EscalationLevel]
    status: EscalationPathStatus
    started_at: datetime
    last_escalated_at: datetime | None
    next_check_at: datetime | None
    version: int
    evidence_event_id: uuid.UUID | None


class EvaluateIncidentRequest(BaseModel):
    """Request schema for evaluating an incident against the rule catalog."""

    incident_id: uuid.UUID
    trigger: EscalationTrigger
    new_severity: IncidentSeverity | None = Field(
        default=None,
        description="New severity for SEVERITY_UPGRADE triggers.",
    )
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra trigger context merged over the incident's attributes.",
    )


class EvaluateIncidentResponse(BaseModel):
    """Result of an evaluation; ``path`` is null when no rule applies."""

    escalated: bool
    path: EscalationPathResponse | None = None


class AcknowledgeEscalationRequest(BaseModel):
    actor: str = Field(min_length=1, max_length=200)


class EscalationDecisionResponse(BaseModel):
    """Outcome of a single escalation check."""

    action: str
    path_id: uuid.UUID
    current_level: int | None = None
    reason: str
