# Database Models
from regcomms.models.base import Base, TimestampMixin
from regcomms.models.communication import (
    Communication,
    CommunicationStatus,
    CommunicationTemplate,
    CommunicationTimelineEntry,
    CommunicationType,
)
from regcomms.models.escalation_path import EscalationPath, EscalationPathStatus
from regcomms.models.escalation_rule import EscalationRule
from regcomms.models.evidence_event import EvidenceEvent
from regcomms.models.incident import Incident, IncidentSeverity
from regcomms.models.scheduled_notification import (
    ScheduledNotification,
    ScheduledNotificationStatus,
)
from regcomms.models.stakeholder import (
    CommunicationChannel,
    Stakeholder,
    StakeholderRole,
    StakeholderType,
)

__all__ = [
    "Base",
    "Communication",
    "CommunicationChannel",
    "CommunicationStatus",
    "CommunicationTemplate",
    "CommunicationTimelineEntry",
    "CommunicationType",
    "EscalationPath",
    "EscalationPathStatus",
    "EscalationRule",
    "EvidenceEvent",
    "Incident",
    "IncidentSeverity",
    "ScheduledNotification",
    "ScheduledNotificationStatus",
    "Stakeholder",
    "StakeholderRole",
    "StakeholderType",
    "TimestampMixin",
]
