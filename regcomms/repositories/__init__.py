# Typed repositories, one per entity
from regcomms.repositories.communications import CommunicationRepository
from regcomms.repositories.escalation_paths import EscalationPathRepository
from regcomms.repositories.escalation_rules import EscalationRuleRepository
from regcomms.repositories.scheduled_notifications import ScheduledNotificationRepository

__all__ = [
    "CommunicationRepository",
    "EscalationPathRepository",
    "EscalationRuleRepository",
    "ScheduledNotificationRepository",
]
