# Business Logic Services
from regcomms.services.deadline_scheduler import DeadlineScheduler
from regcomms.services.escalation_engine import EscalationDecision, EscalationService
from regcomms.services.notification_dispatcher import NotificationService
from regcomms.services.rule_catalog import DEFAULT_ESCALATION_MATRIX, RuleCatalog
from regcomms.services.scheduler import get_scheduler, start_scheduler, stop_scheduler
from regcomms.services.summary import CommunicationSummaryService

__all__ = [
    "DEFAULT_ESCALATION_MATRIX",
    "CommunicationSummaryService",
    "DeadlineScheduler",
    "EscalationDecision",
    "EscalationService",
    "NotificationService",
    "RuleCatalog",
    "get_scheduler",
    "start_scheduler",
    "stop_scheduler",
]
