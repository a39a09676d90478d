"""Service wiring.

Services are plain objects built once at startup by ``build_container``
and stored on ``app.state.services``. Route handlers get them through the
``get_services`` dependency.
"""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from regcomms.config import Settings
from regcomms.core.clock import Clock, utc_now
from regcomms.repositories.communications import CommunicationRepository
from regcomms.repositories.escalation_paths import EscalationPathRepository
from regcomms.repositories.escalation_rules import EscalationRuleRepository
from regcomms.repositories.scheduled_notifications import ScheduledNotificationRepository
from regcomms.services.channel_transports import (
    ChannelTransportRegistry,
    build_default_transports,
)
from regcomms.services.deadline_scheduler import DeadlineScheduler
from regcomms.services.directory import (
    IncidentLookup,
    SqlIncidentLookup,
    SqlStakeholderDirectory,
    StakeholderDirectory,
)
from regcomms.services.escalation_engine import EscalationService
from regcomms.services.evidence import EvidenceEmitter, SqlEvidenceEmitter
from regcomms.services.notification_dispatcher import NotificationService
from regcomms.services.rule_catalog import RuleCatalog
from regcomms.services.summary import CommunicationSummaryService


@dataclass
class ServiceContainer:
    catalog: RuleCatalog
    rules: EscalationRuleRepository
    incidents: IncidentLookup
    stakeholders: StakeholderDirectory
    notifications: NotificationService
    deadlines: DeadlineScheduler
    escalations: EscalationService
    summaries: CommunicationSummaryService


def build_container(
    session_maker: async_sessionmaker[AsyncSession],
    settings: Settings,
    transports: ChannelTransportRegistry | None = None,
    clock: Clock = utc_now,
    evidence: EvidenceEmitter | None = None,
) -> ServiceContainer:
    """Construct every service with its collaborators."""
    rules = EscalationRuleRepository(session_maker)
    paths = EscalationPathRepository(session_maker)
    communications = CommunicationRepository(session_maker)
    scheduled = ScheduledNotificationRepository(session_maker)

    incidents = SqlIncidentLookup(session_maker)
    stakeholders = SqlStakeholderDirectory(session_maker)
    evidence = evidence or SqlEvidenceEmitter(session_maker)
    transports = transports or build_default_transports(settings)

    catalog = RuleCatalog(rules)
    notifications = NotificationService(
        communications,
        incidents,
        stakeholders,
        transports,
        evidence,
        clock=clock,
        max_cas_retries=settings.escalation_max_cas_retries,
    )
    deadlines = DeadlineScheduler(
        scheduled,
        communications,
        evidence,
        clock=clock,
        reminder_lead_hours=settings.deadline_reminder_lead_hours,
        batch_size=settings.escalation_sweep_batch_size,
    )
    escalations = EscalationService(
        catalog,
        paths,
        communications,
        stakeholders,
        notifications,
        deadlines,
        evidence,
        clock=clock,
        max_cas_retries=settings.escalation_max_cas_retries,
        redrive_grace_seconds=settings.dispatch_redrive_grace_seconds,
        sweep_batch_size=settings.escalation_sweep_batch_size,
    )
    summaries = CommunicationSummaryService(communications, paths, scheduled, clock=clock)

    return ServiceContainer(
        catalog=catalog,
        rules=rules,
        incidents=incidents,
        stakeholders=stakeholders,
        notifications=notifications,
        deadlines=deadlines,
        escalations=escalations,
        summaries=summaries,
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the application's service container."""
    return request.app.state.services
