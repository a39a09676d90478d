"""Regulatory deadline scheduling.

Each regulatory requirement on a matched rule becomes a persisted
ScheduledNotification with an absolute deadline and a reminder time.
Reminders are picked up by the deadline sweep; a reminder whose time has
already passed when scheduled is skipped rather than fired late.

Reminders only raise a compliance warning. Notifying the regulator is a
separate business step that ends with ``mark_sent``.
"""

import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta

from regcomms.core.clock import Clock, utc_now
from regcomms.core.errors import InvalidStateTransitionError, NotFoundError
from regcomms.logging_config import get_logger
from regcomms.models.scheduled_notification import (
    ScheduledNotification,
    ScheduledNotificationStatus,
)
from regcomms.repositories.communications import CommunicationRepository
from regcomms.repositories.scheduled_notifications import ScheduledNotificationRepository
from regcomms.schemas.escalation_rule import RegulatoryRequirement
from regcomms.schemas.incident import IncidentSnapshot
from regcomms.services import evidence as evidence_events
from regcomms.services.evidence import EvidenceEmitter

logger = get_logger(__name__)

TERMINAL_STATUSES = (ScheduledNotificationStatus.SENT, ScheduledNotificationStatus.MISSED)


def compute_deadline(occurred_at: datetime, deadline_hours: float) -> datetime:
    return occurred_at + timedelta(hours=deadline_hours)


def compute_reminder_time(
    deadline: datetime,
    now: datetime,
    lead_hours: float = 2,
) -> datetime | None:
    """Reminder instant, or None when it is not in the future."""
    reminder_at = deadline - timedelta(hours=lead_hours)
    if reminder_at <= now:
        return None
    return reminder_at


class DeadlineScheduler:
    """Tracks statutory notification deadlines for incidents."""

    def __init__(
        self,
        notifications: ScheduledNotificationRepository,
        communications: CommunicationRepository,
        evidence: EvidenceEmitter,
        clock: Clock = utc_now,
        reminder_lead_hours: float = 2,
        batch_size: int = 100,
        max_retries: int = 3,
    ):
        self._notifications = notifications
        self._communications = communications
        self._evidence = evidence
        self._clock = clock
        self._reminder_lead_hours = reminder_lead_hours
        self._batch_size = batch_size
        self._max_retries = max_retries

    async def schedule_for_rule(
        self,
        incident: IncidentSnapshot,
        requirements: Iterable[RegulatoryRequirement],
        escalation_path_id: uuid.UUID | None = None,
    ) -> list[ScheduledNotification]:
        """Persist one PENDING deadline per requirement.

        The deadline counts from the incident's occurrence time, falling
        back to its creation time and then to now.
        """
        now = self._clock()
        occurred_at = incident.reference_time(now)
        scheduled = []

        for requirement in requirements:
            deadline = compute_deadline(occurred_at, requirement.deadline_hours)
            reminder_at = compute_reminder_time(deadline, now, self._reminder_lead_hours)
            notification = await self._notifications.create_if_absent(
                ScheduledNotification(
                    id=uuid.uuid4(),
                    incident_id=incident.id,
                    escalation_path_id=escalation_path_id,
                    regulation=requirement.regulation,
                    article=requirement.article,
                    deadline=deadline,
                    reminder_at=reminder_at,
                    mandatory_recipients=[role.value for role in requirement.mandatory_recipients],
                    status=ScheduledNotificationStatus.PENDING,
                )
            )
            scheduled.append(notification)

            if reminder_at is None:
                logger.info(
                    "Deadline reminder skipped, reminder time already passed",
                    incident_id=str(incident.id),
                    regulation=requirement.regulation,
                    article=requirement.article,
                    deadline=deadline.isoformat(),
                )
            else:
                logger.info(
                    "Regulatory deadline scheduled",
                    incident_id=str(incident.id),
                    regulation=requirement.regulation,
                    article=requirement.article,
                    deadline=deadline.isoformat(),
                    reminder_at=reminder_at.isoformat(),
                )

        return scheduled

    async def fire_due_reminders(self) -> int:
        """Move due PENDING deadlines to REMINDED and raise a warning event.

        Returns:
            Number of reminders fired.
        """
        now = self._clock()
        fired = 0
        for notification in await self._notifications.find_due_reminders(now, self._batch_size):
            updated = await self._notifications.transition(
                notification.id,
                ScheduledNotificationStatus.PENDING,
                status=ScheduledNotificationStatus.REMINDED,
                reminded_at=now,
            )
            if updated is None:
                continue
            fired += 1

            hours_remaining = round((updated.deadline - now).total_seconds() / 3600, 2)
            await self._evidence.record(
                evidence_events.REGULATORY_DEADLINE_WARNING,
                "HIGH",
                [updated.regulation],
                [updated.article],
                {
                    "scheduled_notification_id": str(updated.id),
                    "incident_id": str(updated.incident_id),
                    "regulation": updated.regulation,
                    "article": updated.article,
                    "deadline": updated.deadline.isoformat(),
                    "hours_remaining": hours_remaining,
                    "mandatory_recipients": updated.mandatory_recipients,
                },
            )
            await self._communications.add_timeline_entry(
                incident_id=updated.incident_id,
                event_type="REGULATORY_DEADLINE_WARNING",
                title=f"{updated.regulation} {updated.article} deadline in {hours_remaining}h",
                occurred_at=now,
                details={"deadline": updated.deadline.isoformat()},
            )
            logger.warning(
                "Regulatory deadline approaching",
                incident_id=str(updated.incident_id),
                regulation=updated.regulation,
                article=updated.article,
                hours_remaining=hours_remaining,
            )
        return fired

    async def mark_missed(self) -> int:
        """Move unsent deadlines that have passed to MISSED.

        Returns:
            Number of deadlines marked missed.
        """
        now = self._clock()
        missed = 0
        for notification in await self._notifications.find_overdue(now, self._batch_size):
            updated = await self._notifications.transition(
                notification.id,
                notification.status,
                status=ScheduledNotificationStatus.MISSED,
                meets_deadline=False,
            )
            if updated is None:
                continue
            missed += 1

            await self._evidence.record(
                evidence_events.REGULATORY_DEADLINE_MISSED,
                "CRITICAL",
                [updated.regulation],
                [updated.article],
                {
                    "scheduled_notification_id": str(updated.id),
                    "incident_id": str(updated.incident_id),
                    "regulation": updated.regulation,
                    "article": updated.article,
                    "deadline": updated.deadline.isoformat(),
                },
            )
            await self._communications.add_timeline_entry(
                incident_id=updated.incident_id,
                event_type="REGULATORY_DEADLINE_MISSED",
                title=f"{updated.regulation} {updated.article} deadline missed",
                occurred_at=now,
                details={"deadline": updated.deadline.isoformat()},
            )
            logger.error(
                "Regulatory deadline missed",
                incident_id=str(updated.incident_id),
                regulation=updated.regulation,
                article=updated.article,
            )
        return missed

    async def mark_sent(
        self,
        notification_id: uuid.UUID,
        sent_at: datetime | None = None,
    ) -> ScheduledNotification:
        """Record that the regulator was notified.

        Raises:
            NotFoundError: Unknown scheduled notification.
            InvalidStateTransitionError: Already SENT or MISSED.
        """
        for _ in range(self._max_retries):
            notification = await self._notifications.get(notification_id)
            if notification is None:
                raise NotFoundError("ScheduledNotification", notification_id)
            if notification.status in TERMINAL_STATUSES:
                raise InvalidStateTransitionError(
                    f"Scheduled notification {notification_id} is already "
                    f"{notification.status.value}"
                )

            sent = sent_at or self._clock()
            meets_deadline = sent <= notification.deadline
            updated = await self._notifications.transition(
                notification.id,
                notification.status,
                status=ScheduledNotificationStatus.SENT,
                sent_at=sent,
                meets_deadline=meets_deadline,
                reminder_at=None,
            )
            if updated is None:
                continue

            await self._communications.add_timeline_entry(
                incident_id=updated.incident_id,
                event_type=(
                    "REGULATORY_DEADLINE_MET" if meets_deadline else "REGULATORY_DEADLINE_MISSED"
                ),
                title=f"{updated.regulation} {updated.article} notification sent",
                occurred_at=sent,
                details={"deadline": updated.deadline.isoformat()},
            )
            logger.info(
                "Regulatory notification marked sent",
                incident_id=str(updated.incident_id),
                regulation=updated.regulation,
                article=updated.article,
                meets_deadline=meets_deadline,
            )
            return updated

        raise InvalidStateTransitionError(
            f"Scheduled notification {notification_id} kept changing while marking sent"
        )

    async def list_for_incident(self, incident_id: uuid.UUID) -> list[ScheduledNotification]:
        return await self._notifications.list_for_incident(incident_id)
