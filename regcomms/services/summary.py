"""Per-incident communication summary."""

import uuid
from collections import Counter
from datetime import datetime

from regcomms.core.clock import Clock, utc_now
from regcomms.models.communication import Communication, CommunicationStatus
from regcomms.models.scheduled_notification import (
    ScheduledNotification,
    ScheduledNotificationStatus,
)
from regcomms.repositories.communications import CommunicationRepository
from regcomms.repositories.escalation_paths import EscalationPathRepository
from regcomms.repositories.scheduled_notifications import ScheduledNotificationRepository
from regcomms.schemas.communication import CommunicationSummary, UpcomingDeadline, load_recipients

_DELIVERED_STATUSES = {
    CommunicationStatus.SENT,
    CommunicationStatus.DELIVERED,
    CommunicationStatus.READ,
    CommunicationStatus.ACKNOWLEDGED,
}


def _percent(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return round(part * 100 / whole, 1)


def build_summary(
    incident_id: uuid.UUID,
    communications: list[Communication],
    deadlines: list[ScheduledNotification],
    active_escalations: int,
    now: datetime,
) -> CommunicationSummary:
    recipient_statuses: Counter[CommunicationStatus] = Counter()
    for communication in communications:
        for recipient in load_recipients(communication.recipients):
            recipient_statuses[recipient.status] += 1
    total_recipients = sum(recipient_statuses.values())
    delivered = sum(recipient_statuses[status] for status in _DELIVERED_STATUSES)

    met = sum(
        1
        for d in deadlines
        if d.status == ScheduledNotificationStatus.SENT and d.meets_deadline
    )
    missed = sum(
        1
        for d in deadlines
        if d.status == ScheduledNotificationStatus.MISSED
        or (d.status == ScheduledNotificationStatus.SENT and d.meets_deadline is False)
    )
    upcoming = [
        UpcomingDeadline(
            regulation=d.regulation,
            article=d.article,
            deadline=d.deadline,
            hours_remaining=round((d.deadline - now).total_seconds() / 3600, 1),
        )
        for d in sorted(deadlines, key=lambda d: d.deadline)
        if d.status
        in (ScheduledNotificationStatus.PENDING, ScheduledNotificationStatus.REMINDED)
        and d.deadline > now
    ]

    return CommunicationSummary(
        incident_id=incident_id,
        total_communications=len(communications),
        by_type=dict(Counter(c.communication_type.value for c in communications)),
        by_channel=dict(Counter(c.channel.value for c in communications)),
        by_status=dict(Counter(c.status.value for c in communications)),
        total_recipients=total_recipients,
        delivery_rate=_percent(delivered, total_recipients),
        acknowledgment_rate=_percent(
            recipient_statuses[CommunicationStatus.ACKNOWLEDGED], total_recipients
        ),
        active_escalations=active_escalations,
        deadlines_met=met,
        deadlines_missed=missed,
        upcoming_deadlines=upcoming,
    )


class CommunicationSummaryService:
    def __init__(
        self,
        communications: CommunicationRepository,
        paths: EscalationPathRepository,
        deadlines: ScheduledNotificationRepository,
        clock: Clock = utc_now,
    ):
        self._communications = communications
        self._paths = paths
        self._deadlines = deadlines
        self._clock = clock

    async def get_communication_summary(self, incident_id: uuid.UUID) -> CommunicationSummary:
        return build_summary(
            incident_id,
            await self._communications.list_for_incident(incident_id),
            await self._deadlines.list_for_incident(incident_id),
            await self._paths.count_active(incident_id),
            self._clock(),
        )
