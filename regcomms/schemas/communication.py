"""Communication schemas."""

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from regcomms.models.communication import CommunicationStatus, CommunicationType
from regcomms.models.stakeholder import CommunicationChannel, StakeholderRole


class Recipient(BaseModel):
    """Per-recipient delivery state of a communication."""

    stakeholder_id: uuid.UUID
    stakeholder_name: str
    stakeholder_role: StakeholderRole
    channel: CommunicationChannel
    contact_value: str | None = None
    status: CommunicationStatus = CommunicationStatus.SENDING
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    acknowledged_at: datetime | None = None
    failure_reason: str | None = None


def load_recipients(raw: list[dict[str, Any]]) -> list[Recipient]:
    return [Recipient.model_validate(item) for item in raw]


def dump_recipients(recipients: Iterable[Recipient]) -> list[dict[str, Any]]:
    return [recipient.model_dump(mode="json") for recipient in recipients]


class DeliveryStats(BaseModel):
    """Recipient counts by current status. Buckets always sum to ``total``."""

    total: int = 0
    sending: int = 0
    sent: int = 0
    delivered: int = 0
    read: int = 0
    acknowledged: int = 0
    failed: int = 0

    @classmethod
    def from_recipients(cls, recipients: Iterable[Recipient]) -> "DeliveryStats":
        counts = {status.value.lower(): 0 for status in CommunicationStatus}
        total = 0
        for recipient in recipients:
            counts[recipient.status.value.lower()] += 1
            total += 1
        return cls(total=total, **counts)


class NotificationRequest(BaseModel):
    """Request schema for sending a single-recipient notification.

    Content priority: ``custom_content`` over ``template_id`` over the
    built-in default for ``communication_type``.
    """

    incident_id: uuid.UUID
    stakeholder_id: uuid.UUID
    channel: CommunicationChannel
    communication_type: CommunicationType
    custom_subject: str | None = Field(default=None, max_length=500)
    custom_content: str | None = None
    template_id: uuid.UUID | None = None
    escalation_path_id: uuid.UUID | None = None
    escalation_level: int | None = Field(default=None, ge=1)


class BulkNotificationRequest(BaseModel):
    """Request schema for notifying every stakeholder holding one of ``roles``."""

    incident_id: uuid.UUID
    roles: list[StakeholderRole] = Field(min_length=1)
    communication_type: CommunicationType
    channel: CommunicationChannel
    template_id: uuid.UUID | None = None


class AcknowledgeNotificationRequest(BaseModel):
    stakeholder_id: uuid.UUID


class RecipientReceiptRequest(BaseModel):
    """Delivery/read receipt reported back by a transport."""

    stakeholder_id: uuid.UUID
    status: CommunicationStatus


class CommunicationResponse(BaseModel):
    """Response schema for a communication."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference: str
    incident_id: uuid.UUID
    communication_type: CommunicationType
    channel: CommunicationChannel
    subject: str
    content: str
    content_format: str
    template_id: uuid.UUID | None
    escalation_path_id: uuid.UUID | None
    escalation_level: int | None
    recipients: list[Recipient]
    status: CommunicationStatus
    delivery_stats: DeliveryStats
    sent_at: datetime | None
    created_at: datetime
    evidence_event_id: uuid.UUID | None


class CommunicationTemplateCreate(BaseModel):
    """Request schema for registering a named template."""

    name: str = Field(min_length=1, max_length=200)
    communication_type: CommunicationType
    subject: str = Field(min_length=1, max_length=500)
    content: str = Field(min_length=1)
    content_format: str = "HTML"


class CommunicationTemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    communication_type: CommunicationType
    subject: str
    content: str
    content_format: str
    is_active: bool


class TimelineEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    incident_id: uuid.UUID
    event_type: str
    title: str
    description: str | None
    communication_id: uuid.UUID | None
    escalation_path_id: uuid.UUID | None
    actor: str | None
    occurred_at: datetime
    details: dict[str, Any]


class UpcomingDeadline(BaseModel):
    regulation: str
    article: str
    deadline: datetime
    hours_remaining: float


class CommunicationSummary(BaseModel):
    """Per-incident communication overview."""

    incident_id: uuid.UUID
    total_communications: int
    by_type: dict[str, int]
    by_channel: dict[str, int]
    by_status: dict[str, int]
    total_recipients: int
    delivery_rate: float = Field(description="Percent of recipients not FAILED or SENDING.")
    acknowledgment_rate: float = Field(description="Percent of recipients ACKNOWLEDGED.")
    active_escalations: int
    deadlines_met: int
    deadlines_missed: int
    upcoming_deadlines: list[UpcomingDeadline]
