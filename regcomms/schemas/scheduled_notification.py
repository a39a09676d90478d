"""Scheduled regulatory notification schemas."""

import uuid
from datetime import datetime

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from regcomms.models.scheduled_notification import ScheduledNotificationStatus


class ScheduledNotificationResponse(BaseModel):
    """Response schema for a tracked regulatory deadline."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    incident_id: uuid.UUID
    escalation_path_id: uuid.UUID | None
    regulation: str
    article: str
    deadline: datetime
    reminder_at: datetime | None
    mandatory_recipients: list[str]
    status: ScheduledNotificationStatus
    reminded_at: datetime | None
    sent_at: datetime | None
    meets_deadline: bool | None


class MarkSentRequest(BaseModel):
    sent_at: AwareDatetime | None = Field(
        default=None,
        description="When the regulator was notified, with timezone. Defaults to now.",
    )
