"""Scheduled regulatory notification model.

One row per regulatory requirement instance. ``reminder_at`` is the
persisted due time the deadline sweep polls; NULL means the reminder was
skipped because its instant had already passed when scheduled.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from regcomms.models.base import Base, JSONType, TimestampMixin, UTCDateTime, enum_values


class ScheduledNotificationStatus(str, enum.Enum):
    """Forward-only lifecycle: PENDING -> REMINDED -> SENT | MISSED."""

    PENDING = "PENDING"
    REMINDED = "REMINDED"
    SENT = "SENT"
    MISSED = "MISSED"


class ScheduledNotification(Base, TimestampMixin):
    """Tracked statutory deadline for an incident."""

    __tablename__ = "scheduled_notifications"
    __table_args__ = (
        UniqueConstraint(
            "incident_id",
            "regulation",
            "article",
            name="uq_scheduled_notification_requirement",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("incidents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    escalation_path_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("escalation_paths.id", ondelete="RESTRICT"),
        nullable=True,
    )

    regulation: Mapped[str] = mapped_column(String(50), nullable=False)

    article: Mapped[str] = mapped_column(String(50), nullable=False)

    deadline: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)

    reminder_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True, index=True
    )

    # Role values
    mandatory_recipients: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    status: Mapped[ScheduledNotificationStatus] = mapped_column(
        Enum(
            ScheduledNotificationStatus,
            name="schedulednotificationstatus",
            values_callable=enum_values,
        ),
        nullable=False,
        default=ScheduledNotificationStatus.PENDING,
        index=True,
    )

    reminded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    meets_deadline: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ScheduledNotification({self.regulation} {self.article}, "
            f"deadline={self.deadline.isoformat()}, status={self.status.value})>"
        )
