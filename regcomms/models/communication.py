"""Communication, template and timeline models."""

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from regcomms.models.base import Base, JSONType, TimestampMixin, UTCDateTime, enum_values
from regcomms.models.stakeholder import CommunicationChannel


class CommunicationType(str, enum.Enum):
    """Purpose of a communication."""

    INITIAL_NOTIFICATION = "INITIAL_NOTIFICATION"
    ESCALATION = "ESCALATION"
    STATUS_UPDATE = "STATUS_UPDATE"
    RESOLUTION = "RESOLUTION"
    POST_INCIDENT = "POST_INCIDENT"
    REGULATORY_REPORT = "REGULATORY_REPORT"
    CUSTOMER_ADVISORY = "CUSTOMER_ADVISORY"
    PUBLIC_STATEMENT = "PUBLIC_STATEMENT"
    INTERNAL_BRIEFING = "INTERNAL_BRIEFING"


class CommunicationStatus(str, enum.Enum):
    """Delivery status, used both per recipient and for the whole communication."""

    SENDING = "SENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    FAILED = "FAILED"


class Communication(Base, TimestampMixin):
    """One dispatch attempt to one or more stakeholders.

    ``recipients`` holds serialized Recipient objects; ``delivery_stats``
    is always recomputed from them and never edited independently.
    """

    __tablename__ = "communications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # "COM-2025-0001"
    reference: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("incidents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    communication_type: Mapped[CommunicationType] = mapped_column(
        Enum(CommunicationType, name="communicationtype", values_callable=enum_values),
        nullable=False,
    )

    channel: Mapped[CommunicationChannel] = mapped_column(
        Enum(CommunicationChannel, name="communicationchannel", values_callable=enum_values),
        nullable=False,
    )

    subject: Mapped[str] = mapped_column(String(500), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    content_format: Mapped[str] = mapped_column(String(20), nullable=False, default="HTML")

    template_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    escalation_path_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("escalation_paths.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    escalation_level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    recipients: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    status: Mapped[CommunicationStatus] = mapped_column(
        Enum(CommunicationStatus, name="communicationstatus", values_callable=enum_values),
        nullable=False,
        default=CommunicationStatus.SENDING,
    )

    delivery_stats: Mapped[dict[str, int]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    evidence_event_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Communication(reference={self.reference}, "
            f"type={self.communication_type.value}, status={self.status.value})>"
        )


class CommunicationTemplate(Base, TimestampMixin):
    """Named message template with ``{{variable}}`` placeholders."""

    __tablename__ = "communication_templates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    communication_type: Mapped[CommunicationType] = mapped_column(
        Enum(CommunicationType, name="communicationtype", values_callable=enum_values),
        nullable=False,
    )

    subject: Mapped[str] = mapped_column(String(500), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    content_format: Mapped[str] = mapped_column(String(20), nullable=False, default="HTML")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CommunicationTimelineEntry(Base):
    """Append-only per-incident communication timeline."""

    __tablename__ = "communication_timeline"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("incidents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # COMMUNICATION_SENT, COMMUNICATION_FAILED, ESCALATION_TRIGGERED, ...
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    communication_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    escalation_path_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    actor: Mapped[str | None] = mapped_column(String(200), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
        index=True,
    )

    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
