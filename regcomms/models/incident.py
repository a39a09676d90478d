"""Incident record model.

Incidents are owned by the incident-management side of the platform;
this engine only reads them (severity, type, timestamps, impact).
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Enum, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from regcomms.models.base import Base, JSONType, TimestampMixin, UTCDateTime, enum_values


class IncidentSeverity(str, enum.Enum):
    """Incident severity used to select a rule's severity policy."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Incident(Base, TimestampMixin):
    """An ICT / security incident as recorded by incident management."""

    __tablename__ = "incidents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Human-facing number, e.g. "INC-2025-0042"
    incident_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Free-form classification, e.g. "DATA_BREACH", "SERVICE_OUTAGE"
    incident_type: Mapped[str] = mapped_column(String(100), nullable=False)

    severity: Mapped[IncidentSeverity] = mapped_column(
        Enum(IncidentSeverity, name="incidentseverity", values_callable=enum_values),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(String(50), nullable=False, default="OPEN")

    occurred_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    detected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    affected_customers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Additional classification fields addressable from rule conditions
    attributes: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    def __repr__(self) -> str:
        return (
            f"<Incident(id={self.id}, type={self.incident_type}, "
            f"severity={self.severity.value})>"
        )
