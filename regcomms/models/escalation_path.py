"""Escalation path model.

One row per (incident, rule). Tracks the level sequence built from the
matched severity policy and the progress through it. Every write goes
through a version compare-and-swap in ``EscalationPathRepository``.
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Enum, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from regcomms.models.base import Base, JSONType, TimestampMixin, UTCDateTime, enum_values


class EscalationPathStatus(str, enum.Enum):
    """Lifecycle of an escalation path."""

    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    EXPIRED = "EXPIRED"


class EscalationPath(Base, TimestampMixin):
    """Live escalation state for an incident under one rule."""

    __tablename__ = "escalation_paths"
    __table_args__ = (
        UniqueConstraint("incident_id", "rule_id", name="uq_escalation_path_incident_rule"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("incidents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Catalog id; built-in rules need not exist in escalation_rules
    rule_id: Mapped[str] = mapped_column(String(100), nullable=False)

    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    max_level: Mapped[int] = mapped_column(Integer, nullable=False)

    # Serialized EscalationLevel objects, index 0 is level 1
    levels: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)

    status: Mapped[EscalationPathStatus] = mapped_column(
        Enum(EscalationPathStatus, name="escalationpathstatus", values_callable=enum_values),
        nullable=False,
        default=EscalationPathStatus.ACTIVE,
        index=True,
    )

    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    last_escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # When the sweep should next look at this path; NULL once terminal
    next_check_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True, index=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    evidence_event_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<EscalationPath(id={self.id}, level={self.current_level}/{self.max_level}, "
            f"status={self.status.value})>"
        )
