"""Compliance evidence event model."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from regcomms.models.base import Base, JSONType, UTCDateTime


class EvidenceEvent(Base):
    """Immutable compliance evidence record. Never updated or deleted."""

    __tablename__ = "evidence_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # CRITICAL, HIGH, MEDIUM, LOW, INFO
    severity: Mapped[str] = mapped_column(String(20), nullable=False)

    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    articles: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<EvidenceEvent(type={self.event_type}, severity={self.severity})>"
