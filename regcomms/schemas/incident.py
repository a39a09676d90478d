"""Typed, read-only incident view used by rule evaluation."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from regcomms.models.incident import IncidentSeverity


class IncidentSnapshot(BaseModel):
    """Immutable snapshot of the incident fields rules may reference.

    Condition field paths resolve against these attributes first, then
    against ``attributes`` for anything the incident record carries beyond
    the typed fields. ``new_severity`` is set by severity-upgrade callers.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    incident_number: str | None = None
    title: str = ""
    description: str = ""
    incident_type: str
    severity: IncidentSeverity
    status: str = "OPEN"
    occurred_at: datetime | None = None
    detected_at: datetime | None = None
    created_at: datetime | None = None
    affected_customers: int = 0
    new_severity: IncidentSeverity | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    def reference_time(self, fallback: datetime) -> datetime:
        """Occurrence time used for deadlines: occurred_at, else created_at, else fallback."""
        return self.occurred_at or self.created_at or fallback
