"""Stakeholder directory model.

Stakeholders are the people and authorities who may be notified about
an incident, addressed by role rather than by name in escalation rules.
"""

import enum
import uuid

from sqlalchemy import Boolean, Enum, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from regcomms.models.base import Base, JSONType, TimestampMixin, enum_values


class StakeholderType(str, enum.Enum):
    """Broad audience a stakeholder belongs to."""

    INTERNAL = "INTERNAL"
    MANAGEMENT = "MANAGEMENT"
    CUSTOMER = "CUSTOMER"
    REGULATOR = "REGULATOR"
    VENDOR = "VENDOR"
    PARTNER = "PARTNER"
    MEDIA = "MEDIA"
    PUBLIC = "PUBLIC"


class StakeholderRole(str, enum.Enum):
    """Role that escalation rules target."""

    CISO = "CISO"
    CTO = "CTO"
    CEO = "CEO"
    CFO = "CFO"
    COO = "COO"
    BOARD_MEMBER = "BOARD_MEMBER"
    DPO = "DPO"  # Data Protection Officer
    INCIDENT_MANAGER = "INCIDENT_MANAGER"
    OPERATIONS_TEAM = "OPERATIONS_TEAM"
    SECURITY_TEAM = "SECURITY_TEAM"
    LEGAL_TEAM = "LEGAL_TEAM"
    PR_TEAM = "PR_TEAM"
    CUSTOMER_SERVICE = "CUSTOMER_SERVICE"
    AFFECTED_DEPARTMENT = "AFFECTED_DEPARTMENT"
    NCA = "NCA"  # National Competent Authority
    CSIRT = "CSIRT"
    ECB = "ECB"
    ENISA = "ENISA"


class CommunicationChannel(str, enum.Enum):
    """Channel a notification is delivered through."""

    EMAIL = "EMAIL"
    SMS = "SMS"
    PHONE = "PHONE"
    SLACK = "SLACK"
    TEAMS = "TEAMS"
    PORTAL = "PORTAL"
    WEBHOOK = "WEBHOOK"
    OFFICIAL_LETTER = "OFFICIAL_LETTER"
    PRESS_RELEASE = "PRESS_RELEASE"


class Stakeholder(Base, TimestampMixin):
    """A notifiable person or authority.

    ``contacts`` maps a CommunicationChannel value to the address used on
    that channel, e.g. {"EMAIL": "ciso@example.com", "SMS": "+3312345678"}.
    """

    __tablename__ = "stakeholders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    stakeholder_type: Mapped[StakeholderType] = mapped_column(
        Enum(StakeholderType, name="stakeholdertype", values_callable=enum_values),
        nullable=False,
        default=StakeholderType.INTERNAL,
    )

    role: Mapped[StakeholderRole] = mapped_column(
        Enum(StakeholderRole, name="stakeholderrole", values_callable=enum_values),
        nullable=False,
        index=True,
    )

    organization: Mapped[str | None] = mapped_column(String(200), nullable=True)

    contacts: Mapped[dict[str, str]] = mapped_column(JSONType, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Stakeholder(name={self.name!r}, role={self.role.value})>"
