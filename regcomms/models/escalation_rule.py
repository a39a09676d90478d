"""Escalation rule model.

Operator-authored rules binding triggers and conditions to per-severity
notification policy and regulatory deadlines. The nested structures are
stored as JSON and validated through ``EscalationRuleDefinition``.
"""

from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from regcomms.models.base import Base, JSONType, TimestampMixin


class EscalationRule(Base, TimestampMixin):
    """Persisted escalation rule.

    The primary key is a stable slug (e.g. "rule-data-breach") so the
    default matrix can be seeded and overridden by id.
    """

    __tablename__ = "escalation_rules"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # [{"trigger": ..., "conditions": [{"field", "operator", "value"}]}]
    triggers: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    severity_policies: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    regulatory_requirements: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    # Lower values are evaluated first
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    def __repr__(self) -> str:
        return f"<EscalationRule(id={self.id!r}, priority={self.priority})>"
