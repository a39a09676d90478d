"""Escalation rule repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from regcomms.logging_config import get_logger
from regcomms.models.escalation_rule import EscalationRule
from regcomms.schemas.escalation_rule import EscalationRuleDefinition

logger = get_logger(__name__)


class EscalationRuleRepository:
    """Operator-authored rules stored in ``escalation_rules``."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def list_all(self) -> list[EscalationRuleDefinition]:
        """All stored rules, oldest first."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(EscalationRule).order_by(EscalationRule.created_at, EscalationRule.id)
            )
            rows = result.scalars().all()
        return [EscalationRuleDefinition.model_validate(row) for row in rows]

    async def get(self, rule_id: str) -> EscalationRuleDefinition | None:
        async with self._session_maker() as session:
            row = await session.get(EscalationRule, rule_id)
        if row is None:
            return None
        return EscalationRuleDefinition.model_validate(row)

    async def upsert(self, definition: EscalationRuleDefinition) -> EscalationRuleDefinition:
        """Insert a rule or replace the stored rule with the same id."""
        values = definition.to_row()
        async with self._session_maker() as session:
            row = await session.get(EscalationRule, definition.id)
            if row is None:
                row = EscalationRule(**values)
                session.add(row)
                created = True
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                created = False
            await session.commit()

        logger.info(
            "Escalation rule saved",
            rule_id=definition.id,
            created=created,
            priority=definition.priority,
        )
        return definition
