"""Escalation path repository.

All state changes go through ``compare_and_swap`` so a writer holding a
stale copy of the path can never overwrite a newer transition.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from regcomms.core.errors import ConcurrencyConflictError
from regcomms.logging_config import get_logger
from regcomms.models.escalation_path import EscalationPath, EscalationPathStatus

logger = get_logger(__name__)


class EscalationPathRepository:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, path_id: uuid.UUID) -> EscalationPath | None:
        async with self._session_maker() as session:
            return await session.get(EscalationPath, path_id)

    async def get_for_rule(self, incident_id: uuid.UUID, rule_id: str) -> EscalationPath | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(EscalationPath).where(
                    EscalationPath.incident_id == incident_id,
                    EscalationPath.rule_id == rule_id,
                )
            )
            return result.scalar_one_or_none()

    async def create(self, path: EscalationPath) -> tuple[EscalationPath, bool]:
        """Insert a new path.

        Returns:
            (path, created). When a path already exists for the same
            (incident, rule) the stored one is returned with created=False.
        """
        async with self._session_maker() as session:
            session.add(path)
            try:
                await session.commit()
            except IntegrityError:
                # Unique constraint: another evaluation already created it
                await session.rollback()
                logger.debug(
                    "Escalation path already exists (race condition)",
                    incident_id=str(path.incident_id),
                    rule_id=path.rule_id,
                )
                existing = await self.get_for_rule(path.incident_id, path.rule_id)
                if existing is None:
                    raise
                return existing, False
        return path, True

    async def compare_and_swap(
        self,
        path_id: uuid.UUID,
        expected_version: int,
        **values: Any,
    ) -> EscalationPath:
        """Apply ``values`` only if the row is still at ``expected_version``.

        Raises:
            ConcurrencyConflictError: another writer got there first.
        """
        async with self._session_maker() as session:
            result = await session.execute(
                update(EscalationPath)
                .where(
                    EscalationPath.id == path_id,
                    EscalationPath.version == expected_version,
                )
                .values(version=expected_version + 1, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ConcurrencyConflictError("EscalationPath", path_id)
            await session.commit()

            row = await session.get(EscalationPath, path_id, populate_existing=True)
        return row

    async def list_for_incident(self, incident_id: uuid.UUID) -> list[EscalationPath]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(EscalationPath)
                .where(EscalationPath.incident_id == incident_id)
                .order_by(EscalationPath.started_at)
            )
            return list(result.scalars().all())

    async def find_due(self, now: datetime, limit: int) -> list[uuid.UUID]:
        """Ids of ACTIVE paths whose next check time has passed, oldest first."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(EscalationPath.id)
                .where(
                    EscalationPath.status == EscalationPathStatus.ACTIVE,
                    EscalationPath.next_check_at.is_not(None),
                    EscalationPath.next_check_at <= now,
                )
                .order_by(EscalationPath.next_check_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_active(self, incident_id: uuid.UUID) -> int:
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.count())
                .select_from(EscalationPath)
                .where(
                    EscalationPath.incident_id == incident_id,
                    EscalationPath.status == EscalationPathStatus.ACTIVE,
                )
            )
            return result.scalar_one()
