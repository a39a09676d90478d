"""Incident and stakeholder lookups.

The engine consumes these through the two protocols below; the SQL
implementations read the ``incidents`` and ``stakeholders`` tables.
"""

import uuid
from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from regcomms.models.incident import Incident
from regcomms.models.stakeholder import Stakeholder, StakeholderRole
from regcomms.schemas.incident import IncidentSnapshot
from regcomms.schemas.stakeholder import StakeholderInfo


class IncidentLookup(Protocol):
    async def get(self, incident_id: uuid.UUID) -> IncidentSnapshot | None: ...


class StakeholderDirectory(Protocol):
    async def get(self, stakeholder_id: uuid.UUID) -> StakeholderInfo | None: ...

    async def find_by_roles(self, roles: Iterable[StakeholderRole]) -> list[StakeholderInfo]: ...


class SqlIncidentLookup:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, incident_id: uuid.UUID) -> IncidentSnapshot | None:
        async with self._session_maker() as session:
            incident = await session.get(Incident, incident_id)
        if incident is None:
            return None
        return IncidentSnapshot.model_validate(incident)


class SqlStakeholderDirectory:
    """Active stakeholders only; deactivated entries are never notified."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, stakeholder_id: uuid.UUID) -> StakeholderInfo | None:
        async with self._session_maker() as session:
            stakeholder = await session.get(Stakeholder, stakeholder_id)
        if stakeholder is None or not stakeholder.is_active:
            return None
        return StakeholderInfo.model_validate(stakeholder)

    async def find_by_roles(self, roles: Iterable[StakeholderRole]) -> list[StakeholderInfo]:
        roles = list(roles)
        if not roles:
            return []
        async with self._session_maker() as session:
            result = await session.execute(
                select(Stakeholder)
                .where(Stakeholder.role.in_(roles), Stakeholder.is_active.is_(True))
                .order_by(Stakeholder.role, Stakeholder.name)
            )
            rows = result.scalars().all()
        return [StakeholderInfo.model_validate(row) for row in rows]
