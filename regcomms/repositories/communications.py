"""Communication, template and timeline repository."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from regcomms.core.errors import ConcurrencyConflictError
from regcomms.logging_config import get_logger
from regcomms.models.communication import (
    Communication,
    CommunicationTemplate,
    CommunicationTimelineEntry,
)

logger = get_logger(__name__)

# Reference numbers are allocated as count+1; a concurrent insert may take
# the same number, in which case the unique index rejects it and we retry.
MAX_REFERENCE_ATTEMPTS = 5


def format_reference(year: int, sequence: int) -> str:
    return f"COM-{year}-{sequence:04d}"


class CommunicationRepository:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _next_reference(self, session: AsyncSession, year: int) -> str:
        prefix = f"COM-{year}-"
        result = await session.execute(
            select(func.count())
            .select_from(Communication)
            .where(Communication.reference.like(f"{prefix}%"))
        )
        return format_reference(year, result.scalar_one() + 1)

    async def create(self, year: int, **values: Any) -> Communication:
        """Insert a communication with the next free ``COM-<year>-<nnnn>`` reference."""
        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            async with self._session_maker() as session:
                reference = await self._next_reference(session, year)
                communication = Communication(reference=reference, **values)
                session.add(communication)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.debug(
                        "Communication reference taken, retrying",
                        reference=reference,
                        attempt=attempt,
                    )
                    continue
                return communication
        raise ConcurrencyConflictError("Communication reference", f"COM-{year}")

    async def get(self, communication_id: uuid.UUID) -> Communication | None:
        async with self._session_maker() as session:
            return await session.get(Communication, communication_id)

    async def compare_and_swap(
        self,
        communication_id: uuid.UUID,
        expected_version: int,
        **values: Any,
    ) -> Communication:
        """Version-checked update, see EscalationPathRepository.compare_and_swap."""
        async with self._session_maker() as session:
            result = await session.execute(
                update(Communication)
                .where(
                    Communication.id == communication_id,
                    Communication.version == expected_version,
                )
                .values(version=expected_version + 1, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ConcurrencyConflictError("Communication", communication_id)
            await session.commit()

            row = await session.get(Communication, communication_id, populate_existing=True)
        return row

    async def list_for_incident(self, incident_id: uuid.UUID) -> list[Communication]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(Communication)
                .where(Communication.incident_id == incident_id)
                .order_by(Communication.created_at, Communication.reference)
            )
            return list(result.scalars().all())

    # Timeline

    async def add_timeline_entry(
        self,
        incident_id: uuid.UUID,
        event_type: str,
        title: str,
        occurred_at: datetime,
        description: str | None = None,
        communication_id: uuid.UUID | None = None,
        escalation_path_id: uuid.UUID | None = None,
        actor: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> CommunicationTimelineEntry:
        entry = CommunicationTimelineEntry(
            incident_id=incident_id,
            event_type=event_type,
            title=title,
            description=description,
            communication_id=communication_id,
            escalation_path_id=escalation_path_id,
            actor=actor,
            occurred_at=occurred_at,
            details=details or {},
        )
        async with self._session_maker() as session:
            session.add(entry)
            await session.commit()
        return entry

    async def list_timeline(self, incident_id: uuid.UUID) -> list[CommunicationTimelineEntry]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(CommunicationTimelineEntry)
                .where(CommunicationTimelineEntry.incident_id == incident_id)
                .order_by(CommunicationTimelineEntry.occurred_at)
            )
            return list(result.scalars().all())

    # Templates

    async def get_template(self, template_id: uuid.UUID) -> CommunicationTemplate | None:
        async with self._session_maker() as session:
            return await session.get(CommunicationTemplate, template_id)

    async def create_template(self, **values: Any) -> CommunicationTemplate:
        template = CommunicationTemplate(**values)
        async with self._session_maker() as session:
            session.add(template)
            await session.commit()
        logger.info("Communication template created", template_id=str(template.id))
        return template
