"""Scheduled regulatory notification repository.

Transitions compare-and-swap on ``status`` so the sweep and an operator
marking a deadline as met cannot both win.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from regcomms.logging_config import get_logger
from regcomms.models.scheduled_notification import (
    ScheduledNotification,
    ScheduledNotificationStatus,
)

logger = get_logger(__name__)


class ScheduledNotificationRepository:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def create_if_absent(self, notification: ScheduledNotification) -> ScheduledNotification:
        """Insert, or return the existing row for the same (incident, regulation, article)."""
        async with self._session_maker() as session:
            session.add(notification)
            try:
                await session.commit()
                return notification
            except IntegrityError:
                await session.rollback()

            result = await session.execute(
                select(ScheduledNotification).where(
                    ScheduledNotification.incident_id == notification.incident_id,
                    ScheduledNotification.regulation == notification.regulation,
                    ScheduledNotification.article == notification.article,
                )
            )
            existing = result.scalar_one()
        logger.debug(
            "Scheduled notification already exists",
            incident_id=str(notification.incident_id),
            regulation=notification.regulation,
            article=notification.article,
        )
        return existing

    async def get(self, notification_id: uuid.UUID) -> ScheduledNotification | None:
        async with self._session_maker() as session:
            return await session.get(ScheduledNotification, notification_id)

    async def list_for_incident(self, incident_id: uuid.UUID) -> list[ScheduledNotification]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(ScheduledNotification)
                .where(ScheduledNotification.incident_id == incident_id)
                .order_by(ScheduledNotification.deadline)
            )
            return list(result.scalars().all())

    async def find_due_reminders(self, now: datetime, limit: int) -> list[ScheduledNotification]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(ScheduledNotification)
                .where(
                    ScheduledNotification.status == ScheduledNotificationStatus.PENDING,
                    ScheduledNotification.reminder_at.is_not(None),
                    ScheduledNotification.reminder_at <= now,
                    ScheduledNotification.deadline > now,
                )
                .order_by(ScheduledNotification.reminder_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_overdue(self, now: datetime, limit: int) -> list[ScheduledNotification]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(ScheduledNotification)
                .where(
                    ScheduledNotification.status.in_(
                        [
                            ScheduledNotificationStatus.PENDING,
                            ScheduledNotificationStatus.REMINDED,
                        ]
                    ),
                    ScheduledNotification.deadline < now,
                )
                .order_by(ScheduledNotification.deadline)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def transition(
        self,
        notification_id: uuid.UUID,
        expected_status: ScheduledNotificationStatus,
        **values: Any,
    ) -> ScheduledNotification | None:
        """Apply ``values`` only if the row is still in ``expected_status``.

        Returns:
            The updated row, or None when another writer moved it first.
        """
        async with self._session_maker() as session:
            result = await session.execute(
                update(ScheduledNotification)
                .where(
                    ScheduledNotification.id == notification_id,
                    ScheduledNotification.status == expected_status,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()

            return await session.get(
                ScheduledNotification, notification_id, populate_existing=True
            )
