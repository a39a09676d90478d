"""Compliance evidence emission.

Fire-and-forget: a failure to record evidence is logged and never
propagates into the escalation or notification flow.
"""

import uuid
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from regcomms.logging_config import get_logger
from regcomms.models.evidence_event import EvidenceEvent

logger = get_logger(__name__)

ESCALATION_TRIGGERED = "COMMUNICATION.ESCALATION.TRIGGERED"
ESCALATION_LEVEL_TRIGGERED = "COMMUNICATION.ESCALATION.LEVEL_TRIGGERED"
ESCALATION_ACKNOWLEDGED = "COMMUNICATION.ESCALATION.ACKNOWLEDGED"
ESCALATION_EXPIRED = "COMMUNICATION.ESCALATION.EXPIRED"
NOTIFICATION_SENT = "COMMUNICATION.NOTIFICATION.SENT"
NOTIFICATION_ACKNOWLEDGED = "COMMUNICATION.NOTIFICATION.ACKNOWLEDGED"
REGULATORY_DEADLINE_WARNING = "COMMUNICATION.REGULATORY_DEADLINE_WARNING"
REGULATORY_DEADLINE_MISSED = "COMMUNICATION.REGULATORY_DEADLINE_MISSED"


class EvidenceEmitter(Protocol):
    async def record(
        self,
        event_type: str,
        severity: str,
        tags: list[str],
        articles: list[str],
        metadata: dict[str, Any],
    ) -> uuid.UUID | None: ...


class SqlEvidenceEmitter:
    """Appends evidence events to the ``evidence_events`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def record(
        self,
        event_type: str,
        severity: str,
        tags: list[str],
        articles: list[str],
        metadata: dict[str, Any],
    ) -> uuid.UUID | None:
        """Write an evidence event.

        Returns:
            The new event id, or None if it could not be written.
        """
        try:
            event = EvidenceEvent(
                id=uuid.uuid4(),
                event_type=event_type,
                severity=severity,
                tags=list(tags),
                articles=list(articles),
                event_metadata=metadata,
            )
            async with self._session_maker() as session:
                session.add(event)
                await session.commit()
        except Exception:
            logger.exception("Failed to write evidence event", event_type=event_type)
            return None

        logger.debug("Evidence recorded", event_type=event_type, event_id=str(event.id))
        return event.id
