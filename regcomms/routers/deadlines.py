"""Regulatory deadline router."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from regcomms.core.errors import InvalidStateTransitionError, NotFoundError
from regcomms.dependencies import ServiceContainer, get_services
from regcomms.schemas.scheduled_notification import (
    MarkSentRequest,
    ScheduledNotificationResponse,
)

router = APIRouter(prefix="/api/deadlines", tags=["deadlines"])


@router.get("/incidents/{incident_id}", response_model=list[ScheduledNotificationResponse])
async def list_incident_deadlines(
    incident_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> list[ScheduledNotificationResponse]:
    """List the statutory notification deadlines tracked for an incident."""
    notifications = await services.deadlines.list_for_incident(incident_id)
    return [ScheduledNotificationResponse.model_validate(n) for n in notifications]


@router.post("/{notification_id}/sent", response_model=ScheduledNotificationResponse)
async def mark_deadline_sent(
    notification_id: uuid.UUID,
    data: MarkSentRequest,
    services: ServiceContainer = Depends(get_services),
) -> ScheduledNotificationResponse:
    """Record that the regulator was notified.

    Returns 409 if the deadline was already closed as SENT or MISSED.
    """
    try:
        notification = await services.deadlines.mark_sent(notification_id, data.sent_at)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Scheduled notification not found",
        ) from exc
    except InvalidStateTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return ScheduledNotificationResponse.model_validate(notification)
