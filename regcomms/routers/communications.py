"""Communication router.

Single and bulk stakeholder notifications, recipient acknowledgments and
delivery receipts, the per-incident timeline and communication summary.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from regcomms.core.errors import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    TransportFailure,
)
from regcomms.dependencies import ServiceContainer, get_services
from regcomms.schemas.communication import (
    AcknowledgeNotificationRequest,
    BulkNotificationRequest,
    CommunicationResponse,
    CommunicationSummary,
    CommunicationTemplateCreate,
    CommunicationTemplateResponse,
    NotificationRequest,
    RecipientReceiptRequest,
    TimelineEntryResponse,
)

router = APIRouter(prefix="/api/communications", tags=["communications"])


@router.post(
    "",
    response_model=CommunicationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_notification(
    data: NotificationRequest,
    services: ServiceContainer = Depends(get_services),
) -> CommunicationResponse:
    """Send a notification to one stakeholder on one channel.

    Returns 502 when the channel rejected the message; the communication is
    still persisted as FAILED and its id is included in the error detail.
    """
    try:
        communication = await services.notifications.send_notification(data)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except TransportFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": str(exc),
                "channel": exc.channel,
                "communication_id": str(exc.communication_id) if exc.communication_id else None,
            },
        ) from exc
    return CommunicationResponse.model_validate(communication)


@router.post(
    "/bulk",
    response_model=CommunicationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_bulk_notification(
    data: BulkNotificationRequest,
    services: ServiceContainer = Depends(get_services),
) -> CommunicationResponse:
    """Send one communication to every active stakeholder holding one of the roles.

    Individual delivery failures are reported per recipient; the
    communication is FAILED only when no delivery succeeded.
    """
    try:
        communication = await services.notifications.send_bulk_notification(
            data.incident_id,
            data.roles,
            data.communication_type,
            data.channel,
            template_id=data.template_id,
        )
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return CommunicationResponse.model_validate(communication)


@router.post(
    "/templates",
    response_model=CommunicationTemplateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_template(
    data: CommunicationTemplateCreate,
    services: ServiceContainer = Depends(get_services),
) -> CommunicationTemplateResponse:
    template = await services.notifications.create_template(data)
    return CommunicationTemplateResponse.model_validate(template)


@router.get("/incidents/{incident_id}", response_model=list[CommunicationResponse])
async def list_incident_communications(
    incident_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> list[CommunicationResponse]:
    communications = await services.notifications.list_communications(incident_id)
    return [CommunicationResponse.model_validate(c) for c in communications]


@router.get("/incidents/{incident_id}/timeline", response_model=list[TimelineEntryResponse])
async def get_incident_timeline(
    incident_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> list[TimelineEntryResponse]:
    """Chronological communication timeline for an incident."""
    entries = await services.notifications.list_timeline(incident_id)
    return [TimelineEntryResponse.model_validate(entry) for entry in entries]


@router.get("/incidents/{incident_id}/summary", response_model=CommunicationSummary)
async def get_incident_summary(
    incident_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> CommunicationSummary:
    """Counts, delivery and acknowledgment rates, and deadline status."""
    return await services.summaries.get_communication_summary(incident_id)


@router.get("/{communication_id}", response_model=CommunicationResponse)
async def get_communication(
    communication_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> CommunicationResponse:
    try:
        communication = await services.notifications.get_communication(communication_id)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Communication not found",
        ) from exc
    return CommunicationResponse.model_validate(communication)


@router.post("/{communication_id}/acknowledge", response_model=CommunicationResponse)
async def acknowledge_notification(
    communication_id: uuid.UUID,
    data: AcknowledgeNotificationRequest,
    services: ServiceContainer = Depends(get_services),
) -> CommunicationResponse:
    """Record a recipient's acknowledgment. Repeating it is a no-op."""
    try:
        communication = await services.notifications.acknowledge_notification(
            communication_id, data.stakeholder_id
        )
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except ConcurrencyConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return CommunicationResponse.model_validate(communication)


@router.post("/{communication_id}/receipts", response_model=CommunicationResponse)
async def record_receipt(
    communication_id: uuid.UUID,
    data: RecipientReceiptRequest,
    services: ServiceContainer = Depends(get_services),
) -> CommunicationResponse:
    """Apply a DELIVERED or READ receipt reported by a channel."""
    try:
        communication = await services.notifications.record_recipient_status(
            communication_id, data.stakeholder_id, data.status
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (InvalidStateTransitionError, ConcurrencyConflictError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return CommunicationResponse.model_validate(communication)
