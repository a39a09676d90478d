"""Escalation router.

Evaluates incidents against the rule catalog and drives escalation paths
through check, acknowledge and expire.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from regcomms.core.errors import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    NotFoundError,
)
from regcomms.dependencies import ServiceContainer, get_services
from regcomms.schemas.escalation_path import (
    AcknowledgeEscalationRequest,
    EscalationDecisionResponse,
    EscalationPathResponse,
    EvaluateIncidentRequest,
    EvaluateIncidentResponse,
)

router = APIRouter(prefix="/api/escalations", tags=["escalations"])


@router.post("/evaluate", response_model=EvaluateIncidentResponse)
async def evaluate_incident(
    data: EvaluateIncidentRequest,
    services: ServiceContainer = Depends(get_services),
) -> EvaluateIncidentResponse:
    """Evaluate an incident event and start escalation if a rule applies.

    ``escalated`` is false when no rule or severity policy applies. An
    incident already escalated under the matching rule returns the
    existing path.
    """
    incident = await services.incidents.get(data.incident_id)
    if incident is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Incident not found",
        )

    incident = incident.model_copy(
        update={
            "new_severity": data.new_severity,
            "attributes": {**incident.attributes, **data.attributes},
        }
    )
    path = await services.escalations.evaluate_incident(incident, data.trigger)
    if path is None:
        return EvaluateIncidentResponse(escalated=False)
    return EvaluateIncidentResponse(
        escalated=True,
        path=EscalationPathResponse.model_validate(path),
    )


@router.get("/incidents/{incident_id}", response_model=list[EscalationPathResponse])
async def list_incident_escalations(
    incident_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> list[EscalationPathResponse]:
    """List every escalation path of an incident, oldest first."""
    paths = await services.escalations.list_paths(incident_id)
    return [EscalationPathResponse.model_validate(path) for path in paths]


@router.post("/incidents/{incident_id}/expire")
async def expire_incident_escalations(
    incident_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> dict[str, int]:
    """Stop every active escalation of an incident that was closed elsewhere."""
    expired = await services.escalations.expire_escalations(incident_id)
    return {"expired": expired}


@router.get("/{path_id}", response_model=EscalationPathResponse)
async def get_escalation(
    path_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> EscalationPathResponse:
    try:
        path = await services.escalations.get_path(path_id)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Escalation path not found",
        ) from exc
    return EscalationPathResponse.model_validate(path)


@router.post("/{path_id}/check", response_model=EscalationDecisionResponse)
async def check_escalation(
    path_id: uuid.UUID,
    services: ServiceContainer = Depends(get_services),
) -> EscalationDecisionResponse:
    """Advance the path if its next step is due.

    Safe to call repeatedly; the background sweep calls the same operation.
    """
    try:
        decision = await services.escalations.check_escalation(path_id)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Escalation path not found",
        ) from exc
    return EscalationDecisionResponse(
        action=decision.action,
        path_id=path_id,
        current_level=decision.level,
        reason=decision.reason,
    )


@router.post("/{path_id}/acknowledge", response_model=EscalationPathResponse)
async def acknowledge_escalation(
    path_id: uuid.UUID,
    data: AcknowledgeEscalationRequest,
    services: ServiceContainer = Depends(get_services),
) -> EscalationPathResponse:
    """Acknowledge the current level and stop further escalation.

    Returns 409 if the path was already expired.
    """
    try:
        path = await services.escalations.acknowledge_escalation(path_id, data.actor)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Escalation path not found",
        ) from exc
    except (InvalidStateTransitionError, ConcurrencyConflictError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return EscalationPathResponse.model_validate(path)
