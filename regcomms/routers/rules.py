"""Escalation rule router.

Stored rules are merged over the built-in matrix; every write reloads the
in-memory catalog.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from regcomms.dependencies import ServiceContainer, get_services
from regcomms.schemas.escalation_rule import EscalationRuleDefinition

router = APIRouter(prefix="/api/escalation-rules", tags=["escalation-rules"])


@router.get("", response_model=list[EscalationRuleDefinition])
async def list_rules(
    services: ServiceContainer = Depends(get_services),
) -> list[EscalationRuleDefinition]:
    """List the rules currently in effect, in evaluation order."""
    return list(services.catalog.rules)


@router.get("/{rule_id}", response_model=EscalationRuleDefinition)
async def get_rule(
    rule_id: str,
    services: ServiceContainer = Depends(get_services),
) -> EscalationRuleDefinition:
    rule = services.catalog.get(rule_id)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Escalation rule not found",
        )
    return rule


@router.put("/{rule_id}", response_model=EscalationRuleDefinition)
async def save_rule(
    rule_id: str,
    data: EscalationRuleDefinition,
    services: ServiceContainer = Depends(get_services),
) -> EscalationRuleDefinition:
    """Create or replace a stored rule.

    A stored rule with the id of a built-in rule overrides it.
    """
    if data.id != rule_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Rule id in body does not match path",
        )
    saved = await services.rules.upsert(data)
    await services.catalog.reload()
    return saved


@router.post("/reload")
async def reload_rules(
    services: ServiceContainer = Depends(get_services),
) -> dict[str, int]:
    """Re-read stored rules into the catalog."""
    count = await services.catalog.reload()
    return {"rule_count": count}
