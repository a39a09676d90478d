"""Match incidents against escalation rules."""

from collections.abc import Iterable

from regcomms.schemas.escalation_rule import (
    EscalationRuleDefinition,
    EscalationTrigger,
    RuleTrigger,
)
from regcomms.schemas.incident import IncidentSnapshot
from regcomms.services.condition_evaluator import condition_holds


def trigger_matches(
    entry: RuleTrigger,
    incident: IncidentSnapshot,
    trigger: EscalationTrigger,
) -> bool:
    """A trigger entry fires when its trigger matches and all its conditions hold."""
    if entry.trigger != trigger:
        return False
    return all(condition_holds(incident, condition) for condition in entry.conditions)


def match_rules(
    rules: Iterable[EscalationRuleDefinition],
    incident: IncidentSnapshot,
    trigger: EscalationTrigger,
) -> list[EscalationRuleDefinition]:
    """Active rules with a firing trigger entry, ascending by priority.

    ``sorted`` is stable, so rules of equal priority keep catalog order.
    Callers act on the first element only.
    """
    matched = [
        rule
        for rule in rules
        if rule.is_active
        and any(trigger_matches(entry, incident, trigger) for entry in rule.triggers)
    ]
    return sorted(matched, key=lambda rule: rule.priority)
