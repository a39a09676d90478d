"""Rule condition evaluation.

Pure functions, no I/O. Evaluation is fail-closed: an unknown operator or
an incompatible comparison yields False instead of raising.
"""

import enum
from collections.abc import Mapping
from typing import Any

from regcomms.schemas.escalation_rule import ConditionOperator, RuleCondition
from regcomms.schemas.incident import IncidentSnapshot


class _Missing:
    """Value of a field path that does not resolve."""

    def __eq__(self, other: object) -> bool:
        return False

    def __hash__(self) -> int:
        return 0

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def _step(current: Any, name: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(name, MISSING)
    return getattr(current, name, MISSING)


def get_field_value(snapshot: IncidentSnapshot, path: str) -> Any:
    """Resolve a dotted field path against an incident snapshot.

    The first segment is looked up on the snapshot itself, falling back to
    its ``attributes`` mapping. Returns MISSING when any segment is absent.
    """
    head, *rest = path.split(".")
    if head in IncidentSnapshot.model_fields:
        value = getattr(snapshot, head)
    else:
        value = snapshot.attributes.get(head, MISSING)

    for name in rest:
        if value is MISSING or value is None:
            return MISSING
        value = _step(value, name)
    return value


def _normalize(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    return value


def evaluate_condition(value: Any, operator: str, literal: Any) -> bool:
    """Apply ``operator`` to a resolved field value and a rule literal."""
    if value is MISSING:
        # Nothing equals a missing field, so only NOT_EQUALS can hold
        return operator == ConditionOperator.NOT_EQUALS.value

    value = _normalize(value)
    literal = _normalize(literal)

    try:
        if operator == ConditionOperator.EQUALS.value:
            return value == literal
        if operator == ConditionOperator.NOT_EQUALS.value:
            return value != literal
        if operator == ConditionOperator.GREATER_THAN.value:
            return value is not None and literal is not None and value > literal
        if operator == ConditionOperator.LESS_THAN.value:
            return value is not None and literal is not None and value < literal
        if operator == ConditionOperator.CONTAINS.value:
            return _contains(value, literal)
        if operator == ConditionOperator.IN.value:
            if not isinstance(literal, (list, tuple, set, frozenset)):
                return False
            return value in [_normalize(item) for item in literal]
    except TypeError:
        return False
    return False


def _contains(value: Any, literal: Any) -> bool:
    if value is None or literal is None:
        return False
    needle = str(literal).lower()
    if isinstance(value, (list, tuple, set, frozenset)):
        return any(needle in str(_normalize(item)).lower() for item in value)
    return needle in str(value).lower()


def condition_holds(snapshot: IncidentSnapshot, condition: RuleCondition) -> bool:
    value = get_field_value(snapshot, condition.field)
    return evaluate_condition(value, condition.operator, condition.value)
