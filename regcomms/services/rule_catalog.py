"""Escalation rule catalog.

Holds the built-in escalation matrix plus operator rules from the
database. A stored rule with the same id as a built-in one replaces it in
place; other stored rules follow the built-ins in creation order.
"""

from collections.abc import Sequence

from regcomms.logging_config import get_logger
from regcomms.models.incident import IncidentSeverity
from regcomms.models.stakeholder import CommunicationChannel as Channel
from regcomms.models.stakeholder import StakeholderRole as Role
from regcomms.repositories.escalation_rules import EscalationRuleRepository
from regcomms.schemas.escalation_rule import (
    EscalationRuleDefinition,
    EscalationTrigger,
    RegulatoryRequirement,
    RuleCondition,
    RuleTrigger,
    SeverityPolicy,
)
from regcomms.schemas.incident import IncidentSnapshot
from regcomms.services.rule_matcher import match_rules

logger = get_logger(__name__)

# Order matters: among equal priorities the earlier rule wins, so the
# data-breach rule precedes the generic critical-incident rule.
DEFAULT_ESCALATION_MATRIX: tuple[EscalationRuleDefinition, ...] = (
    EscalationRuleDefinition(
        id="rule-data-breach",
        name="Data Breach Escalation",
        description="GDPR data breach notification and escalation",
        triggers=[
            RuleTrigger(trigger=EscalationTrigger.DATA_BREACH),
            RuleTrigger(
                trigger=EscalationTrigger.INCIDENT_CREATED,
                conditions=[
                    RuleCondition(field="incident_type", operator="CONTAINS", value="DATA_BREACH")
                ],
            ),
        ],
        severity_policies=[
            SeverityPolicy(
                severity=IncidentSeverity.CRITICAL,
                stakeholder_roles=[Role.DPO, Role.LEGAL_TEAM, Role.CISO, Role.CEO],
                channels=[Channel.EMAIL, Channel.SMS, Channel.PHONE],
                time_to_notify_minutes=0,
                require_acknowledgment=True,
                escalate_if_no_ack_minutes=15,
                escalate_to=[Role.BOARD_MEMBER],
            ),
        ],
        regulatory_requirements=[
            RegulatoryRequirement(
                regulation="GDPR",
                article="Art.33",
                deadline_hours=72,
                mandatory_recipients=[Role.DPO, Role.NCA],
            ),
        ],
        priority=1,
    ),
    EscalationRuleDefinition(
        id="rule-critical-incidents",
        name="Critical Incident Escalation",
        description="Immediate escalation for critical incidents",
        triggers=[
            RuleTrigger(
                trigger=EscalationTrigger.INCIDENT_CREATED,
                conditions=[RuleCondition(field="severity", operator="EQUALS", value="CRITICAL")],
            ),
            RuleTrigger(
                trigger=EscalationTrigger.SEVERITY_UPGRADE,
                conditions=[
                    RuleCondition(field="new_severity", operator="EQUALS", value="CRITICAL")
                ],
            ),
        ],
        severity_policies=[
            SeverityPolicy(
                severity=IncidentSeverity.CRITICAL,
                stakeholder_roles=[
                    Role.INCIDENT_MANAGER,
                    Role.SECURITY_TEAM,
                    Role.OPERATIONS_TEAM,
                    Role.CISO,
                    Role.CTO,
                ],
                channels=[Channel.EMAIL, Channel.SMS, Channel.SLACK],
                time_to_notify_minutes=0,
                require_acknowledgment=True,
                escalate_if_no_ack_minutes=15,
                escalate_to=[Role.CEO, Role.BOARD_MEMBER],
            ),
        ],
        regulatory_requirements=[
            RegulatoryRequirement(
                regulation="DORA",
                article="Art.19",
                deadline_hours=4,
                mandatory_recipients=[Role.NCA, Role.CISO],
            ),
            RegulatoryRequirement(
                regulation="NIS2",
                article="Art.23",
                deadline_hours=24,
                mandatory_recipients=[Role.CSIRT, Role.NCA],
            ),
        ],
        priority=1,
    ),
    EscalationRuleDefinition(
        id="rule-high-incidents",
        name="High Severity Escalation",
        description="Standard escalation for high severity incidents",
        triggers=[
            RuleTrigger(
                trigger=EscalationTrigger.INCIDENT_CREATED,
                conditions=[RuleCondition(field="severity", operator="EQUALS", value="HIGH")],
            ),
        ],
        severity_policies=[
            SeverityPolicy(
                severity=IncidentSeverity.HIGH,
                stakeholder_roles=[Role.INCIDENT_MANAGER, Role.SECURITY_TEAM, Role.OPERATIONS_TEAM],
                channels=[Channel.EMAIL, Channel.SLACK],
                time_to_notify_minutes=5,
                require_acknowledgment=True,
                escalate_if_no_ack_minutes=30,
                escalate_to=[Role.CISO, Role.CTO],
            ),
        ],
        priority=2,
    ),
    EscalationRuleDefinition(
        id="rule-customer-impact",
        name="Customer Impact Escalation",
        description="Escalation when customers are significantly impacted",
        triggers=[
            RuleTrigger(
                trigger=EscalationTrigger.CUSTOMER_IMPACT,
                conditions=[
                    RuleCondition(field="affected_customers", operator="GREATER_THAN", value=100)
                ],
            ),
        ],
        severity_policies=[
            SeverityPolicy(
                severity=IncidentSeverity.HIGH,
                stakeholder_roles=[Role.CUSTOMER_SERVICE, Role.PR_TEAM, Role.COO],
                channels=[Channel.EMAIL, Channel.SLACK],
                time_to_notify_minutes=10,
                require_acknowledgment=True,
                escalate_if_no_ack_minutes=30,
                escalate_to=[Role.CEO],
            ),
        ],
        priority=2,
    ),
)


def merge_rules(
    defaults: Sequence[EscalationRuleDefinition],
    stored: Sequence[EscalationRuleDefinition],
) -> tuple[EscalationRuleDefinition, ...]:
    """Overlay stored rules on the defaults, keeping catalog order."""
    by_id = {rule.id: rule for rule in stored}
    merged = [by_id.pop(rule.id, rule) for rule in defaults]
    merged.extend(rule for rule in stored if rule.id in by_id)
    return tuple(merged)


class RuleCatalog:
    """In-memory rule set, refreshed by ``reload()``.

    The tuple is replaced in one assignment, so readers never observe a
    partially loaded catalog and need no lock.
    """

    def __init__(
        self,
        repository: EscalationRuleRepository | None = None,
        defaults: Sequence[EscalationRuleDefinition] = DEFAULT_ESCALATION_MATRIX,
    ):
        self._repository = repository
        self._defaults = tuple(defaults)
        self._rules: tuple[EscalationRuleDefinition, ...] = self._defaults

    @property
    def rules(self) -> tuple[EscalationRuleDefinition, ...]:
        return self._rules

    def get(self, rule_id: str) -> EscalationRuleDefinition | None:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    async def reload(self) -> int:
        """Re-read stored rules and swap in the merged catalog.

        Returns:
            Number of rules now in the catalog.
        """
        stored = await self._repository.list_all() if self._repository is not None else []
        self._rules = merge_rules(self._defaults, stored)
        logger.info(
            "Escalation rule catalog loaded",
            rule_count=len(self._rules),
            stored_rules=len(stored),
        )
        return len(self._rules)

    def match(
        self,
        incident: IncidentSnapshot,
        trigger: EscalationTrigger,
    ) -> list[EscalationRuleDefinition]:
        return match_rules(self._rules, incident, trigger)
