"""Tests for rule matching and the escalation rule catalog."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from regcomms.models.incident import IncidentSeverity
from regcomms.models.stakeholder import CommunicationChannel, StakeholderRole
from regcomms.repositories.escalation_rules import EscalationRuleRepository
from regcomms.schemas.escalation_rule import (
    EscalationRuleDefinition,
    EscalationTrigger,
    RuleCondition,
    RuleTrigger,
    SeverityPolicy,
)
from regcomms.schemas.incident import IncidentSnapshot
from regcomms.services.rule_catalog import DEFAULT_ESCALATION_MATRIX, RuleCatalog, merge_rules
from regcomms.services.rule_matcher import match_rules, trigger_matches


def make_snapshot(**overrides) -> IncidentSnapshot:
    values = {
        "id": uuid.uuid4(),
        "incident_type": "SERVICE_OUTAGE",
        "severity": IncidentSeverity.HIGH,
    }
    values.update(overrides)
    return IncidentSnapshot(**values)


def make_rule(rule_id: str, priority: int = 100, is_active: bool = True, **overrides):
    values = {
        "id": rule_id,
        "name": rule_id.replace("-", " ").title(),
        "triggers": [RuleTrigger(trigger=EscalationTrigger.MANUAL)],
        "severity_policies": [
            SeverityPolicy(
                severity=IncidentSeverity.HIGH,
                stakeholder_roles=[StakeholderRole.INCIDENT_MANAGER],
                channels=[CommunicationChannel.EMAIL],
            )
        ],
        "priority": priority,
        "is_active": is_active,
    }
    values.update(overrides)
    return EscalationRuleDefinition(**values)


class TestTriggerMatches:
    def test_trigger_without_conditions(self):
        entry = RuleTrigger(trigger=EscalationTrigger.DATA_BREACH)
        assert trigger_matches(entry, make_snapshot(), EscalationTrigger.DATA_BREACH) is True

    def test_different_trigger(self):
        entry = RuleTrigger(trigger=EscalationTrigger.DATA_BREACH)
        assert trigger_matches(entry, make_snapshot(), EscalationTrigger.MANUAL) is False

    def test_all_conditions_must_hold(self):
        entry = RuleTrigger(
            trigger=EscalationTrigger.CUSTOMER_IMPACT,
            conditions=[
                RuleCondition(field="affected_customers", operator="GREATER_THAN", value=100),
                RuleCondition(field="severity", operator="EQUALS", value="HIGH"),
            ],
        )
        incident = make_snapshot(affected_customers=500)
        assert trigger_matches(entry, incident, EscalationTrigger.CUSTOMER_IMPACT) is True

        incident = make_snapshot(affected_customers=500, severity=IncidentSeverity.LOW)
        assert trigger_matches(entry, incident, EscalationTrigger.CUSTOMER_IMPACT) is False


class TestMatchRules:
    def test_sorted_by_priority(self):
        rules = [make_rule("b", priority=5), make_rule("a", priority=1)]
        matched = match_rules(rules, make_snapshot(), EscalationTrigger.MANUAL)
        assert [rule.id for rule in matched] == ["a", "b"]

    def test_equal_priority_keeps_catalog_order(self):
        rules = [make_rule("first", priority=1), make_rule("second", priority=1)]
        matched = match_rules(rules, make_snapshot(), EscalationTrigger.MANUAL)
        assert [rule.id for rule in matched] == ["first", "second"]

    def test_inactive_rules_skipped(self):
        rules = [make_rule("off", priority=1, is_active=False), make_rule("on")]
        matched = match_rules(rules, make_snapshot(), EscalationTrigger.MANUAL)
        assert [rule.id for rule in matched] == ["on"]

    def test_no_match(self):
        matched = match_rules([make_rule("a")], make_snapshot(), EscalationTrigger.DATA_BREACH)
        assert matched == []


class TestDefaultMatrix:
    def test_data_breach_wins_over_critical_rule(self):
        incident = make_snapshot(incident_type="DATA_BREACH", severity=IncidentSeverity.CRITICAL)
        matched = match_rules(
            DEFAULT_ESCALATION_MATRIX, incident, EscalationTrigger.INCIDENT_CREATED
        )
        assert [rule.id for rule in matched] == ["rule-data-breach", "rule-critical-incidents"]

    def test_severity_upgrade_to_critical(self):
        incident = make_snapshot(
            severity=IncidentSeverity.CRITICAL,
            new_severity=IncidentSeverity.CRITICAL,
        )
        matched = match_rules(
            DEFAULT_ESCALATION_MATRIX, incident, EscalationTrigger.SEVERITY_UPGRADE
        )
        assert [rule.id for rule in matched] == ["rule-critical-incidents"]

    def test_customer_impact_threshold(self):
        rules = DEFAULT_ESCALATION_MATRIX
        trigger = EscalationTrigger.CUSTOMER_IMPACT

        assert match_rules(rules, make_snapshot(affected_customers=100), trigger) == []
        matched = match_rules(rules, make_snapshot(affected_customers=101), trigger)
        assert [rule.id for rule in matched] == ["rule-customer-impact"]

    def test_data_breach_policy(self):
        rule = DEFAULT_ESCALATION_MATRIX[0]
        policy = rule.policy_for(IncidentSeverity.CRITICAL)

        assert policy.time_to_notify_minutes == 0
        assert policy.escalate_if_no_ack_minutes == 15
        assert policy.escalate_to == [StakeholderRole.BOARD_MEMBER]
        assert rule.policy_for(IncidentSeverity.LOW) is None
        assert rule.regulatory_requirements[0].deadline_hours == 72


class TestRuleDefinition:
    def test_duplicate_severity_policies_rejected(self):
        policy = SeverityPolicy(
            severity=IncidentSeverity.HIGH,
            stakeholder_roles=[StakeholderRole.CISO],
            channels=[CommunicationChannel.EMAIL],
        )
        with pytest.raises(ValidationError):
            make_rule("dup", severity_policies=[policy, policy])

    def test_policy_requires_roles_and_channels(self):
        with pytest.raises(ValidationError):
            SeverityPolicy(
                severity=IncidentSeverity.HIGH,
                stakeholder_roles=[],
                channels=[CommunicationChannel.EMAIL],
            )

    def test_unknown_operator_still_loads(self):
        condition = RuleCondition(field="severity", operator="FUZZY", value="HIGH")
        assert condition.operator == "FUZZY"


class TestMergeRules:
    def test_stored_rule_replaces_default_in_place(self):
        defaults = [make_rule("a"), make_rule("b"), make_rule("c")]
        override = make_rule("b", name="Overridden")

        merged = merge_rules(defaults, [override])

        assert [rule.id for rule in merged] == ["a", "b", "c"]
        assert merged[1].name == "Overridden"

    def test_new_stored_rules_appended(self):
        merged = merge_rules([make_rule("a")], [make_rule("z"), make_rule("y")])
        assert [rule.id for rule in merged] == ["a", "z", "y"]


class TestRuleCatalog:
    def test_starts_with_defaults(self):
        catalog = RuleCatalog()
        assert catalog.rules == DEFAULT_ESCALATION_MATRIX
        assert catalog.get("rule-high-incidents") is not None
        assert catalog.get("missing") is None

    @pytest.mark.asyncio
    async def test_reload_merges_stored_rules(self):
        repository = MagicMock(spec=EscalationRuleRepository)
        repository.list_all = AsyncMock(
            return_value=[make_rule("rule-high-incidents", is_active=False), make_rule("custom")]
        )
        catalog = RuleCatalog(repository)

        count = await catalog.reload()

        assert count == len(DEFAULT_ESCALATION_MATRIX) + 1
        assert catalog.get("rule-high-incidents").is_active is False
        assert catalog.rules[-1].id == "custom"

    @pytest.mark.asyncio
    async def test_disabled_default_no_longer_matches(self):
        repository = MagicMock(spec=EscalationRuleRepository)
        repository.list_all = AsyncMock(
            return_value=[make_rule("rule-high-incidents", is_active=False)]
        )
        catalog = RuleCatalog(repository)
        await catalog.reload()

        matched = catalog.match(make_snapshot(), EscalationTrigger.INCIDENT_CREATED)

        assert matched == []

    @pytest.mark.asyncio
    async def test_stored_rules_round_trip(self, session_maker):
        repository = EscalationRuleRepository(session_maker)
        rule = make_rule("rule-vendor", priority=3, description="Vendor outage")

        await repository.upsert(rule)
        await repository.upsert(rule.model_copy(update={"priority": 4}))

        stored = await repository.list_all()
        assert [r.id for r in stored] == ["rule-vendor"]
        assert stored[0].priority == 4
        assert stored[0].severity_policies[0].channels == [CommunicationChannel.EMAIL]
