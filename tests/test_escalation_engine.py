"""Tests for the escalation path engine."""

import asyncio
import uuid
from datetime import timedelta

import pytest

from regcomms.core.errors import ConcurrencyConflictError, InvalidStateTransitionError
from regcomms.models.communication import CommunicationStatus, CommunicationType
from regcomms.models.escalation_path import EscalationPath, EscalationPathStatus
from regcomms.models.incident import IncidentSeverity
from regcomms.models.stakeholder import CommunicationChannel, StakeholderRole
from regcomms.repositories.escalation_paths import EscalationPathRepository
from regcomms.schemas.escalation_path import EscalationLevel, dump_levels, load_levels
from regcomms.schemas.escalation_rule import EscalationTrigger, SeverityPolicy
from regcomms.services import evidence as evidence_events
from regcomms.services.escalation_engine import (
    ACTION_DISPATCH,
    ACTION_ESCALATE,
    ACTION_NONE,
    NO_ACK_REASON,
    build_levels,
    determine_next_action,
    next_check_after_trigger,
)
from regcomms.services.rule_catalog import DEFAULT_ESCALATION_MATRIX
from tests.factories import T0, create_incident, create_stakeholder, evidence_events_of

BREACH_ROLES = [
    StakeholderRole.DPO,
    StakeholderRole.LEGAL_TEAM,
    StakeholderRole.CISO,
    StakeholderRole.CEO,
]
HIGH_ROLES = [
    StakeholderRole.INCIDENT_MANAGER,
    StakeholderRole.SECURITY_TEAM,
    StakeholderRole.OPERATIONS_TEAM,
]


def two_levels(triggered_at=None) -> list[EscalationLevel]:
    return [
        EscalationLevel(
            level=1,
            stakeholder_roles=[StakeholderRole.CISO],
            channels=[CommunicationChannel.EMAIL],
            trigger_after_minutes=5,
            triggered=triggered_at is not None,
            triggered_at=triggered_at,
        ),
        EscalationLevel(
            level=2,
            stakeholder_roles=[StakeholderRole.CEO],
            channels=[CommunicationChannel.EMAIL],
            trigger_after_minutes=15,
        ),
    ]


def make_path(
    levels: list[EscalationLevel],
    current_level: int = 1,
    status: EscalationPathStatus = EscalationPathStatus.ACTIVE,
) -> EscalationPath:
    return EscalationPath(
        id=uuid.uuid4(),
        incident_id=uuid.uuid4(),
        rule_id="rule-test",
        current_level=current_level,
        max_level=len(levels),
        levels=dump_levels(levels),
        status=status,
        started_at=T0,
        version=1,
    )


async def seed_breach(session_maker):
    """A critical data-breach incident with level 1 and level 2 stakeholders."""
    incident = await create_incident(
        session_maker,
        severity=IncidentSeverity.CRITICAL,
        incident_type="DATA_BREACH",
        title="Customer records exposed",
    )
    level_one = [await create_stakeholder(session_maker, role) for role in BREACH_ROLES]
    board = await create_stakeholder(session_maker, StakeholderRole.BOARD_MEMBER)
    return incident, level_one, board


async def evaluate(services, incident_id, trigger=EscalationTrigger.INCIDENT_CREATED):
    snapshot = await services.incidents.get(incident_id)
    return await services.escalations.evaluate_incident(snapshot, trigger)


# ── Pure decision logic ──


class TestBuildLevels:
    def test_escalating_policy_has_two_levels(self):
        policy = DEFAULT_ESCALATION_MATRIX[0].severity_policies[0]

        levels = build_levels(policy)

        assert [level.level for level in levels] == [1, 2]
        assert levels[0].stakeholder_roles == BREACH_ROLES
        assert levels[0].trigger_after_minutes == 0
        assert levels[1].stakeholder_roles == [StakeholderRole.BOARD_MEMBER]
        assert levels[1].channels == levels[0].channels
        assert levels[1].trigger_after_minutes == 15
        assert not any(level.triggered for level in levels)

    def test_policy_without_escalation_has_one_level(self):
        policy = SeverityPolicy(
            severity=IncidentSeverity.LOW,
            stakeholder_roles=[StakeholderRole.INCIDENT_MANAGER],
            channels=[CommunicationChannel.EMAIL],
            escalate_if_no_ack_minutes=30,
        )

        assert len(build_levels(policy)) == 1


class TestDetermineNextAction:
    def test_first_level_not_yet_due(self):
        levels = two_levels()
        decision = determine_next_action(make_path(levels), levels, T0 + timedelta(minutes=4))

        assert decision.action == ACTION_NONE
        assert decision.level is None

    def test_first_level_due(self):
        levels = two_levels()
        decision = determine_next_action(make_path(levels), levels, T0 + timedelta(minutes=5))

        assert decision.action == ACTION_DISPATCH
        assert decision.level == 1

    def test_escalation_not_yet_due(self):
        levels = two_levels(triggered_at=T0)
        decision = determine_next_action(make_path(levels), levels, T0 + timedelta(minutes=14))

        assert decision.action == ACTION_NONE

    def test_escalation_due_exactly_at_threshold(self):
        levels = two_levels(triggered_at=T0)
        decision = determine_next_action(make_path(levels), levels, T0 + timedelta(minutes=15))

        assert decision.action == ACTION_ESCALATE
        assert decision.level == 2
        assert decision.reason == NO_ACK_REASON

    def test_acknowledged_level_never_escalates(self):
        levels = two_levels(triggered_at=T0)
        levels[0] = levels[0].model_copy(update={"acknowledged_at": T0})

        decision = determine_next_action(make_path(levels), levels, T0 + timedelta(hours=5))

        assert decision.action == ACTION_NONE
        assert "acknowledged" in decision.reason

    def test_top_level_is_final(self):
        levels = two_levels(triggered_at=T0)
        levels[1] = levels[1].model_copy(
            update={"triggered": True, "triggered_at": T0 + timedelta(minutes=15)}
        )
        path = make_path(levels, current_level=2)

        decision = determine_next_action(path, levels, T0 + timedelta(days=1))

        assert decision.action == ACTION_NONE
        assert decision.reason == "Already at highest escalation level"

    @pytest.mark.parametrize(
        "status", [EscalationPathStatus.ACKNOWLEDGED, EscalationPathStatus.EXPIRED]
    )
    def test_terminal_paths_do_nothing(self, status):
        levels = two_levels(triggered_at=T0)
        path = make_path(levels, status=status)

        decision = determine_next_action(path, levels, T0 + timedelta(days=1))

        assert decision.action == ACTION_NONE


class TestNextCheckAfterTrigger:
    def test_next_level_delay(self):
        levels = two_levels()
        assert next_check_after_trigger(levels, 1, T0) == T0 + timedelta(minutes=15)

    def test_top_level_has_no_next_check(self):
        assert next_check_after_trigger(two_levels(), 2, T0) is None


# ── Engine against the database ──


class TestEvaluateIncident:
    @pytest.mark.asyncio
    async def test_data_breach_dispatches_level_one_immediately(
        self, services, session_maker, transports
    ):
        incident, level_one, _ = await seed_breach(session_maker)

        path = await evaluate(services, incident.id)

        assert path is not None
        assert path.rule_id == "rule-data-breach"
        assert path.status == EscalationPathStatus.ACTIVE
        assert path.current_level == 1
        assert path.max_level == 2
        assert path.started_at == T0
        assert path.next_check_at == T0 + timedelta(minutes=15)
        assert path.evidence_event_id is not None

        levels = load_levels(path.levels)
        assert levels[0].triggered is True
        assert levels[0].triggered_at == T0
        assert levels[1].triggered is False

        # 4 stakeholders x EMAIL, SMS, PHONE
        communications = await services.notifications.list_communications(incident.id)
        assert len(communications) == 12
        assert all(c.communication_type == CommunicationType.ESCALATION for c in communications)
        assert all(c.escalation_level == 1 for c in communications)
        assert all(c.escalation_path_id == path.id for c in communications)
        assert all(c.status == CommunicationStatus.SENT for c in communications)
        assert len(transports.sent(CommunicationChannel.EMAIL)) == 4
        assert len(transports.sent(CommunicationChannel.SMS)) == 4
        assert len(transports.sent(CommunicationChannel.PHONE)) == 4

    @pytest.mark.asyncio
    async def test_schedules_regulatory_deadline(self, services, session_maker):
        incident, _, _ = await seed_breach(session_maker)

        path = await evaluate(services, incident.id)

        deadlines = await services.deadlines.list_for_incident(incident.id)
        assert len(deadlines) == 1
        assert deadlines[0].regulation == "GDPR"
        assert deadlines[0].article == "Art.33"
        assert deadlines[0].deadline == T0 + timedelta(hours=72)
        assert deadlines[0].reminder_at == T0 + timedelta(hours=70)
        assert deadlines[0].escalation_path_id == path.id
        assert deadlines[0].mandatory_recipients == ["DPO", "NCA"]

    @pytest.mark.asyncio
    async def test_records_evidence_and_timeline(self, services, session_maker):
        incident, _, _ = await seed_breach(session_maker)

        path = await evaluate(services, incident.id)

        triggered = await evidence_events_of(session_maker, evidence_events.ESCALATION_TRIGGERED)
        assert len(triggered) == 1
        assert triggered[0].id == path.evidence_event_id
        assert triggered[0].severity == "CRITICAL"
        assert triggered[0].event_metadata["rule_id"] == "rule-data-breach"
        assert triggered[0].event_metadata["incident_number"] == "INC-2025-0042"

        sent = await evidence_events_of(session_maker, evidence_events.NOTIFICATION_SENT)
        assert len(sent) == 12

        timeline = await services.notifications.list_timeline(incident.id)
        event_types = {entry.event_type for entry in timeline}
        assert {"ESCALATION_TRIGGERED", "COMMUNICATION_SENT"} <= event_types

    @pytest.mark.asyncio
    async def test_no_matching_rule(self, services, session_maker):
        incident = await create_incident(
            session_maker, severity=IncidentSeverity.LOW, incident_type="PHISHING"
        )

        path = await evaluate(services, incident.id)

        assert path is None
        assert await services.escalations.list_paths(incident.id) == []
        assert await services.notifications.list_communications(incident.id) == []
        assert await evidence_events_of(session_maker) == []

    @pytest.mark.asyncio
    async def test_matching_rule_without_severity_policy(self, services, session_maker):
        incident = await create_incident(
            session_maker, severity=IncidentSeverity.MEDIUM, affected_customers=5000
        )

        path = await evaluate(services, incident.id, EscalationTrigger.CUSTOMER_IMPACT)

        assert path is None
        assert await services.escalations.list_paths(incident.id) == []

    @pytest.mark.asyncio
    async def test_reevaluation_returns_existing_path(self, services, session_maker, transports):
        incident, _, _ = await seed_breach(session_maker)

        first = await evaluate(services, incident.id)
        second = await evaluate(services, incident.id)

        assert second.id == first.id
        assert len(await services.escalations.list_paths(incident.id)) == 1
        assert len(transports.sent()) == 12
        triggered = await evidence_events_of(session_maker, evidence_events.ESCALATION_TRIGGERED)
        assert len(triggered) == 1

    @pytest.mark.asyncio
    async def test_delayed_first_level(self, services, session_maker, clock, transports):
        incident = await create_incident(session_maker, severity=IncidentSeverity.HIGH)
        for role in HIGH_ROLES:
            await create_stakeholder(session_maker, role)

        path = await evaluate(services, incident.id)

        assert path.rule_id == "rule-high-incidents"
        assert path.next_check_at == T0 + timedelta(minutes=5)
        assert load_levels(path.levels)[0].triggered is False
        assert transports.sent() == []

        clock.advance(minutes=5)
        assert await services.escalations.process_due_escalations() == 1

        path = await services.escalations.get_path(path.id)
        assert load_levels(path.levels)[0].triggered_at == T0 + timedelta(minutes=5)
        assert path.next_check_at == T0 + timedelta(minutes=35)
        # 3 stakeholders x EMAIL, SLACK
        assert len(transports.sent(CommunicationChannel.EMAIL)) == 3
        assert len(transports.sent(CommunicationChannel.SLACK)) == 3

    @pytest.mark.asyncio
    async def test_failed_delivery_does_not_abort_level(self, services, session_maker, transports):
        incident, level_one, _ = await seed_breach(session_maker)
        transports.failing.add(level_one[0].contacts["EMAIL"])

        path = await evaluate(services, incident.id)

        assert load_levels(path.levels)[0].triggered is True
        communications = await services.notifications.list_communications(incident.id)
        statuses = [c.status for c in communications]
        assert len(communications) == 12
        assert statuses.count(CommunicationStatus.FAILED) == 1
        assert statuses.count(CommunicationStatus.SENT) == 11

    @pytest.mark.asyncio
    async def test_level_without_stakeholders_is_still_claimed(self, services, session_maker):
        incident = await create_incident(
            session_maker, severity=IncidentSeverity.CRITICAL, incident_type="DATA_BREACH"
        )

        path = await evaluate(services, incident.id)

        assert load_levels(path.levels)[0].triggered is True
        assert await services.notifications.list_communications(incident.id) == []


class TestEscalation:
    @pytest.mark.asyncio
    async def test_escalates_after_timeout_without_ack(
        self, services, session_maker, clock, transports
    ):
        incident, _, board = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)

        clock.advance(minutes=14)
        assert await services.escalations.process_due_escalations() == 0

        clock.advance(minutes=1)
        assert await services.escalations.process_due_escalations() == 1

        path = await services.escalations.get_path(path.id)
        assert path.current_level == 2
        assert path.last_escalated_at == T0 + timedelta(minutes=15)
        assert path.next_check_at is None
        assert load_levels(path.levels)[1].triggered_at == T0 + timedelta(minutes=15)

        communications = await services.notifications.list_communications(incident.id)
        level_two = [c for c in communications if c.escalation_level == 2]
        assert len(level_two) == 3
        assert {c.channel for c in level_two} == {
            CommunicationChannel.EMAIL,
            CommunicationChannel.SMS,
            CommunicationChannel.PHONE,
        }
        addresses = [item["address"] for item in transports.sent(CommunicationChannel.EMAIL)]
        assert board.contacts["EMAIL"] in addresses

        level_events = await evidence_events_of(
            session_maker, evidence_events.ESCALATION_LEVEL_TRIGGERED
        )
        assert len(level_events) == 1
        assert level_events[0].event_metadata["new_level"] == 2
        assert level_events[0].event_metadata["reason"] == NO_ACK_REASON

    @pytest.mark.asyncio
    async def test_no_escalation_beyond_top_level(self, services, session_maker, clock):
        incident, _, _ = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)
        clock.advance(minutes=15)
        await services.escalations.process_due_escalations()

        clock.advance(hours=6)
        assert await services.escalations.process_due_escalations() == 0
        decision = await services.escalations.check_escalation(path.id)

        assert decision.action == ACTION_NONE
        communications = await services.notifications.list_communications(incident.id)
        assert len(communications) == 15

    @pytest.mark.asyncio
    async def test_lost_first_dispatch_is_redriven(self, services, session_maker, clock):
        incident, _, _ = await seed_breach(session_maker)
        policy = DEFAULT_ESCALATION_MATRIX[0].severity_policies[0]
        levels = build_levels(policy)
        repository = EscalationPathRepository(session_maker)
        path, created = await repository.create(
            EscalationPath(
                id=uuid.uuid4(),
                incident_id=incident.id,
                rule_id="rule-data-breach",
                current_level=1,
                max_level=len(levels),
                levels=dump_levels(levels),
                status=EscalationPathStatus.ACTIVE,
                started_at=T0,
                next_check_at=T0 + timedelta(minutes=2),
                version=1,
            )
        )
        assert created is True

        clock.advance(minutes=2)
        assert await services.escalations.process_due_escalations() == 1

        path = await services.escalations.get_path(path.id)
        assert load_levels(path.levels)[0].triggered is True
        assert len(await services.notifications.list_communications(incident.id)) == 12

    @pytest.mark.asyncio
    async def test_concurrent_checks_dispatch_level_once(
        self, services, session_maker, clock, transports
    ):
        incident, _, board = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)
        clock.advance(minutes=15)

        decisions = await asyncio.gather(
            services.escalations.check_escalation(path.id),
            services.escalations.check_escalation(path.id),
        )

        actions = sorted(decision.action for decision in decisions)
        assert actions == [ACTION_ESCALATE, ACTION_NONE]
        communications = await services.notifications.list_communications(incident.id)
        assert len([c for c in communications if c.escalation_level == 2]) == 3

    @pytest.mark.asyncio
    async def test_check_racing_acknowledgment(self, services, session_maker, clock):
        incident, _, _ = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)
        clock.advance(minutes=15)

        decision, acknowledged = await asyncio.gather(
            services.escalations.check_escalation(path.id),
            services.escalations.acknowledge_escalation(path.id, "ciso@bank.eu"),
        )

        assert decision.action in (ACTION_ESCALATE, ACTION_NONE)
        stored = await services.escalations.get_path(path.id)
        assert stored.status == EscalationPathStatus.ACKNOWLEDGED
        assert stored.next_check_at is None
        assert stored.current_level <= stored.max_level
        assert acknowledged.current_level == stored.current_level
        level = load_levels(stored.levels)[stored.current_level - 1]
        assert level.acknowledged_by == "ciso@bank.eu"

        # Level 2 goes out once if the check won, never if the acknowledgment did
        communications = await services.notifications.list_communications(incident.id)
        level_two = [c for c in communications if c.escalation_level == 2]
        assert len(level_two) in (0, 3)
        assert (len(level_two) == 3) == (decision.action == ACTION_ESCALATE)

        clock.advance(hours=1)
        assert (await services.escalations.check_escalation(path.id)).action == ACTION_NONE


class TestAcknowledgeEscalation:
    @pytest.mark.asyncio
    async def test_acknowledgment_stops_escalation(self, services, session_maker, clock):
        incident, _, _ = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)

        clock.advance(minutes=5)
        acknowledged = await services.escalations.acknowledge_escalation(path.id, "ciso@bank.eu")

        assert acknowledged.status == EscalationPathStatus.ACKNOWLEDGED
        assert acknowledged.next_check_at is None
        level = load_levels(acknowledged.levels)[0]
        assert level.acknowledged_by == "ciso@bank.eu"
        assert level.acknowledged_at == T0 + timedelta(minutes=5)

        clock.advance(minutes=30)
        assert await services.escalations.process_due_escalations() == 0
        decision = await services.escalations.check_escalation(path.id)
        assert decision.action == ACTION_NONE

        communications = await services.notifications.list_communications(incident.id)
        assert all(c.escalation_level == 1 for c in communications)
        events = await evidence_events_of(session_maker, evidence_events.ESCALATION_ACKNOWLEDGED)
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_repeat_acknowledgment_is_noop(self, services, session_maker):
        incident, _, _ = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)

        first = await services.escalations.acknowledge_escalation(path.id, "dpo")
        second = await services.escalations.acknowledge_escalation(path.id, "ceo")

        assert second.version == first.version
        assert load_levels(second.levels)[0].acknowledged_by == "dpo"

    @pytest.mark.asyncio
    async def test_expired_path_cannot_be_acknowledged(self, services, session_maker):
        incident, _, _ = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)
        await services.escalations.expire_escalations(incident.id)

        with pytest.raises(InvalidStateTransitionError):
            await services.escalations.acknowledge_escalation(path.id, "dpo")


class TestExpireEscalations:
    @pytest.mark.asyncio
    async def test_expires_active_paths_once(self, services, session_maker, clock):
        incident, _, _ = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)

        assert await services.escalations.expire_escalations(incident.id) == 1
        assert await services.escalations.expire_escalations(incident.id) == 0

        path = await services.escalations.get_path(path.id)
        assert path.status == EscalationPathStatus.EXPIRED
        assert path.next_check_at is None

        clock.advance(minutes=30)
        assert await services.escalations.process_due_escalations() == 0
        events = await evidence_events_of(session_maker, evidence_events.ESCALATION_EXPIRED)
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_acknowledged_paths_are_left_alone(self, services, session_maker):
        incident, _, _ = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)
        await services.escalations.acknowledge_escalation(path.id, "dpo")

        assert await services.escalations.expire_escalations(incident.id) == 0
        path = await services.escalations.get_path(path.id)
        assert path.status == EscalationPathStatus.ACKNOWLEDGED


class TestCompareAndSwap:
    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, services, session_maker):
        incident, _, _ = await seed_breach(session_maker)
        path = await evaluate(services, incident.id)
        repository = EscalationPathRepository(session_maker)

        updated = await repository.compare_and_swap(path.id, path.version, current_level=1)
        assert updated.version == path.version + 1

        with pytest.raises(ConcurrencyConflictError):
            await repository.compare_and_swap(
                path.id, path.version, status=EscalationPathStatus.EXPIRED
            )

        current = await repository.get(path.id)
        assert current.status == EscalationPathStatus.ACTIVE
