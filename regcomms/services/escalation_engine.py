"""Escalation path engine.

Builds an escalation path from the first matching rule and walks it level
by level while nobody acknowledges. Timing is durable: each path carries
``next_check_at`` and the scheduler sweep calls ``check_escalation`` for
every path that is due.

Levels are claimed with a version compare-and-swap before any
notification goes out. A caller that loses the race re-reads the path
and re-evaluates, so a level is dispatched at most once and an
acknowledgment is never overwritten.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from regcomms.core.clock import Clock, utc_now
from regcomms.core.errors import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    TransportFailure,
)
from regcomms.logging_config import get_logger, incident_context
from regcomms.models.communication import CommunicationType
from regcomms.models.escalation_path import EscalationPath, EscalationPathStatus
from regcomms.models.incident import IncidentSeverity
from regcomms.repositories.communications import CommunicationRepository
from regcomms.repositories.escalation_paths import EscalationPathRepository
from regcomms.schemas.communication import NotificationRequest
from regcomms.schemas.escalation_path import EscalationLevel, dump_levels, load_levels
from regcomms.schemas.escalation_rule import EscalationTrigger, SeverityPolicy
from regcomms.schemas.incident import IncidentSnapshot
from regcomms.services import evidence as evidence_events
from regcomms.services.deadline_scheduler import DeadlineScheduler
from regcomms.services.directory import StakeholderDirectory
from regcomms.services.evidence import EvidenceEmitter
from regcomms.services.notification_dispatcher import NotificationService
from regcomms.services.rule_catalog import RuleCatalog

logger = get_logger(__name__)

ACTION_NONE = "none"
ACTION_DISPATCH = "dispatch"
ACTION_ESCALATE = "escalate"

NO_ACK_REASON = "No acknowledgment received"


@dataclass
class EscalationDecision:
    """Result of evaluating whether a path should move."""

    action: str
    reason: str
    level: int | None = None


def build_levels(policy: SeverityPolicy) -> list[EscalationLevel]:
    """Level 1 from the policy, plus level 2 when the policy escalates."""
    levels = [
        EscalationLevel(
            level=1,
            stakeholder_roles=list(policy.stakeholder_roles),
            channels=list(policy.channels),
            trigger_after_minutes=policy.time_to_notify_minutes,
        )
    ]
    if policy.escalates:
        levels.append(
            EscalationLevel(
                level=2,
                stakeholder_roles=list(policy.escalate_to),
                channels=list(policy.channels),
                trigger_after_minutes=policy.escalate_if_no_ack_minutes,
            )
        )
    return levels


def determine_next_action(
    path: EscalationPath,
    levels: list[EscalationLevel],
    now: datetime,
) -> EscalationDecision:
    """Pure decision for one escalation check.

    Args:
        path: Current persisted path.
        levels: Parsed ``path.levels``.
        now: Current time.

    Returns:
        EscalationDecision with the action to take and the level it targets.
    """
    if path.status != EscalationPathStatus.ACTIVE:
        return EscalationDecision(ACTION_NONE, f"Path is {path.status.value}")

    current = levels[path.current_level - 1]

    if current.acknowledged_at is not None:
        return EscalationDecision(ACTION_NONE, f"Level {current.level} already acknowledged")

    if not current.triggered:
        # First send delayed by time_to_notify, or lost to a crash
        due_at = path.started_at + timedelta(minutes=current.trigger_after_minutes)
        if now < due_at:
            return EscalationDecision(ACTION_NONE, f"Level {current.level} not yet due")
        return EscalationDecision(
            ACTION_DISPATCH, f"Level {current.level} due for dispatch", current.level
        )

    if path.current_level >= path.max_level:
        return EscalationDecision(ACTION_NONE, "Already at highest escalation level")

    next_level = levels[path.current_level]
    due_at = current.triggered_at + timedelta(minutes=next_level.trigger_after_minutes)
    if now < due_at:
        return EscalationDecision(ACTION_NONE, f"Level {next_level.level} not yet due")

    return EscalationDecision(ACTION_ESCALATE, NO_ACK_REASON, next_level.level)


def next_check_after_trigger(
    levels: list[EscalationLevel],
    level: int,
    triggered_at: datetime,
) -> datetime | None:
    """When to look at the path again after ``level`` fired; None at the top level."""
    if level >= len(levels):
        return None
    return triggered_at + timedelta(minutes=levels[level].trigger_after_minutes)


class EscalationService:
    """Escalation state machine over persisted paths."""

    def __init__(
        self,
        catalog: RuleCatalog,
        paths: EscalationPathRepository,
        communications: CommunicationRepository,
        stakeholders: StakeholderDirectory,
        notifications: NotificationService,
        deadlines: DeadlineScheduler,
        evidence: EvidenceEmitter,
        clock: Clock = utc_now,
        max_cas_retries: int = 3,
        redrive_grace_seconds: int = 120,
        sweep_batch_size: int = 100,
    ):
        self._catalog = catalog
        self._paths = paths
        self._communications = communications
        self._stakeholders = stakeholders
        self._notifications = notifications
        self._deadlines = deadlines
        self._evidence = evidence
        self._clock = clock
        self._max_cas_retries = max_cas_retries
        self._redrive_grace = timedelta(seconds=redrive_grace_seconds)
        self._sweep_batch_size = sweep_batch_size

    async def get_path(self, path_id: uuid.UUID) -> EscalationPath:
        path = await self._paths.get(path_id)
        if path is None:
            raise NotFoundError("EscalationPath", path_id)
        return path

    async def list_paths(self, incident_id: uuid.UUID) -> list[EscalationPath]:
        return await self._paths.list_for_incident(incident_id)

    async def evaluate_incident(
        self,
        incident: IncidentSnapshot,
        trigger: EscalationTrigger,
    ) -> EscalationPath | None:
        """Start escalation for an incident if a rule applies.

        Returns:
            The escalation path, or None when no rule or severity policy
            applies. Re-evaluating an incident under a rule that already has
            a path returns that path without notifying anyone again.
        """
        with incident_context(incident.id):
            return await self._evaluate_incident(incident, trigger)

    async def _evaluate_incident(
        self,
        incident: IncidentSnapshot,
        trigger: EscalationTrigger,
    ) -> EscalationPath | None:
        matches = self._catalog.match(incident, trigger)
        if not matches:
            logger.debug(
                "No escalation rule matched",
                incident_id=str(incident.id),
                trigger=trigger.value,
            )
            return None

        rule = matches[0]
        if len(matches) > 1:
            logger.info(
                "Multiple escalation rules matched, using highest priority",
                incident_id=str(incident.id),
                selected_rule=rule.id,
                ignored_rules=[other.id for other in matches[1:]],
            )

        policy = rule.policy_for(incident.severity)
        if policy is None:
            logger.info(
                "Matched rule has no policy for incident severity",
                incident_id=str(incident.id),
                rule_id=rule.id,
                severity=incident.severity.value,
            )
            return None

        now = self._clock()
        levels = build_levels(policy)
        if policy.time_to_notify_minutes > 0:
            first_check = now + timedelta(minutes=policy.time_to_notify_minutes)
        else:
            first_check = now + self._redrive_grace

        path, created = await self._paths.create(
            EscalationPath(
                id=uuid.uuid4(),
                incident_id=incident.id,
                rule_id=rule.id,
                current_level=1,
                max_level=len(levels),
                levels=dump_levels(levels),
                status=EscalationPathStatus.ACTIVE,
                started_at=now,
                next_check_at=first_check,
                version=1,
            )
        )
        if not created:
            logger.info(
                "Escalation path already exists for incident and rule",
                incident_id=str(incident.id),
                rule_id=rule.id,
                path_id=str(path.id),
            )
            return path

        logger.info(
            "Escalation path created",
            incident_id=str(incident.id),
            rule_id=rule.id,
            path_id=str(path.id),
            max_level=path.max_level,
        )

        if policy.time_to_notify_minutes == 0:
            await self.check_escalation(path.id)

        await self._deadlines.schedule_for_rule(incident, rule.regulatory_requirements, path.id)

        event_id = await self._evidence.record(
            evidence_events.ESCALATION_TRIGGERED,
            "CRITICAL" if incident.severity == IncidentSeverity.CRITICAL else "HIGH",
            ["DORA"],
            ["Art.14"],
            {
                "escalation_path_id": str(path.id),
                "incident_id": str(incident.id),
                "incident_number": incident.incident_number or str(incident.id),
                "rule_id": rule.id,
                "rule_name": rule.name,
                "trigger": trigger.value,
                "severity": incident.severity.value,
                "stakeholder_roles": [role.value for role in policy.stakeholder_roles],
                "channels": [channel.value for channel in policy.channels],
            },
        )
        await self._communications.add_timeline_entry(
            incident_id=incident.id,
            event_type="ESCALATION_TRIGGERED",
            title=f"Escalation started: {rule.name}",
            occurred_at=now,
            escalation_path_id=path.id,
            details={"rule_id": rule.id, "level": 1},
        )

        if event_id is not None:
            return await self._set_evidence_id(path.id, event_id)
        return await self.get_path(path.id)

    async def check_escalation(self, path_id: uuid.UUID) -> EscalationDecision:
        """Advance a path if its next step is due. Safe to call repeatedly.

        Raises:
            NotFoundError: Path does not exist.
        """
        for attempt in range(1, self._max_cas_retries + 1):
            path = await self.get_path(path_id)
            levels = load_levels(path.levels)
            now = self._clock()

            decision = determine_next_action(path, levels, now)
            if decision.action == ACTION_NONE:
                logger.debug(
                    "No escalation needed",
                    path_id=str(path_id),
                    reason=decision.reason,
                )
                return decision

            try:
                claimed = await self._claim_level(path, levels, decision.level, now)
            except ConcurrencyConflictError:
                logger.debug(
                    "Escalation path changed concurrently, re-evaluating",
                    path_id=str(path_id),
                    attempt=attempt,
                )
                continue

            level = load_levels(claimed.levels)[decision.level - 1]
            await self._dispatch_level(claimed, level)

            if decision.action == ACTION_ESCALATE:
                await self._record_level_triggered(claimed, level, now)

            return decision

        logger.warning(
            "Abandoning escalation check after repeated write conflicts",
            path_id=str(path_id),
            attempts=self._max_cas_retries,
        )
        return EscalationDecision(ACTION_NONE, "Concurrent update conflict")

    async def acknowledge_escalation(self, path_id: uuid.UUID, actor: str) -> EscalationPath:
        """Acknowledge the current level and stop escalation.

        Raises:
            NotFoundError: Path does not exist.
            InvalidStateTransitionError: Path was already expired.
            ConcurrencyConflictError: Retries exhausted.
        """
        for attempt in range(1, self._max_cas_retries + 1):
            path = await self.get_path(path_id)
            if path.status == EscalationPathStatus.ACKNOWLEDGED:
                return path
            if path.status == EscalationPathStatus.EXPIRED:
                raise InvalidStateTransitionError(
                    f"Escalation path {path_id} is expired and cannot be acknowledged"
                )

            now = self._clock()
            levels = load_levels(path.levels)
            index = path.current_level - 1
            levels[index] = levels[index].model_copy(
                update={"acknowledged_at": now, "acknowledged_by": actor}
            )

            try:
                updated = await self._paths.compare_and_swap(
                    path.id,
                    path.version,
                    status=EscalationPathStatus.ACKNOWLEDGED,
                    levels=dump_levels(levels),
                    next_check_at=None,
                )
            except ConcurrencyConflictError:
                logger.debug(
                    "Escalation path changed concurrently, retrying acknowledgment",
                    path_id=str(path_id),
                    attempt=attempt,
                )
                continue

            logger.info(
                "Escalation acknowledged",
                path_id=str(path_id),
                level=updated.current_level,
                actor=actor,
            )
            await self._evidence.record(
                evidence_events.ESCALATION_ACKNOWLEDGED,
                "INFO",
                ["DORA"],
                ["Art.14"],
                {
                    "escalation_path_id": str(updated.id),
                    "incident_id": str(updated.incident_id),
                    "level": updated.current_level,
                    "acknowledged_by": actor,
                },
            )
            await self._communications.add_timeline_entry(
                incident_id=updated.incident_id,
                event_type="ESCALATION_ACKNOWLEDGED",
                title=f"Escalation acknowledged at level {updated.current_level}",
                occurred_at=now,
                escalation_path_id=updated.id,
                actor=actor,
            )
            return updated

        logger.warning(
            "Escalation acknowledgment abandoned after repeated write conflicts",
            path_id=str(path_id),
            attempts=self._max_cas_retries,
        )
        raise ConcurrencyConflictError("EscalationPath", path_id)

    async def expire_escalations(self, incident_id: uuid.UUID) -> int:
        """Close every ACTIVE path of an incident (incident closed externally).

        Returns:
            Number of paths moved to EXPIRED.
        """
        expired = 0
        for path in await self._paths.list_for_incident(incident_id):
            for _ in range(self._max_cas_retries):
                if path.status != EscalationPathStatus.ACTIVE:
                    break
                try:
                    path = await self._paths.compare_and_swap(
                        path.id,
                        path.version,
                        status=EscalationPathStatus.EXPIRED,
                        next_check_at=None,
                    )
                except ConcurrencyConflictError:
                    path = await self.get_path(path.id)
                    continue
                expired += 1
                await self._evidence.record(
                    evidence_events.ESCALATION_EXPIRED,
                    "INFO",
                    ["DORA"],
                    ["Art.14"],
                    {
                        "escalation_path_id": str(path.id),
                        "incident_id": str(incident_id),
                        "level": path.current_level,
                    },
                )
                break

        if expired:
            logger.info("Escalation paths expired", incident_id=str(incident_id), count=expired)
        return expired

    async def process_due_escalations(self, limit: int | None = None) -> int:
        """Run ``check_escalation`` for every path whose due time has passed.

        A failure on one path is logged and does not stop the others.

        Returns:
            Number of paths that dispatched or escalated.
        """
        now = self._clock()
        due_ids = await self._paths.find_due(now, limit or self._sweep_batch_size)
        if not due_ids:
            return 0

        acted = 0
        errors = 0
        for path_id in due_ids:
            try:
                decision = await self.check_escalation(path_id)
            except Exception as e:
                logger.error(
                    "Escalation check failed for path",
                    path_id=str(path_id),
                    error=str(e),
                )
                errors += 1
                continue
            if decision.action != ACTION_NONE:
                acted += 1

        logger.info(
            "Due escalations processed",
            due=len(due_ids),
            acted=acted,
            errors=errors,
        )
        return acted

    async def _claim_level(
        self,
        path: EscalationPath,
        levels: list[EscalationLevel],
        level_number: int,
        now: datetime,
    ) -> EscalationPath:
        """Mark a level triggered. Raises ConcurrencyConflictError if the path moved."""
        index = level_number - 1
        levels = list(levels)
        levels[index] = levels[index].model_copy(update={"triggered": True, "triggered_at": now})
        values = {
            "levels": dump_levels(levels),
            "current_level": level_number,
            "next_check_at": next_check_after_trigger(levels, level_number, now),
        }
        if level_number > 1:
            values["last_escalated_at"] = now
        return await self._paths.compare_and_swap(path.id, path.version, **values)

    async def _dispatch_level(self, path: EscalationPath, level: EscalationLevel) -> int:
        """Notify every stakeholder holding a level role on every level channel.

        Failures are logged per recipient and never abort the level.

        Returns:
            Number of successful sends.
        """
        stakeholders = await self._stakeholders.find_by_roles(level.stakeholder_roles)
        if not stakeholders:
            logger.warning(
                "No stakeholders found for escalation level",
                path_id=str(path.id),
                level=level.level,
                roles=[role.value for role in level.stakeholder_roles],
            )
            return 0

        sent = 0
        failed = 0
        for stakeholder in stakeholders:
            for channel in level.channels:
                request = NotificationRequest(
                    incident_id=path.incident_id,
                    stakeholder_id=stakeholder.id,
                    channel=channel,
                    communication_type=CommunicationType.ESCALATION,
                    escalation_path_id=path.id,
                    escalation_level=level.level,
                )
                try:
                    await self._notifications.send_notification(request)
                    sent += 1
                except (TransportFailure, NotFoundError) as e:
                    failed += 1
                    logger.warning(
                        "Escalation notification failed",
                        path_id=str(path.id),
                        level=level.level,
                        stakeholder_id=str(stakeholder.id),
                        channel=channel.value,
                        error=str(e),
                    )

        logger.info(
            "Escalation level dispatched",
            path_id=str(path.id),
            level=level.level,
            sent=sent,
            failed=failed,
        )
        return sent

    async def _record_level_triggered(
        self,
        path: EscalationPath,
        level: EscalationLevel,
        now: datetime,
    ) -> None:
        await self._evidence.record(
            evidence_events.ESCALATION_LEVEL_TRIGGERED,
            "HIGH",
            ["DORA"],
            ["Art.14"],
            {
                "escalation_path_id": str(path.id),
                "incident_id": str(path.incident_id),
                "previous_level": level.level - 1,
                "new_level": level.level,
                "reason": NO_ACK_REASON,
                "stakeholder_roles": [role.value for role in level.stakeholder_roles],
            },
        )
        await self._communications.add_timeline_entry(
            incident_id=path.incident_id,
            event_type="ESCALATION_TRIGGERED",
            title=f"Escalated to level {level.level}",
            description=NO_ACK_REASON,
            occurred_at=now,
            escalation_path_id=path.id,
            details={"level": level.level},
        )

    async def _set_evidence_id(self, path_id: uuid.UUID, event_id: uuid.UUID) -> EscalationPath:
        for _ in range(self._max_cas_retries):
            path = await self.get_path(path_id)
            try:
                return await self._paths.compare_and_swap(
                    path.id, path.version, evidence_event_id=event_id
                )
            except ConcurrencyConflictError:
                continue
        logger.warning(
            "Could not store evidence id on escalation path",
            path_id=str(path_id),
            evidence_event_id=str(event_id),
        )
        return await self.get_path(path_id)
