"""Notification dispatcher.

Renders content, creates the communication record, delivers through the
channel transport and records per-recipient status. A communication is
persisted as SENDING before delivery so every attempt leaves a trace even
if the process dies mid-send.
"""

import asyncio
import uuid
from collections.abc import Iterable
from datetime import datetime

from regcomms.core.clock import Clock, utc_now
from regcomms.core.errors import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    TransportFailure,
)
from regcomms.logging_config import get_logger
from regcomms.models.communication import (
    Communication,
    CommunicationStatus,
    CommunicationTemplate,
    CommunicationTimelineEntry,
    CommunicationType,
)
from regcomms.models.stakeholder import CommunicationChannel, StakeholderRole
from regcomms.repositories.communications import CommunicationRepository
from regcomms.schemas.communication import (
    CommunicationTemplateCreate,
    DeliveryStats,
    NotificationRequest,
    Recipient,
    dump_recipients,
    load_recipients,
)
from regcomms.schemas.incident import IncidentSnapshot
from regcomms.schemas.stakeholder import StakeholderInfo
from regcomms.services import evidence as evidence_events
from regcomms.services.channel_transports import ChannelTransportRegistry, DeliveryResult
from regcomms.services.directory import IncidentLookup, StakeholderDirectory
from regcomms.services.evidence import EvidenceEmitter
from regcomms.services.message_templates import build_variables, default_content, render

logger = get_logger(__name__)

# Forward-only order of receipt statuses; FAILED sits outside it
_RECEIPT_ORDER = {
    CommunicationStatus.SENDING: 0,
    CommunicationStatus.SENT: 1,
    CommunicationStatus.DELIVERED: 2,
    CommunicationStatus.READ: 3,
    CommunicationStatus.ACKNOWLEDGED: 4,
}


def compute_delivery_stats(recipients: Iterable[Recipient]) -> dict[str, int]:
    return DeliveryStats.from_recipients(recipients).model_dump()


def apply_delivery_result(recipient: Recipient, result: DeliveryResult, now: datetime) -> Recipient:
    if result.success:
        return recipient.model_copy(
            update={"status": CommunicationStatus.SENT, "sent_at": now, "failure_reason": None}
        )
    return recipient.model_copy(
        update={"status": CommunicationStatus.FAILED, "failure_reason": result.reason}
    )


class NotificationService:
    """Sends and tracks stakeholder communications."""

    def __init__(
        self,
        communications: CommunicationRepository,
        incidents: IncidentLookup,
        stakeholders: StakeholderDirectory,
        transports: ChannelTransportRegistry,
        evidence: EvidenceEmitter,
        clock: Clock = utc_now,
        max_cas_retries: int = 3,
    ):
        self._communications = communications
        self._incidents = incidents
        self._stakeholders = stakeholders
        self._transports = transports
        self._evidence = evidence
        self._clock = clock
        self._max_cas_retries = max_cas_retries

    async def _require_incident(self, incident_id: uuid.UUID) -> IncidentSnapshot:
        incident = await self._incidents.get(incident_id)
        if incident is None:
            raise NotFoundError("Incident", incident_id)
        return incident

    async def _resolve_content(
        self,
        communication_type: CommunicationType,
        incident: IncidentSnapshot,
        stakeholder: StakeholderInfo | None,
        now: datetime,
        custom_subject: str | None = None,
        custom_content: str | None = None,
        template_id: uuid.UUID | None = None,
        escalation_level: int | None = None,
    ) -> tuple[str, str, str]:
        """(subject, content, content_format): custom > template > built-in default."""
        variables = build_variables(incident, stakeholder, now, escalation_level)

        if custom_content:
            subject = custom_subject or default_content(communication_type, variables)[0]
            return subject, custom_content, "HTML"

        if template_id is not None:
            template = await self._communications.get_template(template_id)
            if template is None or not template.is_active:
                raise NotFoundError("CommunicationTemplate", template_id)
            is_html = template.content_format.upper() == "HTML"
            return (
                render(template.subject, variables),
                render(template.content, variables, escape_html=is_html),
                template.content_format,
            )

        subject, content = default_content(communication_type, variables)
        return custom_subject or subject, content, "HTML"

    async def _deliver(self, recipient: Recipient, subject: str, content: str) -> DeliveryResult:
        if not recipient.contact_value:
            return DeliveryResult.failed(
                f"No {recipient.channel.value} contact for {recipient.stakeholder_name}"
            )
        return await self._transports.deliver(
            recipient.channel, recipient.contact_value, subject, content
        )

    async def send_notification(self, request: NotificationRequest) -> Communication:
        """Send one communication to one stakeholder.

        Raises:
            NotFoundError: Stakeholder, incident or template does not exist.
            TransportFailure: Delivery failed; the FAILED state is persisted first.
        """
        stakeholder = await self._stakeholders.get(request.stakeholder_id)
        if stakeholder is None:
            raise NotFoundError("Stakeholder", request.stakeholder_id)
        incident = await self._require_incident(request.incident_id)

        now = self._clock()
        subject, content, content_format = await self._resolve_content(
            request.communication_type,
            incident,
            stakeholder,
            now,
            custom_subject=request.custom_subject,
            custom_content=request.custom_content,
            template_id=request.template_id,
            escalation_level=request.escalation_level,
        )

        recipient = Recipient(
            stakeholder_id=stakeholder.id,
            stakeholder_name=stakeholder.name,
            stakeholder_role=stakeholder.role,
            channel=request.channel,
            contact_value=stakeholder.contact_for(request.channel),
        )
        communication = await self._communications.create(
            now.year,
            incident_id=incident.id,
            communication_type=request.communication_type,
            channel=request.channel,
            subject=subject,
            content=content,
            content_format=content_format,
            template_id=request.template_id,
            escalation_path_id=request.escalation_path_id,
            escalation_level=request.escalation_level,
            recipients=dump_recipients([recipient]),
            status=CommunicationStatus.SENDING,
            delivery_stats=compute_delivery_stats([recipient]),
            version=1,
        )

        result = await self._deliver(recipient, subject, content)
        recipient = apply_delivery_result(recipient, result, now)

        if not result.success:
            communication = await self._communications.compare_and_swap(
                communication.id,
                communication.version,
                recipients=dump_recipients([recipient]),
                status=CommunicationStatus.FAILED,
                delivery_stats=compute_delivery_stats([recipient]),
            )
            await self._communications.add_timeline_entry(
                incident_id=incident.id,
                event_type="COMMUNICATION_FAILED",
                title=f"{request.communication_type.value} to {stakeholder.name} failed",
                description=result.reason,
                occurred_at=now,
                communication_id=communication.id,
                escalation_path_id=request.escalation_path_id,
                details={"channel": request.channel.value},
            )
            logger.warning(
                "Notification delivery failed",
                reference=communication.reference,
                channel=request.channel.value,
                stakeholder_id=str(stakeholder.id),
                reason=result.reason,
            )
            raise TransportFailure(request.channel.value, result.reason or "", communication.id)

        communication = await self._communications.compare_and_swap(
            communication.id,
            communication.version,
            recipients=dump_recipients([recipient]),
            status=CommunicationStatus.SENT,
            delivery_stats=compute_delivery_stats([recipient]),
            sent_at=now,
        )
        await self._communications.add_timeline_entry(
            incident_id=incident.id,
            event_type="COMMUNICATION_SENT",
            title=(
                f"{request.communication_type.value} sent to {stakeholder.name} "
                f"via {request.channel.value}"
            ),
            occurred_at=now,
            communication_id=communication.id,
            escalation_path_id=request.escalation_path_id,
            details={
                "stakeholder_name": stakeholder.name,
                "stakeholder_role": stakeholder.role.value,
                "channel": request.channel.value,
            },
        )
        event_id = await self._evidence.record(
            evidence_events.NOTIFICATION_SENT,
            "INFO",
            ["DORA"],
            ["Art.14"],
            {
                "communication_id": str(communication.id),
                "reference": communication.reference,
                "incident_id": str(incident.id),
                "incident_number": incident.incident_number or str(incident.id),
                "type": request.communication_type.value,
                "channel": request.channel.value,
                "stakeholder_name": stakeholder.name,
                "stakeholder_role": stakeholder.role.value,
            },
        )
        if event_id is not None:
            communication = await self._communications.compare_and_swap(
                communication.id, communication.version, evidence_event_id=event_id
            )

        logger.info(
            "Notification sent",
            reference=communication.reference,
            channel=request.channel.value,
            stakeholder_id=str(stakeholder.id),
        )
        return communication

    async def send_bulk_notification(
        self,
        incident_id: uuid.UUID,
        roles: list[StakeholderRole],
        communication_type: CommunicationType,
        channel: CommunicationChannel,
        template_id: uuid.UUID | None = None,
    ) -> Communication:
        """Send one communication to every stakeholder holding one of ``roles``.

        Deliveries run concurrently and fail independently. The communication
        is FAILED only when every recipient failed.

        Raises:
            NotFoundError: Incident or template missing, or no stakeholder matched.
        """
        incident = await self._require_incident(incident_id)
        stakeholders = await self._stakeholders.find_by_roles(roles)
        if not stakeholders:
            raise NotFoundError("Stakeholders", ",".join(role.value for role in roles))

        now = self._clock()
        subject, content, content_format = await self._resolve_content(
            communication_type, incident, None, now, template_id=template_id
        )

        recipients = [
            Recipient(
                stakeholder_id=stakeholder.id,
                stakeholder_name=stakeholder.name,
                stakeholder_role=stakeholder.role,
                channel=channel,
                contact_value=stakeholder.contact_for(channel),
            )
            for stakeholder in stakeholders
        ]
        communication = await self._communications.create(
            now.year,
            incident_id=incident.id,
            communication_type=communication_type,
            channel=channel,
            subject=subject,
            content=content,
            content_format=content_format,
            template_id=template_id,
            recipients=dump_recipients(recipients),
            status=CommunicationStatus.SENDING,
            delivery_stats=compute_delivery_stats(recipients),
            version=1,
        )

        results = await asyncio.gather(
            *(self._deliver(recipient, subject, content) for recipient in recipients),
            return_exceptions=True,
        )

        updated: list[Recipient] = []
        for recipient, result in zip(recipients, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                result = DeliveryResult.failed(f"{type(result).__name__}: {result}")
            updated.append(apply_delivery_result(recipient, result, now))

        stats = compute_delivery_stats(updated)
        all_failed = stats["failed"] == stats["total"]
        status = CommunicationStatus.FAILED if all_failed else CommunicationStatus.SENT

        communication = await self._communications.compare_and_swap(
            communication.id,
            communication.version,
            recipients=dump_recipients(updated),
            status=status,
            delivery_stats=stats,
            sent_at=None if all_failed else now,
        )
        await self._communications.add_timeline_entry(
            incident_id=incident.id,
            event_type="COMMUNICATION_FAILED" if all_failed else "COMMUNICATION_SENT",
            title=(
                f"{communication_type.value} sent to {stats['sent']} of "
                f"{stats['total']} stakeholders via {channel.value}"
            ),
            occurred_at=now,
            communication_id=communication.id,
            details={"roles": [role.value for role in roles], **stats},
        )

        if not all_failed:
            event_id = await self._evidence.record(
                evidence_events.NOTIFICATION_SENT,
                "INFO",
                ["DORA"],
                ["Art.14"],
                {
                    "communication_id": str(communication.id),
                    "reference": communication.reference,
                    "incident_id": str(incident.id),
                    "type": communication_type.value,
                    "channel": channel.value,
                    "recipients": stats["total"],
                    "sent": stats["sent"],
                    "failed": stats["failed"],
                },
            )
            if event_id is not None:
                communication = await self._communications.compare_and_swap(
                    communication.id, communication.version, evidence_event_id=event_id
                )

        logger.info(
            "Bulk notification completed",
            reference=communication.reference,
            channel=channel.value,
            total=stats["total"],
            sent=stats["sent"],
            failed=stats["failed"],
        )
        return communication

    async def acknowledge_notification(
        self,
        communication_id: uuid.UUID,
        stakeholder_id: uuid.UUID,
    ) -> Communication:
        """Record a recipient's acknowledgment.

        The communication becomes ACKNOWLEDGED once every recipient has
        acknowledged. Acknowledging twice is a no-op. A recipient whose
        delivery failed may still acknowledge; the failure reason is kept.

        Raises:
            NotFoundError: Unknown communication or recipient.
            ConcurrencyConflictError: Retries exhausted.
        """
        for attempt in range(1, self._max_cas_retries + 1):
            communication, recipients, index = await self._load_recipient(
                communication_id, stakeholder_id
            )
            if recipients[index].status == CommunicationStatus.ACKNOWLEDGED:
                return communication

            now = self._clock()
            recipients[index] = recipients[index].model_copy(
                update={"status": CommunicationStatus.ACKNOWLEDGED, "acknowledged_at": now}
            )
            all_acknowledged = all(
                r.status == CommunicationStatus.ACKNOWLEDGED for r in recipients
            )

            try:
                updated = await self._communications.compare_and_swap(
                    communication.id,
                    communication.version,
                    recipients=dump_recipients(recipients),
                    delivery_stats=compute_delivery_stats(recipients),
                    status=(
                        CommunicationStatus.ACKNOWLEDGED
                        if all_acknowledged
                        else communication.status
                    ),
                )
            except ConcurrencyConflictError:
                logger.debug(
                    "Communication changed concurrently, retrying acknowledgment",
                    communication_id=str(communication_id),
                    attempt=attempt,
                )
                continue

            recipient = recipients[index]
            await self._communications.add_timeline_entry(
                incident_id=updated.incident_id,
                event_type="COMMUNICATION_ACKNOWLEDGED",
                title=f"{updated.reference} acknowledged by {recipient.stakeholder_name}",
                occurred_at=now,
                communication_id=updated.id,
                actor=recipient.stakeholder_name,
            )
            await self._evidence.record(
                evidence_events.NOTIFICATION_ACKNOWLEDGED,
                "INFO",
                ["DORA"],
                ["Art.14"],
                {
                    "communication_id": str(updated.id),
                    "reference": updated.reference,
                    "incident_id": str(updated.incident_id),
                    "stakeholder_id": str(stakeholder_id),
                    "stakeholder_name": recipient.stakeholder_name,
                },
            )
            logger.info(
                "Notification acknowledged",
                reference=updated.reference,
                stakeholder_id=str(stakeholder_id),
                all_acknowledged=all_acknowledged,
            )
            return updated

        logger.warning(
            "Notification acknowledgment abandoned after repeated write conflicts",
            communication_id=str(communication_id),
            attempts=self._max_cas_retries,
        )
        raise ConcurrencyConflictError("Communication", communication_id)

    async def record_recipient_status(
        self,
        communication_id: uuid.UUID,
        stakeholder_id: uuid.UUID,
        status: CommunicationStatus,
    ) -> Communication:
        """Apply a DELIVERED or READ receipt from a transport.

        Receipts only move a recipient forward; a stale receipt is ignored.

        Raises:
            ValueError: ``status`` is not a receipt status.
            NotFoundError: Unknown communication or recipient.
            InvalidStateTransitionError: Recipient delivery had failed.
        """
        if status not in (CommunicationStatus.DELIVERED, CommunicationStatus.READ):
            raise ValueError(f"{status.value} is not a delivery receipt status")

        timestamp_field = "delivered_at" if status == CommunicationStatus.DELIVERED else "read_at"

        for _ in range(self._max_cas_retries):
            communication, recipients, index = await self._load_recipient(
                communication_id, stakeholder_id
            )
            current = recipients[index].status
            if current == CommunicationStatus.FAILED:
                raise InvalidStateTransitionError(
                    f"Recipient {stakeholder_id} delivery failed; cannot record {status.value}"
                )
            if _RECEIPT_ORDER[current] >= _RECEIPT_ORDER[status]:
                return communication

            recipients[index] = recipients[index].model_copy(
                update={"status": status, timestamp_field: self._clock()}
            )
            try:
                return await self._communications.compare_and_swap(
                    communication.id,
                    communication.version,
                    recipients=dump_recipients(recipients),
                    delivery_stats=compute_delivery_stats(recipients),
                )
            except ConcurrencyConflictError:
                continue

        raise ConcurrencyConflictError("Communication", communication_id)

    async def _load_recipient(
        self,
        communication_id: uuid.UUID,
        stakeholder_id: uuid.UUID,
    ) -> tuple[Communication, list[Recipient], int]:
        communication = await self._communications.get(communication_id)
        if communication is None:
            raise NotFoundError("Communication", communication_id)
        recipients = load_recipients(communication.recipients)
        for index, recipient in enumerate(recipients):
            if recipient.stakeholder_id == stakeholder_id:
                return communication, recipients, index
        raise NotFoundError("Recipient", stakeholder_id)

    async def get_communication(self, communication_id: uuid.UUID) -> Communication:
        communication = await self._communications.get(communication_id)
        if communication is None:
            raise NotFoundError("Communication", communication_id)
        return communication

    async def list_communications(self, incident_id: uuid.UUID) -> list[Communication]:
        return await self._communications.list_for_incident(incident_id)

    async def list_timeline(self, incident_id: uuid.UUID) -> list[CommunicationTimelineEntry]:
        return await self._communications.list_timeline(incident_id)

    async def create_template(self, data: CommunicationTemplateCreate) -> CommunicationTemplate:
        return await self._communications.create_template(**data.model_dump())
