"""Channel transports.

One transport per communication channel. ``deliver`` reports failure
through the returned DeliveryResult and never raises; the registry also
converts any unexpected exception from a transport into a failed result.

Chat and webhook transports POST through httpx. Email goes through
smtplib in a worker thread. Channels without a configured provider fall
back to a log-only transport.
"""

import asyncio
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol

import httpx

from regcomms.config import Settings
from regcomms.logging_config import get_logger
from regcomms.models.stakeholder import CommunicationChannel
from regcomms.services.message_templates import strip_html

logger = get_logger(__name__)

SMS_MAX_LENGTH = 1600


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one delivery attempt."""

    success: bool
    reason: str | None = None
    provider_message_id: str | None = None

    @classmethod
    def ok(cls, provider_message_id: str | None = None) -> "DeliveryResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def failed(cls, reason: str) -> "DeliveryResult":
        return cls(success=False, reason=reason)


class ChannelTransport(Protocol):
    async def deliver(self, address: str, subject: str, body: str) -> DeliveryResult: ...


class LoggingTransport:
    """Records the message in the application log only.

    Used for channels handled outside this service (portal, letters, press)
    and for providers that are not configured.
    """

    def __init__(self, channel: CommunicationChannel):
        self.channel = channel

    async def deliver(self, address: str, subject: str, body: str) -> DeliveryResult:
        logger.info(
            "Message recorded (log-only transport)",
            channel=self.channel.value,
            address=address,
            subject=subject,
        )
        return DeliveryResult.ok()


class EmailTransport:
    """SMTP email with an HTML part and a plain-text alternative."""

    def __init__(self, settings: Settings):
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._username = settings.smtp_username
        self._password = settings.smtp_password
        self._use_tls = settings.smtp_use_tls
        self._sender = settings.smtp_sender
        self._timeout = settings.transport_timeout_seconds

    def _build_message(self, address: str, subject: str, body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self._sender
        message["To"] = address
        message.attach(MIMEText(strip_html(body), "plain"))
        message.attach(MIMEText(body, "html"))
        return message

    def _send(self, message: MIMEMultipart) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls(context=ssl.create_default_context())
            if self._username:
                server.login(self._username, self._password)
            server.send_message(message)

    async def deliver(self, address: str, subject: str, body: str) -> DeliveryResult:
        message = self._build_message(address, subject, body)
        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Email delivery failed", address=address, error=str(e))
            return DeliveryResult.failed(f"SMTP error: {e}")
        return DeliveryResult.ok()


class HttpTransport:
    """Base for transports that POST JSON to an HTTP endpoint."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout
        # Injected in tests (httpx.MockTransport)
        self._transport = transport

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> DeliveryResult:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            return DeliveryResult.failed(f"{type(e).__name__}: {e}")

        if response.status_code >= 300:
            return DeliveryResult.failed(f"HTTP {response.status_code}: {response.text[:200]}")

        return DeliveryResult.ok(response.headers.get("x-message-id"))


class WebhookTransport(HttpTransport):
    """Generic JSON webhook; the stakeholder's address is the URL."""

    async def deliver(self, address: str, subject: str, body: str) -> DeliveryResult:
        return await self._post(address, {"subject": subject, "body": body})


class SlackTransport(HttpTransport):
    """Slack incoming webhook; the stakeholder's address is the webhook URL."""

    async def deliver(self, address: str, subject: str, body: str) -> DeliveryResult:
        payload = {
            "text": subject,
            "blocks": [
                {"type": "header", "text": {"type": "plain_text", "text": subject[:150]}},
                {"type": "section", "text": {"type": "mrkdwn", "text": strip_html(body)}},
            ],
        }
        return await self._post(address, payload)


class TeamsTransport(HttpTransport):
    """Microsoft Teams connector webhook (MessageCard)."""

    async def deliver(self, address: str, subject: str, body: str) -> DeliveryResult:
        card = {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "summary": subject,
            "sections": [
                {
                    "activityTitle": subject,
                    "text": strip_html(body),
                    "markdown": True,
                }
            ],
        }
        return await self._post(address, card)


class SmsGatewayTransport(HttpTransport):
    """HTTP SMS gateway; the stakeholder's address is the phone number."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        sender_id: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self._gateway_url = gateway_url
        self._api_key = api_key
        self._sender_id = sender_id

    async def deliver(self, address: str, subject: str, body: str) -> DeliveryResult:
        text = f"{subject}: {strip_html(body)}"[:SMS_MAX_LENGTH]
        return await self._post(
            self._gateway_url,
            {"to": address, "from": self._sender_id, "text": text},
            headers={"Authorization": f"Bearer {self._api_key}"},
        )


class ChannelTransportRegistry:
    """Channel -> transport lookup used by the notification dispatcher."""

    def __init__(self, transports: dict[CommunicationChannel, ChannelTransport] | None = None):
        self._transports: dict[CommunicationChannel, ChannelTransport] = dict(transports or {})

    def register(self, channel: CommunicationChannel, transport: ChannelTransport) -> None:
        self._transports[channel] = transport

    def get(self, channel: CommunicationChannel) -> ChannelTransport | None:
        return self._transports.get(channel)

    async def deliver(
        self,
        channel: CommunicationChannel,
        address: str,
        subject: str,
        body: str,
    ) -> DeliveryResult:
        transport = self._transports.get(channel)
        if transport is None:
            return DeliveryResult.failed(f"No transport configured for {channel.value}")
        try:
            return await transport.deliver(address, subject, body)
        except Exception as e:
            logger.exception("Transport raised during delivery", channel=channel.value)
            return DeliveryResult.failed(f"{type(e).__name__}: {e}")


def build_default_transports(settings: Settings) -> ChannelTransportRegistry:
    """Transports for every channel from application settings."""
    timeout = settings.transport_timeout_seconds
    registry = ChannelTransportRegistry(
        {channel: LoggingTransport(channel) for channel in CommunicationChannel}
    )

    if settings.smtp_host:
        registry.register(CommunicationChannel.EMAIL, EmailTransport(settings))
    else:
        logger.warning("SMTP not configured, email will be log-only")

    if settings.sms_gateway_url:
        registry.register(
            CommunicationChannel.SMS,
            SmsGatewayTransport(
                settings.sms_gateway_url,
                settings.sms_gateway_api_key,
                settings.sms_sender_id,
                timeout=timeout,
            ),
        )

    registry.register(CommunicationChannel.SLACK, SlackTransport(timeout=timeout))
    registry.register(CommunicationChannel.TEAMS, TeamsTransport(timeout=timeout))
    registry.register(CommunicationChannel.WEBHOOK, WebhookTransport(timeout=timeout))
    return registry
