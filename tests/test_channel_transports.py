"""Tests for channel transports."""

import json
import smtplib
from unittest.mock import MagicMock, patch

import httpx
import pytest

from regcomms.config import Settings
from regcomms.models.stakeholder import CommunicationChannel
from regcomms.services.channel_transports import (
    SMS_MAX_LENGTH,
    ChannelTransportRegistry,
    DeliveryResult,
    EmailTransport,
    LoggingTransport,
    SlackTransport,
    SmsGatewayTransport,
    TeamsTransport,
    WebhookTransport,
    build_default_transports,
)


class RequestLog:
    """httpx.MockTransport handler that records requests."""

    def __init__(self, status_code: int = 200, headers: dict[str, str] | None = None):
        self.status_code = status_code
        self.headers = headers or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, headers=self.headers, text="upstream says no")

    def json(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


class TestWebhookTransport:
    @pytest.mark.asyncio
    async def test_posts_subject_and_body(self):
        log = RequestLog(headers={"x-message-id": "msg-1"})
        transport = WebhookTransport(transport=httpx.MockTransport(log))

        result = await transport.deliver("https://hooks.test/incident", "Subject", "<p>Body</p>")

        assert result == DeliveryResult.ok("msg-1")
        assert str(log.requests[0].url) == "https://hooks.test/incident"
        assert log.json() == {"subject": "Subject", "body": "<p>Body</p>"}

    @pytest.mark.asyncio
    async def test_error_status_is_failure(self):
        transport = WebhookTransport(transport=httpx.MockTransport(RequestLog(500)))

        result = await transport.deliver("https://hooks.test/incident", "Subject", "Body")

        assert result.success is False
        assert result.reason.startswith("HTTP 500")

    @pytest.mark.asyncio
    async def test_connection_error_is_failure(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = WebhookTransport(transport=httpx.MockTransport(refuse))

        result = await transport.deliver("https://hooks.test/incident", "Subject", "Body")

        assert result.success is False
        assert "ConnectError" in result.reason


class TestChatTransports:
    @pytest.mark.asyncio
    async def test_slack_payload(self):
        log = RequestLog()
        transport = SlackTransport(transport=httpx.MockTransport(log))

        result = await transport.deliver(
            "https://hooks.slack.test/ciso", "[CRITICAL] Outage", "<h2>Outage</h2><p>Act now</p>"
        )

        assert result.success is True
        payload = log.json()
        assert payload["text"] == "[CRITICAL] Outage"
        assert payload["blocks"][1]["text"]["text"] == "Outage Act now"

    @pytest.mark.asyncio
    async def test_teams_message_card(self):
        log = RequestLog()
        transport = TeamsTransport(transport=httpx.MockTransport(log))

        await transport.deliver("https://teams.test/ops", "Subject", "<p>Body</p>")

        card = log.json()
        assert card["@type"] == "MessageCard"
        assert card["sections"][0]["text"] == "Body"


class TestSmsGatewayTransport:
    @pytest.mark.asyncio
    async def test_posts_plain_text_with_bearer_token(self):
        log = RequestLog()
        transport = SmsGatewayTransport(
            "https://sms.test/send",
            "secret-key",
            "BANK",
            transport=httpx.MockTransport(log),
        )

        result = await transport.deliver("+32470000001", "Outage", "<p>Payments down</p>")

        assert result.success is True
        request = log.requests[0]
        assert request.headers["authorization"] == "Bearer secret-key"
        assert log.json() == {"to": "+32470000001", "from": "BANK", "text": "Outage: Payments down"}

    @pytest.mark.asyncio
    async def test_long_messages_truncated(self):
        log = RequestLog()
        transport = SmsGatewayTransport(
            "https://sms.test/send", "key", "BANK", transport=httpx.MockTransport(log)
        )

        await transport.deliver("+32470000001", "Outage", "x" * 5000)

        assert len(log.json()["text"]) == SMS_MAX_LENGTH


class TestEmailTransport:
    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(
            smtp_host="smtp.test",
            smtp_port=2525,
            smtp_username="mailer",
            smtp_password="pw",
            smtp_sender="incidents@bank.test",
        )

    @pytest.mark.asyncio
    async def test_sends_multipart_message(self, settings):
        with patch("regcomms.services.channel_transports.smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value

            result = await EmailTransport(settings).deliver(
                "ciso@bank.test", "Subject", "<p>Body</p>"
            )

        assert result.success is True
        mock_smtp.assert_called_once_with("smtp.test", 2525, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "pw")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "ciso@bank.test"
        assert message["From"] == "incidents@bank.test"
        assert message.is_multipart()

    @pytest.mark.asyncio
    async def test_connection_failure(self, settings):
        with patch(
            "regcomms.services.channel_transports.smtplib.SMTP",
            side_effect=OSError("connection refused"),
        ):
            result = await EmailTransport(settings).deliver("ciso@bank.test", "S", "B")

        assert result.success is False
        assert "connection refused" in result.reason

    @pytest.mark.asyncio
    async def test_smtp_rejection(self, settings):
        with patch("regcomms.services.channel_transports.smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})

            result = await EmailTransport(settings).deliver("nobody@bank.test", "S", "B")

        assert result.success is False
        assert result.reason.startswith("SMTP error")


class TestChannelTransportRegistry:
    @pytest.mark.asyncio
    async def test_missing_transport(self):
        registry = ChannelTransportRegistry()

        result = await registry.deliver(CommunicationChannel.SMS, "+32", "S", "B")

        assert result.success is False
        assert "No transport configured for SMS" in result.reason

    @pytest.mark.asyncio
    async def test_transport_exception_becomes_failure(self):
        broken = MagicMock()
        broken.deliver.side_effect = RuntimeError("boom")
        registry = ChannelTransportRegistry({CommunicationChannel.WEBHOOK: broken})

        result = await registry.deliver(CommunicationChannel.WEBHOOK, "https://x", "S", "B")

        assert result == DeliveryResult.failed("RuntimeError: boom")

    @pytest.mark.asyncio
    async def test_logging_transport_always_succeeds(self):
        result = await LoggingTransport(CommunicationChannel.PORTAL).deliver("portal", "S", "B")
        assert result.success is True


class TestBuildDefaultTransports:
    def test_unconfigured_providers_are_log_only(self):
        registry = build_default_transports(Settings())

        assert isinstance(registry.get(CommunicationChannel.EMAIL), LoggingTransport)
        assert isinstance(registry.get(CommunicationChannel.SMS), LoggingTransport)
        assert isinstance(registry.get(CommunicationChannel.SLACK), SlackTransport)
        assert all(registry.get(channel) is not None for channel in CommunicationChannel)

    def test_configured_providers(self):
        settings = Settings(
            smtp_host="smtp.test",
            sms_gateway_url="https://sms.test/send",
            sms_gateway_api_key="key",
        )

        registry = build_default_transports(settings)

        assert isinstance(registry.get(CommunicationChannel.EMAIL), EmailTransport)
        assert isinstance(registry.get(CommunicationChannel.SMS), SmsGatewayTransport)
