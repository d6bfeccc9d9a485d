"""
Tests for incident broadcast
"""
import asyncio
import json

import httpx
import pytest

import sys
sys.path.insert(0, '.')

from conftest import T0, RecordingSink
from roadwatch.alerts.broadcast import (
    CRITICAL_BANNER,
    Broadcaster,
    BroadcastSink,
    LoggingContactNotifier,
    LoggingSink,
    TelegramChannelSink,
    TelegramContactNotifier,
    create_contact_notifier,
    create_sink,
    format_incident_message,
)
from roadwatch.core.config import Settings
from roadwatch.core.exceptions import BroadcastError
from roadwatch.database.models import Incident


def make_incident(**overrides):
    values = dict(
        id="inc-1",
        type="flooding",
        description="Water up to the knees",
        severity=3,
        latitude=3.848,
        longitude=11.5021,
        address="Carrefour Bastos",
        status="pending",
        confirmations=1,
        reporter_id="r1",
        created_at=T0,
    )
    values.update(overrides)
    return Incident(**values)


def telegram_client(responses, calls):
    """AsyncClient answering Bot API methods from a dict of method -> (status, body)."""
    def handler(request):
        method = request.url.path.rsplit("/", 1)[-1]
        calls.append((method, json.loads(request.content)))
        status, body = responses[method]
        return httpx.Response(status, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestFormatIncidentMessage:
    """Test suite for broadcast formatting."""

    def test_full_message(self):
        """Test emoji, label, address, time and description."""
        message = format_incident_message(make_incident(), utc_offset_hours=1)

        assert message.splitlines() == [
            "🌊 *Flooding*",
            "📍 Carrefour Bastos",
            "⏰ 09:00",
            '📝 _"Water up to the knees"_',
        ]

    def test_without_address_or_description(self):
        """Test fallbacks when address and description are missing."""
        message = format_incident_message(make_incident(address=None, description=None))

        assert "📍 Shared location" in message
        assert "📝" not in message

    def test_description_equal_to_type_omitted(self):
        """Test a description that only repeats the type is not shown."""
        message = format_incident_message(make_incident(description="flooding"))
        assert "📝" not in message

    def test_unknown_type_uses_other(self):
        """Test unknown types render with the generic label."""
        message = format_incident_message(make_incident(type="meteor"))
        assert message.startswith("❓ *Other*")


class TestTelegramChannelSink:
    """Test suite for the Telegram channel sink."""

    def test_send_message(self):
        """Test sendMessage is called with Markdown parse mode."""
        calls = []
        client = telegram_client({"sendMessage": (200, {"ok": True, "result": {"message_id": 7}})}, calls)
        sink = TelegramChannelSink("token", "@roadwatch", client=client)

        asyncio.run(sink.emit("hello"))

        assert calls == [("sendMessage", {
            "chat_id": "@roadwatch",
            "text": "hello",
            "parse_mode": "Markdown",
        })]

    def test_critical_message_pinned(self):
        """Test critical messages are pinned after sending."""
        calls = []
        client = telegram_client({
            "sendMessage": (200, {"ok": True, "result": {"message_id": 7}}),
            "pinChatMessage": (200, {"ok": True, "result": True}),
        }, calls)
        sink = TelegramChannelSink("token", "@roadwatch", client=client)

        asyncio.run(sink.emit("danger", critical=True))

        assert [c[0] for c in calls] == ["sendMessage", "pinChatMessage"]
        assert calls[1][1] == {"chat_id": "@roadwatch", "message_id": 7}

    def test_pin_failure_tolerated(self):
        """Test a failed pin does not fail the delivery."""
        calls = []
        client = telegram_client({
            "sendMessage": (200, {"ok": True, "result": {"message_id": 7}}),
            "pinChatMessage": (400, {"ok": False, "description": "not enough rights"}),
        }, calls)
        sink = TelegramChannelSink("token", "@roadwatch", client=client)

        asyncio.run(sink.emit("danger", critical=True))

        assert len(calls) == 2

    @pytest.mark.parametrize("status,body", [
        (500, {"ok": False}),
        (200, {"ok": False, "description": "chat not found"}),
    ])
    def test_send_failure_raises(self, status, body):
        """Test HTTP errors and API rejections raise BroadcastError."""
        client = telegram_client({"sendMessage": (status, body)}, [])
        sink = TelegramChannelSink("token", "@roadwatch", client=client)

        with pytest.raises(BroadcastError):
            asyncio.run(sink.emit("hello"))


class TestContactNotifiers:
    """Test suite for emergency contact delivery."""

    def test_telegram_private_message(self):
        """Test each alert is a sendMessage to the contact's chat."""
        calls = []
        client = telegram_client({"sendMessage": (200, {"ok": True, "result": {"message_id": 3}})}, calls)
        notifier = TelegramContactNotifier("token", client=client)

        asyncio.run(notifier.notify("1001", "SOS"))

        assert calls == [("sendMessage", {
            "chat_id": "1001",
            "text": "SOS",
            "parse_mode": "Markdown",
        })]

    def test_telegram_rejection_raises(self):
        client = telegram_client({"sendMessage": (400, {"ok": False, "description": "chat not found"})}, [])
        notifier = TelegramContactNotifier("token", client=client)

        with pytest.raises(BroadcastError):
            asyncio.run(notifier.notify("1001", "SOS"))

    def test_factory(self):
        """Test a bot token alone is enough for direct alerts."""
        with_token = Settings(_env_file=None, telegram_bot_token="t", telegram_channel_id=None)
        without = Settings(_env_file=None, telegram_bot_token=None, telegram_channel_id=None)

        assert isinstance(create_contact_notifier(with_token), TelegramContactNotifier)
        assert isinstance(create_contact_notifier(without), LoggingContactNotifier)


class TestBroadcaster:
    """Test suite for the fire-and-forget publisher."""

    def test_critical_banner(self):
        """Test critical messages carry the banner."""
        sink = RecordingSink()
        sent = asyncio.run(Broadcaster(sink).send("SOS", critical=True))

        assert sent is True
        assert sink.messages == [(f"{CRITICAL_BANNER}\n\nSOS", True)]

    def test_publish_incident_severity(self):
        """Test severity 4 and above is published as critical."""
        sink = RecordingSink()
        broadcaster = Broadcaster(sink)

        async def scenario():
            broadcaster.publish_incident(make_incident(severity=3))
            broadcaster.publish_incident(make_incident(id="inc-2", severity=4))
            await broadcaster.drain()

        asyncio.run(scenario())

        assert [critical for _, critical in sink.messages] == [False, True]

    def test_failure_returns_false(self):
        """Test sink errors are contained."""
        class Broken(BroadcastSink):
            async def emit(self, text, critical=False):
                raise BroadcastError("down")

        class Crashing(BroadcastSink):
            async def emit(self, text, critical=False):
                raise RuntimeError("bug")

        assert asyncio.run(Broadcaster(Broken()).send("x")) is False
        assert asyncio.run(Broadcaster(Crashing()).send("x")) is False

    def test_logging_sink(self):
        """Test the logging sink accepts messages."""
        assert asyncio.run(Broadcaster(LoggingSink()).send("hello")) is True


class TestCreateSink:
    """Test suite for sink selection."""

    def test_logging_without_telegram(self):
        settings = Settings(_env_file=None, telegram_bot_token=None, telegram_channel_id=None)
        assert isinstance(create_sink(settings), LoggingSink)

    def test_telegram_when_configured(self):
        settings = Settings(_env_file=None, telegram_bot_token="t", telegram_channel_id="@c")
        sink = create_sink(settings)

        assert isinstance(sink, TelegramChannelSink)
        assert sink.channel_id == "@c"
