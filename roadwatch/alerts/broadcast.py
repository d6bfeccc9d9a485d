"""
Broadcast of new incidents to a public channel.
Supports a logging sink and a Telegram channel via the Bot API, plus
direct alerts to a reporter's emergency contacts.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional, Set

import httpx

from roadwatch.core.config import Settings, settings as default_settings
from roadwatch.core.constants import CRITICAL_SEVERITY, INCIDENT_TYPE_INFO
from roadwatch.core.exceptions import BroadcastError
from roadwatch.database.models import Incident

logger = logging.getLogger(__name__)

CRITICAL_BANNER = "🚨🚨 *CRITICAL ALERT* 🚨🚨"


def format_incident_message(incident: Incident, utc_offset_hours: int = 0) -> str:
    """
    Format an incident as a short Markdown message.

    Args:
        incident: Incident to describe
        utc_offset_hours: Offset applied to the stored UTC time for display

    Returns:
        Message text
    """
    info = INCIDENT_TYPE_INFO.get(incident.type, INCIDENT_TYPE_INFO["other"])
    local_time = incident.created_at + timedelta(hours=utc_offset_hours)

    lines = [
        f"{info['emoji']} *{info['label']}*",
        f"📍 {incident.address or 'Shared location'}",
        f"⏰ {local_time:%H:%M}",
    ]
    if incident.description and incident.description != incident.type:
        lines.append(f'📝 _"{incident.description}"_')

    return "\n".join(lines)


class BroadcastSink(ABC):
    """Destination for broadcast messages."""

    @abstractmethod
    async def emit(self, text: str, critical: bool = False) -> None:
        """
        Deliver a message.

        Raises:
            BroadcastError: Delivery failed
        """

    async def close(self) -> None:
        pass


class LoggingSink(BroadcastSink):
    """Writes broadcasts to the application log."""

    async def emit(self, text: str, critical: bool = False) -> None:
        level = logging.WARNING if critical else logging.INFO
        logger.log(level, f"Broadcast{' (critical)' if critical else ''}:\n{text}")


class TelegramBotAPI:
    """Minimal async client for the Telegram Bot API."""

    API_URL = "https://api.telegram.org"

    def __init__(
        self,
        bot_token: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.bot_token = bot_token
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _call(self, method: str, payload: dict) -> dict:
        url = f"{self.API_URL}/bot{self.bot_token}/{method}"
        try:
            response = await self._get_client().post(url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise BroadcastError(f"Telegram {method} failed: {e}") from e

        if not data.get("ok"):
            raise BroadcastError(f"Telegram {method} rejected: {data.get('description')}")
        return data.get("result") or {}

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class TelegramChannelSink(TelegramBotAPI, BroadcastSink):
    """
    Posts broadcasts to a Telegram channel.

    Critical messages are pinned; a failed pin is logged and does not fail
    the delivery.
    """

    def __init__(
        self,
        bot_token: str,
        channel_id: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize Telegram sink.

        Args:
            bot_token: Bot API token
            channel_id: Channel chat id or @username
            timeout: Request timeout in seconds
            client: Optional shared HTTP client
        """
        super().__init__(bot_token, timeout=timeout, client=client)
        self.channel_id = channel_id

    async def emit(self, text: str, critical: bool = False) -> None:
        result = await self._call("sendMessage", {
            "chat_id": self.channel_id,
            "text": text,
            "parse_mode": "Markdown",
        })

        if critical and "message_id" in result:
            try:
                await self._call("pinChatMessage", {
                    "chat_id": self.channel_id,
                    "message_id": result["message_id"],
                })
            except BroadcastError as e:
                logger.warning(f"Could not pin critical message: {e}")


def create_sink(settings: Optional[Settings] = None) -> BroadcastSink:
    """Telegram sink when a bot token and channel are configured, logging otherwise."""
    settings = settings or default_settings
    if settings.telegram_configured:
        return TelegramChannelSink(settings.telegram_bot_token, settings.telegram_channel_id)
    return LoggingSink()


class ContactNotifier(ABC):
    """Direct delivery to one person, used for emergency contacts."""

    @abstractmethod
    async def notify(self, contact: str, text: str) -> None:
        """
        Deliver a private message to a contact.

        Raises:
            BroadcastError: Delivery failed
        """

    async def close(self) -> None:
        pass


class LoggingContactNotifier(ContactNotifier):
    """Writes contact alerts to the application log."""

    async def notify(self, contact: str, text: str) -> None:
        logger.warning(f"Alert for contact {contact}:\n{text}")


class TelegramContactNotifier(TelegramBotAPI, ContactNotifier):
    """Sends contact alerts as private Telegram messages; contacts are chat ids."""

    async def notify(self, contact: str, text: str) -> None:
        await self._call("sendMessage", {
            "chat_id": contact,
            "text": text,
            "parse_mode": "Markdown",
        })


def create_contact_notifier(settings: Optional[Settings] = None) -> ContactNotifier:
    """Telegram notifier when a bot token is configured, logging otherwise."""
    settings = settings or default_settings
    if settings.telegram_bot_token:
        return TelegramContactNotifier(settings.telegram_bot_token)
    return LoggingContactNotifier()


class Broadcaster:
    """
    Fire-and-forget publisher.

    Delivery runs in background tasks; failures are logged and never reach
    the caller that persisted the incident.
    """

    def __init__(self, sink: BroadcastSink, utc_offset_hours: int = 0):
        self.sink = sink
        self.utc_offset_hours = utc_offset_hours
        self._tasks: Set[asyncio.Task] = set()

    async def send(self, text: str, critical: bool = False) -> bool:
        """Deliver a message now. Returns False if the sink failed."""
        if critical:
            text = f"{CRITICAL_BANNER}\n\n{text}"
        try:
            await self.sink.emit(text, critical=critical)
            return True
        except BroadcastError as e:
            logger.error(f"Broadcast failed: {e}")
        except Exception as e:
            logger.error(f"Broadcast sink error: {e}")
        return False

    def publish(self, text: str, critical: bool = False) -> asyncio.Task:
        """Schedule delivery without waiting for it."""
        task = asyncio.create_task(self.send(text, critical=critical))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def publish_incident(self, incident: Incident) -> asyncio.Task:
        """Broadcast a new incident; severity 4 and above is critical."""
        text = format_incident_message(incident, self.utc_offset_hours)
        return self.publish(text, critical=incident.severity >= CRITICAL_SEVERITY)

    async def drain(self) -> None:
        """Wait for scheduled deliveries to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.sink.close()
