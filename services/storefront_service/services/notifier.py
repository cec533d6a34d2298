"""Messaging sink used to deliver content and status updates to customers.

The sink is passed into the purchase orchestrator and the payment reconciler;
nothing in the service reaches for a module-level bot client.
"""

from typing import Optional, Protocol, Sequence

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class NotificationError(Exception):
    """The transport refused or failed to deliver a message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MessagingSink(Protocol):
    async def notify(self, external_id: str, text: str) -> None: ...

    async def notify_admins(self, text: str) -> None: ...


class TelegramNotifier:
    """Sends messages through the Telegram Bot API ``sendMessage`` method."""

    def __init__(
        self,
        bot_token: str,
        admin_chat_ids: Sequence[str] = (),
        api_url: str = "https://api.telegram.org",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = f"{api_url.rstrip('/')}/bot{bot_token}"
        self.admin_chat_ids = list(admin_chat_ids)
        self._transport = transport

    async def _send(self, chat_id: str, text: str) -> None:
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/sendMessage",
                    json={"chat_id": chat_id, "text": text},
                )
            except httpx.RequestError as e:
                raise NotificationError(f"Telegram request failed: {e}") from e

        if response.status_code != 200:
            raise NotificationError(
                f"Telegram sendMessage returned {response.status_code}",
                status_code=response.status_code,
            )
        payload = response.json()
        if not payload.get("ok"):
            raise NotificationError(
                payload.get("description", "Telegram sendMessage failed"),
                status_code=response.status_code,
            )

    async def notify(self, external_id: str, text: str) -> None:
        await self._send(external_id, text)

    async def notify_admins(self, text: str) -> None:
        failures = 0
        for chat_id in self.admin_chat_ids:
            try:
                await self._send(chat_id, text)
            except NotificationError as e:
                failures += 1
                logger.warning("Admin notification to %s failed: %s", chat_id, e)
        if failures and failures == len(self.admin_chat_ids):
            raise NotificationError("No admin chat accepted the notification")


class LoggingNotifier:
    """Sink for environments without a bot token: messages only go to the log."""

    async def notify(self, external_id: str, text: str) -> None:
        logger.info("Notification to %s: %s", external_id, text)

    async def notify_admins(self, text: str) -> None:
        logger.info("Admin notification: %s", text)


def build_notifier() -> MessagingSink:
    settings = get_settings()
    if not settings.TELEGRAM_BOT_TOKEN:
        return LoggingNotifier()
    return TelegramNotifier(
        bot_token=settings.TELEGRAM_BOT_TOKEN,
        admin_chat_ids=settings.ADMIN_CHAT_IDS,
        api_url=settings.TELEGRAM_API_URL,
    )


async def send_quietly(sink: MessagingSink, external_id: str, text: str) -> bool:
    """Deliver to one customer; failures are logged and reported as ``False``."""
    try:
        await sink.notify(external_id, text)
        return True
    except Exception as e:
        logger.error("Failed to notify %s: %s", external_id, e)
        return False


async def send_admins_quietly(sink: MessagingSink, text: str) -> bool:
    try:
        await sink.notify_admins(text)
        return True
    except Exception as e:
        logger.error("Failed to notify admins: %s", e)
        return False
