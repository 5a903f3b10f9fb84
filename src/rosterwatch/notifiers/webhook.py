"""Webhook notifier: POSTs Discord-compatible JSON payloads with aiohttp."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from rosterwatch.errors import NotificationDeliveryFailure
from rosterwatch.notifiers.base import Message, PlainText

logger = logging.getLogger(__name__)


def build_payload(message: Message) -> dict:
    """Translate a message into a webhook body (``content`` + ``embeds``)."""
    if isinstance(message, PlainText):
        return {"content": message.text}
    return {
        "content": message.mention,
        "embeds": [
            {
                "title": message.title,
                "fields": [
                    {"name": f.name, "value": f.value, "inline": f.inline}
                    for f in message.fields
                ],
            }
        ],
    }


class WebhookNotifier:
    """Sends each message as one HTTP POST to a chat webhook URL."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def name(self) -> str:
        return "webhook"

    def _get_session(self) -> aiohttp.ClientSession:
        # Created lazily so it binds to the running loop
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def send(self, message: Message) -> None:
        session = self._get_session()
        try:
            async with session.post(self._url, json=build_payload(message)) as resp:
                if resp.status >= 300:
                    body = await resp.text()
                    raise NotificationDeliveryFailure(
                        f"webhook returned HTTP {resp.status}: {body[:200]}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NotificationDeliveryFailure(f"webhook request failed: {e}") from e

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Webhook session closed")
