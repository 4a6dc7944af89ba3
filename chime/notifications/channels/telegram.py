"""
TelegramNotifier — delivers fired entries via a Telegram bot.

Requires config:
    [notifier]
    kind = "telegram"

    [telegram]
    token = "BOT_TOKEN"

Destinations are Telegram chat ids, requesters are Telegram user ids.
A chat the bot can no longer see (deleted, bot kicked) resolves to None.
"""

from __future__ import annotations

import logging
import re

import httpx

from chime.core.errors import DeliveryError
from chime.notifications.base import Channel, MentionToken, Notifier

logger = logging.getLogger(__name__)

_TELEGRAM_API = "https://api.telegram.org/bot{token}/{method}"
_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


class TelegramNotifier(Notifier):
    """Sends notifications as Telegram messages."""

    def __init__(
        self,
        token: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._token = token.strip()
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def name(self) -> str:
        return "telegram"

    async def resolve_channel(self, destination_id: int) -> Channel | None:
        try:
            result = await self._call("getChat", {"chat_id": destination_id})
        except DeliveryError as e:
            logger.warning(f"Telegram chat {destination_id} unavailable: {e}")
            return None
        title = result.get("title") or result.get("username") or str(destination_id)
        return Channel(id=destination_id, name=title)

    async def resolve_mentionable(self, requester_id: int) -> MentionToken | None:
        # Telegram renders tg://user links only for users the bot has seen
        return MentionToken(user_id=requester_id, text=f"[user](tg://user?id={requester_id})")

    def escape_text(self, text: str) -> str:
        # Legacy Markdown: a stray _ * ` or [ makes Telegram reject the message
        return _MARKDOWN_SPECIAL.sub(r"\\\1", text)

    async def send(self, channel: Channel, text: str) -> bool:
        await self._call(
            "sendMessage",
            {"chat_id": channel.id, "text": text, "parse_mode": "Markdown"},
        )
        logger.debug(f"Telegram notification sent to {channel.id}")
        return True

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, payload: dict) -> dict:
        url = _TELEGRAM_API.format(token=self._token, method=method)
        try:
            resp = await self._client.post(url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DeliveryError(
                f"Telegram {method} failed: {e}",
                notifier=self.name,
                destination=int(payload.get("chat_id", 0)),
            ) from e
        if not body.get("ok"):
            raise DeliveryError(
                f"Telegram {method} rejected: {body.get('description', 'unknown error')}",
                notifier=self.name,
                destination=int(payload.get("chat_id", 0)),
            )
        return body.get("result") or {}
