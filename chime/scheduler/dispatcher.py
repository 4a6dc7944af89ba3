"""
Dispatcher — fires one due entry through the notifier.

One delivery attempt per occurrence: no retries here.  Whatever the
outcome, the scheduler advances or retires the entry afterwards.
"""

from __future__ import annotations

import logging
from enum import Enum

from chime.notifications.base import Notifier
from chime.scheduler.entry import Entry

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    CHANNEL_UNAVAILABLE = "channel_unavailable"
    FAILED = "failed"


class Dispatcher:
    """
    Turns an entry into outgoing text and hands it to the notifier.

    Usage:
        dispatcher = Dispatcher(TelegramNotifier(token))
        outcome = await dispatcher.fire(entry)
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    async def fire(self, entry: Entry) -> DeliveryOutcome:
        """
        Deliver `entry` once.

        Raises DeliveryError for transport failures the notifier raises;
        a channel that no longer exists is reported as CHANNEL_UNAVAILABLE.
        """
        channel = await self._notifier.resolve_channel(entry.destination)
        if channel is None:
            logger.warning(
                f"Entry #{entry.id}: destination {entry.destination} unavailable, nothing sent"
            )
            return DeliveryOutcome.CHANNEL_UNAVAILABLE

        text = await self.render(entry)
        ok = await self._notifier.send(channel, text)
        if not ok:
            logger.warning(f"Entry #{entry.id}: {self._notifier.name} refused the message")
            return DeliveryOutcome.FAILED
        logger.info(f"Entry #{entry.id} delivered via {self._notifier.name} to {channel.id}")
        return DeliveryOutcome.DELIVERED

    async def render(self, entry: Entry) -> str:
        """Outgoing text (payload escaped for the platform), prefixed with a mention when needed."""
        payload = self._notifier.escape_text(entry.payload_text)
        if entry.requester == 0 or entry.mention_on_fire:
            return payload
        token = await self._notifier.resolve_mentionable(entry.requester)
        if token is None:
            return payload
        if not payload:
            return token.text
        return f"{token.text} {payload}"
