"""
FileNotifier — appends fired entries to ~/.chime/notifications.log.

Every destination resolves, so this notifier never loses an occurrence.
Used when no chat platform is configured and as a permanent record.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from pathlib import Path

from chime.core.errors import DeliveryError
from chime.notifications.base import Channel, MentionToken, Notifier

logger = logging.getLogger(__name__)


class FileNotifier(Notifier):
    """Appends notifications to a plain-text log file."""

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = Path(log_path or (Path.home() / ".chime" / "notifications.log")).expanduser()

    @property
    def name(self) -> str:
        return "file"

    @property
    def log_path(self) -> Path:
        return self._log_path

    async def resolve_channel(self, destination_id: int) -> Channel | None:
        return Channel(id=destination_id, name=f"#{destination_id}")

    async def resolve_mentionable(self, requester_id: int) -> MentionToken | None:
        return MentionToken(user_id=requester_id, text=f"@{requester_id}")

    async def send(self, channel: Channel, text: str) -> bool:
        ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        block = f"[{ts}] [{channel.name}]\n{text}\n{'─' * 60}\n"
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._append, block)
        except OSError as e:
            raise DeliveryError(
                f"FileNotifier write failed: {e}", notifier=self.name, destination=channel.id
            ) from e
        return True

    def _append(self, block: str) -> None:
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(block)
