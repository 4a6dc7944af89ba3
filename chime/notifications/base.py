"""
Notifier primitives — Channel, MentionToken and the Notifier ABC.

A Notifier is the only thing the scheduler knows about the chat platform.
It turns opaque 64-bit destination ids into live channels, sends text to
them, and renders a requester id as a mention.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Channel:
    """A resolved, live delivery target."""

    id: int
    name: str = ""


@dataclass(frozen=True)
class MentionToken:
    """Platform-specific text that mentions a user when sent."""

    user_id: int
    text: str

    def __str__(self) -> str:
        return self.text


class Notifier(ABC):
    """
    Abstract chat-platform adapter.

    Implement this to add a new platform.  send() returns True only when
    the platform accepted the message; transport problems may either
    return False or raise DeliveryError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. 'telegram', 'file'."""
        ...

    @abstractmethod
    async def resolve_channel(self, destination_id: int) -> Channel | None:
        """Look up a live channel, or None if it no longer exists."""
        ...

    @abstractmethod
    async def send(self, channel: Channel, text: str) -> bool:
        ...

    @abstractmethod
    async def resolve_mentionable(self, requester_id: int) -> MentionToken | None:
        """Mention token for a user, or None if the user cannot be mentioned."""
        ...

    def escape_text(self, text: str) -> str:
        """Make user-written text safe for the platform's markup. Default: unchanged."""
        return text

    async def close(self) -> None:
        """Release network clients or file handles. Default: nothing to do."""
        return None
