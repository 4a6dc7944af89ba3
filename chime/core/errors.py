"""
Chime exception hierarchy.

Every error in the system inherits from ChimeError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        request = parser.parse(text, destination=chat_id)
    except ValidationError as e:
        # Tell the requester what was wrong with their command
    except ChimeError as e:
        # Handle any Chime error
"""

from __future__ import annotations


class ChimeError(Exception):
    """Base exception for all Chime errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Layer 0: Core Errors ━━━


class ConfigError(ChimeError):
    """Configuration is invalid, missing, or malformed."""

    pass


class ValidationError(ChimeError):
    """
    A request could not be turned into a valid entry.

    Reported back to the requester; never a process fault.
    `code` is a ParseErrorCode when the error came from the command parser.
    """

    def __init__(
        self,
        message: str,
        code: str = "",
        details: dict | None = None,
    ):
        self.code = code
        super().__init__(message, details)


# ━━━ Layer 1: Scheduler Errors ━━━


class InternalConsistencyError(ChimeError):
    """The store's due-time index and id index disagree. Fatal to the loop."""

    pass


class CorruptStateError(ChimeError):
    """The durable medium exists but cannot be parsed. Fatal at startup."""

    pass


class StorageError(ChimeError):
    """Durable medium write or read failure (I/O, database errors)."""

    pass


# ━━━ Layer 2: Delivery Errors ━━━


class DeliveryError(ChimeError):
    """Notifier could not resolve a channel or the send failed."""

    def __init__(
        self,
        message: str,
        notifier: str = "",
        destination: int = 0,
        details: dict | None = None,
    ):
        self.notifier = notifier
        self.destination = destination
        super().__init__(message, details)
