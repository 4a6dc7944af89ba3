"""
WakeSignal — manual-reset signal used to interrupt the scheduler's wait.

Any thread may set() it; it stays set until the waiter that consumed it
calls reset().  The scheduler resets right after waking on a signal (never
after a timeout), so it neither spins on a stale signal nor loses one that
arrived while it was busy firing.
"""

from __future__ import annotations

import threading


class WakeSignal:
    """Thin wrapper over threading.Event with timeout-aware wait."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def set(self) -> None:
        """Wake every waiter. Safe to call from any thread."""
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until signalled or until `timeout` seconds pass.

        Returns True if woken by a signal, False on timeout.
        `timeout=None` blocks until signalled.
        """
        return self._event.wait(timeout)
