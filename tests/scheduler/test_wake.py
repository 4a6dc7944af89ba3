"""Tests for chime/scheduler/wake.py"""
from __future__ import annotations

import threading
import time

from chime.scheduler.wake import WakeSignal


class TestWakeSignal:
    def test_timeout_returns_false(self):
        wake = WakeSignal()
        start = time.monotonic()
        assert wake.wait(0.05) is False
        assert time.monotonic() - start >= 0.04

    def test_stays_set_until_reset(self):
        wake = WakeSignal()
        wake.set()
        assert wake.wait(0) is True
        assert wake.wait(0) is True
        wake.reset()
        assert wake.is_set() is False
        assert wake.wait(0) is False

    def test_set_from_other_thread_wakes_waiter(self):
        wake = WakeSignal()
        timer = threading.Timer(0.05, wake.set)
        timer.start()
        try:
            assert wake.wait(5) is True
        finally:
            timer.cancel()
