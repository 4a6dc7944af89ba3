"""Shared test fixtures for Chime."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from chime.core.clock import Clock
from chime.core.config import ChimeConfig
from chime.core.errors import DeliveryError
from chime.notifications.base import Channel, MentionToken, Notifier
from chime.scheduler.dispatcher import Dispatcher
from chime.scheduler.engine import SchedulerEngine
from chime.scheduler.entry import EntryRequest
from chime.scheduler.persistence import JsonFileGateway
from chime.scheduler.store import EntryStore
from chime.scheduler.wake import WakeSignal

START = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


class FakeWake(WakeSignal):
    """
    Wake signal that never blocks.

    A timed wait advances the fake clock by the timeout and reports a
    timeout, unless the signal is set (possibly by `during_wait`).
    """

    def __init__(self, clock: FakeClock) -> None:
        super().__init__()
        self.clock = clock
        self.waits: list[float | None] = []
        self.during_wait = None

    def wait(self, timeout: float | None = None) -> bool:
        self.waits.append(timeout)
        if self.during_wait is not None:
            hook, self.during_wait = self.during_wait, None
            hook()
        if self.is_set():
            return True
        if timeout is not None:
            self.clock.advance(seconds=timeout)
        return False


class RecordingNotifier(Notifier):
    """Notifier that records what it was asked to send."""

    def __init__(
        self,
        unavailable: set[int] | None = None,
        refuse: bool = False,
        raise_error: bool = False,
    ) -> None:
        self.unavailable = unavailable or set()
        self.refuse = refuse
        self.raise_error = raise_error
        self.sent: list[tuple[int, str]] = []
        self.on_send = None

    @property
    def name(self) -> str:
        return "recording"

    async def resolve_channel(self, destination_id: int) -> Channel | None:
        if destination_id in self.unavailable:
            return None
        return Channel(id=destination_id, name=f"chan-{destination_id}")

    async def send(self, channel: Channel, text: str) -> bool:
        if self.raise_error:
            raise DeliveryError("boom", notifier=self.name, destination=channel.id)
        if self.refuse:
            return False
        self.sent.append((channel.id, text))
        if self.on_send is not None:
            self.on_send(channel, text)
        return True

    async def resolve_mentionable(self, requester_id: int) -> MentionToken | None:
        return MentionToken(user_id=requester_id, text=f"<@{requester_id}>")


def make_request(clock: Clock, minutes: float = 1, **kwargs) -> EntryRequest:
    defaults = dict(
        due_at=clock.now() + timedelta(minutes=minutes),
        payload_text="ping",
        destination=100,
        requester=0,
        interval_minutes=0,
        repeat_count=0,
        mention_on_fire=False,
    )
    defaults.update(kwargs)
    return EntryRequest(**defaults)


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return ChimeConfig()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wake(clock):
    return FakeWake(clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway(tmp_path):
    return JsonFileGateway(tmp_path / "reminders.json", lock=threading.RLock())


@pytest.fixture
def engine(clock, wake, notifier, gateway):
    """Engine on a fake clock and a non-blocking wake signal."""
    return SchedulerEngine(
        store=EntryStore(wake),
        wake=wake,
        gateway=gateway,
        dispatcher=Dispatcher(notifier),
        clock=clock,
    )


@pytest.fixture
def new_request(clock):
    """Build an EntryRequest due `minutes` after the fake clock's now."""

    def _make(minutes: float = 1, **kwargs) -> EntryRequest:
        return make_request(clock, minutes, **kwargs)

    return _make
