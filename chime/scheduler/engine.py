"""
SchedulerEngine — the background worker that fires entries.

Design:
- One asyncio task runs the loop; its only blocking call, the wait on the
  WakeSignal, runs in an executor thread so the event loop stays free
- Sleeps until the earliest entry is due, or until an insertion signals
  that something sooner may have arrived, then re-evaluates
- Overdue entries within the leeway still fire; older ones (the process was
  down when they were due) are skipped but still advanced or retired, so a
  restart does not produce a burst of stale notifications
- After every firing the entry is advanced (repeating) or retired
  (exhausted) and the full snapshot is written back to the gateway
- An index disagreement inside the store stops the loop; delivery failures
  never do

States:
    IDLE     store empty, waiting for an insertion
    WAITING  sleeping until the earliest due time or a wake signal
    DUE      earliest entry's time has arrived
    FIRING   dispatch in progress
    STOPPED  loop not running
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from chime.core.clock import Clock, SystemClock
from chime.core.errors import DeliveryError, InternalConsistencyError, StorageError
from chime.scheduler.dispatcher import DeliveryOutcome, Dispatcher
from chime.scheduler.entry import Entry, EntryRequest
from chime.scheduler.persistence import PersistenceGateway, make_gateway
from chime.scheduler.store import EntryStore
from chime.scheduler.wake import WakeSignal

if TYPE_CHECKING:
    from chime.core.config import ChimeConfig
    from chime.notifications.base import Notifier

logger = logging.getLogger(__name__)

DEFAULT_LEEWAY = timedelta(minutes=1)


class LoopState(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    DUE = "due"
    FIRING = "firing"
    STOPPED = "stopped"


class SchedulerEngine:
    """
    Background scheduler for one kind of entry.

    Usage:
        wake = WakeSignal()
        engine = SchedulerEngine(
            store=EntryStore(wake),
            wake=wake,
            gateway=JsonFileGateway(Path("reminders.json")),
            dispatcher=Dispatcher(notifier),
        )
        await engine.start()
        entry = await engine.add(request)
        ...
        await engine.stop()
    """

    def __init__(
        self,
        store: EntryStore,
        wake: WakeSignal,
        gateway: PersistenceGateway,
        dispatcher: Dispatcher,
        clock: Clock | None = None,
        leeway: timedelta = DEFAULT_LEEWAY,
    ) -> None:
        self._store = store
        self._wake = wake
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._leeway = leeway
        self._state = LoopState.STOPPED
        self._running = False
        self._task: asyncio.Task | None = None
        self._failure: InternalConsistencyError | None = None

    @property
    def kind(self) -> str:
        return self._gateway.kind

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def failure(self) -> InternalConsistencyError | None:
        """The consistency error that stopped the loop, if any."""
        return self._failure

    @property
    def store(self) -> EntryStore:
        return self._store

    @property
    def task(self) -> asyncio.Task | None:
        """The background loop task while started."""
        return self._task

    @property
    def leeway(self) -> timedelta:
        return self._leeway

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def load(self) -> int:
        """
        Fill the store from the durable snapshot.

        Raises CorruptStateError if the snapshot cannot be parsed.
        """
        entries = await self._gateway.aload_all()
        self._store.load(entries)
        self._store.check_consistency()
        logger.info(f"Loaded {len(entries)} {self.kind} from {self._gateway.location}")
        return len(entries)

    async def start(self) -> None:
        """Load durable state and start the background loop."""
        await self.load()
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"scheduler:{self.kind}")
        logger.info(f"SchedulerEngine[{self.kind}] started")

    async def stop(self) -> None:
        """Stop the loop, waking it if it is asleep."""
        self._running = False
        self._wake.set()
        if self._task is not None:
            try:
                await self._task
            except InternalConsistencyError:
                pass  # already logged and kept in self.failure
            except asyncio.CancelledError:
                # The loop was cancelled before us; a cancel aimed at stop() propagates
                if not self._task.cancelled():
                    raise
            self._task = None
        self._state = LoopState.STOPPED
        logger.info(f"SchedulerEngine[{self.kind}] stopped")

    async def run(self) -> None:
        """
        Run the loop in the current task until stop() is called.

        Raises InternalConsistencyError if the store's indexes diverge.
        """
        self._running = True
        await self._run_loop()

    async def _run_loop(self) -> None:
        try:
            while self._running:
                await self.step()
        except InternalConsistencyError as e:
            self._failure = e
            logger.critical(f"SchedulerEngine[{self.kind}] halted: {e.message} {e.details}")
            raise
        finally:
            self._running = False
            self._state = LoopState.STOPPED

    # ── Insertion path (any thread) ──────────────────────────────────────────

    def add_sync(self, request: EntryRequest) -> Entry:
        """
        Validate, store and persist a new entry; wakes the loop.

        Safe to call from any thread.  Raises ValidationError for invalid
        requests and StorageError if the snapshot cannot be written (the
        entry is then dropped from the store again).
        """
        entry = Entry.create(request, self._clock.now())
        self._store.insert_new(entry)
        try:
            self._persist_sync()
        except StorageError:
            self._store.remove(entry.id)
            raise
        logger.info(f"Added {self.kind} #{entry.id} due {entry.due_at.isoformat()}")
        return entry

    async def add(self, request: EntryRequest) -> Entry:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.add_sync, request)

    def cancel_sync(self, entry_id: int) -> bool:
        """Remove an entry for good. Returns False if it did not exist."""
        if self._store.remove(entry_id) is None:
            return False
        self._persist_sync()
        self._wake.set()
        logger.info(f"Cancelled {self.kind} #{entry_id}")
        return True

    async def cancel(self, entry_id: int) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.cancel_sync, entry_id)

    def entries(self) -> list[Entry]:
        """Live entries, earliest first."""
        return self._store.snapshot()

    # ── Loop body ────────────────────────────────────────────────────────────

    async def step(self) -> LoopState:
        """
        Run one iteration: wait, or fire the earliest entry and advance/retire it.

        Returns the state the loop is in afterwards.
        """
        entry = self._store.peek_earliest()
        if entry is None:
            self._state = LoopState.IDLE
            await self._wait(None)
            self._wake.reset()
            return self._state

        with self._store.lock:
            due_at = entry.due_at
        delay = (due_at - self._clock.now()).total_seconds()

        if delay > 0:
            self._state = LoopState.WAITING
            if await self._wait(delay):
                self._wake.reset()
                return self._state
            # Timed out: only fire if this is still the earliest, now-due entry
            if self._store.peek_earliest() is not entry or self._clock.now() < due_at:
                return self._state

        self._state = LoopState.DUE
        overdue = self._clock.now() - due_at
        if overdue > self._leeway:
            logger.info(
                f"{self.kind} #{entry.id} is {overdue} overdue (leeway {self._leeway}), "
                f"skipping this occurrence"
            )
        else:
            self._state = LoopState.FIRING
            await self._dispatch(entry)

        self._advance_or_retire(entry)
        await self._persist()
        self._state = LoopState.WAITING if len(self._store) else LoopState.IDLE
        return self._state

    async def _wait(self, timeout: float | None) -> bool:
        if timeout is not None:
            timeout = min(timeout, threading.TIMEOUT_MAX)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._wake.wait, timeout)
        except asyncio.CancelledError:
            # Release the executor thread still blocked in wait()
            self._running = False
            self._wake.set()
            raise

    async def _dispatch(self, entry: Entry) -> DeliveryOutcome:
        try:
            outcome = await self._dispatcher.fire(entry)
        except DeliveryError as e:
            logger.warning(f"{self.kind} #{entry.id} delivery failed: {e}")
            outcome = DeliveryOutcome.FAILED
        except Exception as e:
            logger.warning(f"{self.kind} #{entry.id} unexpected delivery error: {e!r}")
            outcome = DeliveryOutcome.FAILED
        logger.debug(f"{self.kind} #{entry.id} fired: {outcome.value}")
        return outcome

    def _advance_or_retire(self, entry: Entry) -> None:
        with self._store.lock:
            if self._store.peek_earliest() is entry:
                self._store.pop_earliest()
            elif self._store.get(entry.id) is entry:
                self._store.remove(entry.id)
            else:
                # Cancelled while firing; the id may already be reused
                logger.debug(f"{self.kind} #{entry.id} was cancelled while firing")
                return
            if entry.advance():
                self._store.insert(entry)
                logger.debug(
                    f"{self.kind} #{entry.id} advanced to {entry.due_at.isoformat()} "
                    f"(repeats left: {entry.repeat_count})"
                )
            else:
                logger.info(f"{self.kind} #{entry.id} retired")
            self._store.check_consistency()

    # ── Persistence ──────────────────────────────────────────────────────────

    def _persist_sync(self) -> None:
        # Snapshot under the durable lock so concurrent writers cannot land
        # an older snapshot after a newer one
        with self._gateway.lock:
            self._gateway.save_all(self._store.snapshot())

    async def _persist(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._persist_sync)
        except StorageError as e:
            logger.error(f"Failed to persist {self.kind}: {e}")


def build_engine(
    config: ChimeConfig,
    notifier: Notifier,
    kind: str,
    clock: Clock | None = None,
    data_dir: Path | None = None,
) -> SchedulerEngine:
    """Wire store, wake signal, gateway and dispatcher for one kind."""
    wake = WakeSignal()
    return SchedulerEngine(
        store=EntryStore(wake),
        wake=wake,
        gateway=make_gateway(
            config.scheduler.backend, data_dir or config.get_data_dir(), kind
        ),
        dispatcher=Dispatcher(notifier),
        clock=clock,
        leeway=timedelta(seconds=config.scheduler.leeway_seconds),
    )
