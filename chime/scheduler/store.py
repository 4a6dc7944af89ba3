"""
EntryStore — in-memory set of live entries, indexed by id and by due time.

Two views of the same set:
    _by_id   dict   id → Entry
    _by_due  list   sorted (due_at, id) pairs, maintained with bisect

Both are only touched while holding the store's single lock, and every
mutation updates both before releasing it.  A due-index record whose id is
missing from _by_id is a bug, reported as InternalConsistencyError.

Usage:
    store = EntryStore(wake)
    store.insert_new(entry)       # assigns id, signals the scheduler
    first = store.peek_earliest()
    fired = store.pop_earliest()
"""

from __future__ import annotations

import bisect
import logging
import threading
from datetime import datetime
from typing import Iterable

from chime.core.errors import InternalConsistencyError
from chime.scheduler.entry import Entry
from chime.scheduler.wake import WakeSignal

logger = logging.getLogger(__name__)


class EntryStore:
    """Thread-safe dual-indexed entry store."""

    def __init__(self, wake: WakeSignal | None = None) -> None:
        self._wake = wake
        self._lock = threading.RLock()
        self._by_id: dict[int, Entry] = {}
        self._by_due: list[tuple[datetime, int]] = []

    @property
    def lock(self) -> threading.RLock:
        """The store's exclusive lock, for callers reading entry fields safely."""
        return self._lock

    # ── Mutations ────────────────────────────────────────────────────────────

    def insert(self, entry: Entry) -> None:
        """
        Add or overwrite an entry by id and signal the scheduler.

        An existing due-index record for the same id is removed first so
        the index never holds stale positions.
        """
        if entry.id < 0:
            raise ValueError("Entry has no id; use insert_new() for first insertion")
        with self._lock:
            self._insert_locked(entry)
        self._signal()

    def insert_new(self, entry: Entry) -> Entry:
        """Assign the smallest unused id to `entry`, insert it and signal."""
        with self._lock:
            entry.id = self._next_free_id_locked()
            self._insert_locked(entry)
        self._signal()
        logger.debug(f"Entry #{entry.id} inserted, due {entry.due_at.isoformat()}")
        return entry

    def load(self, entries: Iterable[Entry]) -> None:
        """Bulk insert entries read from durable state (signals once)."""
        with self._lock:
            for entry in entries:
                self._insert_locked(entry)
        self._signal()

    def pop_earliest(self) -> Entry:
        """
        Remove and return the entry with the smallest due time.

        Raises IndexError if empty, InternalConsistencyError if the due
        index points at an id the id index does not hold.
        """
        with self._lock:
            if not self._by_due:
                raise IndexError("pop from empty store")
            due_at, entry_id = self._by_due[0]
            entry = self._by_id.get(entry_id)
            if entry is None:
                raise InternalConsistencyError(
                    f"Due index references entry #{entry_id} missing from id index",
                    details={"id": entry_id, "due_at": due_at.isoformat()},
                )
            del self._by_due[0]
            del self._by_id[entry_id]
            return entry

    def remove(self, entry_id: int) -> Entry | None:
        """Remove an entry from both indexes. Returns it, or None if absent."""
        with self._lock:
            entry = self._by_id.pop(entry_id, None)
            if entry is None:
                return None
            self._unindex_locked(entry_id, entry.due_at)
            return entry

    # ── Reads ────────────────────────────────────────────────────────────────

    def peek_earliest(self) -> Entry | None:
        with self._lock:
            if not self._by_due:
                return None
            _, entry_id = self._by_due[0]
            entry = self._by_id.get(entry_id)
            if entry is None:
                raise InternalConsistencyError(
                    f"Due index references entry #{entry_id} missing from id index",
                    details={"id": entry_id},
                )
            return entry

    def earliest_due(self) -> datetime | None:
        """Due time of the earliest entry, read under the lock."""
        with self._lock:
            return self._by_due[0][0] if self._by_due else None

    def get(self, entry_id: int) -> Entry | None:
        with self._lock:
            return self._by_id.get(entry_id)

    def ids(self) -> set[int]:
        with self._lock:
            return set(self._by_id)

    def snapshot(self) -> list[Entry]:
        """All live entries, earliest first."""
        with self._lock:
            return [self._by_id[entry_id] for _, entry_id in self._by_due if entry_id in self._by_id]

    def check_consistency(self) -> None:
        """Raise InternalConsistencyError unless both indexes hold the same set."""
        with self._lock:
            due_ids = [entry_id for _, entry_id in self._by_due]
            if len(due_ids) != len(set(due_ids)):
                raise InternalConsistencyError("Due index holds duplicate ids")
            if set(due_ids) != set(self._by_id):
                raise InternalConsistencyError(
                    "Due index and id index disagree",
                    details={
                        "only_in_due": sorted(set(due_ids) - set(self._by_id)),
                        "only_in_id": sorted(set(self._by_id) - set(due_ids)),
                    },
                )
            for due_at, entry_id in self._by_due:
                if self._by_id[entry_id].due_at != due_at:
                    raise InternalConsistencyError(
                        f"Entry #{entry_id} indexed at a stale due time",
                        details={"id": entry_id},
                    )

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._by_id

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _insert_locked(self, entry: Entry) -> None:
        old = self._by_id.get(entry.id)
        if old is not None:
            self._unindex_locked(entry.id, old.due_at)
        self._by_id[entry.id] = entry
        bisect.insort(self._by_due, (entry.due_at, entry.id))

    def _unindex_locked(self, entry_id: int, due_at: datetime) -> None:
        key = (due_at, entry_id)
        i = bisect.bisect_left(self._by_due, key)
        if i < len(self._by_due) and self._by_due[i] == key:
            del self._by_due[i]
            return
        # Entry mutated in place after insertion; fall back to a scan by id
        for i, (_, indexed_id) in enumerate(self._by_due):
            if indexed_id == entry_id:
                del self._by_due[i]
                return
        raise InternalConsistencyError(
            f"Entry #{entry_id} present in id index but not in due index",
            details={"id": entry_id},
        )

    def _next_free_id_locked(self) -> int:
        candidate = 0
        while candidate in self._by_id:
            candidate += 1
        return candidate

    def _signal(self) -> None:
        if self._wake is not None:
            self._wake.set()
