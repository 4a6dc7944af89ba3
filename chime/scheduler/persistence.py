"""
Persistence gateways — durable mirror of the entry store.

Each gateway holds one logical kind ("alarms", "reminders") and always
works with full snapshots: load_all() reads every entry, save_all()
atomically replaces the stored set with the given one.

Backends:
    JsonFileGateway  <data_dir>/<kind>.json, an indented {"id": entry} mapping
    SQLiteGateway    <data_dir>/chime.db, one table per kind

Every durable read and write in the process goes through one shared lock
(DURABLE_LOCK unless another is injected), so gateways for different kinds
writing side by side never interleave partial writes.

Usage:
    gateway = make_gateway("json", Path("~/.chime/data"), "reminders")
    entries = await gateway.aload_all()
    await gateway.asave_all(store.snapshot())
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from chime.core.errors import ConfigError, CorruptStateError, StorageError
from chime.scheduler.entry import Entry

logger = logging.getLogger(__name__)

DURABLE_LOCK = threading.RLock()


class PersistenceGateway(ABC):
    """
    Abstract durable medium for one kind of entry.

    Contract: save_all(load_all()) leaves the medium unchanged.
    """

    def __init__(self, kind: str, lock: threading.RLock | None = None) -> None:
        self.kind = kind
        self._lock = lock or DURABLE_LOCK

    @property
    def lock(self) -> threading.RLock:
        """The durable lock this gateway serialises on (reentrant)."""
        return self._lock

    def load_all(self) -> list[Entry]:
        """
        Read every stored entry, ordered by id.

        Returns [] when the medium does not exist yet.
        Raises CorruptStateError when it exists but cannot be parsed.
        """
        with self._lock:
            entries = self._load_locked()
        logger.debug(f"Loaded {len(entries)} {self.kind} from {self.location}")
        return entries

    def save_all(self, entries: Iterable[Entry]) -> None:
        """Atomically replace the stored snapshot with `entries`."""
        snapshot = sorted(entries, key=lambda e: e.id)
        with self._lock:
            self._save_locked(snapshot)
        logger.debug(f"Saved {len(snapshot)} {self.kind} to {self.location}")

    async def aload_all(self) -> list[Entry]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.load_all)

    async def asave_all(self, entries: Iterable[Entry]) -> None:
        snapshot = list(entries)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.save_all, snapshot)

    @property
    @abstractmethod
    def location(self) -> str:
        """Human-readable description of where the snapshot lives."""
        ...

    @abstractmethod
    def _load_locked(self) -> list[Entry]: ...

    @abstractmethod
    def _save_locked(self, entries: list[Entry]) -> None: ...


class JsonFileGateway(PersistenceGateway):
    """Snapshot kept as an indented JSON object mapping id → entry fields."""

    def __init__(
        self,
        path: Path,
        kind: str | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self._path = Path(path).expanduser()
        super().__init__(kind or self._path.stem, lock)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def location(self) -> str:
        return str(self._path)

    def _load_locked(self) -> list[Entry]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read {self._path}: {e}") from e
        except json.JSONDecodeError as e:
            raise CorruptStateError(f"{self._path} is not valid JSON: {e}") from e
        if raw is None:
            return []
        if not isinstance(raw, dict):
            raise CorruptStateError(f"{self._path} must hold an id → entry mapping")
        return _entries_from_mapping(raw, self._path)

    def _save_locked(self, entries: list[Entry]) -> None:
        data = {str(e.id): e.to_dict() for e in entries}
        text = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self._path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {self._path}: {e}") from e


class SQLiteGateway(PersistenceGateway):
    """
    Snapshot kept in a SQLite table named after the kind.

    Table <kind>:
        id    INTEGER PK
        data  TEXT  (JSON entry fields)
    """

    def __init__(
        self,
        db_path: Path,
        kind: str,
        lock: threading.RLock | None = None,
    ) -> None:
        if not kind.isidentifier():
            raise ConfigError(f"Invalid kind for a table name: {kind!r}")
        super().__init__(kind, lock)
        self._db_path = Path(db_path).expanduser()

    @property
    def location(self) -> str:
        return f"{self._db_path}:{self.kind}"

    def _connect(self) -> sqlite3.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(str(self._db_path))

    def _table_exists(self, db: sqlite3.Connection) -> bool:
        row = db.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (self.kind,)
        ).fetchone()
        return row is not None

    def _load_locked(self) -> list[Entry]:
        if not self._db_path.exists():
            return []
        try:
            db = sqlite3.connect(str(self._db_path))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open {self._db_path}: {e}") from e
        try:
            if not self._table_exists(db):
                return []
            rows = db.execute(f"SELECT id, data FROM {self.kind} ORDER BY id").fetchall()
        except sqlite3.DatabaseError as e:
            raise CorruptStateError(f"Failed to read {self.location}: {e}") from e
        finally:
            db.close()

        mapping: dict[str, object] = {}
        for row_id, data in rows:
            try:
                mapping[str(row_id)] = json.loads(data)
            except (TypeError, json.JSONDecodeError) as e:
                raise CorruptStateError(f"Row {row_id} in {self.location} is not valid JSON: {e}") from e
        return _entries_from_mapping(mapping, self.location)

    def _save_locked(self, entries: list[Entry]) -> None:
        try:
            db = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open {self._db_path}: {e}") from e
        try:
            with db:
                db.execute(
                    f"CREATE TABLE IF NOT EXISTS {self.kind} ("
                    "id INTEGER PRIMARY KEY, data TEXT NOT NULL)"
                )
                db.execute(f"DELETE FROM {self.kind}")
                db.executemany(
                    f"INSERT INTO {self.kind} (id, data) VALUES (?, ?)",
                    [(e.id, json.dumps(e.to_dict(), sort_keys=True)) for e in entries],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {self.location}: {e}") from e
        finally:
            db.close()


def make_gateway(
    backend: str,
    data_dir: Path,
    kind: str,
    lock: threading.RLock | None = None,
) -> PersistenceGateway:
    """
    Build the gateway for one kind of entry.

    Raises ConfigError for unknown backends.
    """
    data_dir = Path(data_dir).expanduser()
    if backend == "json":
        return JsonFileGateway(data_dir / f"{kind}.json", kind=kind, lock=lock)
    elif backend == "sqlite":
        return SQLiteGateway(data_dir / "chime.db", kind=kind, lock=lock)
    else:
        raise ConfigError(f"Unknown persistence backend: {backend!r}")


def _entries_from_mapping(raw: dict, source: object) -> list[Entry]:
    entries: list[Entry] = []
    for key, record in raw.items():
        try:
            key_id = int(key)
        except (TypeError, ValueError) as e:
            raise CorruptStateError(f"Non-integer entry id {key!r} in {source}") from e
        if not isinstance(record, dict):
            raise CorruptStateError(f"Entry {key!r} in {source} is not an object")
        entry = Entry.from_dict(record)
        if entry.id != key_id:
            raise CorruptStateError(
                f"Entry {key!r} in {source} carries mismatching id {entry.id}"
            )
        entries.append(entry)
    entries.sort(key=lambda e: e.id)
    return entries
