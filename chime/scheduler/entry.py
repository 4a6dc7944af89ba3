"""
Entry — the core data model.

An Entry is one scheduled notification: when it fires next, what it says,
where it goes, who asked for it and how it repeats.

repeat_count:
    -1  repeat until removed
     0  fire once, then retire
     N  fire, then N more times, then retire

Serialised shape (one value in the id → entry snapshot mapping):
    {"id": 3, "due_at": "2026-10-19T09:00:00+00:00", "payload_text": "stand-up",
     "destination": 1234, "requester": 42, "interval_minutes": 1440,
     "repeat_count": -1, "mention_on_fire": false}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from chime.core.clock import to_utc
from chime.core.errors import CorruptStateError, ValidationError

UINT64_MAX = 2**64 - 1
REPEAT_FOREVER = -1
UNASSIGNED_ID = -1


@dataclass(frozen=True)
class EntryRequest:
    """A validated request for a new entry, as produced by the command parser."""

    due_at: datetime
    payload_text: str
    destination: int
    requester: int = 0
    interval_minutes: int = 0
    repeat_count: int = 0
    mention_on_fire: bool = False


@dataclass
class Entry:
    """A scheduled notification."""

    due_at: datetime
    destination: int
    payload_text: str = ""
    requester: int = 0
    interval_minutes: int = 0
    repeat_count: int = 0
    mention_on_fire: bool = False
    id: int = UNASSIGNED_ID

    def __post_init__(self) -> None:
        if self.payload_text is None:
            self.payload_text = ""

    # ── Construction ─────────────────────────────────────────────────────────

    @classmethod
    def create(cls, request: EntryRequest, now: datetime) -> Entry:
        """
        Build a new, not yet stored entry from a request.

        Raises ValidationError if the request breaks any entry invariant,
        including a due time that is not strictly after `now`.
        """
        try:
            due_at = to_utc(request.due_at)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if due_at <= now:
            raise ValidationError(
                f"Due time {due_at.isoformat()} is not in the future",
                details={"due_at": due_at.isoformat(), "now": now.isoformat()},
            )
        _check_uint64("destination", request.destination)
        _check_uint64("requester", request.requester)
        if request.repeat_count < REPEAT_FOREVER:
            raise ValidationError(f"Invalid repeat count: {request.repeat_count}")
        if request.interval_minutes < 0:
            raise ValidationError(f"Invalid interval: {request.interval_minutes}")
        if request.interval_minutes == 0 and request.repeat_count != 0:
            raise ValidationError("A repeating entry needs an interval of at least one minute")

        return cls(
            due_at=due_at,
            destination=request.destination,
            payload_text=request.payload_text or "",
            requester=request.requester,
            interval_minutes=request.interval_minutes,
            repeat_count=request.repeat_count,
            mention_on_fire=request.mention_on_fire,
        )

    # ── Repeat state machine ─────────────────────────────────────────────────

    @property
    def is_repeating(self) -> bool:
        return self.repeat_count == REPEAT_FOREVER or self.repeat_count > 0

    def advance(self) -> bool:
        """
        Move a repeating entry to its next occurrence.

        Returns False (and changes nothing) when the entry is exhausted and
        should be retired instead.
        """
        if not self.is_repeating:
            return False
        self.due_at = self.due_at + timedelta(minutes=self.interval_minutes)
        if self.repeat_count > 0:
            self.repeat_count -= 1
        return True

    # ── Serialisation ────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "due_at": self.due_at.isoformat(),
            "payload_text": self.payload_text,
            "destination": self.destination,
            "requester": self.requester,
            "interval_minutes": self.interval_minutes,
            "repeat_count": self.repeat_count,
            "mention_on_fire": self.mention_on_fire,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Entry:
        try:
            entry = cls(
                id=_as_int(d["id"]),
                due_at=to_utc(datetime.fromisoformat(d["due_at"])),
                payload_text=str(d.get("payload_text") or ""),
                destination=_as_int(d["destination"]),
                requester=_as_int(d.get("requester", 0)),
                interval_minutes=_as_int(d.get("interval_minutes", 0)),
                repeat_count=_as_int(d.get("repeat_count", 0)),
                mention_on_fire=bool(d.get("mention_on_fire", False)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptStateError(f"Malformed entry record: {e}", details={"record": d}) from e
        if entry.id < 0:
            raise CorruptStateError(f"Negative entry id: {entry.id}", details={"record": d})
        return entry


def _check_uint64(name: str, value: int) -> None:
    if not 0 <= value <= UINT64_MAX:
        raise ValidationError(f"{name} must be an unsigned 64-bit integer, got {value}")


def _as_int(value: Any) -> int:
    # bool is an int subclass; a stored true/false is never a valid id or count
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected integer, got {value!r}")
    return value
