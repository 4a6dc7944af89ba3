"""
Chime — time-triggered alarms and reminders.

Public API:
    from chime import SchedulerEngine, EntryStore, Entry, CommandParser
"""

__version__ = "0.1.0"

# Core
from chime.core.config import ChimeConfig
from chime.core.clock import Clock, SystemClock

# Scheduler
from chime.scheduler.entry import Entry, EntryRequest
from chime.scheduler.store import EntryStore
from chime.scheduler.wake import WakeSignal
from chime.scheduler.persistence import JsonFileGateway, PersistenceGateway, SQLiteGateway
from chime.scheduler.dispatcher import DeliveryOutcome, Dispatcher
from chime.scheduler.engine import LoopState, SchedulerEngine, build_engine

# Parsing
from chime.parsing.command import CommandParser

__all__ = [
    # Core
    "ChimeConfig",
    "Clock",
    "SystemClock",
    # Scheduler
    "Entry",
    "EntryRequest",
    "EntryStore",
    "WakeSignal",
    "PersistenceGateway",
    "JsonFileGateway",
    "SQLiteGateway",
    "Dispatcher",
    "DeliveryOutcome",
    "SchedulerEngine",
    "LoopState",
    "build_engine",
    # Parsing
    "CommandParser",
]
