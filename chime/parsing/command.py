"""
CommandParser — turns prefix-command text into an EntryRequest.

Grammar (tokens split on single spaces):

    <prefix>[N|r] <when> [message...]

    .r 30 stretch               in 30 minutes, once
    .r3 30 stretch              in 30 minutes, then 3 more times every 30 minutes
    .rr 2026-10-20 09:00 standup  at that time, then every day until removed

<when> is the longest run of tokens (up to MAX_TIME_TOKENS) that reads as a
date/time, or else a whole number of minutes from the message timestamp.
A date/time repeats daily; a minute count repeats at that spacing.

parse() returns None for text that is not addressed to us and raises
ValidationError (with a ParseErrorCode) for text that is but is wrong.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum

from chime.core.clock import Clock, SystemClock, to_utc
from chime.core.errors import ConfigError, ValidationError
from chime.scheduler.entry import REPEAT_FOREVER, Entry, EntryRequest

MINUTES_PER_DAY = 1440
MAX_TIME_TOKENS = 6
INT32_MAX = 2**31 - 1

_MENTION_RE = re.compile(r"<@[!&]?\d+>|(?<![\w@])@\w+")


class ParseErrorCode(str, Enum):
    MISSING_TIME = "missing_time"
    INVALID_PREFIX = "invalid_prefix"
    TIME_IN_PAST = "time_in_past"
    INVALID_TIME = "invalid_time"


ERROR_MESSAGES = {
    ParseErrorCode.MISSING_TIME: "Please provide a time for when the reminder should go off.",
    ParseErrorCode.INVALID_PREFIX: "Invalid command prefix. Was this meant for us?",
    ParseErrorCode.TIME_IN_PAST: "Reminder cannot be set to a time in the past or the current time.",
    ParseErrorCode.INVALID_TIME: "Beep. Boop. Invalid time/time format given or time missing.",
}


def _fail(code: ParseErrorCode, **details) -> ValidationError:
    return ValidationError(ERROR_MESSAGES[code], code=code.value, details=details)


def contains_mention(text: str) -> bool:
    """Whether text already mentions a user or role (<@123>, <@&5>, @name)."""
    return bool(_MENTION_RE.search(text))


def parse_repeat(command: str, prefix: str) -> int:
    """
    Repeat count encoded in the command token.

    Returns N >= 0 for `<prefix>` / `<prefix>N`, -1 for `<prefix>r`.
    Raises ConfigError for a blank prefix, ValueError for a blank command
    and ValidationError(INVALID_PREFIX) for anything else.
    """
    if not prefix or not prefix.strip():
        raise ConfigError("Command prefix cannot be empty. Check the [parser] config.")
    if not command or not command.strip():
        raise ValueError("command cannot be empty")

    if command == prefix:
        return 0
    if command == prefix + "r":
        return REPEAT_FOREVER
    match = re.fullmatch(re.escape(prefix) + r"([0-9]+)", command)
    if match:
        repeat = int(match.group(1))
        if repeat <= INT32_MAX:
            return repeat
    raise _fail(ParseErrorCode.INVALID_PREFIX, command=command)


def parse_datetime(text: str, now: datetime, absolute_only: bool = False) -> datetime | None:
    """
    Read `text` as an absolute or relative date/time, UTC assumed.

    Plain integers are never dates; they are minute counts.  With
    `absolute_only`, relative phrases ("now", "1 day", "at 9") are rejected
    and a day, month and year must all be present.
    """
    text = text.strip()
    if not text or text.lstrip("+-").isdigit():
        return None

    # Fast path: ISO 8601
    try:
        return to_utc(datetime.fromisoformat(text.replace("Z", "+00:00")), assume_utc=True)
    except ValueError:
        pass

    # Natural language fallback
    import dateparser

    settings: dict = {
        "TIMEZONE": "UTC",
        "TO_TIMEZONE": "UTC",
        "RETURN_AS_TIMEZONE_AWARE": True,
        "PREFER_DATES_FROM": "future",
        "RELATIVE_BASE": now.astimezone(timezone.utc).replace(tzinfo=None),
    }
    if absolute_only:
        settings["PARSERS"] = ["absolute-time"]
        settings["STRICT_PARSING"] = True
    parsed = dateparser.parse(text, languages=["en"], settings=settings)
    if parsed:
        return to_utc(parsed, assume_utc=True)
    return None


class CommandParser:
    """
    Parses reminder commands for one prefix.

    Usage:
        parser = CommandParser(".r")
        request = parser.parse(".r3 30 stretch", destination=chat_id, requester=user_id)
        if request is not None:
            entry = await engine.add(request)
    """

    def __init__(self, prefix: str = ".r", clock: Clock | None = None) -> None:
        if not prefix or not prefix.strip():
            raise ConfigError("Command prefix cannot be empty. Check the [parser] config.")
        self._prefix = prefix
        self._clock = clock or SystemClock()

    @property
    def prefix(self) -> str:
        return self._prefix

    def parse(
        self,
        text: str,
        destination: int,
        requester: int = 0,
        timestamp: datetime | None = None,
        has_mentions: bool | None = None,
    ) -> EntryRequest | None:
        """
        Parse one inbound message.

        `timestamp` is when the message was sent (minute counts are relative
        to it); defaults to now.  `has_mentions` comes from the platform when
        it knows; otherwise the text is scanned for mentions.
        """
        if not text or not text.startswith(self._prefix):
            return None

        args = text.split(" ")
        if len(args) < 2:
            raise _fail(ParseErrorCode.MISSING_TIME)

        repeat = parse_repeat(args[0], self._prefix)
        timestamp = to_utc(timestamp) if timestamp is not None else self._clock.now()
        due_at, interval, endpoint = self._parse_when(args, timestamp)
        message = self._parse_message(text, args, endpoint)

        if has_mentions is None:
            has_mentions = contains_mention(text)

        return EntryRequest(
            due_at=due_at,
            payload_text=message,
            destination=destination,
            requester=requester,
            interval_minutes=interval,
            repeat_count=repeat,
            mention_on_fire=has_mentions,
        )

    def _parse_when(
        self, args: list[str], timestamp: datetime
    ) -> tuple[datetime, int, int]:
        """
        Returns (due_at, interval_minutes, index of the last time token).
        """
        interval = MINUTES_PER_DAY
        due_at: datetime | None = None
        endpoint = -1

        # A leading minute count only gives way to a complete calendar date
        absolute_only = args[1].lstrip("+-").isdigit()
        candidate = ""
        for i in range(1, min(len(args), 1 + MAX_TIME_TOKENS)):
            candidate += " " + args[i]
            parsed = parse_datetime(candidate, timestamp, absolute_only)
            if parsed is not None:
                due_at = parsed
                endpoint = i

        if due_at is None:
            try:
                interval = int(args[1])
            except ValueError:
                raise _fail(ParseErrorCode.INVALID_TIME, token=args[1]) from None
            if interval <= 0:
                raise _fail(ParseErrorCode.TIME_IN_PAST, minutes=interval)
            due_at = timestamp + timedelta(minutes=interval)
            endpoint = 1

        if due_at <= self._clock.now():
            raise _fail(ParseErrorCode.TIME_IN_PAST, due_at=due_at.isoformat())
        return due_at, interval, endpoint

    @staticmethod
    def _parse_message(text: str, args: list[str], endpoint: int) -> str:
        # Tokens came from split(" "), so offsets map straight back onto text
        offset = sum(len(token) + 1 for token in args[: endpoint + 1])
        return text[offset:]


def format_confirmation(entry: Entry, requester_name: str = "") -> str:
    """Message telling the requester their entry was added."""
    who = f"{requester_name}, your" if requester_name else "Your"
    # A minute count was given relative to the message; a date/time is absolute
    if entry.interval_minutes == MINUTES_PER_DAY:
        when = f"at {entry.due_at.strftime('%Y-%m-%d %H:%M UTC')}"
    else:
        when = f"in {entry.interval_minutes} minute(s)"
    text = f"{who} reminder set to go off {when} has been added"
    if entry.repeat_count == 0:
        text += "."
    else:
        times = "" if entry.repeat_count == REPEAT_FOREVER else f"{entry.repeat_count} time(s) "
        text += f" and will repeat {times}every {entry.interval_minutes} minute(s)."
    return f"{text} [{entry.id}]"
