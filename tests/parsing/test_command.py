"""Tests for chime/parsing/command.py"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chime.core.errors import ConfigError, ValidationError
from chime.parsing.command import (
    INT32_MAX,
    MINUTES_PER_DAY,
    CommandParser,
    ParseErrorCode,
    contains_mention,
    format_confirmation,
    parse_datetime,
    parse_repeat,
)
from chime.scheduler.entry import Entry

from conftest import START


@pytest.fixture
def parser(clock):
    return CommandParser(".r", clock=clock)


def error_code(exc_info) -> str:
    return exc_info.value.code


class TestParseRepeat:
    def test_bare_prefix_is_once(self):
        assert parse_repeat(".r", ".r") == 0

    def test_counted(self):
        assert parse_repeat(".r3", ".r") == 3
        assert parse_repeat(f".r{INT32_MAX}", ".r") == INT32_MAX

    def test_forever(self):
        assert parse_repeat(".rr", ".r") == -1

    @pytest.mark.parametrize("command", [".rx", ".rrr", ".r-1", f".r{INT32_MAX + 1}", ".reminder"])
    def test_invalid(self, command):
        with pytest.raises(ValidationError) as exc:
            parse_repeat(command, ".r")
        assert error_code(exc) == ParseErrorCode.INVALID_PREFIX.value

    def test_blank_prefix_is_config_error(self):
        with pytest.raises(ConfigError):
            parse_repeat(".r", " ")

    def test_blank_command_rejected(self):
        with pytest.raises(ValueError):
            parse_repeat("", ".r")

    def test_prefix_with_regex_characters(self):
        assert parse_repeat("!a+2", "!a+") == 2


class TestParseDatetime:
    def test_integers_are_not_dates(self):
        assert parse_datetime("30", START) is None
        assert parse_datetime("-5", START) is None

    def test_iso_without_zone_is_utc(self):
        assert parse_datetime("2026-10-20 09:00", START) == datetime(
            2026, 10, 20, 9, 0, tzinfo=timezone.utc
        )

    def test_iso_with_offset_converted(self):
        assert parse_datetime("2026-10-20T11:00+02:00", START) == datetime(
            2026, 10, 20, 9, 0, tzinfo=timezone.utc
        )

    def test_relative_to_base(self):
        parsed = parse_datetime("tomorrow", START)
        assert parsed is not None
        assert parsed.date() == (START + timedelta(days=1)).date()
        assert parsed.tzinfo is not None

    def test_absolute_only_rejects_relative(self):
        assert parse_datetime("1 day", START, absolute_only=True) is None
        assert parse_datetime("45 at", START, absolute_only=True) is None
        parsed = parse_datetime("20 October 2026", START, absolute_only=True)
        assert parsed.date() == datetime(2026, 10, 20).date()

    def test_garbage(self):
        assert parse_datetime("xyzzy", START) is None


class TestCommandParser:
    def test_not_addressed(self, parser):
        assert parser.parse("hello there", destination=1) is None
        assert parser.parse("", destination=1) is None

    def test_minutes_once(self, parser):
        req = parser.parse(".r 30 stretch your legs", destination=5, requester=9)
        assert req.due_at == START + timedelta(minutes=30)
        assert req.payload_text == "stretch your legs"
        assert req.repeat_count == 0
        assert req.interval_minutes == 30
        assert req.destination == 5
        assert req.requester == 9
        assert req.mention_on_fire is False

    def test_minutes_repeating(self, parser):
        req = parser.parse(".r3 15 drink water", destination=5)
        assert req.repeat_count == 3
        assert req.interval_minutes == 15

    def test_forever(self, parser):
        req = parser.parse(".rr 60 check mail", destination=5)
        assert req.repeat_count == -1
        assert req.interval_minutes == 60

    def test_absolute_time_repeats_daily(self, parser):
        req = parser.parse(".rr 2026-10-20 09:00 standup", destination=5)
        assert req.due_at == datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)
        assert req.interval_minutes == MINUTES_PER_DAY
        assert req.payload_text == "standup"

    @pytest.mark.parametrize(
        "text, minutes, message",
        [
            (".r 45 at the door", 45, "at the door"),
            (".r 20 on the hour", 20, "on the hour"),
            (".r 90 now please", 90, "now please"),
            (".r 1 day later", 1, "day later"),
            (".r 5 min stretch", 5, "min stretch"),
        ],
    )
    def test_minute_count_keeps_following_words(self, parser, text, minutes, message):
        req = parser.parse(text, destination=1)
        assert req.due_at == START + timedelta(minutes=minutes)
        assert req.interval_minutes == minutes
        assert req.payload_text == message

    def test_leading_day_number_of_full_date(self, parser):
        req = parser.parse(".r 20 October 2026 09:00 dentist", destination=1)
        assert req.due_at == datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)
        assert req.interval_minutes == MINUTES_PER_DAY
        assert req.payload_text == "dentist"

    def test_message_keeps_inner_spacing(self, parser):
        req = parser.parse(".r 5 lorem  ipsum   dolor", destination=1)
        assert req.payload_text == "lorem  ipsum   dolor"

    def test_empty_message(self, parser):
        req = parser.parse(".r 5", destination=1)
        assert req.payload_text == ""

    def test_relative_to_message_timestamp(self, parser, clock):
        sent = START - timedelta(minutes=2)
        req = parser.parse(".r 10 coffee", destination=1, timestamp=sent)
        assert req.due_at == START + timedelta(minutes=8)

    def test_mentions_detected(self, parser):
        assert parser.parse(".r 5 hey <@123>", destination=1).mention_on_fire is True
        assert parser.parse(".r 5 hey @team", destination=1).mention_on_fire is True
        assert parser.parse(".r 5 mail me@example.com", destination=1).mention_on_fire is False

    def test_platform_mention_flag_wins(self, parser):
        req = parser.parse(".r 5 hey <@123>", destination=1, has_mentions=False)
        assert req.mention_on_fire is False

    def test_missing_time(self, parser):
        with pytest.raises(ValidationError) as exc:
            parser.parse(".r", destination=1)
        assert error_code(exc) == ParseErrorCode.MISSING_TIME.value

    def test_invalid_prefix(self, parser):
        with pytest.raises(ValidationError) as exc:
            parser.parse(".rx 5 hi", destination=1)
        assert error_code(exc) == ParseErrorCode.INVALID_PREFIX.value

    @pytest.mark.parametrize("text", [".r 0 hi", ".r -5 hi", ".r 2020-01-01 hi"])
    def test_time_in_past(self, parser, text):
        with pytest.raises(ValidationError) as exc:
            parser.parse(text, destination=1)
        assert error_code(exc) == ParseErrorCode.TIME_IN_PAST.value

    def test_stale_timestamp_in_past(self, parser):
        sent = START - timedelta(minutes=10)
        with pytest.raises(ValidationError) as exc:
            parser.parse(".r 5 hi", destination=1, timestamp=sent)
        assert error_code(exc) == ParseErrorCode.TIME_IN_PAST.value

    def test_invalid_time(self, parser):
        with pytest.raises(ValidationError) as exc:
            parser.parse(".r xyzzy hi", destination=1)
        assert error_code(exc) == ParseErrorCode.INVALID_TIME.value
        assert "Invalid time" in exc.value.message

    def test_blank_prefix_rejected(self):
        with pytest.raises(ConfigError):
            CommandParser("")

    def test_custom_prefix(self, clock):
        parser = CommandParser("!remind", clock=clock)
        assert parser.parse(".r 5 hi", destination=1) is None
        assert parser.parse("!remind2 5 hi", destination=1).repeat_count == 2


class TestFormatConfirmation:
    def _entry(self, repeat: int, interval: int = 30) -> Entry:
        return Entry(
            id=4,
            due_at=datetime(2026, 10, 19, 12, 30, tzinfo=timezone.utc),
            destination=1,
            interval_minutes=interval,
            repeat_count=repeat,
        )

    def test_once_at_date(self):
        assert format_confirmation(self._entry(0, interval=1440)) == (
            "Your reminder set to go off at 2026-10-19 12:30 UTC has been added. [4]"
        )

    def test_once_in_minutes(self):
        assert format_confirmation(self._entry(0)) == (
            "Your reminder set to go off in 30 minute(s) has been added. [4]"
        )

    def test_counted(self):
        text = format_confirmation(self._entry(3), requester_name="sam")
        assert text.startswith("sam, your reminder")
        assert "will repeat 3 time(s) every 30 minute(s)." in text

    def test_forever(self):
        text = format_confirmation(self._entry(-1, interval=1440))
        assert "go off at 2026-10-19 12:30 UTC" in text
        assert "will repeat every 1440 minute(s)." in text
        assert text.endswith("[4]")


def test_contains_mention():
    assert contains_mention("<@!42> wake up")
    assert contains_mention("<@&7>")
    assert not contains_mention("nothing here")
