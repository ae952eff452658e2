from datetime import UTC, date, datetime, time, timedelta

import pytest

from slotbook.app.domain.errors import InvalidArgument
from slotbook.app.services.shared_services import (
    TimezoneConverter,
    ensure_utc,
    format_time_12h,
    parse_local_date,
    parse_local_time,
    weekday_index,
)

LA = TimezoneConverter("America/Los_Angeles")


def test_to_utc_uses_daylight_and_standard_offsets():
    # PDT (UTC-7) in October, PST (UTC-8) in December
    assert LA.to_utc("2026-10-19", "10:00") == datetime(2026, 10, 19, 17, 0, tzinfo=UTC)
    assert LA.to_utc("2026-12-07", "10:00") == datetime(2026, 12, 7, 18, 0, tzinfo=UTC)


def test_late_evening_rolls_into_next_utc_day():
    assert LA.to_utc(date(2026, 10, 19), time(20, 30)) == datetime(2026, 10, 20, 3, 30, tzinfo=UTC)


@pytest.mark.parametrize("day", ["2026-03-08", "2026-11-01", "2026-06-15"])
def test_round_trip_every_half_hour(day):
    d = parse_local_date(day)
    for minutes in range(0, 24 * 60, 30):
        t = time(minutes // 60, minutes % 60)
        if day == "2026-03-08" and t.hour == 2:
            continue  # 02:00-02:59 does not exist on spring-forward day
        assert LA.to_local(LA.to_utc(d, t)) == (d, t)


def test_spring_forward_gap_uses_pre_transition_offset():
    instant = LA.to_utc("2026-03-08", "02:30")
    assert instant == datetime(2026, 3, 8, 10, 30, tzinfo=UTC)


def test_fall_back_ambiguous_time_resolves_to_first_occurrence():
    first = LA.to_utc("2026-11-01", "01:30")
    assert first == datetime(2026, 11, 1, 8, 30, tzinfo=UTC)


def test_local_day_bounds_cover_short_and_long_days():
    start, end = LA.local_day_bounds_utc("2026-03-08")
    assert end - start == timedelta(hours=23)
    start, end = LA.local_day_bounds_utc("2026-11-01")
    assert end - start == timedelta(hours=25)
    start, end = LA.local_day_bounds_utc("2026-10-19")
    assert start == datetime(2026, 10, 19, 7, 0, tzinfo=UTC)
    assert end - start == timedelta(hours=24)


def test_to_local_rejects_naive_instants():
    with pytest.raises(InvalidArgument):
        LA.to_local(datetime(2026, 10, 19, 17, 0))


@pytest.mark.parametrize("raw", ["2026-13-01", "2026-02-30", "19/10/2026", "", "2026-1-5"])
def test_parse_local_date_rejects_malformed(raw):
    with pytest.raises(InvalidArgument) as exc:
        parse_local_date(raw)
    assert exc.value.code == "invalid_date"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("09:00", time(9, 0)),
        ("9:30", time(9, 30)),
        ("9:30 AM", time(9, 30)),
        ("12:00 AM", time(0, 0)),
        ("12:15 pm", time(12, 15)),
        ("1:45 PM", time(13, 45)),
    ],
)
def test_parse_local_time_formats(raw, expected):
    assert parse_local_time(raw) == expected


@pytest.mark.parametrize("raw", ["24:00", "9:60", "13:00 PM", "noon", "0:00 AM"])
def test_parse_local_time_rejects_malformed(raw):
    with pytest.raises(InvalidArgument):
        parse_local_time(raw)


def test_weekday_index_starts_on_sunday():
    assert weekday_index(date(2026, 10, 18)) == 0
    assert weekday_index(date(2026, 10, 19)) == 1
    assert weekday_index(date(2026, 10, 24)) == 6


def test_format_time_12h():
    assert format_time_12h(time(0, 0)) == "12:00 AM"
    assert format_time_12h(time(9, 5)) == "9:05 AM"
    assert format_time_12h(time(12, 30)) == "12:30 PM"
    assert format_time_12h(time(17, 0)) == "5:00 PM"


def test_ensure_utc_treats_naive_as_utc():
    assert ensure_utc(None) is None
    assert ensure_utc(datetime(2026, 1, 1, 12, 0)) == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    aware = datetime(2026, 1, 1, 4, 0, tzinfo=LA.tz)
    assert ensure_utc(aware).tzinfo is UTC
