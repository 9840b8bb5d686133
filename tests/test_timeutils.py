from datetime import date, timedelta, timezone

import pytest

from coachhq.settings import Policy, parse_utc_offset
from coachhq.timeutils import (
    boundaries,
    coerce_instant,
    day_bounds,
    future_bound,
    month_start,
    parse_date_as_local,
    parse_local_datetime,
    week_start,
)

from .conftest import utc

POLICY = Policy()


def test_wall_clock_input_is_civil_time():
    assert parse_local_datetime("2026-03-10T15:00", POLICY) == utc(2026, 3, 10, 22, 0)


def test_space_separated_and_seconds_are_accepted():
    assert parse_local_datetime("2026-03-10 15:00:30", POLICY) == utc(2026, 3, 10, 22, 0, 30)


def test_date_only_is_local_midnight_not_utc_midnight():
    assert parse_local_datetime("2026-03-10", POLICY) == utc(2026, 3, 10, 7, 0)
    assert parse_date_as_local("2026-03-10", POLICY) == utc(2026, 3, 10, 7, 0)


def test_explicit_offsets_are_honoured():
    assert parse_local_datetime("2026-03-10T22:00:00Z", POLICY) == utc(2026, 3, 10, 22, 0)
    assert parse_local_datetime("2026-03-10T17:00:00-05:00", POLICY) == utc(2026, 3, 10, 22, 0)


@pytest.mark.parametrize("bad", ["", "   ", "tomorrow", "2026-13-01", "10/03/2026 15:00"])
def test_unparseable_input_raises(bad):
    with pytest.raises(ValueError):
        parse_local_datetime(bad, POLICY)


def test_coerce_instant_passes_datetimes_and_blanks():
    aware = utc(2026, 3, 10, 22, 0)
    assert coerce_instant(aware, POLICY) == aware
    assert coerce_instant(None, POLICY) is None
    assert coerce_instant("  ", POLICY) is None
    with pytest.raises(ValueError):
        coerce_instant(12345, POLICY)


def test_boundaries_at_local_midnight():
    # 2026-03-10 00:00 civil (a Tuesday)
    b = boundaries(utc(2026, 3, 10, 7, 0), POLICY)

    assert b.today_start == utc(2026, 3, 10, 7, 0)
    assert b.today_end == utc(2026, 3, 11, 7, 0) - timedelta(microseconds=1)
    assert b.week_start == utc(2026, 3, 9, 7, 0)
    assert b.month_start == utc(2026, 3, 1, 7, 0)
    assert b.future_end == utc(2026, 6, 9, 7, 0) - timedelta(microseconds=1)


def test_one_minute_before_local_midnight_is_still_yesterday():
    b = boundaries(utc(2026, 3, 10, 6, 59), POLICY)
    assert b.today_start == utc(2026, 3, 9, 7, 0)


def test_month_start_uses_civil_month():
    # 2026-04-01 03:00Z is still March 31st locally
    assert month_start(utc(2026, 4, 1, 3, 0), POLICY) == utc(2026, 3, 1, 7, 0)


def test_week_start_is_configurable():
    sunday_weeks = Policy(week_start=6)
    assert week_start(utc(2026, 3, 10, 7, 0), sunday_weeks) == utc(2026, 3, 8, 7, 0)
    # on the week-start day itself, today counts
    assert week_start(utc(2026, 3, 9, 18, 0), POLICY) == utc(2026, 3, 9, 7, 0)


def test_future_bound_is_end_of_civil_day():
    assert future_bound(utc(2026, 3, 10, 7, 0), 1, POLICY) == utc(2026, 3, 12, 7, 0) - timedelta(microseconds=1)


def test_day_bounds_cover_one_civil_day():
    start, end = day_bounds(date(2026, 3, 10), POLICY)
    assert end - start == timedelta(days=1) - timedelta(microseconds=1)


def test_other_offsets():
    plus_five_thirty = Policy(tz=parse_utc_offset("+05:30"))
    assert parse_local_datetime("2026-03-10T15:00", plus_five_thirty) == utc(2026, 3, 10, 9, 30)
    assert parse_utc_offset("Z") == timezone.utc
    with pytest.raises(ValueError):
        parse_utc_offset("Arizona")


def test_week_start_must_be_a_weekday():
    with pytest.raises(ValueError):
        Policy(week_start=7)
