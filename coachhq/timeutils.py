# coachhq/timeutils.py
"""
timeutils.py
────────────────────────────────────────────
Civil-time boundaries for the studio's fixed time zone.

The studio runs on one UTC offset with no daylight saving, so every
boundary is plain offset arithmetic. Everything here is pure: the only
input that varies is the instant passed in, never the host's clock or
time zone. All instants returned are timezone-aware UTC.
────────────────────────────────────────────
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

from .settings import DEFAULT_POLICY, Policy

UTC = timezone.utc

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_HAS_OFFSET = re.compile(r"(?:[Zz]|[+-]\d{2}:?\d{2})$")
_ONE_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(instant: datetime) -> datetime:
    """Naive values are taken to already be UTC (that is how they are stored)."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)


def to_local(instant: datetime, policy: Policy = DEFAULT_POLICY) -> datetime:
    return as_utc(instant).astimezone(policy.tz)


def local_date(instant: datetime, policy: Policy = DEFAULT_POLICY) -> date:
    return to_local(instant, policy).date()


def local_to_utc(wall_clock: datetime, policy: Policy = DEFAULT_POLICY) -> datetime:
    """Interpret a naive wall-clock datetime as civil time and return UTC."""
    return wall_clock.replace(tzinfo=policy.tz).astimezone(UTC)


def local_midnight_utc(day: date, policy: Policy = DEFAULT_POLICY) -> datetime:
    return local_to_utc(datetime.combine(day, time.min), policy)


# ──────────────────────────────────────────────────────────────────────────────
# Boundaries
# ──────────────────────────────────────────────────────────────────────────────

def day_bounds(day: date, policy: Policy = DEFAULT_POLICY) -> Tuple[datetime, datetime]:
    """[00:00, 23:59:59.999999] of a civil day, as UTC instants."""
    start = local_midnight_utc(day, policy)
    return start, start + timedelta(days=1) - _ONE_TICK


def today_bounds(now: datetime, policy: Policy = DEFAULT_POLICY) -> Tuple[datetime, datetime]:
    return day_bounds(local_date(now, policy), policy)


def week_start(now: datetime, policy: Policy = DEFAULT_POLICY) -> datetime:
    """Most recent civil week-start weekday at 00:00 (today counts)."""
    today = local_date(now, policy)
    days_back = (today.weekday() - policy.week_start) % 7
    return local_midnight_utc(today - timedelta(days=days_back), policy)


def month_start(now: datetime, policy: Policy = DEFAULT_POLICY) -> datetime:
    return local_midnight_utc(local_date(now, policy).replace(day=1), policy)


def future_bound(now: datetime, days: int, policy: Policy = DEFAULT_POLICY) -> datetime:
    """End of the civil day `days` days after today."""
    target = local_date(now, policy) + timedelta(days=days)
    return day_bounds(target, policy)[1]


@dataclass(frozen=True)
class Boundaries:
    today_start: datetime
    today_end: datetime
    week_start: datetime
    month_start: datetime
    future_end: datetime

    def as_dict(self) -> dict:
        return {k: v.isoformat() for k, v in self.__dict__.items()}


def boundaries(now: datetime, policy: Policy = DEFAULT_POLICY, lookahead_days: Optional[int] = None) -> Boundaries:
    start, end = today_bounds(now, policy)
    days = policy.dashboard_lookahead_days if lookahead_days is None else lookahead_days
    return Boundaries(
        today_start=start,
        today_end=end,
        week_start=week_start(now, policy),
        month_start=month_start(now, policy),
        future_end=future_bound(now, days, policy),
    )


# ──────────────────────────────────────────────────────────────────────────────
# User input
# ──────────────────────────────────────────────────────────────────────────────

def parse_local_date(value: str) -> date:
    v = (value or "").strip()
    if not _DATE_ONLY.match(v):
        raise ValueError(f"Date must be YYYY-MM-DD: {value!r}")
    return date.fromisoformat(v)


def parse_date_as_local(value: str, policy: Policy = DEFAULT_POLICY) -> datetime:
    """'2026-02-06' → UTC instant of local midnight (not UTC midnight)."""
    return local_midnight_utc(parse_local_date(value), policy)


def parse_local_datetime(value: str, policy: Policy = DEFAULT_POLICY) -> datetime:
    """
    Accepts what a datetime-local input or an API caller sends:
      '2026-03-10'              → local midnight
      '2026-03-10T15:00'        → 15:00 civil time
      '2026-03-10 15:00:30'     → 15:00:30 civil time
      '2026-03-10T22:00:00Z'    → explicit offsets are honoured as given
    Returns a UTC instant. Raises ValueError on anything else.
    """
    v = (value or "").strip()
    if not v:
        raise ValueError("Empty date/time")
    if _DATE_ONLY.match(v):
        return parse_date_as_local(v, policy)

    v = v.replace(" ", "T", 1)
    has_offset = bool(_HAS_OFFSET.search(v)) and "T" in v
    if v.endswith(("Z", "z")):
        v = v[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(v)
    except ValueError:
        raise ValueError(f"Unrecognised date/time: {value!r}")

    if has_offset and parsed.tzinfo is not None:
        return parsed.astimezone(UTC)
    return local_to_utc(parsed.replace(tzinfo=None), policy)


def coerce_instant(value, policy: Policy = DEFAULT_POLICY) -> Optional[datetime]:
    """datetime → UTC; str → parse_local_datetime; None/blank → None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        if not value.strip():
            return None
        return parse_local_datetime(value, policy)
    raise ValueError(f"Unsupported date/time value: {value!r}")
