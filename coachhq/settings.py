# coachhq/settings.py

# ──────────────────────────────────────────────────────────────
# Central scheduling & package settings
# Update these values when the business rules change
# ──────────────────────────────────────────────────────────────

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta, timezone
from decimal import Decimal
from typing import Dict, Tuple

from . import config

# Total session credits per package kind
PACKAGE_SESSION_COUNTS: Dict[str, int] = {
    "12_week_1x": 12,
    "12_week_2x": 24,
    "6_week_1x": 6,
    "6_week_2x": 12,
}

PAYMENT_METHODS = ("zelle", "venmo", "paypal", "apple_cash", "cash")

_OFFSET_RE = re.compile(r"^(?P<sign>[+-])(?P<hh>\d{2}):?(?P<mm>\d{2})$")


def parse_utc_offset(value: str) -> timezone:
    """
    Turn '-07:00' / '+0530' / 'Z' into a fixed datetime.timezone.
    """
    v = (value or "").strip()
    if v in ("Z", "z", "UTC", ""):
        return timezone.utc
    m = _OFFSET_RE.match(v)
    if not m:
        raise ValueError(f"Unrecognised UTC offset: {value}")
    delta = timedelta(hours=int(m.group("hh")), minutes=int(m.group("mm")))
    if m.group("sign") == "-":
        delta = -delta
    return timezone(delta)


@dataclass(frozen=True)
class Policy:
    """Everything the boundary calculator and the scheduler depend on."""

    tz: timezone = timezone(timedelta(hours=-7))
    week_start: int = 0
    session_reminder_hours: Tuple[int, ...] = (48, 24, 6)
    follow_up_days: int = 3
    dashboard_lookahead_days: int = 90
    group_default_max_players: int = 12
    group_default_price: Decimal = Decimal("50")
    package_session_counts: Dict[str, int] = field(
        default_factory=lambda: dict(PACKAGE_SESSION_COUNTS)
    )

    def __post_init__(self):
        if not 0 <= self.week_start <= 6:
            raise ValueError(f"week_start must be 0..6, got {self.week_start}")


DEFAULT_POLICY = Policy(
    tz=parse_utc_offset(config.TZ_OFFSET),
    week_start=config.WEEK_START,
    session_reminder_hours=tuple(config.SESSION_REMINDER_HOURS),
    follow_up_days=config.FOLLOW_UP_DAYS,
    dashboard_lookahead_days=config.DASHBOARD_LOOKAHEAD_DAYS,
    group_default_max_players=config.GROUP_DEFAULT_MAX_PLAYERS,
    group_default_price=Decimal(config.GROUP_DEFAULT_PRICE),
)
