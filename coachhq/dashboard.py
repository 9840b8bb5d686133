# coachhq/dashboard.py
"""
dashboard.py
────────────────────────────────────────────
Read-only snapshot keyed by the civil-time windows:

 • today     → trials/sessions needing action today, reminders due today
 • week      → sessions this week (Monday, or the configured weekday)
 • month     → revenue this month
 • upcoming  → everything between today's start and the look-ahead end

A trial with no date set still needs action, so it always shows in
today's trials unless it has already reached a terminal state.
────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, case, func, or_

from .bookings import booking_to_dict
from .capacity import group_to_dict
from .db import get_session
from .lifecycle import CANCELLED, RECURRING, TERMINAL, TRIAL
from .models import Contact, GroupBooking, RecurringBooking, Reminder, Signup, TrialBooking
from .reminders import reminder_to_dict
from .settings import DEFAULT_POLICY, Policy
from .timeutils import as_utc, boundaries, utcnow

log = logging.getLogger(__name__)


def _live(model):
    return and_(model.status.notin_(TERMINAL), model.cancelled.is_(False))


def _ordered(q, model):
    return q.order_by(model.scheduled_at.is_(None).desc(), model.scheduled_at.asc(), model.id.asc())


def _not_cancelled(model):
    return and_(model.status != CANCELLED, model.cancelled.is_(False))


def dashboard_snapshot(now: Optional[datetime] = None, policy: Policy = DEFAULT_POLICY) -> dict:
    now = as_utc(now) if now else utcnow()
    b = boundaries(now, policy)

    with get_session() as s:
        today_trials = _ordered(
            s.query(TrialBooking).filter(
                _live(TrialBooking),
                or_(
                    TrialBooking.scheduled_at.is_(None),
                    TrialBooking.scheduled_at.between(b.today_start, b.today_end),
                ),
            ),
            TrialBooking,
        ).all()

        today_sessions = _ordered(
            s.query(RecurringBooking).filter(
                _live(RecurringBooking),
                RecurringBooking.scheduled_at.between(b.today_start, b.today_end),
            ),
            RecurringBooking,
        ).all()

        today_reminders = (
            s.query(Reminder)
            .filter(Reminder.sent.is_(False), Reminder.due_at.between(b.today_start, b.today_end))
            .order_by(Reminder.due_at.asc(), Reminder.id.asc())
            .all()
        )

        upcoming_trials = _ordered(
            s.query(TrialBooking).filter(
                _live(TrialBooking),
                TrialBooking.scheduled_at.between(b.today_start, b.future_end),
            ),
            TrialBooking,
        ).all()

        upcoming_sessions = _ordered(
            s.query(RecurringBooking).filter(
                _live(RecurringBooking),
                RecurringBooking.scheduled_at.between(b.today_start, b.future_end),
            ),
            RecurringBooking,
        ).all()

        upcoming_reminders = (
            s.query(Reminder)
            .filter(Reminder.sent.is_(False), Reminder.due_at.between(b.today_start, b.future_end))
            .order_by(Reminder.due_at.asc(), Reminder.id.asc())
            .all()
        )

        paid = func.coalesce(func.sum(case((Signup.has_paid.is_(True), 1), else_=0)), 0)
        upcoming_groups = (
            s.query(GroupBooking, paid, func.count(Signup.id))
            .outerjoin(Signup, Signup.group_booking_id == GroupBooking.id)
            .filter(GroupBooking.scheduled_at.between(b.today_start, b.future_end))
            .group_by(GroupBooking.id)
            .order_by(GroupBooking.scheduled_at.asc(), GroupBooking.id.asc())
            .all()
        )

        week_count = 0
        revenue = Decimal("0.00")
        for model in (TrialBooking, RecurringBooking):
            week_count += (
                s.query(func.count(model.id))
                .filter(_not_cancelled(model), model.scheduled_at.between(b.week_start, b.today_end))
                .scalar()
                or 0
            )
            total = (
                s.query(func.sum(model.price))
                .filter(_not_cancelled(model), model.scheduled_at >= b.month_start)
                .scalar()
            )
            revenue += Decimal(str(total or 0))

        snapshot = {
            "generated_at": now.isoformat(),
            "boundaries": b.as_dict(),
            "today": {
                "trials": [booking_to_dict(x, TRIAL) for x in today_trials],
                "sessions": [booking_to_dict(x, RECURRING) for x in today_sessions],
                "reminders": [reminder_to_dict(r) for r in today_reminders],
            },
            "upcoming": {
                "trials": [booking_to_dict(x, TRIAL) for x in upcoming_trials],
                "sessions": [booking_to_dict(x, RECURRING) for x in upcoming_sessions],
                "reminders": [reminder_to_dict(r) for r in upcoming_reminders],
                "group_sessions": [group_to_dict(g, int(p or 0), t or 0) for g, p, t in upcoming_groups],
            },
            "stats": {
                "total_contacts": s.query(func.count(Contact.id)).scalar() or 0,
                "sessions_this_week": week_count,
                "revenue_this_month": revenue.quantize(Decimal("0.01")),
            },
        }

    log.info(
        "[dashboard] snapshot at %s: %s trials, %s sessions, %s reminders today",
        now.isoformat(), len(today_trials), len(today_sessions), len(today_reminders),
    )
    return snapshot
