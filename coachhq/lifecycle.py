# coachhq/lifecycle.py
"""
lifecycle.py
────────────────────────────────────────────
Booking state machine as an explicit transition table.

    (variant, current status, event) → Transition(next status, effects)

Effects are named commands run in order inside the caller's transaction.
`after_commit` commands run once that transaction has committed and are
best-effort (a failure is logged, the status write stands).

Statuses:  scheduled → [accepted] → completed | no_show | cancelled
────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import exists

from . import reminders
from .errors import InvalidTransitionError
from .models import Contact, RecurringBooking, TrialBooking
from .reminders import (
    FOLLOW_UP_CATEGORIES,
    POST_FIRST_SESSION_FOLLOW_UP,
    POST_SESSION_FOLLOW_UP,
    PRE_SESSION,
    RECURRING,
    TRIAL,
    BookingRef,
)
from .settings import DEFAULT_POLICY, Policy
from .timeutils import utcnow
from .utils import safe_execute

log = logging.getLogger(__name__)

SCHEDULED = "scheduled"
ACCEPTED = "accepted"
COMPLETED = "completed"
NO_SHOW = "no_show"
CANCELLED = "cancelled"

LIVE = (SCHEDULED, ACCEPTED)
TERMINAL = (COMPLETED, NO_SHOW, CANCELLED)
STATUSES = LIVE + TERMINAL

MODELS = {TRIAL: TrialBooking, RECURRING: RecurringBooking}
VARIANTS = tuple(MODELS)


@dataclass(frozen=True)
class Transition:
    next_status: Optional[str]           # None keeps the current status
    effects: Tuple[str, ...] = ()
    after_commit: Tuple[str, ...] = ()


@dataclass
class Context:
    """Per-call inputs the effect commands read."""

    now: datetime = field(default_factory=utcnow)
    policy: Policy = DEFAULT_POLICY
    showed_up: Optional[bool] = None
    cancelled: bool = False
    was_paid: Optional[bool] = None
    payment_method: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# Transition table
# ──────────────────────────────────────────────────────────────────────────────

def _build_table() -> Dict[Tuple[str, Optional[str], str], Transition]:
    table = {}
    create_effects = {
        # A new trial does not retire a pending trial follow-up, only the
        # recurring one; a new recurring booking retires both.
        TRIAL: ("mark_customer", "purge_session_follow_ups", "schedule_session_reminders"),
        RECURRING: ("touch_contact", "purge_all_follow_ups", "schedule_session_reminders"),
    }
    for variant in VARIANTS:
        table[(variant, None, "create")] = Transition(SCHEDULED, create_effects[variant])

        for current in LIVE + (CANCELLED,):
            table[(variant, current, "cancel")] = Transition(
                CANCELLED, ("set_cancelled",), after_commit=("purge_booking_reminders",)
            )
        for current in LIVE:
            table[(variant, current, "no_show")] = Transition(NO_SHOW, ("set_no_show",))
            table[(variant, current, "reschedule")] = Transition(
                None, ("retire_session_reminders", "schedule_session_reminders")
            )
        # completed → completed is the administrative re-entry path
        for current in LIVE + (COMPLETED,):
            table[(variant, current, "complete")] = Transition(
                COMPLETED, ("record_completion", "follow_up_if_dropped")
            )

    table[(TRIAL, SCHEDULED, "accept")] = Transition(ACCEPTED)
    return table


TRANSITIONS = _build_table()


def lookup(variant: str, current: Optional[str], event: str) -> Transition:
    t = TRANSITIONS.get((variant, current, event))
    if t is None:
        raise InvalidTransitionError(
            f"Cannot {event.replace('_', ' ')} a {variant} booking in status '{current}'"
        )
    return t


# ──────────────────────────────────────────────────────────────────────────────
# Effect commands: (s, booking, variant, ctx)
# ──────────────────────────────────────────────────────────────────────────────

def _touch_contact(s, booking, variant, ctx: Context):
    contact = s.get(Contact, booking.contact_id)
    contact.last_activity_at = ctx.now


def _mark_customer(s, booking, variant, ctx: Context):
    contact = s.get(Contact, booking.contact_id)
    contact.is_customer = True
    contact.call_outcome = "session_booked"
    contact.last_activity_at = ctx.now


def _purge_session_follow_ups(s, booking, variant, ctx: Context):
    reminders.cancel_follow_ups(s, booking.contact_id, (POST_SESSION_FOLLOW_UP,))


def _purge_all_follow_ups(s, booking, variant, ctx: Context):
    reminders.cancel_follow_ups(s, booking.contact_id, FOLLOW_UP_CATEGORIES)


def _schedule_session_reminders(s, booking, variant, ctx: Context):
    if booking.scheduled_at is None:
        return
    reminders.schedule_session_reminders(
        s, booking.contact_id, booking.scheduled_at, BookingRef(variant, booking.id), ctx.policy
    )


def _retire_session_reminders(s, booking, variant, ctx: Context):
    reminders.cancel_reminders(s, BookingRef(variant, booking.id), category=PRE_SESSION)


def _set_cancelled(s, booking, variant, ctx: Context):
    booking.cancelled = True


def _set_no_show(s, booking, variant, ctx: Context):
    booking.showed_up = False


def _record_completion(s, booking, variant, ctx: Context):
    booking.showed_up = bool(ctx.showed_up)
    booking.cancelled = bool(ctx.cancelled)
    if ctx.was_paid is not None:
        booking.was_paid = bool(ctx.was_paid)
    if ctx.payment_method is not None:
        booking.payment_method = ctx.payment_method


def has_other_future_booking(s, booking, variant: str, now: datetime) -> bool:
    """Any non-cancelled recurring session ahead of `now` besides this one."""
    rb = RecurringBooking
    conditions = [
        rb.contact_id == booking.contact_id,
        rb.scheduled_at > now,
        rb.cancelled.is_(False),
        rb.status != CANCELLED,
    ]
    if variant == RECURRING:
        conditions.append(rb.id != booking.id)
    return s.query(exists().where(*conditions)).scalar()


def _follow_up_if_dropped(s, booking, variant, ctx: Context):
    if not booking.showed_up or booking.cancelled:
        return
    if has_other_future_booking(s, booking, variant, ctx.now):
        log.info("[bookings] %s/%s: contact has a future booking, no follow-up", variant, booking.id)
        return

    anchor = booking.scheduled_at or ctx.now
    if variant == RECURRING:
        reminders.cancel_follow_ups(s, booking.contact_id, (POST_SESSION_FOLLOW_UP,))
        reminders.schedule_follow_up(s, booking.contact_id, POST_SESSION_FOLLOW_UP, anchor, ctx.policy)
    elif not reminders.has_pending_follow_up(s, booking.contact_id, POST_FIRST_SESSION_FOLLOW_UP):
        reminders.schedule_follow_up(s, booking.contact_id, POST_FIRST_SESSION_FOLLOW_UP, anchor, ctx.policy)


EFFECTS: Dict[str, Callable] = {
    "touch_contact": _touch_contact,
    "mark_customer": _mark_customer,
    "purge_session_follow_ups": _purge_session_follow_ups,
    "purge_all_follow_ups": _purge_all_follow_ups,
    "schedule_session_reminders": _schedule_session_reminders,
    "retire_session_reminders": _retire_session_reminders,
    "set_cancelled": _set_cancelled,
    "set_no_show": _set_no_show,
    "record_completion": _record_completion,
    "follow_up_if_dropped": _follow_up_if_dropped,
}

AFTER_COMMIT: Dict[str, Callable] = {
    "purge_booking_reminders": lambda booking, variant, ctx: reminders.purge_booking_reminders(
        BookingRef(variant, booking.id)
    ),
}


# ──────────────────────────────────────────────────────────────────────────────
# Runner
# ──────────────────────────────────────────────────────────────────────────────

def apply(s, booking, variant: str, event: str, ctx: Context, current: Optional[str] = None) -> Transition:
    """
    Look up, write the status, run the effects in order. Raises
    InvalidTransitionError before touching anything if the move is illegal.
    """
    if current is None and event != "create":
        current = booking.status
    t = lookup(variant, current, event)
    if t.next_status is not None:
        booking.status = t.next_status
    s.flush()
    for name in t.effects:
        EFFECTS[name](s, booking, variant, ctx)
    log.info("[bookings] %s/%s %s: %s → %s", variant, booking.id, event, current, booking.status)
    return t


def run_after_commit(t: Transition, booking, variant: str, ctx: Context) -> Dict[str, object]:
    """Best-effort follow-through; each result is None when it failed."""
    results = {}
    for name in t.after_commit:
        results[name] = safe_execute(
            AFTER_COMMIT[name], booking, variant, ctx, label=f"{name} {variant}/{booking.id}"
        )
    return results
