# coachhq/reminders.py
"""
reminders.py
────────────────────────────────────────────
Reminder scheduling and invalidation.

The helpers that take a session `s` run inside the caller's lifecycle
transaction; the public task functions (backfill, purge, mark-sent) open
their own. Nothing here sends anything: an external delivery consumer
polls `due_reminders()` and calls `mark_reminder_sent()`.
────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, exists, func, or_, select

from .db import get_session
from .errors import NotFoundError, ValidationError
from .models import Contact, RecurringBooking, Reminder, TrialBooking
from .settings import DEFAULT_POLICY, Policy
from .timeutils import as_utc, utcnow
from .utils import iso

log = logging.getLogger(__name__)

# Categories
PRE_SESSION = "pre_session"
POST_SESSION_FOLLOW_UP = "post_session_follow_up"
POST_FIRST_SESSION_FOLLOW_UP = "post_first_session_follow_up"
FOLLOW_UP_CATEGORIES = (POST_SESSION_FOLLOW_UP, POST_FIRST_SESSION_FOLLOW_UP)

TRIAL = "trial"
RECURRING = "recurring"

_TERMINAL = ("completed", "no_show", "cancelled")


@dataclass(frozen=True)
class BookingRef:
    """Which booking a reminder belongs to (variant + id)."""

    variant: str
    id: int

    @property
    def column(self):
        if self.variant == TRIAL:
            return Reminder.trial_booking_id
        if self.variant == RECURRING:
            return Reminder.recurring_booking_id
        raise ValidationError(f"Unknown booking variant: {self.variant}")

    def link(self) -> Dict[str, int]:
        return {self.column.key: self.id}


# ──────────────────────────────────────────────────────────────────────────────
# Pure plans
# ──────────────────────────────────────────────────────────────────────────────

def session_reminder_plan(anchor: datetime, policy: Policy = DEFAULT_POLICY) -> List[Tuple[str, datetime]]:
    """(reminder_type, due_at) per configured lead time, longest lead first."""
    anchor = as_utc(anchor)
    hours = sorted(set(policy.session_reminder_hours), reverse=True)
    return [(f"session_{h}h", anchor - timedelta(hours=h)) for h in hours]


def follow_up_plan(anchor: datetime, policy: Policy = DEFAULT_POLICY) -> Tuple[str, datetime]:
    days = policy.follow_up_days
    return f"follow_up_{days}d", as_utc(anchor) + timedelta(days=days)


# ──────────────────────────────────────────────────────────────────────────────
# In-transaction scheduling
# ──────────────────────────────────────────────────────────────────────────────

def schedule_session_reminders(
    s,
    contact_id: int,
    anchor: datetime,
    ref: BookingRef,
    policy: Policy = DEFAULT_POLICY,
) -> List[Reminder]:
    """
    One pre-session reminder per lead time. Due instants already in the past
    are still created; the delivery side decides what to do with them.
    """
    created = []
    for reminder_type, due_at in session_reminder_plan(anchor, policy):
        r = Reminder(
            contact_id=contact_id,
            reminder_type=reminder_type,
            category=PRE_SESSION,
            due_at=due_at,
            **ref.link(),
        )
        s.add(r)
        created.append(r)
    s.flush()
    log.info("[reminders] scheduled %s pre-session for %s/%s", len(created), ref.variant, ref.id)
    return created


def schedule_follow_up(
    s,
    contact_id: int,
    category: str,
    anchor: datetime,
    policy: Policy = DEFAULT_POLICY,
) -> Reminder:
    if category not in FOLLOW_UP_CATEGORIES:
        raise ValidationError(f"Not a follow-up category: {category}")
    reminder_type, due_at = follow_up_plan(anchor, policy)
    r = Reminder(contact_id=contact_id, reminder_type=reminder_type, category=category, due_at=due_at)
    s.add(r)
    s.flush()
    log.info("[reminders] follow-up %s for contact=%s due=%s", category, contact_id, due_at.isoformat())
    return r


def cancel_reminders(s, ref: BookingRef, category: Optional[str] = None) -> int:
    """Delete the booking's unsent reminders (optionally one category only)."""
    q = s.query(Reminder).filter(ref.column == ref.id, Reminder.sent.is_(False))
    if category:
        q = q.filter(Reminder.category == category)
    n = q.delete(synchronize_session=False)
    log.info("[reminders] deleted %s unsent for %s/%s", n, ref.variant, ref.id)
    return n


def cancel_follow_ups(s, contact_id: int, categories: Iterable[str]) -> int:
    cats = list(categories)
    n = (
        s.query(Reminder)
        .filter(
            Reminder.contact_id == contact_id,
            Reminder.category.in_(cats),
            Reminder.sent.is_(False),
        )
        .delete(synchronize_session=False)
    )
    if n:
        log.info("[reminders] purged %s pending follow-ups %s for contact=%s", n, cats, contact_id)
    return n


def has_pending_follow_up(s, contact_id: int, category: str) -> bool:
    return s.query(
        exists().where(
            Reminder.contact_id == contact_id,
            Reminder.category == category,
            Reminder.sent.is_(False),
        )
    ).scalar()


def delete_booking_reminders(s, ref: BookingRef) -> int:
    """Sent and unsent alike; used before a booking row is deleted."""
    return s.query(Reminder).filter(ref.column == ref.id).delete(synchronize_session=False)


def purge_booking_reminders(ref: BookingRef) -> int:
    """Own-transaction cleanup used after a cancellation has committed."""
    with get_session() as s:
        return cancel_reminders(s, ref)


# ──────────────────────────────────────────────────────────────────────────────
# Reads & delivery hooks
# ──────────────────────────────────────────────────────────────────────────────

def reminder_to_dict(r: Reminder, contact: Optional[Contact] = None) -> dict:
    contact = contact or r.contact
    return {
        "id": r.id,
        "contact_id": r.contact_id,
        "contact_name": contact.display_name if contact else None,
        "trial_booking_id": r.trial_booking_id,
        "recurring_booking_id": r.recurring_booking_id,
        "reminder_type": r.reminder_type,
        "category": r.category,
        "due_at": iso(r.due_at),
        "sent": bool(r.sent),
        "sent_at": iso(r.sent_at),
        "notes": r.notes,
    }


def list_pending_reminders(contact_id: Optional[int] = None) -> List[dict]:
    with get_session() as s:
        q = s.query(Reminder).filter(Reminder.sent.is_(False))
        if contact_id is not None:
            q = q.filter(Reminder.contact_id == contact_id)
        return [reminder_to_dict(r) for r in q.order_by(Reminder.due_at.asc(), Reminder.id.asc()).all()]


def due_reminders(now: Optional[datetime] = None) -> List[dict]:
    now = as_utc(now) if now else utcnow()
    with get_session() as s:
        rows = (
            s.query(Reminder)
            .filter(Reminder.sent.is_(False), Reminder.due_at <= now)
            .order_by(Reminder.due_at.asc(), Reminder.id.asc())
            .all()
        )
        return [reminder_to_dict(r) for r in rows]


def mark_reminder_sent(reminder_id: int, now: Optional[datetime] = None) -> dict:
    now = as_utc(now) if now else utcnow()
    with get_session() as s:
        r = s.get(Reminder, reminder_id)
        if r is None:
            raise NotFoundError("Reminder not found")
        r.sent = True
        r.sent_at = now
        s.flush()
        log.info("[reminders] marked sent id=%s", reminder_id)
        return reminder_to_dict(r)


# ──────────────────────────────────────────────────────────────────────────────
# Periodic checks
# ──────────────────────────────────────────────────────────────────────────────

def backfill_session_reminders(now: Optional[datetime] = None, policy: Policy = DEFAULT_POLICY) -> int:
    """
    Give every live future booking without pending pre-session reminders a
    fresh set. Returns the number of reminders created.
    """
    now = as_utc(now) if now else utcnow()
    created = 0
    with get_session() as s:
        for model, variant in ((TrialBooking, TRIAL), (RecurringBooking, RECURRING)):
            ref_col = BookingRef(variant, 0).column
            missing = (
                s.query(model)
                .filter(
                    model.status.notin_(_TERMINAL),
                    model.scheduled_at > now,
                    ~exists().where(
                        ref_col == model.id,
                        Reminder.category == PRE_SESSION,
                        Reminder.sent.is_(False),
                    ),
                )
                .order_by(model.scheduled_at.asc())
                .all()
            )
            for b in missing:
                created += len(schedule_session_reminders(s, b.contact_id, b.scheduled_at, BookingRef(variant, b.id), policy))
    log.info("[reminders] backfill created=%s", created)
    return created


def purge_stale_reminders(
    now: Optional[datetime] = None,
    older_than_days: int = 1,
    follow_up_retention_days: int = 30,
) -> int:
    """
    Drop unsent reminders nobody will act on:
      • pre-session reminders of bookings that reached a terminal state
      • pre-session reminders more than `older_than_days` past due
      • follow-ups more than `follow_up_retention_days` past due
    """
    now = as_utc(now) if now else utcnow()
    cutoff = now - timedelta(days=older_than_days)
    follow_up_cutoff = now - timedelta(days=follow_up_retention_days)
    with get_session() as s:
        trial_ids = select(TrialBooking.id).where(TrialBooking.status.in_(_TERMINAL))
        recurring_ids = select(RecurringBooking.id).where(RecurringBooking.status.in_(_TERMINAL))
        n = (
            s.query(Reminder)
            .filter(
                Reminder.sent.is_(False),
                or_(
                    and_(
                        Reminder.category == PRE_SESSION,
                        or_(
                            Reminder.due_at < cutoff,
                            Reminder.trial_booking_id.in_(trial_ids),
                            Reminder.recurring_booking_id.in_(recurring_ids),
                        ),
                    ),
                    and_(
                        Reminder.category.in_(FOLLOW_UP_CATEGORIES),
                        Reminder.due_at < follow_up_cutoff,
                    ),
                ),
            )
            .delete(synchronize_session=False)
        )
    log.info("[reminders] stale purge deleted=%s", n)
    return n


def _live_sessions(now: Optional[datetime] = None):
    rb = RecurringBooking
    q = select(rb.contact_id).where(rb.status != "cancelled", rb.cancelled.is_(False))
    if now is not None:
        q = q.where(rb.scheduled_at > now)
    return q


def purge_progressed_follow_ups(now: Optional[datetime] = None) -> int:
    """
    Drop follow-ups for contacts who moved on: the first-session nag once
    any recurring session exists, the drop-off nag once one is booked ahead.
    """
    now = as_utc(now) if now else utcnow()
    with get_session() as s:
        n = (
            s.query(Reminder)
            .filter(
                Reminder.sent.is_(False),
                or_(
                    and_(
                        Reminder.category == POST_FIRST_SESSION_FOLLOW_UP,
                        Reminder.contact_id.in_(_live_sessions()),
                    ),
                    and_(
                        Reminder.category == POST_SESSION_FOLLOW_UP,
                        Reminder.contact_id.in_(_live_sessions(now)),
                    ),
                ),
            )
            .delete(synchronize_session=False)
        )
    log.info("[reminders] progressed follow-ups deleted=%s", n)
    return n


def detect_drop_offs(
    now: Optional[datetime] = None,
    policy: Policy = DEFAULT_POLICY,
    inactive_days: int = 1,
) -> int:
    """
    Session-based drop-off pass over contacts quiet for `inactive_days`:

      • customer with a completed, attended session and nothing booked
        ahead → post_session_follow_up anchored on that last session
      • trial on record but no recurring sessions → post_first_session
        follow-up anchored on the earliest trial

    A contact already holding a pending follow-up of that category is
    skipped, so re-running the pass creates nothing new.
    """
    now = as_utc(now) if now else utcnow()
    rb, tb = RecurringBooking, TrialBooking
    dropped = ("cancelled", "no_show")

    last_completed = (
        select(func.max(rb.scheduled_at))
        .where(rb.contact_id == Contact.id, rb.status == "completed", rb.showed_up.is_(True))
        .correlate(Contact)
        .scalar_subquery()
    )
    session_count = (
        select(func.count(rb.id))
        .where(rb.contact_id == Contact.id, rb.status.notin_(dropped))
        .correlate(Contact)
        .scalar_subquery()
    )
    trial_count = (
        select(func.count(tb.id))
        .where(tb.contact_id == Contact.id, tb.status.notin_(dropped))
        .correlate(Contact)
        .scalar_subquery()
    )
    first_trial_at = (
        select(func.min(tb.scheduled_at))
        .where(tb.contact_id == Contact.id, tb.status.notin_(dropped))
        .correlate(Contact)
        .scalar_subquery()
    )
    booked_ahead = Contact.id.in_(_live_sessions(now))

    created = 0
    with get_session() as s:
        rows = (
            s.query(Contact, last_completed, session_count, trial_count, first_trial_at, booked_ahead)
            .filter(Contact.last_activity_at < now - timedelta(days=inactive_days))
            .order_by(Contact.last_activity_at.asc(), Contact.id.asc())
            .all()
        )
        for contact, last_at, sessions, trials, first_at, ahead in rows:
            if contact.is_customer and last_at is not None:
                if ahead:
                    continue
                category, anchor = POST_SESSION_FOLLOW_UP, last_at
            elif trials and not sessions:
                category, anchor = POST_FIRST_SESSION_FOLLOW_UP, first_at or now
            else:
                continue
            if has_pending_follow_up(s, contact.id, category):
                continue
            schedule_follow_up(s, contact.id, category, as_utc(anchor), policy)
            created += 1
    log.info("[reminders] drop-off pass created=%s", created)
    return created
