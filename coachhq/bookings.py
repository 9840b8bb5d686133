# coachhq/bookings.py
"""
bookings.py
────────────────────────────────────────────
Trial and recurring booking operations.

Every mutating call validates its input first, then runs the lifecycle
transition and its effects inside one get_session() scope, so a failure
anywhere rolls back the status write together with its reminder work.
The one exception is the post-cancel reminder purge (see lifecycle).
────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from . import lifecycle, reminders
from .db import get_session
from .errors import NotFoundError, ValidationError
from .lifecycle import COMPLETED, LIVE, MODELS, RECURRING, TRIAL, Context
from .models import Contact, Package, Participant
from .reminders import BookingRef
from .settings import DEFAULT_POLICY, PAYMENT_METHODS, Policy
from .timeutils import as_utc, coerce_instant, utcnow
from .utils import iso, normalize_optional_text, parse_id, parse_money

log = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────────────────────────────
def _model(variant: str):
    try:
        return MODELS[variant]
    except KeyError:
        raise ValidationError(f"Unknown booking variant: {variant}")


def _instant(value, field: str, policy: Policy) -> Optional[datetime]:
    try:
        return coerce_instant(value, policy)
    except ValueError as e:
        raise ValidationError(f"{field}: {e}")


def _price(value, field: str = "price"):
    amount = parse_money(value, field)
    if amount is not None and amount < 0:
        raise ValidationError(f"{field} must not be negative")
    return amount


def _payment_method(value) -> Optional[str]:
    method = normalize_optional_text(value)
    if method is None:
        return None
    method = method.lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    return method


def _bool(value, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value


def _id_list(values, field: str = "participant_ids") -> List[int]:
    if values is None:
        return []
    if not isinstance(values, (list, tuple, set)):
        raise ValidationError(f"{field} must be a list of ids")
    ids = []
    for v in values:
        pid = parse_id(v, field)
        if pid not in ids:
            ids.append(pid)
    return ids


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now else utcnow()


def _load(s, variant: str, booking_id: int):
    booking = s.get(_model(variant), booking_id)
    if booking is None:
        raise NotFoundError(f"{variant.capitalize()} booking not found")
    return booking


def _load_participants(s, contact_id: int, ids: List[int]) -> List[Participant]:
    if not ids:
        return []
    found = s.query(Participant).filter(Participant.id.in_(ids)).all()
    if len(found) != len(ids):
        raise NotFoundError("Participant not found")
    if any(p.contact_id != contact_id for p in found):
        raise ValidationError("Participants must belong to the booking's contact")
    by_id = {p.id: p for p in found}
    return [by_id[i] for i in ids]


def _load_package(s, contact_id: int, package_id: int) -> Package:
    package = s.get(Package, package_id)
    if package is None:
        raise NotFoundError("Package not found")
    if package.contact_id != contact_id:
        raise ValidationError("Package belongs to a different contact")
    if not package.is_active:
        raise ValidationError("Package is not active")
    return package


def booking_to_dict(b, variant: str) -> dict:
    contact = b.contact
    out = {
        "id": b.id,
        "variant": variant,
        "contact_id": b.contact_id,
        "contact_name": contact.display_name if contact else None,
        "scheduled_at": iso(b.scheduled_at),
        "ends_at": iso(b.ends_at),
        "location": b.location,
        "price": b.price,
        "status": b.status,
        "showed_up": b.showed_up,
        "cancelled": bool(b.cancelled),
        "was_paid": bool(b.was_paid),
        "payment_method": b.payment_method,
        "notes": b.notes,
        "participant_ids": sorted(p.id for p in b.participants),
        "created_at": iso(b.created_at),
        "updated_at": iso(b.updated_at),
    }
    if variant == TRIAL:
        out["deposit_paid"] = bool(b.deposit_paid)
        out["deposit_amount"] = b.deposit_amount
    else:
        out["package_id"] = b.package_id
    return out


# ──────────────────────────────────────────────────────────────────────────────
# Create
# ──────────────────────────────────────────────────────────────────────────────

def create_booking(
    variant: str,
    contact_id,
    participant_ids=None,
    scheduled=None,
    location=None,
    price=None,
    package_id=None,
    deposit: Optional[dict] = None,
    ends_at=None,
    notes=None,
    now: Optional[datetime] = None,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    """
    Create a booking in `scheduled`. `scheduled` is civil wall-clock input
    ("2026-03-10T15:00") or an aware datetime.
    """
    model = _model(variant)
    contact_id = parse_id(contact_id, "contact_id")
    scheduled_at = _instant(scheduled, "scheduled", policy)
    if scheduled_at is None:
        raise ValidationError("Contact and session date are required")
    end = _instant(ends_at, "ends_at", policy)
    if end is not None and end < scheduled_at:
        raise ValidationError("ends_at must not be before the session start")
    amount = _price(price)
    pids = _id_list(participant_ids)

    fields = {}
    if variant == RECURRING:
        if package_id not in (None, ""):
            fields["package_id"] = parse_id(package_id, "package_id")
        if deposit:
            raise ValidationError("Deposits apply to trial bookings only")
    else:
        if package_id not in (None, ""):
            raise ValidationError("Only recurring bookings can use a package")
        deposit = deposit or {}
        fields["deposit_paid"] = _bool(deposit.get("paid", False), "deposit.paid")
        fields["deposit_amount"] = _price(deposit.get("amount"), "deposit.amount")

    ctx = Context(now=_now(now), policy=policy)
    with get_session() as s:
        if s.get(Contact, contact_id) is None:
            raise NotFoundError("Contact not found")
        participants = _load_participants(s, contact_id, pids)
        if fields.get("package_id"):
            _load_package(s, contact_id, fields["package_id"])

        booking = model(
            contact_id=contact_id,
            scheduled_at=scheduled_at,
            ends_at=end,
            location=normalize_optional_text(location),
            price=amount,
            notes=normalize_optional_text(notes),
            **fields,
        )
        booking.participants = participants
        s.add(booking)
        s.flush()
        lifecycle.apply(s, booking, variant, "create", ctx)
        return booking_to_dict(booking, variant)


# ──────────────────────────────────────────────────────────────────────────────
# Transitions
# ──────────────────────────────────────────────────────────────────────────────

def _transition(variant: str, booking_id, event: str, ctx: Context, prepare=None) -> dict:
    booking_id = parse_id(booking_id, "id")
    with get_session() as s:
        booking = _load(s, variant, booking_id)
        if prepare:
            prepare(booking)
        t = lifecycle.apply(s, booking, variant, event, ctx)
        result = booking_to_dict(booking, variant)
    for name, outcome in lifecycle.run_after_commit(t, booking, variant, ctx).items():
        if outcome is None:
            log.warning("[bookings] %s/%s: %s failed after commit", variant, booking_id, name)
        result[name] = outcome
    return result


def accept_booking(variant: str, booking_id, now: Optional[datetime] = None) -> dict:
    return _transition(variant, booking_id, "accept", Context(now=_now(now)))


def cancel_booking(variant: str, booking_id, now: Optional[datetime] = None) -> dict:
    """
    Status write commits first; the reminder purge follows best-effort.
    `purge_booking_reminders` in the result is the number deleted, or None
    if the purge failed.
    """
    return _transition(variant, booking_id, "cancel", Context(now=_now(now)))


def mark_no_show(variant: str, booking_id, now: Optional[datetime] = None) -> dict:
    return _transition(variant, booking_id, "no_show", Context(now=_now(now)))


def complete_booking(
    variant: str,
    booking_id,
    showed_up,
    cancelled=False,
    paid=None,
    payment_method=None,
    now: Optional[datetime] = None,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    ctx = Context(
        now=_now(now),
        policy=policy,
        showed_up=_bool(showed_up, "showed_up"),
        cancelled=_bool(cancelled, "cancelled"),
        was_paid=None if paid is None else _bool(paid, "paid"),
        payment_method=_payment_method(payment_method),
    )
    return _transition(variant, booking_id, "complete", ctx)


def reschedule_booking(
    variant: str,
    booking_id,
    scheduled,
    ends_at=None,
    now: Optional[datetime] = None,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    scheduled_at = _instant(scheduled, "scheduled", policy)
    if scheduled_at is None:
        raise ValidationError("New session date is required")
    end = _instant(ends_at, "ends_at", policy)
    if end is not None and end < scheduled_at:
        raise ValidationError("ends_at must not be before the session start")

    def move(booking):
        lifecycle.lookup(variant, booking.status, "reschedule")
        booking.scheduled_at = scheduled_at
        if end is not None:
            booking.ends_at = end
        elif booking.ends_at is not None and booking.ends_at < scheduled_at:
            booking.ends_at = None

    return _transition(variant, booking_id, "reschedule", Context(now=_now(now), policy=policy), prepare=move)


# ──────────────────────────────────────────────────────────────────────────────
# Administrative correction
# ──────────────────────────────────────────────────────────────────────────────

_COMMON_FIELDS = {"location", "price", "notes", "ends_at", "scheduled_at", "was_paid", "payment_method", "showed_up"}
_VARIANT_FIELDS = {TRIAL: {"deposit_paid", "deposit_amount"}, RECURRING: {"package_id"}}


def update_booking(
    variant: str,
    booking_id,
    patch: dict,
    now: Optional[datetime] = None,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    """
    Field-level correction. Status only moves through the lifecycle
    operations; a new scheduled_at on a live booking is a reschedule.
    """
    _model(variant)
    booking_id = parse_id(booking_id, "id")
    patch = dict(patch or {})
    if "status" in patch:
        raise ValidationError("Status changes go through accept/cancel/no-show/complete")
    unknown = set(patch) - _COMMON_FIELDS - _VARIANT_FIELDS[variant]
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")

    values = {}
    for key, raw in patch.items():
        if key in ("scheduled_at", "ends_at"):
            values[key] = _instant(raw, key, policy)
        elif key in ("price", "deposit_amount"):
            values[key] = _price(raw, key)
        elif key in ("was_paid", "deposit_paid", "showed_up"):
            values[key] = _bool(raw, key)
        elif key == "payment_method":
            values[key] = _payment_method(raw)
        elif key == "package_id":
            values[key] = None if raw in (None, "") else parse_id(raw, key)
        else:
            values[key] = normalize_optional_text(raw)

    ctx = Context(now=_now(now), policy=policy)
    with get_session() as s:
        booking = _load(s, variant, booking_id)
        if "showed_up" in values and booking.status != COMPLETED:
            raise ValidationError("showed_up can only be corrected on a completed booking")
        if values.get("package_id"):
            _load_package(s, booking.contact_id, values["package_id"])

        moved = "scheduled_at" in values and values["scheduled_at"] != booking.scheduled_at
        for key, value in values.items():
            setattr(booking, key, value)
        if booking.ends_at is not None and booking.scheduled_at is not None and booking.ends_at < booking.scheduled_at:
            raise ValidationError("ends_at must not be before the session start")

        if moved and booking.status in LIVE:
            lifecycle.apply(s, booking, variant, "reschedule", ctx)
        s.flush()
        log.info("[bookings] %s/%s corrected fields=%s", variant, booking_id, sorted(values))
        return booking_to_dict(booking, variant)


def set_participants(variant: str, booking_id, participant_ids) -> dict:
    booking_id = parse_id(booking_id, "id")
    ids = _id_list(participant_ids)
    with get_session() as s:
        booking = _load(s, variant, booking_id)
        booking.participants = _load_participants(s, booking.contact_id, ids)
        s.flush()
        log.info("[bookings] %s/%s participants=%s", variant, booking_id, ids)
        return booking_to_dict(booking, variant)


def delete_booking(variant: str, booking_id) -> dict:
    """Reminders go first, then the booking row."""
    booking_id = parse_id(booking_id, "id")
    with get_session() as s:
        booking = _load(s, variant, booking_id)
        n = reminders.delete_booking_reminders(s, BookingRef(variant, booking_id))
        s.delete(booking)
        log.info("[bookings] %s/%s deleted with %s reminders", variant, booking_id, n)
        return {"id": booking_id, "variant": variant, "reminders_deleted": n}


# ──────────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────────

def get_booking(variant: str, booking_id) -> dict:
    booking_id = parse_id(booking_id, "id")
    with get_session() as s:
        return booking_to_dict(_load(s, variant, booking_id), variant)


def list_bookings(
    variant: str,
    contact_id=None,
    upcoming: bool = False,
    now: Optional[datetime] = None,
) -> List[dict]:
    model = _model(variant)
    with get_session() as s:
        q = s.query(model)
        if contact_id not in (None, ""):
            q = q.filter(model.contact_id == parse_id(contact_id, "contact_id"))
        if upcoming:
            q = q.filter(model.scheduled_at >= _now(now), model.status.in_(LIVE))
        rows = q.order_by(model.scheduled_at.is_(None), model.scheduled_at.asc(), model.id.asc()).all()
        return [booking_to_dict(b, variant) for b in rows]
