# coachhq/payments.py
"""
payments.py
────────────────────────────────────────────
Packages and their payment ledger.

 • 0 ≤ amount_received ≤ price (when price is set) on every write,
   checked under a row lock on the package.
 • A non-zero opening amount writes exactly one synthetic ledger row.
 • Later edits of amount_received through update_package() are NOT
   ledgered; record_package_payment() is the path that logs an event.
 • sessions_completed is always derived from the linked bookings.
────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, func, or_, select

from .bookings import booking_to_dict
from .db import get_session
from .errors import InvalidPaymentError, NotFoundError, ValidationError
from .lifecycle import ACCEPTED, CANCELLED, COMPLETED, NO_SHOW, RECURRING
from .models import Contact, Package, PaymentEvent, RecurringBooking
from .settings import DEFAULT_POLICY, Policy
from .timeutils import as_utc, coerce_instant, utcnow
from .utils import iso, normalize_optional_text, parse_id, parse_money

log = logging.getLogger(__name__)

INITIAL_PAYMENT_NOTE = "initial_package_amount"
PAYMENT_NOTE = "package_payment"

_ZERO = Decimal("0.00")


# ── Derived aggregate ────────────────────────────────────────────────────────
def sessions_completed_expr(now: datetime):
    """Correlated count of package bookings that used up a credit."""
    rb = RecurringBooking
    return (
        select(func.count(rb.id))
        .where(
            rb.package_id == Package.id,
            rb.cancelled.is_(False),
            rb.status.notin_((CANCELLED, NO_SHOW)),
            or_(
                rb.showed_up.is_(True),
                rb.status == COMPLETED,
                and_(rb.status == ACCEPTED, rb.scheduled_at <= now),
            ),
        )
        .correlate(Package)
        .scalar_subquery()
    )


def _check_amounts(received: Optional[Decimal], price: Optional[Decimal]):
    if received is None or received < 0:
        log.warning("[payments] rejected amount_received=%s", received)
        raise InvalidPaymentError("Amount received must be zero or more")
    if price is not None and received > price:
        log.warning("[payments] rejected amount_received=%s > price=%s", received, price)
        raise InvalidPaymentError("Amount received cannot exceed the package price")


def _price(value) -> Optional[Decimal]:
    amount = parse_money(value, "price")
    if amount is not None and amount < 0:
        raise ValidationError("price must not be negative")
    return amount


def _date(value, field: str, policy: Policy) -> Optional[datetime]:
    """Date-only strings are civil midnight; full instants pass through."""
    try:
        return coerce_instant(value, policy)
    except ValueError as e:
        raise ValidationError(f"{field}: {e}")


def _lock(s, package_id: int, now: datetime) -> Package:
    """
    Take the package row's write lock, same two steps as capacity.lock_group.
    Must be the first statement in `s`.
    """
    touched = (
        s.query(Package)
        .filter(Package.id == package_id)
        .update({Package.updated_at: now}, synchronize_session=False)
    )
    if not touched:
        raise NotFoundError("Package not found")
    return (
        s.query(Package)
        .filter(Package.id == package_id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def package_to_dict(p: Package, sessions_completed: int) -> dict:
    contact = p.contact
    return {
        "id": p.id,
        "contact_id": p.contact_id,
        "contact_name": contact.display_name if contact else None,
        "package_kind": p.package_kind,
        "total_sessions": p.total_sessions,
        "sessions_completed": sessions_completed,
        "sessions_remaining": max(p.total_sessions - sessions_completed, 0),
        "price": p.price,
        "amount_received": p.amount_received,
        "balance_due": (p.price - p.amount_received) if p.price is not None else None,
        "start_date": iso(p.start_date),
        "is_active": bool(p.is_active),
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }


def event_to_dict(e: PaymentEvent) -> dict:
    return {
        "id": e.id,
        "package_id": e.package_id,
        "amount": e.amount,
        "note": e.note,
        "created_at": iso(e.created_at),
    }


def _completed(s, package_id: int, now: datetime) -> int:
    return s.query(sessions_completed_expr(now)).select_from(Package).filter(Package.id == package_id).scalar() or 0


# ──────────────────────────────────────────────────────────────────────────────
# Operations
# ──────────────────────────────────────────────────────────────────────────────

def create_package(
    contact_id,
    kind: str,
    price=None,
    start_date=None,
    amount_received=None,
    now: Optional[datetime] = None,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    contact_id = parse_id(contact_id, "contact_id")
    kind = (kind or "").strip()
    if kind not in policy.package_session_counts:
        raise ValidationError(
            f"package kind must be one of {', '.join(policy.package_session_counts)}"
        )
    amount = _price(price)
    received = parse_money(amount_received, "amount_received")
    received = _ZERO if received is None else received
    _check_amounts(received, amount)
    start = _date(start_date, "start_date", policy)
    now = as_utc(now) if now else utcnow()

    with get_session() as s:
        contact = s.get(Contact, contact_id)
        if contact is None:
            raise NotFoundError("Contact not found")

        package = Package(
            contact_id=contact_id,
            package_kind=kind,
            total_sessions=policy.package_session_counts[kind],
            price=amount,
            amount_received=received,
            start_date=start,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        s.add(package)
        s.flush()

        if received > 0:
            s.add(PaymentEvent(
                package_id=package.id,
                amount=received,
                note=INITIAL_PAYMENT_NOTE,
                created_at=package.created_at,
            ))
        contact.last_activity_at = now
        s.flush()
        log.info("[payments] package %s created kind=%s contact=%s received=%s", package.id, kind, contact_id, received)
        return package_to_dict(package, 0)


_PATCHABLE = {"price", "amount_received", "start_date", "is_active"}


def update_package(
    package_id,
    patch: dict,
    now: Optional[datetime] = None,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    """
    PATCH under a row lock: the stored price/received are read FOR UPDATE
    and the merged pair is validated before anything is written.
    """
    package_id = parse_id(package_id, "id")
    patch = dict(patch or {})
    if "sessions_completed" in patch:
        raise ValidationError("sessions_completed is derived from bookings and cannot be set")
    unknown = set(patch) - _PATCHABLE
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")

    values = {}
    if "price" in patch:
        values["price"] = _price(patch["price"])
    if "amount_received" in patch:
        received = parse_money(patch["amount_received"], "amount_received")
        if received is None:
            raise ValidationError("amount_received must be a number")
        values["amount_received"] = received
    if "start_date" in patch:
        values["start_date"] = _date(patch["start_date"], "start_date", policy)
    if "is_active" in patch:
        if not isinstance(patch["is_active"], bool):
            raise ValidationError("is_active must be true or false")
        values["is_active"] = patch["is_active"]
    now = as_utc(now) if now else utcnow()

    with get_session() as s:
        package = _lock(s, package_id, now)
        price = values.get("price", package.price)
        received = values.get("amount_received", package.amount_received)
        _check_amounts(received, price)

        for key, value in values.items():
            setattr(package, key, value)
        s.flush()
        log.info("[payments] package %s updated fields=%s", package_id, sorted(values))
        return package_to_dict(package, _completed(s, package_id, now))


def record_package_payment(
    package_id,
    amount,
    paid_date=None,
    note=None,
    now: Optional[datetime] = None,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    """Caller-side ledgering: bump amount_received and append one event."""
    package_id = parse_id(package_id, "id")
    value = parse_money(amount, "amount")
    if value is None or value <= 0:
        raise ValidationError("amount must be greater than zero")
    stamp = _date(paid_date, "paid_date", policy)
    now = as_utc(now) if now else utcnow()

    with get_session() as s:
        package = _lock(s, package_id, now)
        received = (package.amount_received or _ZERO) + value
        _check_amounts(received, package.price)
        package.amount_received = received

        event = PaymentEvent(
            package_id=package.id,
            amount=value,
            note=normalize_optional_text(note) or PAYMENT_NOTE,
            created_at=stamp or now,
        )
        s.add(event)
        contact = s.get(Contact, package.contact_id)
        contact.last_activity_at = now
        s.flush()
        log.info("[payments] package %s payment %s (received now %s)", package_id, value, received)
        return {
            "package": package_to_dict(package, _completed(s, package_id, now)),
            "event": event_to_dict(event),
        }


def get_package(package_id, now: Optional[datetime] = None) -> dict:
    package_id = parse_id(package_id, "id")
    now = as_utc(now) if now else utcnow()
    with get_session() as s:
        package = s.get(Package, package_id)
        if package is None:
            raise NotFoundError("Package not found")
        out = package_to_dict(package, _completed(s, package_id, now))
        out["bookings"] = [booking_to_dict(b, RECURRING) for b in package.bookings]
        out["payment_events"] = [event_to_dict(e) for e in package.payment_events]
        return out


def list_packages(contact_id=None, active_only: bool = False, now: Optional[datetime] = None) -> List[dict]:
    now = as_utc(now) if now else utcnow()
    completed = sessions_completed_expr(now).label("sessions_completed")
    with get_session() as s:
        q = s.query(Package, completed)
        if contact_id not in (None, ""):
            q = q.filter(Package.contact_id == parse_id(contact_id, "contact_id"))
        if active_only:
            q = q.filter(Package.is_active.is_(True))
        rows = q.order_by(Package.created_at.desc(), Package.id.desc()).all()
        return [package_to_dict(p, n or 0) for p, n in rows]
