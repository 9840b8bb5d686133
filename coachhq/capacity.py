# coachhq/capacity.py
"""
capacity.py
────────────────────────────────────────────
Group sessions, signups and the paid-capacity gate.

Every write that can change the paid count or the capacity first takes
the parent row's write lock:

    UPDATE group_sessions SET updated_at = :now WHERE id = :id
    SELECT ... FROM group_sessions WHERE id = :id FOR UPDATE

The UPDATE is the first statement of the transaction, so Postgres holds
the row lock and SQLite holds the database write lock before anything is
counted. Two callers racing for the last paid slot are serialised there;
the second one counts the first one's signup and is refused.
────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import List, Optional

from sqlalchemy import case, func

from .db import get_session
from .errors import CapacityError, NotFoundError, ValidationError
from .models import Contact, GroupBooking, Signup
from .settings import DEFAULT_POLICY, Policy
from .timeutils import as_utc, coerce_instant, local_to_utc, parse_local_date, utcnow
from .utils import (
    iso,
    normalize_optional_text,
    normalize_required_text,
    parse_id,
    parse_int,
    parse_money,
)

log = logging.getLogger(__name__)

# Weekend quick-add: (start, end, title band, description band)
FRIDAY_TEMPLATES = (
    ("16:30", "17:45", "8 - 10 year olds", "8 year to 10 year old"),
    ("17:45", "19:00", "11 - 13 year olds", "11 year to 13 year old"),
)
SUNDAY_TEMPLATES = (
    ("15:00", "16:15", "8 - 10 year olds", "8 year to 10 year old"),
    ("16:15", "17:30", "11 - 13 year olds", "11 year to 13 year old"),
)
FRIDAY, SUNDAY = 4, 6

_SIGNUP_REQUIRED = ("first_name", "last_name", "emergency_contact", "contact_email")
_SIGNUP_OPTIONAL = ("contact_phone", "team", "notes")


# ── Helpers ───────────────────────────────────────────────────────────────────
def _instant(value, field: str, policy: Policy) -> Optional[datetime]:
    try:
        return coerce_instant(value, policy)
    except ValueError as e:
        raise ValidationError(f"{field}: {e}")


def _max_players(value) -> int:
    n = parse_int(value, "max_players")
    if n < 1:
        raise ValidationError("max_players must be at least 1")
    return n


def _price(value):
    amount = parse_money(value, "price")
    if amount is not None and amount < 0:
        raise ValidationError("price must not be negative")
    return amount


def _paid_flag(value) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError("has_paid must be true or false")
    return value


def _counts(s, group_id: int):
    paid = (
        s.query(func.count(Signup.id))
        .filter(Signup.group_booking_id == group_id, Signup.has_paid.is_(True))
        .scalar()
    )
    total = s.query(func.count(Signup.id)).filter(Signup.group_booking_id == group_id).scalar()
    return paid or 0, total or 0


def lock_group(s, group_id: int, now: Optional[datetime] = None) -> GroupBooking:
    """Take the parent row's write lock. Must be the first statement in `s`."""
    touched = (
        s.query(GroupBooking)
        .filter(GroupBooking.id == group_id)
        .update({GroupBooking.updated_at: now or utcnow()}, synchronize_session=False)
    )
    if not touched:
        raise NotFoundError("Group session not found")
    return (
        s.query(GroupBooking)
        .filter(GroupBooking.id == group_id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def try_admit(s, group: GroupBooking, is_paid: bool) -> None:
    """Raise CapacityError if one more paid signup would overflow `group`."""
    if not is_paid:
        return
    paid, _ = _counts(s, group.id)
    if paid >= group.max_players:
        log.warning("[capacity] group %s full (%s/%s paid)", group.id, paid, group.max_players)
        raise CapacityError("This group session is already full")


def group_to_dict(g: GroupBooking, paid: int, total: int) -> dict:
    return {
        "id": g.id,
        "title": g.title,
        "description": g.description,
        "image_url": g.image_url,
        "scheduled_at": iso(g.scheduled_at),
        "ends_at": iso(g.ends_at),
        "location": g.location,
        "price": g.price,
        "curriculum": g.curriculum,
        "max_players": g.max_players,
        "paid_count": paid,
        "signup_count": total,
        "spots_left": max(g.max_players - paid, 0),
        "created_at": iso(g.created_at),
        "updated_at": iso(g.updated_at),
    }


def signup_to_dict(p: Signup) -> dict:
    return {
        "id": p.id,
        "group_booking_id": p.group_booking_id,
        "contact_id": p.contact_id,
        "first_name": p.first_name,
        "last_name": p.last_name,
        "emergency_contact": p.emergency_contact,
        "contact_phone": p.contact_phone,
        "contact_email": p.contact_email,
        "team": p.team,
        "notes": p.notes,
        "has_paid": bool(p.has_paid),
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }


# ──────────────────────────────────────────────────────────────────────────────
# Group sessions
# ──────────────────────────────────────────────────────────────────────────────

def create_group_booking(
    title,
    scheduled,
    max_players=None,
    ends_at=None,
    location=None,
    price=None,
    description=None,
    curriculum=None,
    image_url=None,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    title = normalize_required_text(title, "title")
    start = _instant(scheduled, "scheduled", policy)
    if start is None:
        raise ValidationError("Title and session date are required")
    end = _instant(ends_at, "ends_at", policy)
    if end is not None and end < start:
        raise ValidationError("ends_at must not be before the session start")
    capacity = policy.group_default_max_players if max_players in (None, "") else _max_players(max_players)

    with get_session() as s:
        g = GroupBooking(
            title=title,
            description=normalize_optional_text(description),
            image_url=normalize_optional_text(image_url),
            scheduled_at=start,
            ends_at=end,
            location=normalize_optional_text(location),
            price=_price(price),
            curriculum=normalize_optional_text(curriculum),
            max_players=capacity,
        )
        s.add(g)
        s.flush()
        log.info("[capacity] group %s created '%s' max=%s", g.id, title, capacity)
        return group_to_dict(g, 0, 0)


_GROUP_FIELDS = {"title", "description", "image_url", "scheduled_at", "ends_at", "location", "price", "curriculum", "max_players"}


def update_group_booking(group_id, patch: dict, policy: Policy = DEFAULT_POLICY) -> dict:
    group_id = parse_id(group_id, "id")
    patch = dict(patch or {})
    unknown = set(patch) - _GROUP_FIELDS
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")
    if not patch:
        raise ValidationError("No fields to update")

    values = {}
    for key, raw in patch.items():
        if key == "title":
            values[key] = normalize_required_text(raw, "title")
        elif key == "scheduled_at":
            values[key] = _instant(raw, key, policy)
            if values[key] is None:
                raise ValidationError("scheduled_at cannot be cleared")
        elif key == "ends_at":
            values[key] = _instant(raw, key, policy)
        elif key == "price":
            values[key] = _price(raw)
        elif key == "max_players":
            values[key] = _max_players(raw)
        else:
            values[key] = normalize_optional_text(raw)

    with get_session() as s:
        g = lock_group(s, group_id)
        paid, total = _counts(s, group_id)
        if "max_players" in values and values["max_players"] < total:
            log.warning("[capacity] group %s: max_players %s below %s signups", group_id, values["max_players"], total)
            raise CapacityError(
                f"max_players cannot be lower than the current signup count ({total})"
            )
        for key, value in values.items():
            setattr(g, key, value)
        if g.ends_at is not None and g.ends_at < g.scheduled_at:
            raise ValidationError("ends_at must not be before the session start")
        s.flush()
        log.info("[capacity] group %s updated fields=%s", group_id, sorted(values))
        return group_to_dict(g, paid, total)


def get_group_booking(group_id) -> dict:
    group_id = parse_id(group_id, "id")
    with get_session() as s:
        g = s.get(GroupBooking, group_id)
        if g is None:
            raise NotFoundError("Group session not found")
        out = group_to_dict(g, *_counts(s, group_id))
        out["signups"] = [signup_to_dict(p) for p in g.signups]
        return out


def list_group_bookings(upcoming: bool = False, now: Optional[datetime] = None) -> List[dict]:
    paid = func.coalesce(func.sum(case((Signup.has_paid.is_(True), 1), else_=0)), 0)
    total = func.count(Signup.id)
    with get_session() as s:
        q = (
            s.query(GroupBooking, paid, total)
            .outerjoin(Signup, Signup.group_booking_id == GroupBooking.id)
            .group_by(GroupBooking.id)
        )
        if upcoming:
            q = q.filter(GroupBooking.scheduled_at >= (as_utc(now) if now else utcnow()))
        rows = q.order_by(GroupBooking.scheduled_at.asc(), GroupBooking.id.asc()).all()
        return [group_to_dict(g, p or 0, t or 0) for g, p, t in rows]


def delete_group_booking(group_id) -> dict:
    group_id = parse_id(group_id, "id")
    with get_session() as s:
        g = s.get(GroupBooking, group_id)
        if g is None:
            raise NotFoundError("Group session not found")
        s.delete(g)
        log.info("[capacity] group %s deleted", group_id)
        return {"id": group_id, "deleted": True}


def _ordinal(day: int) -> str:
    if 11 <= day <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")


def _title_label(d: date) -> str:
    return f"{d.strftime('%A')} {d.strftime('%B')} {d.day}{_ordinal(d.day)}"


def _weekend_day(value, field: str, weekday: int, name: str) -> date:
    try:
        d = parse_local_date(normalize_required_text(value, field))
    except ValueError:
        raise ValidationError("Dates must be in YYYY-MM-DD format")
    if d.weekday() != weekday:
        raise ValidationError(f"The {name} date must be a {name}")
    return d


def quick_add_group_weekend(
    friday_date,
    sunday_date,
    curriculum,
    location,
    image_url,
    policy: Policy = DEFAULT_POLICY,
) -> dict:
    """The four standard weekend sessions, all or nothing."""
    curriculum = normalize_required_text(curriculum, "curriculum")
    location = normalize_required_text(location, "location")
    image_url = normalize_required_text(image_url, "image_url")
    friday = _weekend_day(friday_date, "friday_date", FRIDAY, "Friday")
    sunday = _weekend_day(sunday_date, "sunday_date", SUNDAY, "Sunday")

    created = []
    with get_session() as s:
        for day, templates in ((friday, FRIDAY_TEMPLATES), (sunday, SUNDAY_TEMPLATES)):
            label = _title_label(day)
            for start, end, age_title, age_description in templates:
                g = GroupBooking(
                    title=f"{label} {age_title}",
                    description=f"{age_description} group session focusing on {curriculum}.",
                    image_url=image_url,
                    scheduled_at=local_to_utc(datetime.combine(day, time.fromisoformat(start)), policy),
                    ends_at=local_to_utc(datetime.combine(day, time.fromisoformat(end)), policy),
                    location=location,
                    price=policy.group_default_price,
                    curriculum=curriculum,
                    max_players=policy.group_default_max_players,
                )
                s.add(g)
                created.append(g)
        s.flush()
        log.info("[capacity] quick-added %s weekend sessions (%s, %s)", len(created), friday, sunday)
        return {
            "created_count": len(created),
            "sessions": [{"id": g.id, "title": g.title, "scheduled_at": iso(g.scheduled_at)} for g in created],
        }


# ──────────────────────────────────────────────────────────────────────────────
# Signups
# ──────────────────────────────────────────────────────────────────────────────

def admit_group_signup(group_id, details: dict, now: Optional[datetime] = None) -> dict:
    """
    Create a signup. A paid signup is admitted only while the paid count is
    below max_players; unpaid signups are never capacity-limited.
    """
    group_id = parse_id(group_id, "group_booking_id")
    details = dict(details or {})
    missing = [f for f in _SIGNUP_REQUIRED if not normalize_optional_text(details.get(f))]
    if missing:
        raise ValidationError(
            "First name, last name, emergency contact, and contact email are required"
        )
    is_paid = _paid_flag(details.get("has_paid", False))
    contact_id = details.get("contact_id")
    contact_id = None if contact_id in (None, "") else parse_id(contact_id, "contact_id")

    with get_session() as s:
        g = lock_group(s, group_id, as_utc(now) if now else None)
        if contact_id is not None and s.get(Contact, contact_id) is None:
            raise NotFoundError("Contact not found")
        try_admit(s, g, is_paid)

        signup = Signup(
            group_booking_id=group_id,
            contact_id=contact_id,
            has_paid=is_paid,
            **{f: normalize_optional_text(details.get(f)) for f in _SIGNUP_REQUIRED + _SIGNUP_OPTIONAL},
        )
        s.add(signup)
        s.flush()
        log.info("[capacity] group %s admitted signup %s paid=%s", group_id, signup.id, is_paid)
        return signup_to_dict(signup)


def list_signups(group_id) -> List[dict]:
    group_id = parse_id(group_id, "id")
    with get_session() as s:
        if s.get(GroupBooking, group_id) is None:
            raise NotFoundError("Group session not found")
        rows = (
            s.query(Signup)
            .filter(Signup.group_booking_id == group_id)
            .order_by(Signup.created_at.asc(), Signup.id.asc())
            .all()
        )
        return [signup_to_dict(p) for p in rows]


def update_signup(signup_id, patch: dict, now: Optional[datetime] = None) -> dict:
    """Field edits; flipping has_paid to true goes back through the gate."""
    signup_id = parse_id(signup_id, "id")
    patch = dict(patch or {})
    unknown = set(patch) - set(_SIGNUP_REQUIRED) - set(_SIGNUP_OPTIONAL) - {"has_paid"}
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")
    if not patch:
        raise ValidationError("No fields to update")

    values = {}
    for key, raw in patch.items():
        if key in _SIGNUP_REQUIRED:
            values[key] = normalize_required_text(raw, key)
        elif key == "has_paid":
            values[key] = _paid_flag(raw)
        else:
            values[key] = normalize_optional_text(raw)

    with get_session() as s:
        group_id = s.query(Signup.group_booking_id).filter(Signup.id == signup_id).scalar()
        if group_id is None:
            raise NotFoundError("Player signup not found")

    with get_session() as s:
        g = lock_group(s, group_id, as_utc(now) if now else None)
        signup = s.get(Signup, signup_id)
        if signup is None or signup.group_booking_id != group_id:
            raise NotFoundError("Player signup not found")
        if values.get("has_paid") and not signup.has_paid:
            try_admit(s, g, True)
        for key, value in values.items():
            setattr(signup, key, value)
        s.flush()
        log.info("[capacity] signup %s updated fields=%s", signup_id, sorted(values))
        return signup_to_dict(signup)


def delete_signup(signup_id) -> dict:
    signup_id = parse_id(signup_id, "id")
    with get_session() as s:
        n = s.query(Signup).filter(Signup.id == signup_id).delete(synchronize_session=False)
        if not n:
            raise NotFoundError("Player signup not found")
        log.info("[capacity] signup %s deleted", signup_id)
        return {"id": signup_id, "deleted": True}
