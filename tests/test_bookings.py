from decimal import Decimal

import pytest

from coachhq import bookings, db, reminders
from coachhq.errors import InvalidTransitionError, NotFoundError, ValidationError
from coachhq.models import Contact, Reminder, TrialBooking
from coachhq.reminders import POST_FIRST_SESSION_FOLLOW_UP, POST_SESSION_FOLLOW_UP, PRE_SESSION

from .conftest import utc

AFTER_SESSION = utc(2026, 3, 11, 0, 0)


def unsent(reminder_rows, **filters):
    return [r for r in reminder_rows(**filters) if not r[3]]


# ── Create ───────────────────────────────────────────────────
def test_trial_wall_clock_is_stored_as_utc(make_contact, make_participant):
    contact_id = make_contact()
    kid = make_participant(contact_id)

    b = bookings.create_booking(
        "trial", contact_id, participant_ids=[kid], scheduled="2026-03-10T15:00",
        location="Field 2", price="40", deposit={"paid": True, "amount": "10"},
    )

    assert b["scheduled_at"] == "2026-03-10T22:00:00+00:00"
    assert b["status"] == "scheduled"
    assert b["participant_ids"] == [kid]
    assert b["price"] == Decimal("40.00")
    assert b["deposit_paid"] is True and b["deposit_amount"] == Decimal("10.00")


def test_trial_marks_contact_as_customer(make_contact):
    contact_id = make_contact()
    bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00", now=utc(2026, 3, 1, 18, 0))

    with db.get_session() as s:
        c = s.get(Contact, contact_id)
        assert c.is_customer is True
        assert c.call_outcome == "session_booked"
        assert c.last_activity_at == utc(2026, 3, 1, 18, 0)


def test_recurring_only_touches_last_activity(make_contact):
    contact_id = make_contact()
    bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00", now=utc(2026, 3, 1, 18, 0))

    with db.get_session() as s:
        c = s.get(Contact, contact_id)
        assert c.is_customer is False
        assert c.last_activity_at == utc(2026, 3, 1, 18, 0)


def test_contact_display_name_joins_secondary(make_contact):
    contact_id = make_contact("Dana Reyes", secondary_name="Sam Reyes")
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")
    assert b["contact_name"] == "Dana Reyes and Sam Reyes"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"contact_id": None, "scheduled": "2026-03-10T15:00"},
        {"contact_id": 1, "scheduled": None},
        {"contact_id": 1, "scheduled": "next tuesday"},
        {"contact_id": 1, "scheduled": "2026-03-10T15:00", "price": "NaN"},
        {"contact_id": 1, "scheduled": "2026-03-10T15:00", "price": "Infinity"},
        {"contact_id": 1, "scheduled": "2026-03-10T15:00", "price": "-5"},
        {"contact_id": 1, "scheduled": "2026-03-10T15:00", "ends_at": "2026-03-10T14:00"},
        {"contact_id": 1, "scheduled": "2026-03-10T15:00", "package_id": 3},
    ],
)
def test_invalid_trial_input_writes_nothing(make_contact, reminder_rows, kwargs):
    make_contact()
    with pytest.raises(ValidationError):
        bookings.create_booking("trial", **kwargs)

    assert bookings.list_bookings("trial") == []
    assert reminder_rows() == []


def test_unknown_contact_and_variant(make_contact):
    with pytest.raises(NotFoundError):
        bookings.create_booking("trial", 77, scheduled="2026-03-10T15:00")
    with pytest.raises(ValidationError):
        bookings.create_booking("group", 1, scheduled="2026-03-10T15:00")


def test_participants_must_belong_to_contact(make_contact, make_participant):
    mine = make_contact()
    other = make_contact("Lee Park")
    theirs = make_participant(other, "Ari Park")

    with pytest.raises(ValidationError):
        bookings.create_booking("recurring", mine, participant_ids=[theirs], scheduled="2026-03-10T15:00")
    with pytest.raises(NotFoundError):
        bookings.create_booking("recurring", mine, participant_ids=[999], scheduled="2026-03-10T15:00")


# ── Cancel ───────────────────────────────────────────────────
@pytest.mark.parametrize("variant", ["trial", "recurring"])
def test_cancel_leaves_no_unsent_reminders(make_contact, reminder_rows, variant):
    contact_id = make_contact()
    b = bookings.create_booking(variant, contact_id, scheduled="2026-03-10T15:00")
    key = f"{variant}_booking_id"
    assert len(unsent(reminder_rows, **{key: b["id"]})) == 3

    out = bookings.cancel_booking(variant, b["id"])

    assert out["status"] == "cancelled"
    assert out["cancelled"] is True
    assert out["purge_booking_reminders"] == 3
    assert unsent(reminder_rows, **{key: b["id"]}) == []


def test_cancel_twice_still_cleans_up(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")
    bookings.cancel_booking("trial", b["id"])

    # a stray reminder left behind by an earlier failed purge
    with db.get_session() as s:
        s.add(Reminder(
            contact_id=contact_id, trial_booking_id=b["id"], reminder_type="session_6h",
            category=PRE_SESSION, due_at=utc(2026, 3, 10, 16, 0),
        ))

    again = bookings.cancel_booking("trial", b["id"])
    assert again["status"] == "cancelled"
    assert again["purge_booking_reminders"] == 1
    assert unsent(reminder_rows, trial_booking_id=b["id"]) == []


def test_cancel_stands_when_reminder_purge_fails(make_contact, monkeypatch):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")

    def boom(ref):
        raise RuntimeError("store hiccup")

    monkeypatch.setattr(reminders, "purge_booking_reminders", boom)
    out = bookings.cancel_booking("recurring", b["id"])

    assert out["purge_booking_reminders"] is None
    assert bookings.get_booking("recurring", b["id"])["status"] == "cancelled"


def test_cannot_cancel_a_completed_booking(make_contact):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")
    bookings.complete_booking("recurring", b["id"], showed_up=True, now=AFTER_SESSION)
    with pytest.raises(InvalidTransitionError):
        bookings.cancel_booking("recurring", b["id"])


# ── Accept / no-show ─────────────────────────────────────────
def test_accept_trial_then_no_show(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")

    assert bookings.accept_booking("trial", b["id"])["status"] == "accepted"
    out = bookings.mark_no_show("trial", b["id"], now=AFTER_SESSION)

    assert out["status"] == "no_show"
    assert out["showed_up"] is False
    assert reminder_rows(category=POST_FIRST_SESSION_FOLLOW_UP) == []


def test_recurring_cannot_be_accepted(make_contact):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")
    with pytest.raises(InvalidTransitionError):
        bookings.accept_booking("recurring", b["id"])


def test_missing_booking_is_not_found():
    with pytest.raises(NotFoundError):
        bookings.cancel_booking("trial", 404)
    with pytest.raises(NotFoundError):
        bookings.get_booking("recurring", 404)


# ── Complete ─────────────────────────────────────────────────
def test_completion_records_attendance_and_payment(make_contact):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")

    out = bookings.complete_booking(
        "recurring", b["id"], showed_up=True, paid=True, payment_method="Venmo", now=AFTER_SESSION
    )

    assert out["status"] == "completed"
    assert out["showed_up"] is True
    assert out["was_paid"] is True
    assert out["payment_method"] == "venmo"


def test_completion_requires_showed_up_flag(make_contact):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")
    with pytest.raises(ValidationError):
        bookings.complete_booking("recurring", b["id"], showed_up=None)
    with pytest.raises(ValidationError):
        bookings.complete_booking("recurring", b["id"], showed_up=True, payment_method="bitcoin")
    assert bookings.get_booking("recurring", b["id"])["status"] == "scheduled"


def test_recurring_completion_schedules_one_follow_up(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")

    bookings.complete_booking("recurring", b["id"], showed_up=True, now=AFTER_SESSION)
    bookings.complete_booking("recurring", b["id"], showed_up=True, now=AFTER_SESSION)

    rows = unsent(reminder_rows, contact_id=contact_id, category=POST_SESSION_FOLLOW_UP)
    assert len(rows) == 1
    assert rows[0][1] == "follow_up_3d"
    assert rows[0][2] == utc(2026, 3, 13, 22, 0)


def test_trial_completion_schedules_one_first_session_follow_up(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")

    bookings.complete_booking("trial", b["id"], showed_up=True, now=AFTER_SESSION)
    bookings.complete_booking("trial", b["id"], showed_up=True, now=AFTER_SESSION)

    assert len(unsent(reminder_rows, contact_id=contact_id, category=POST_FIRST_SESSION_FOLLOW_UP)) == 1
    assert unsent(reminder_rows, contact_id=contact_id, category=POST_SESSION_FOLLOW_UP) == []


def test_no_follow_up_when_another_session_is_booked(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")
    bookings.create_booking("recurring", contact_id, scheduled="2026-03-17T15:00")

    bookings.complete_booking("recurring", b["id"], showed_up=True, now=AFTER_SESSION)

    assert reminder_rows(category=POST_SESSION_FOLLOW_UP) == []


def test_future_trial_does_not_hold_off_session_follow_up(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")
    bookings.create_booking("trial", contact_id, scheduled="2026-03-17T15:00")

    bookings.complete_booking("recurring", b["id"], showed_up=True, now=AFTER_SESSION)

    assert len(reminder_rows(category=POST_SESSION_FOLLOW_UP)) == 1


def test_trial_completion_skips_follow_up_when_sessions_are_booked(make_contact, reminder_rows):
    contact_id = make_contact()
    trial = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")
    bookings.create_booking("recurring", contact_id, scheduled="2026-03-17T15:00")

    bookings.complete_booking("trial", trial["id"], showed_up=True, now=AFTER_SESSION)

    assert reminder_rows(category=POST_FIRST_SESSION_FOLLOW_UP) == []


def test_trial_completion_ignores_cancelled_sessions(make_contact, reminder_rows):
    contact_id = make_contact()
    trial = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")
    later = bookings.create_booking("recurring", contact_id, scheduled="2026-03-17T15:00")
    bookings.cancel_booking("recurring", later["id"])

    bookings.complete_booking("trial", trial["id"], showed_up=True, now=AFTER_SESSION)

    assert len(reminder_rows(category=POST_FIRST_SESSION_FOLLOW_UP)) == 1


def test_cancelled_future_booking_does_not_count(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")
    later = bookings.create_booking("recurring", contact_id, scheduled="2026-03-17T15:00")
    bookings.cancel_booking("recurring", later["id"])

    bookings.complete_booking("recurring", b["id"], showed_up=True, now=AFTER_SESSION)

    assert len(reminder_rows(category=POST_SESSION_FOLLOW_UP)) == 1


@pytest.mark.parametrize("showed_up,cancelled", [(False, False), (True, True)])
def test_no_follow_up_without_attendance(make_contact, reminder_rows, showed_up, cancelled):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")

    bookings.complete_booking("recurring", b["id"], showed_up=showed_up, cancelled=cancelled, now=AFTER_SESSION)

    assert reminder_rows(category=POST_SESSION_FOLLOW_UP) == []


def test_new_recurring_booking_purges_both_follow_ups(make_contact, reminder_rows):
    contact_id = make_contact()
    with db.get_session() as s:
        reminders.schedule_follow_up(s, contact_id, POST_SESSION_FOLLOW_UP, utc(2026, 3, 3, 22, 0))
        reminders.schedule_follow_up(s, contact_id, POST_FIRST_SESSION_FOLLOW_UP, utc(2026, 3, 3, 22, 0))

    bookings.create_booking("recurring", contact_id, scheduled="2026-03-24T15:00")

    assert unsent(reminder_rows, contact_id=contact_id, category=POST_SESSION_FOLLOW_UP) == []
    assert unsent(reminder_rows, contact_id=contact_id, category=POST_FIRST_SESSION_FOLLOW_UP) == []


def test_new_trial_purges_only_the_session_follow_up(make_contact, reminder_rows):
    contact_id = make_contact()
    with db.get_session() as s:
        reminders.schedule_follow_up(s, contact_id, POST_SESSION_FOLLOW_UP, utc(2026, 3, 3, 22, 0))

    bookings.create_booking("trial", contact_id, scheduled="2026-03-24T15:00")

    assert unsent(reminder_rows, contact_id=contact_id, category=POST_SESSION_FOLLOW_UP) == []


def test_new_trial_does_not_purge_trial_follow_up(make_contact, reminder_rows):
    contact_id = make_contact()
    trial = bookings.create_booking("trial", contact_id, scheduled="2026-03-03T15:00")
    bookings.complete_booking("trial", trial["id"], showed_up=True, now=utc(2026, 3, 4, 0, 0))

    bookings.create_booking("trial", contact_id, scheduled="2026-03-24T15:00")

    assert len(unsent(reminder_rows, contact_id=contact_id, category=POST_FIRST_SESSION_FOLLOW_UP)) == 1


# ── Reschedule / correction ─────────────────────────────────
def test_reschedule_replaces_pre_session_reminders(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")

    out = bookings.reschedule_booking("recurring", b["id"], "2026-03-12T09:30")

    assert out["scheduled_at"] == "2026-03-12T16:30:00+00:00"
    assert [r[2] for r in unsent(reminder_rows, recurring_booking_id=b["id"])] == [
        utc(2026, 3, 10, 16, 30),
        utc(2026, 3, 11, 16, 30),
        utc(2026, 3, 12, 10, 30),
    ]


def test_reschedule_terminal_booking_is_rejected(make_contact):
    contact_id = make_contact()
    b = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")
    bookings.mark_no_show("trial", b["id"])
    with pytest.raises(InvalidTransitionError):
        bookings.reschedule_booking("trial", b["id"], "2026-03-12T09:30")
    assert bookings.get_booking("trial", b["id"])["scheduled_at"] == "2026-03-10T22:00:00+00:00"


def test_update_booking_cannot_patch_status(make_contact):
    contact_id = make_contact()
    b = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")
    with pytest.raises(ValidationError):
        bookings.update_booking("trial", b["id"], {"status": "completed"})
    with pytest.raises(ValidationError):
        bookings.update_booking("trial", b["id"], {"package_id": 1})


def test_update_booking_date_change_reschedules(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")

    out = bookings.update_booking("trial", b["id"], {"scheduled_at": "2026-03-11T15:00", "location": " Gym "})

    assert out["location"] == "Gym"
    assert unsent(reminder_rows, trial_booking_id=b["id"])[-1][2] == utc(2026, 3, 11, 16, 0)
    assert len(unsent(reminder_rows, trial_booking_id=b["id"])) == 3


def test_clearing_the_date_retires_reminders(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")

    out = bookings.update_booking("trial", b["id"], {"scheduled_at": None})

    assert out["scheduled_at"] is None
    assert unsent(reminder_rows, trial_booking_id=b["id"]) == []


def test_showed_up_correction_only_on_completed(make_contact):
    contact_id = make_contact()
    b = bookings.create_booking("recurring", contact_id, scheduled="2026-03-10T15:00")
    with pytest.raises(ValidationError):
        bookings.update_booking("recurring", b["id"], {"showed_up": True})

    bookings.complete_booking("recurring", b["id"], showed_up=False, now=AFTER_SESSION)
    out = bookings.update_booking("recurring", b["id"], {"showed_up": True})
    assert out["showed_up"] is True
    assert out["status"] == "completed"


def test_set_participants(make_contact, make_participant):
    contact_id = make_contact()
    a = make_participant(contact_id, "Milo")
    c = make_participant(contact_id, "Ivy")
    b = bookings.create_booking("recurring", contact_id, participant_ids=[a], scheduled="2026-03-10T15:00")

    assert bookings.set_participants("recurring", b["id"], [c, a, c])["participant_ids"] == [a, c]
    assert bookings.set_participants("recurring", b["id"], [])["participant_ids"] == []


def test_delete_booking_removes_its_reminders(make_contact, reminder_rows):
    contact_id = make_contact()
    b = bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00")

    out = bookings.delete_booking("trial", b["id"])

    assert out["reminders_deleted"] == 3
    assert reminder_rows() == []
    with db.get_session() as s:
        assert s.get(TrialBooking, b["id"]) is None


def test_list_bookings_filters(make_contact):
    dana = make_contact()
    lee = make_contact("Lee Park")
    bookings.create_booking("recurring", dana, scheduled="2026-03-10T15:00")
    upcoming = bookings.create_booking("recurring", dana, scheduled="2026-03-17T15:00")
    bookings.create_booking("recurring", lee, scheduled="2026-03-12T15:00")

    assert len(bookings.list_bookings("recurring", contact_id=dana)) == 2
    rows = bookings.list_bookings("recurring", contact_id=dana, upcoming=True, now=utc(2026, 3, 12, 0, 0))
    assert [r["id"] for r in rows] == [upcoming["id"]]
