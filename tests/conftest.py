from datetime import datetime, timezone

import pytest

from coachhq import create_app, db
from coachhq.models import Contact, GroupBooking, Participant, Reminder
from coachhq.settings import Policy


UTC = timezone.utc


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


@pytest.fixture(autouse=True)
def database(tmp_path):
    """Fresh file-backed SQLite database per test."""
    engine = db.configure(f"sqlite:///{tmp_path / 'coachhq.db'}")
    db.init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def policy():
    return Policy()


@pytest.fixture
def make_contact():
    def _make(name="Dana Reyes", secondary_name=None, **fields):
        with db.get_session() as s:
            c = Contact(name=name, secondary_name=secondary_name, **fields)
            s.add(c)
            s.flush()
            return c.id

    return _make


@pytest.fixture
def make_participant():
    def _make(contact_id, name="Milo Reyes", age=9):
        with db.get_session() as s:
            p = Participant(contact_id=contact_id, name=name, age=age)
            s.add(p)
            s.flush()
            return p.id

    return _make


@pytest.fixture
def make_group():
    def _make(max_players=2, title="Friday Skills", scheduled_at=None):
        with db.get_session() as s:
            g = GroupBooking(
                title=title,
                scheduled_at=scheduled_at or utc(2026, 3, 13, 23, 30),
                max_players=max_players,
            )
            s.add(g)
            s.flush()
            return g.id

    return _make


@pytest.fixture
def reminder_rows():
    """Snapshot of reminders as plain tuples, optionally filtered."""

    def _rows(**filters):
        with db.get_session() as s:
            q = s.query(Reminder)
            for key, value in filters.items():
                q = q.filter(getattr(Reminder, key) == value)
            return [
                (r.category, r.reminder_type, r.due_at, r.sent, r.trial_booking_id, r.recurring_booking_id)
                for r in q.order_by(Reminder.due_at, Reminder.id).all()
            ]

    return _rows


@pytest.fixture
def app():
    application = create_app()
    application.config.update(TESTING=True)
    return application


@pytest.fixture
def client(app):
    return app.test_client()
