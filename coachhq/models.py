# coachhq/models.py
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import declared_attr, relationship

from .db import Base
from .timeutils import UTC, as_utc, utcnow


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC on the way out, whatever the backend.
    Postgres keeps timestamptz; SQLite stores naive UTC text.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = as_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


Money = Numeric(10, 2)


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    secondary_name = Column(String(120), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    is_customer = Column(Boolean, nullable=False, default=False)
    call_outcome = Column(String(32), nullable=True)  # session_booked | thinking_about_it | uninterested | went_cold
    last_activity_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    participants = relationship("Participant", back_populates="contact", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        second = (self.secondary_name or "").strip()
        return f"{self.name} and {second}" if second else self.name


class Participant(Base):
    __tablename__ = "participants"

    id = Column(Integer, primary_key=True, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    age = Column(Integer, nullable=True)
    team = Column(String(120), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    contact = relationship("Contact", back_populates="participants")


trial_booking_participants = Table(
    "trial_booking_participants",
    Base.metadata,
    Column("trial_booking_id", Integer, ForeignKey("trial_bookings.id", ondelete="CASCADE"), primary_key=True),
    Column("participant_id", Integer, ForeignKey("participants.id", ondelete="CASCADE"), primary_key=True),
)

recurring_booking_participants = Table(
    "recurring_booking_participants",
    Base.metadata,
    Column("recurring_booking_id", Integer, ForeignKey("recurring_bookings.id", ondelete="CASCADE"), primary_key=True),
    Column("participant_id", Integer, ForeignKey("participants.id", ondelete="CASCADE"), primary_key=True),
)


class BookingMixin:
    """Columns shared by both booking variants (same state machine shape)."""

    id = Column(Integer, primary_key=True, index=True)
    scheduled_at = Column(UTCDateTime, nullable=True, index=True)
    ends_at = Column(UTCDateTime, nullable=True)
    location = Column(String(255), nullable=True)
    price = Column(Money, nullable=True)
    status = Column(String(16), nullable=False, default="scheduled")  # scheduled | accepted | completed | no_show | cancelled
    showed_up = Column(Boolean, nullable=True)
    cancelled = Column(Boolean, nullable=False, default=False)
    was_paid = Column(Boolean, nullable=False, default=False)
    payment_method = Column(String(16), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @declared_attr
    def contact_id(cls):
        return Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)

    @declared_attr
    def contact(cls):
        return relationship("Contact")


class TrialBooking(BookingMixin, Base):
    __tablename__ = "trial_bookings"

    deposit_paid = Column(Boolean, nullable=False, default=False)
    deposit_amount = Column(Money, nullable=True)

    participants = relationship("Participant", secondary=trial_booking_participants, order_by="Participant.id")


class RecurringBooking(BookingMixin, Base):
    __tablename__ = "recurring_bookings"

    package_id = Column(Integer, ForeignKey("packages.id", ondelete="SET NULL"), nullable=True, index=True)

    package = relationship("Package", back_populates="bookings")
    participants = relationship("Participant", secondary=recurring_booking_participants, order_by="Participant.id")


class Package(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    package_kind = Column(String(16), nullable=False)  # 12_week_1x | 12_week_2x | 6_week_1x | 6_week_2x
    total_sessions = Column(Integer, nullable=False)
    price = Column(Money, nullable=True)
    amount_received = Column(Money, nullable=False, default=0)
    start_date = Column(UTCDateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    contact = relationship("Contact")
    bookings = relationship("RecurringBooking", back_populates="package", order_by="RecurringBooking.scheduled_at")
    payment_events = relationship(
        "PaymentEvent",
        back_populates="package",
        cascade="all, delete-orphan",
        order_by="PaymentEvent.id",
    )


class PaymentEvent(Base):
    """Append-only package payment ledger."""

    __tablename__ = "package_payment_events"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    note = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    package = relationship("Package", back_populates="payment_events")


class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    trial_booking_id = Column(Integer, ForeignKey("trial_bookings.id", ondelete="CASCADE"), nullable=True, index=True)
    recurring_booking_id = Column(Integer, ForeignKey("recurring_bookings.id", ondelete="CASCADE"), nullable=True, index=True)
    reminder_type = Column(String(32), nullable=False)  # session_48h | session_24h | session_6h | follow_up_3d ...
    category = Column(String(40), nullable=False)       # pre_session | post_session_follow_up | post_first_session_follow_up
    due_at = Column(UTCDateTime, nullable=False, index=True)
    sent = Column(Boolean, nullable=False, default=False)
    sent_at = Column(UTCDateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    contact = relationship("Contact")


class GroupBooking(Base):
    __tablename__ = "group_sessions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(512), nullable=True)
    scheduled_at = Column(UTCDateTime, nullable=False, index=True)
    ends_at = Column(UTCDateTime, nullable=True)
    location = Column(String(255), nullable=True)
    price = Column(Money, nullable=True)
    curriculum = Column(Text, nullable=True)
    max_players = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    signups = relationship(
        "Signup",
        back_populates="group_booking",
        cascade="all, delete-orphan",
        order_by="Signup.id",
    )


class Signup(Base):
    __tablename__ = "signups"

    id = Column(Integer, primary_key=True, index=True)
    group_booking_id = Column(Integer, ForeignKey("group_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=False)
    emergency_contact = Column(String(255), nullable=False)
    contact_phone = Column(String(32), nullable=True)
    contact_email = Column(String(255), nullable=False)
    team = Column(String(120), nullable=True)
    notes = Column(Text, nullable=True)
    has_paid = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    group_booking = relationship("GroupBooking", back_populates="signups")
