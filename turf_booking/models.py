import datetime

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
)

from .database import Base


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED_BY_USER = "cancelled_by_user"
    CANCELLED_BY_OWNER = "cancelled_by_owner"

    ACTIVE = (PENDING, CONFIRMED)


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PayeeType:
    PLATFORM = "platform"
    OWNER = "owner"


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


class Slot(Base):
    """A bookable time window at a facility.

    Slots are created by the facility catalogue. This service only flips
    ``is_available`` through the availability guard.
    """
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)

    # Owned by the catalogue service. No direct DB relationship is enforced.
    facility_id = Column(Integer, index=True, nullable=False)
    owner_id = Column(String(64), index=True, nullable=False)

    start_time = Column(TIMESTAMP(timezone=True), nullable=False)
    end_time = Column(TIMESTAMP(timezone=True), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)

    is_available = Column(Boolean, default=True, nullable=False)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    slot_id = Column(Integer, ForeignKey("slots.id"), index=True, nullable=False)
    user_id = Column(String(64), index=True, nullable=False)

    status = Column(String(32), default=BookingStatus.PENDING, nullable=False)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)

    payer_id = Column(String(64), index=True, nullable=False)
    # The facility owner receiving the owner cut
    payee_id = Column(String(64), index=True, nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    external_order_id = Column(String(64), unique=True, index=True, nullable=True)
    external_payment_id = Column(String(64), nullable=True)

    status = Column(String(20), default=PaymentStatus.PENDING, nullable=False)

    # Set only on capture
    platform_cut = Column(Numeric(12, 2), nullable=True)
    owner_cut = Column(Numeric(12, 2), nullable=True)

    # Set on cancellation
    refunded_amount = Column(Numeric(12, 2), nullable=True)
    external_refund_id = Column(String(64), nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)


class LedgerEntry(Base):
    """Running earnings total for one payee."""
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    payee_id = Column(String(64), nullable=False)
    payee_type = Column(String(20), nullable=False)
    total = Column(Numeric(14, 2), default=0, nullable=False)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("payee_id", "payee_type", name="uq_ledger_entries_payee"),
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)

    # Status to track if the event has been sent
    status = Column(String(20), default="PENDING", nullable=False)

    # The Kafka topic to send the message to
    topic = Column(String(255), nullable=False)

    # The full JSON payload to be sent
    payload = Column(Text, nullable=False)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)

    # The poller filters on status
    __table_args__ = (
        Index('ix_outbox_events_status', 'status'),
    )
