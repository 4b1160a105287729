import json
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .config import settings  # Need this for the topic name


def get_slot_for_booking(db: Session, slot_id: int) -> Optional[models.Slot]:
    return db.get(models.Slot, slot_id)


def get_booking(db: Session, booking_id: int) -> Optional[models.Booking]:
    return db.get(models.Booking, booking_id)


def get_booking_for_owner(db: Session, booking_id: int, owner_id: str) -> Optional[models.Booking]:
    """
    Returns the booking only if its slot belongs to ``owner_id``.
    """
    stmt = (
        select(models.Booking)
        .join(models.Slot, models.Slot.id == models.Booking.slot_id)
        .where(models.Booking.id == booking_id, models.Slot.owner_id == owner_id)
    )
    return db.execute(stmt).scalar_one_or_none()


def get_payment_by_order_id(db: Session, order_id: str) -> Optional[models.Payment]:
    stmt = (
        select(models.Payment)
        .where(models.Payment.external_order_id == order_id)
        .with_for_update()
    )
    return db.execute(stmt).scalar_one_or_none()


def get_payment_for_booking(db: Session, booking_id: int) -> Optional[models.Payment]:
    stmt = (
        select(models.Payment)
        .where(models.Payment.booking_id == booking_id)
        .with_for_update()
    )
    return db.execute(stmt).scalar_one_or_none()


def get_bookings_by_user(
        db: Session, user_id: str, status: Optional[str] = None, skip: int = 0, limit: int = 100
) -> list[models.Booking]:
    stmt = select(models.Booking).where(models.Booking.user_id == user_id)
    if status:
        stmt = stmt.where(models.Booking.status == status)
    stmt = stmt.order_by(models.Booking.id).offset(skip).limit(limit)
    return list(db.execute(stmt).scalars().all())


def get_bookings_for_owner(
        db: Session, owner_id: str, status: Optional[str] = None, skip: int = 0, limit: int = 100
) -> list[models.Booking]:
    stmt = (
        select(models.Booking)
        .join(models.Slot, models.Slot.id == models.Booking.slot_id)
        .where(models.Slot.owner_id == owner_id)
    )
    if status:
        stmt = stmt.where(models.Booking.status == status)
    stmt = stmt.order_by(models.Booking.id).offset(skip).limit(limit)
    return list(db.execute(stmt).scalars().all())


def has_confirmed_booking(db: Session, owner_id: str, player_id: str) -> bool:
    """
    True if ``player_id`` holds a confirmed booking on any slot owned by ``owner_id``.

    The chat service consults this before it creates a conversation.
    """
    stmt = (
        select(models.Booking.id)
        .join(models.Slot, models.Slot.id == models.Booking.slot_id)
        .where(
            models.Slot.owner_id == owner_id,
            models.Booking.user_id == player_id,
            models.Booking.status == models.BookingStatus.CONFIRMED,
        )
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def create_booking_event_in_outbox(db: Session, event_type: str, payload: dict) -> models.OutboxEvent:
    """
    Adds a booking event to the outbox table.
    Note: Does NOT commit. The caller commits it together with the state change it describes.
    """
    db_outbox_event = models.OutboxEvent(
        topic=settings.KAFKA_BOOKING_TOPIC,
        payload=json.dumps({"event": event_type, **payload}),
        status="PENDING"
    )
    db.add(db_outbox_event)
    return db_outbox_event
