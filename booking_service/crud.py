import json
import datetime
import random
import string
from sqlalchemy import or_
from sqlalchemy.orm import Session
from . import models
from .booking_state import BookingStatus
from .config import settings  # Need this for the topic names

# No look-alike characters (0/O, 1/I)
BOOKING_HASH_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_booking_hash(db: Session, now: datetime.datetime) -> str:
    """
    Generates a confirmation code like 'FN-2026-K7QX3M9A' that no other
    booking has used.
    """
    while True:
        code = "".join(random.choices(BOOKING_HASH_ALPHABET, k=8))
        booking_hash = f"{settings.BOOKING_HASH_PREFIX}-{now.year}-{code}"
        taken = db.query(models.Booking.id).filter(models.Booking.booking_hash == booking_hash).first()
        if taken is None:
            return booking_hash


def get_booking(db: Session, booking_id: str) -> models.Booking | None:
    return db.get(models.Booking, booking_id)


def get_bookings_by_user(db: Session, user_id: str, skip: int = 0, limit: int = 100):
    """Bookings where the user is either the client or the host, newest first."""
    return db.query(models.Booking).filter(
        or_(models.Booking.client_id == user_id, models.Booking.host_id == user_id)
    ).order_by(models.Booking.created_at.desc()).offset(skip).limit(limit).all()


def get_stale_pending_bookings(db: Session, created_before: datetime.datetime) -> list[str]:
    """
    IDs of bookings still waiting for host approval that were created
    before the cutoff.
    """
    rows = db.query(models.Booking.id).filter(
        models.Booking.status == BookingStatus.PENDING_APPROVAL,
        models.Booking.created_at < created_before,
    ).all()
    return [row.id for row in rows]


def get_review(db: Session, review_id: str) -> models.Review | None:
    return db.get(models.Review, review_id)


def get_reviews_for_booking(db: Session, booking_id: str) -> list[models.Review]:
    return db.query(models.Review).filter(
        models.Review.booking_id == booking_id
    ).order_by(models.Review.created_at).all()


def get_review_by_author(db: Session, booking_id: str, author_id: str) -> models.Review | None:
    return db.query(models.Review).filter(
        models.Review.booking_id == booking_id,
        models.Review.author_id == author_id,
    ).first()


def get_overdue_unpublished_reviews(db: Session, created_before: datetime.datetime) -> list[str]:
    rows = db.query(models.Review.id).filter(
        models.Review.published.is_(False),
        models.Review.created_at < created_before,
    ).all()
    return [row.id for row in rows]


def get_bookings_with_unpublished_reviews(db: Session) -> list[str]:
    rows = db.query(models.Review.booking_id).filter(
        models.Review.published.is_(False)
    ).distinct().all()
    return [row.booking_id for row in rows]


# --- Outbox writers ---
# None of these commit. The calling transaction body is responsible for it,
# so the event lands together with the change it describes.

def create_outbox_event(db: Session, topic: str, payload: dict):
    db_outbox_event = models.OutboxEvent(
        topic=topic,
        payload=json.dumps(payload),
        status="PENDING"
    )
    db.add(db_outbox_event)
    return db_outbox_event


def request_chat_thread(db: Session, booking: models.Booking):
    return create_outbox_event(db, settings.KAFKA_CHAT_TOPIC, {
        "command": "create_thread",
        "chat_id": booking.chat_id,
        "booking_id": booking.id,
        "participant_ids": [booking.client_id, booking.host_id],
    })


def post_system_message(db: Session, booking: models.Booking, event: str, text: str):
    return create_outbox_event(db, settings.KAFKA_CHAT_TOPIC, {
        "command": "post_system_message",
        "chat_id": booking.chat_id,
        "booking_id": booking.id,
        "event": event,
        "text": text,
    })


def request_rating_recompute(db: Session, target_id: str, booking_id: str):
    return create_outbox_event(db, settings.KAFKA_RATING_TOPIC, {
        "command": "recompute_aggregate",
        "target_id": target_id,
        "booking_id": booking_id,
    })
