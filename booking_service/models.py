import datetime
import logging
import uuid

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)

from .booking_state import BookingStatus
from .database import Base
from .errors import ImmutabilityViolationError
from .schemas import StatusChange

logger = logging.getLogger("booking_service")

SYSTEM_ACTOR = "system"


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, the form every TIMESTAMP column stores."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=new_id)

    # These are just IDs from other services.
    # No direct DB relationship is enforced.
    client_id = Column(String(128), index=True, nullable=False)
    host_id = Column(String(128), index=True, nullable=False)
    listing_id = Column(String(128), index=True, nullable=False)

    status = Column(Enum(BookingStatus, native_enum=False, length=32), nullable=False, index=True)
    # Append-only list of StatusChange dicts; last entry mirrors `status`
    status_history = Column(JSON, nullable=False, default=list)

    # Captured once from the listing/profile service
    listing_snapshot = Column(JSON, nullable=False)
    host_snapshot = Column(JSON, nullable=False)
    client_snapshot = Column(JSON, nullable=False)

    scheduled_date = Column(TIMESTAMP, nullable=False)
    estimated_duration = Column(Integer, nullable=False)
    check_in = Column(TIMESTAMP, nullable=True)
    check_out = Column(TIMESTAMP, nullable=True)

    service_location = Column(JSON, nullable=False)
    pricing = Column(JSON, nullable=False)
    payment_status = Column(String(20), default="pending", nullable=False)
    cancellation_policy = Column(String(20), default="flexible", nullable=False)

    booking_hash = Column(String(32), unique=True, nullable=False)
    chat_id = Column(String(36), nullable=False)

    review_window_ends_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow, nullable=False, index=True)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def history(self) -> tuple[StatusChange, ...]:
        return tuple(StatusChange.model_validate(entry) for entry in self.status_history or ())

    def record_status(self, change: StatusChange) -> None:
        """Move to `change.status`, appending the change to the history."""
        self.status = change.status
        self.status_history = [*(self.status_history or ()), change.model_dump(mode="json")]

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.client_id, self.host_id)

    def role_of(self, user_id: str) -> str | None:
        if user_id == self.client_id:
            return "client"
        if user_id == self.host_id:
            return "host"
        return None


class Review(Base):
    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=new_id)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)

    author_id = Column(String(128), nullable=False)
    author_role = Column(String(10), nullable=False)  # client, host
    target_id = Column(String(128), nullable=False, index=True)

    rating = Column(Integer, nullable=False)
    category_ratings = Column(JSON, nullable=True)
    content = Column(Text, nullable=False)

    # Double-blind: only the author sees the review while unpublished
    published = Column(Boolean, default=False, nullable=False)
    pair_complete = Column(Boolean, default=False, nullable=False)
    published_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("booking_id", "author_id", name="uq_reviews_booking_author"),
        Index("ix_reviews_published_created_at", "published", "created_at"),
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

    created_at = Column(TIMESTAMP, default=utcnow)

    # An index on 'status' will make the poller's query much faster
    __table_args__ = (
        Index('ix_outbox_events_status', 'status'),
    )


# ============ Immutability enforcement ============

BOOKING_FROZEN_FIELDS = (
    "client_id",
    "host_id",
    "listing_id",
    "listing_snapshot",
    "host_snapshot",
    "client_snapshot",
    "booking_hash",
    "created_at",
)

REVIEW_FROZEN_FIELDS = ("booking_id", "author_id", "author_role", "target_id")

REVIEW_PUBLISHED_FIELDS = ("rating", "category_ratings", "content", "published", "published_at")


def _history(target, name):
    return inspect(target).attrs[name].history


def _previous(target, name):
    history = _history(target, name)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _violation(model_name: str, target, detail: str) -> ImmutabilityViolationError:
    logger.error(f"IMMUTABILITY_VIOLATION: {model_name} {target.id}: {detail}")
    return ImmutabilityViolationError(model_name, str(target.id), detail)


@event.listens_for(Booking, "before_update")
def prevent_booking_rewrite(mapper, connection, target):
    for name in BOOKING_FROZEN_FIELDS:
        if _history(target, name).deleted:
            raise _violation("Booking", target, f"{name} is fixed at creation")

    old_history = list(_previous(target, "status_history") or [])
    new_history = list(target.status_history or [])
    if new_history[:len(old_history)] != old_history:
        raise _violation("Booking", target, "status_history is append-only")
    if not new_history or new_history[-1]["status"] != BookingStatus(target.status).value:
        raise _violation("Booking", target, "status does not match the last history entry")


@event.listens_for(Review, "before_update")
def prevent_review_rewrite(mapper, connection, target):
    for name in REVIEW_FROZEN_FIELDS:
        if _history(target, name).deleted:
            raise _violation("Review", target, f"{name} is fixed at creation")

    if _previous(target, "published"):
        for name in REVIEW_PUBLISHED_FIELDS:
            if _history(target, name).deleted:
                raise _violation("Review", target, "published reviews cannot be edited")


@event.listens_for(Booking, "before_delete")
def prevent_booking_delete(mapper, connection, target):
    raise _violation("Booking", target, "bookings are never deleted")


@event.listens_for(Review, "before_delete")
def prevent_review_delete(mapper, connection, target):
    raise _violation("Review", target, "reviews are never deleted")
