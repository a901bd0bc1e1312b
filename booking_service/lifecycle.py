"""Booking lifecycle engine.

Every action is a single read-validate-write transaction against one
booking row. Validation runs inside the transaction body, so when the store
re-runs a body after losing a race the role and status checks are evaluated
again against the fresh row and a stale decision can never commit.
"""

import datetime
import logging
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from . import crud, models
from .booking_state import BookingStatus, is_valid_transition
from .config import settings
from .errors import (
    BookingServiceError,
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from .models import SYSTEM_ACTOR, new_id, utcnow
from .permissions import BookingAction, Decision, can_perform
from .schemas import (
    BookingActionResult,
    ClientSnapshot,
    CreateInquiry,
    HostSnapshot,
    ListingRecord,
    ListingSnapshot,
    Pricing,
    ProfileRecord,
    StatusChange,
)
from .store import Store

logger = logging.getLogger("booking_service")

# (event, text) posted to the booking's chat thread when it reaches a status
SYSTEM_MESSAGES = {
    BookingStatus.CONFIRMED: ("confirmed", "Payment received. The booking is confirmed."),
    BookingStatus.ACTIVE: ("started", "The provider has started the service."),
    BookingStatus.COMPLETED: (
        "completed",
        f"The service is complete. You have {settings.REVIEW_WINDOW_DAYS} days to leave a review.",
    ),
    BookingStatus.CANCELED_BY_GUEST: ("canceled", "The client canceled this booking."),
    BookingStatus.CANCELED_BY_HOST: ("canceled", "The provider canceled this booking."),
    BookingStatus.EXPIRED: ("expired", "The request expired without an answer from the provider."),
}
ACCEPTED_MESSAGE = ("accepted", "The provider accepted the booking request.")

Target = Union[BookingStatus, Callable[[models.Booking], BookingStatus]]


def _naive_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)


def _denial(decision: Decision) -> BookingServiceError:
    if decision.code == ErrorCode.UNAUTHORIZED:
        return UnauthorizedError(decision.reason)
    return InvalidTransitionError(decision.reason)


class BookingLifecycle:
    def __init__(self, store: Store, directory=None, clock: Callable[[], datetime.datetime] = utcnow):
        self.store = store
        self.clock = clock
        # Sweeps run without a directory; only create_inquiry needs one.
        # The caller owns it and closes it.
        self.directory = directory

    # --- Creation ---

    def create_inquiry(self, data: CreateInquiry) -> BookingActionResult:
        """
        Creates a booking in INQUIRY, with snapshots of the listing and both
        profiles, and asks the chat service for a conversation thread.
        """
        try:
            if data.client_id == data.host_id:
                raise ValidationError("You cannot book your own listing")
            if self.directory is None:
                raise StoreUnavailableError("The listing service is not configured")

            listing = self.directory.get_listing(data.listing_id)
            if listing is None:
                raise NotFoundError("Listing", data.listing_id)
            if listing.host_id and listing.host_id != data.host_id:
                raise ValidationError("The listing belongs to another provider")

            host = self.directory.get_profile(data.host_id)
            client = self.directory.get_profile(data.client_id)

            booking_id = self.store.run_transaction(
                lambda db: self._insert_inquiry(db, data, listing, host, client)
            )
        except BookingServiceError as e:
            logger.warning(f"Inquiry by {data.client_id} for listing {data.listing_id} rejected: {e.message}")
            return BookingActionResult.failed(e)

        logger.info(f"Booking {booking_id} created as INQUIRY by {data.client_id}")
        return BookingActionResult(success=True, booking_id=booking_id, new_status=BookingStatus.INQUIRY)

    def _insert_inquiry(
        self,
        db: Session,
        data: CreateInquiry,
        listing: ListingRecord,
        host: Optional[ProfileRecord],
        client: Optional[ProfileRecord],
    ) -> str:
        now = self.clock()
        booking = models.Booking(
            id=new_id(),
            client_id=data.client_id,
            host_id=data.host_id,
            listing_id=data.listing_id,
            listing_snapshot=ListingSnapshot(
                title=listing.title,
                service_type=listing.service_type,
                price_at_booking=listing.base_price,
                price_unit=listing.price_unit,
                instant_booking=listing.instant_booking,
            ).model_dump(mode="json"),
            host_snapshot=HostSnapshot(
                display_name=host.display_name if host else "Provider",
                avatar_url=host.avatar_url if host else None,
                rating_at_booking=listing.rating_average,
            ).model_dump(mode="json"),
            client_snapshot=ClientSnapshot(
                display_name=client.display_name if client else "Client",
                avatar_url=client.avatar_url if client else None,
            ).model_dump(mode="json"),
            scheduled_date=_naive_utc(data.scheduled_date),
            estimated_duration=data.estimated_duration,
            service_location=data.service_location.model_dump(mode="json"),
            pricing=Pricing(
                base_amount=listing.base_price,
                total_amount=listing.base_price,
                currency=listing.currency,
            ).model_dump(mode="json"),
            payment_status="pending",
            cancellation_policy=listing.cancellation_policy,
            booking_hash=crud.generate_booking_hash(db, now),
            chat_id=new_id(),
            created_at=now,
            updated_at=now,
        )
        booking.record_status(StatusChange(
            status=BookingStatus.INQUIRY,
            changed_at=now,
            changed_by=data.client_id,
        ))
        db.add(booking)
        crud.request_chat_thread(db, booking)
        return booking.id

    # --- Transitions ---

    def _transition(
        self,
        booking_id: str,
        target: Target,
        actor_id: str,
        action: Optional[BookingAction] = None,
        reason: Optional[str] = None,
        announce: Optional[tuple[str, str]] = None,
        apply: Optional[Callable[[models.Booking, datetime.datetime], None]] = None,
    ) -> BookingActionResult:
        def body(db: Session) -> BookingStatus:
            booking = crud.get_booking(db, booking_id)
            if booking is None:
                raise NotFoundError("Booking", booking_id)

            if action is not None:
                decision = can_perform(actor_id, booking, action)
                if not decision.allowed:
                    raise _denial(decision)

            new_status = target(booking) if callable(target) else BookingStatus(target)
            if not is_valid_transition(booking.status, new_status):
                raise InvalidTransitionError(
                    f"Invalid booking transition: {booking.status.value} -> {new_status.value}"
                )

            now = self.clock()
            booking.record_status(StatusChange(
                status=new_status,
                changed_at=now,
                changed_by=actor_id,
                reason=reason,
            ))
            booking.updated_at = now
            if apply is not None:
                apply(booking, now)

            message = announce or SYSTEM_MESSAGES.get(new_status)
            if message:
                crud.post_system_message(db, booking, *message)
            return new_status

        try:
            new_status = self.store.run_transaction(body)
        except BookingServiceError as e:
            logger.warning(f"Booking {booking_id}: {action.value if action else BookingStatus(target).value} by {actor_id} rejected: {e.message}")
            return BookingActionResult.failed(e, booking_id=booking_id)

        logger.info(f"Booking {booking_id} moved to {new_status.value} by {actor_id}")
        return BookingActionResult(success=True, booking_id=booking_id, new_status=new_status)

    def transition_status(
        self, booking_id: str, target: BookingStatus, actor_id: str, reason: Optional[str] = None
    ) -> BookingActionResult:
        """Generic guarded move: only the transition table is consulted."""
        return self._transition(booking_id, target, actor_id, reason=reason)

    def request_to_book(self, booking_id: str, client_id: str) -> BookingActionResult:
        return self._transition(booking_id, BookingStatus.PENDING_APPROVAL, client_id, action=BookingAction.REQUEST)

    def instant_book(self, booking_id: str, client_id: str) -> BookingActionResult:
        return self._transition(booking_id, BookingStatus.PENDING_PAYMENT, client_id, action=BookingAction.INSTANT_BOOK)

    def approve_booking(self, booking_id: str, host_id: str) -> BookingActionResult:
        return self._transition(
            booking_id,
            BookingStatus.PENDING_PAYMENT,
            host_id,
            action=BookingAction.APPROVE,
            announce=ACCEPTED_MESSAGE,
        )

    def confirm_payment(self, booking_id: str) -> BookingActionResult:
        return self.transition_status(booking_id, BookingStatus.CONFIRMED, SYSTEM_ACTOR)

    def check_in(self, booking_id: str, host_id: str) -> BookingActionResult:
        def stamp(booking, now):
            booking.check_in = now

        return self._transition(booking_id, BookingStatus.ACTIVE, host_id, action=BookingAction.CHECK_IN, apply=stamp)

    def check_out(self, booking_id: str, host_id: str) -> BookingActionResult:
        def stamp(booking, now):
            booking.check_out = now
            booking.review_window_ends_at = now + datetime.timedelta(days=settings.REVIEW_WINDOW_DAYS)

        return self._transition(booking_id, BookingStatus.COMPLETED, host_id, action=BookingAction.CHECK_OUT, apply=stamp)

    def cancel_booking(self, booking_id: str, actor_id: str, reason: Optional[str] = None) -> BookingActionResult:
        def canceled_status(booking):
            if actor_id == booking.client_id:
                return BookingStatus.CANCELED_BY_GUEST
            return BookingStatus.CANCELED_BY_HOST

        return self._transition(booking_id, canceled_status, actor_id, action=BookingAction.CANCEL, reason=reason)

    # --- Reads ---

    def get_booking(self, booking_id: str) -> Optional[models.Booking]:
        db = self.store.session()
        try:
            return crud.get_booking(db, booking_id)
        finally:
            db.close()

    def list_bookings(self, user_id: str, skip: int = 0, limit: int = 100) -> list[models.Booking]:
        db = self.store.session()
        try:
            return crud.get_bookings_by_user(db, user_id, skip=skip, limit=limit)
        finally:
            db.close()
