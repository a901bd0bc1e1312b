"""Double-blind reviews.

A review stays hidden from its target until the other party has reviewed
too, at which point both are published in one commit. A review nobody
answers is published on its own by the daily sweep once it is old enough.
Published reviews never change again.
"""

import datetime
import logging
from functools import partial
from typing import Callable, Optional

from sqlalchemy.orm import Session

from . import crud, models
from .booking_state import BookingStatus
from .config import settings
from .errors import (
    AlreadyExistsError,
    BookingServiceError,
    ErrorCode,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    WindowExpiredError,
)
from .models import new_id, utcnow
from .permissions import ALLOWED, Decision
from .schemas import (
    ActionResult,
    ReviewPair,
    ReviewPrompt,
    ReviewRead,
    ReviewSubmitResult,
    ReviewUpdate,
    SubmitReview,
)
from .store import Store

logger = logging.getLogger("booking_service")


def _visible_to(review: Optional[models.Review], viewer_id: str) -> bool:
    return review is not None and (review.published or review.author_id == viewer_id)


class ReviewService:
    def __init__(self, store: Store, clock: Callable[[], datetime.datetime] = utcnow):
        self.store = store
        self.clock = clock

    # --- Submission ---

    def _check_can_submit(self, db: Session, booking_id: str, author_id: str) -> models.Booking:
        booking = crud.get_booking(db, booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        if booking.status != BookingStatus.COMPLETED:
            raise InvalidStateError("Only completed bookings can be reviewed")
        if not booking.is_participant(author_id):
            raise UnauthorizedError("You are not a participant of this booking")
        if booking.review_window_ends_at is not None and self.clock() > booking.review_window_ends_at:
            raise WindowExpiredError(f"The {settings.REVIEW_WINDOW_DAYS}-day review window has closed")
        if crud.get_review_by_author(db, booking_id, author_id) is not None:
            raise AlreadyExistsError()
        return booking

    def can_submit_review(self, booking_id: str, author_id: str) -> Decision:
        db = self.store.session()
        try:
            self._check_can_submit(db, booking_id, author_id)
        except BookingServiceError as e:
            return Decision(False, e.message, e.code)
        finally:
            db.close()
        return ALLOWED

    def submit_review(self, data: SubmitReview) -> ReviewSubmitResult:
        """
        Stores the review unpublished, then tries to reveal the pair.
        """
        def body(db: Session) -> str:
            booking = self._check_can_submit(db, data.booking_id, data.author_id)
            is_client = data.author_id == booking.client_id
            now = self.clock()
            review = models.Review(
                id=new_id(),
                booking_id=booking.id,
                author_id=data.author_id,
                author_role="client" if is_client else "host",
                target_id=booking.host_id if is_client else booking.client_id,
                rating=data.rating,
                category_ratings=(
                    data.category_ratings.model_dump(exclude_none=True) if data.category_ratings else None
                ),
                content=data.content,
                published=False,
                pair_complete=False,
                created_at=now,
                updated_at=now,
            )
            db.add(review)
            return review.id

        try:
            review_id = self.store.run_transaction(body)
        except BookingServiceError as e:
            logger.warning(f"Review by {data.author_id} for booking {data.booking_id} rejected: {e.message}")
            if e.code == ErrorCode.ALREADY_EXISTS:
                # A resubmission after a failed reveal still completes it
                self.check_and_publish_pair(data.booking_id)
            return ReviewSubmitResult.failed(e)

        logger.info(f"Review {review_id} submitted for booking {data.booking_id} (hidden until paired)")
        pair_published = self.check_and_publish_pair(data.booking_id)
        return ReviewSubmitResult(success=True, review_id=review_id, pair_published=pair_published)

    def update_review(self, review_id: str, author_id: str, updates: ReviewUpdate) -> ActionResult:
        def body(db: Session):
            review = crud.get_review(db, review_id)
            if review is None:
                raise NotFoundError("Review", review_id)
            if review.author_id != author_id:
                raise UnauthorizedError("You are not the author of this review")
            if review.published:
                raise InvalidStateError("Published reviews cannot be edited")

            if updates.rating is not None:
                review.rating = updates.rating
            if updates.content is not None:
                review.content = updates.content
            if updates.category_ratings is not None:
                review.category_ratings = updates.category_ratings.model_dump(exclude_none=True)
            review.updated_at = self.clock()

        try:
            self.store.run_transaction(body)
        except BookingServiceError as e:
            return ActionResult.failed(e)
        return ActionResult(success=True)

    # --- Reveal ---

    def _reveal_pair(self, db: Session, booking_id: str, now: datetime.datetime) -> Optional[int]:
        """
        Publishes every unpublished review of a complete client + host pair.

        Returns None when the booking has no complete pair, otherwise the
        number of reviews this call published.
        """
        reviews = crud.get_reviews_for_booking(db, booking_id)
        client_review = next((r for r in reviews if r.author_role == "client"), None)
        host_review = next((r for r in reviews if r.author_role == "host"), None)
        if client_review is None or host_review is None:
            return None

        pending = [r for r in (client_review, host_review) if not r.published]
        for review in pending:
            review.published = True
            review.pair_complete = True
            review.published_at = now
            review.updated_at = now

        if pending:
            crud.request_rating_recompute(db, client_review.target_id, booking_id)
            crud.request_rating_recompute(db, host_review.target_id, booking_id)
        return len(pending)

    def check_and_publish_pair(self, booking_id: str) -> bool:
        """
        Publishes the client and host reviews of a booking together.

        Both rows are written in the same commit, so there is no moment where
        one side is visible and the other is not. Returns True when the pair
        is published (now or earlier).
        """
        try:
            newly_published = self.store.run_transaction(
                lambda db: self._reveal_pair(db, booking_id, self.clock())
            )
        except BookingServiceError as e:
            logger.error(f"Failed to publish review pair for booking {booking_id}: {e.message}")
            return False

        if newly_published:
            logger.info(f"Review pair published for booking {booking_id}")
        return newly_published is not None

    def reveal_pending_pairs(self, now: Optional[datetime.datetime] = None) -> int:
        """
        Finishes reveals that did not commit at submission time.

        Any booking holding a complete pair with a hidden side is published
        here, whatever the age of its reviews. Safe to run repeatedly.
        """
        now = now or self.clock()
        db = self.store.session()
        try:
            booking_ids = crud.get_bookings_with_unpublished_reviews(db)
        finally:
            db.close()

        published = 0
        for booking_id in booking_ids:
            try:
                published += self.store.run_transaction(partial(self._reveal_pair, booking_id=booking_id, now=now)) or 0
            except BookingServiceError as e:
                logger.error(f"Failed to reveal review pair for booking {booking_id}: {e.message}")
                continue

        if published:
            logger.info(f"Revealed {published} reviews from incomplete pair reveals.")
        return published

    def _publish_overdue_review(self, db: Session, review_id: str, now: datetime.datetime) -> int:
        review = crud.get_review(db, review_id)
        if review is None or review.published:
            return 0

        # A partner review turns this into a pair reveal, never a one-sided one
        paired = self._reveal_pair(db, review.booking_id, now)
        if paired is not None:
            return paired

        review.published = True
        review.published_at = now
        review.updated_at = now
        crud.request_rating_recompute(db, review.target_id, review.booking_id)
        return 1

    def publish_expired_reviews(self, now: Optional[datetime.datetime] = None) -> int:
        """
        Publishes every unpublished review older than the fallback period.

        A review whose partner exists is published together with it through
        the pair reveal; a review without one is published alone. Safe to
        run repeatedly.
        """
        now = now or self.clock()
        if not settings.AUTO_PUBLISH_LONE_REVIEWS:
            logger.info("Lone review auto-publish is disabled; skipping review sweep.")
            return 0

        cutoff = now - datetime.timedelta(days=settings.REVIEW_FALLBACK_DAYS)
        db = self.store.session()
        try:
            review_ids = crud.get_overdue_unpublished_reviews(db, cutoff)
        finally:
            db.close()

        if not review_ids:
            logger.info("No overdue unpublished reviews.")
            return 0

        published = 0
        for review_id in review_ids:
            try:
                count = self.store.run_transaction(partial(self._publish_overdue_review, review_id=review_id, now=now))
            except BookingServiceError as e:
                logger.error(f"Failed to publish expired review {review_id}: {e.message}")
                continue
            if count:
                published += count
                logger.info(f"Published expired review: {review_id}")

        logger.info(f"Published {published} reviews for {len(review_ids)} overdue candidates.")
        return published

    # --- Reads ---

    def get_review(self, review_id: str, viewer_id: str) -> Optional[ReviewRead]:
        db = self.store.session()
        try:
            review = crud.get_review(db, review_id)
            return ReviewRead.model_validate(review) if _visible_to(review, viewer_id) else None
        finally:
            db.close()

    def get_review_pair(self, booking_id: str, viewer_id: str) -> ReviewPair:
        """Each side is shown to its author always, to anyone else only once published."""
        db = self.store.session()
        try:
            reviews = crud.get_reviews_for_booking(db, booking_id)
        finally:
            db.close()

        client_review = next((r for r in reviews if r.author_role == "client"), None)
        host_review = next((r for r in reviews if r.author_role == "host"), None)
        if not _visible_to(client_review, viewer_id):
            client_review = None
        if not _visible_to(host_review, viewer_id):
            host_review = None

        return ReviewPair(
            client_review=ReviewRead.model_validate(client_review) if client_review else None,
            host_review=ReviewRead.model_validate(host_review) if host_review else None,
            both_published=bool(
                client_review and host_review and client_review.published and host_review.published
            ),
        )

    def has_other_party_reviewed(self, booking_id: str, user_id: str) -> bool:
        db = self.store.session()
        try:
            booking = crud.get_booking(db, booking_id)
            if booking is None or not booking.is_participant(user_id):
                return False
            other_id = booking.host_id if user_id == booking.client_id else booking.client_id
            return crud.get_review_by_author(db, booking_id, other_id) is not None
        finally:
            db.close()

    def review_prompt(self, booking_id: str, user_id: str) -> Optional[ReviewPrompt]:
        """The nudge shown to a participant: knowing a hidden review waits is the incentive to write one."""
        booking = self._get_booking(booking_id)
        if booking is None or not booking.is_participant(user_id):
            return None
        if booking.status != BookingStatus.COMPLETED:
            return None

        other_label = "provider" if user_id == booking.client_id else "client"
        reviewed = self.has_other_party_reviewed(booking_id, user_id)
        if reviewed:
            message = f"The {other_label} has left you a review. Write yours to read it."
        else:
            message = "How did it go? Share your experience to help others."
        return ReviewPrompt(booking_id=booking_id, other_party_reviewed=reviewed, message=message)

    def _get_booking(self, booking_id: str) -> Optional[models.Booking]:
        db = self.store.session()
        try:
            return crud.get_booking(db, booking_id)
        finally:
            db.close()
