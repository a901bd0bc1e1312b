import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from . import crud
from .booking_state import BookingStatus
from .config import settings
from .errors import ErrorCode
from .lifecycle import BookingLifecycle
from .models import SYSTEM_ACTOR, utcnow
from .reviews import ReviewService
from .store import Store

# Get the logger
logger = logging.getLogger("booking_service")  # Use the main service logger


def expire_pending_bookings(lifecycle: BookingLifecycle, now: Optional[datetime] = None) -> int:
    """
    Moves bookings that have waited too long for the host to EXPIRED.

    Each booking goes through the normal guarded transition, one transaction
    per booking, so a booking the host approved (or anyone canceled) since
    the query ran is simply skipped. Running it twice is harmless.
    """
    now = now or lifecycle.clock()
    cutoff = now - timedelta(hours=settings.APPROVAL_TIMEOUT_HOURS)

    db = lifecycle.store.session()
    try:
        stale_ids = crud.get_stale_pending_bookings(db, cutoff)
    finally:
        db.close()

    if not stale_ids:
        logger.info("No pending bookings past the approval timeout.")
        return 0

    logger.info(f"Found {len(stale_ids)} pending bookings created before {cutoff}.")

    expired = 0
    for booking_id in stale_ids:
        result = lifecycle.transition_status(
            booking_id,
            BookingStatus.EXPIRED,
            SYSTEM_ACTOR,
            reason=f"No answer from the provider within {settings.APPROVAL_TIMEOUT_HOURS}h",
        )
        if result.success:
            expired += 1
        elif result.error == ErrorCode.INVALID_TRANSITION:
            logger.info(f"Booking {booking_id} already left PENDING_APPROVAL. Skipping.")
        else:
            logger.error(f"Failed to expire booking {booking_id}: {result.message}")

    logger.info(f"Expired {expired} bookings.")
    return expired


@dataclass
class ScheduledJob:
    name: str
    interval: timedelta
    run: Callable[[datetime], int]
    next_run_at: Optional[datetime] = None


class Scheduler:
    """
    Runs each job when it is due for the clock value it is given.

    Holds no clock or loop of its own, so tests can drive it with fixed times.
    """

    def __init__(self, jobs: list[ScheduledJob]):
        self.jobs = jobs

    def run_pending(self, now: datetime) -> dict[str, int]:
        results = {}
        for job in self.jobs:
            if job.next_run_at is not None and now < job.next_run_at:
                continue
            try:
                results[job.name] = job.run(now)
            except Exception as e:
                logger.error(f"Scheduled job {job.name} failed: {e}")
            job.next_run_at = now + job.interval
        return results


def build_scheduler(lifecycle: BookingLifecycle, reviews: ReviewService) -> Scheduler:
    return Scheduler([
        ScheduledJob(
            name="expire_pending_bookings",
            interval=timedelta(seconds=settings.EXPIRY_SWEEP_INTERVAL_SECONDS),
            run=lambda now: expire_pending_bookings(lifecycle, now),
        ),
        ScheduledJob(
            name="reveal_pending_pairs",
            interval=timedelta(seconds=settings.PAIR_REVEAL_SWEEP_INTERVAL_SECONDS),
            run=reviews.reveal_pending_pairs,
        ),
        ScheduledJob(
            name="publish_expired_reviews",
            interval=timedelta(seconds=settings.REVIEW_SWEEP_INTERVAL_SECONDS),
            run=reviews.publish_expired_reviews,
        ),
    ])


async def run_booking_scheduler(scheduler: Optional[Scheduler] = None, poll_interval: Optional[int] = None):
    """
    Main background loop for the scheduler.
    """
    if scheduler is None:
        store = Store()
        scheduler = build_scheduler(BookingLifecycle(store), ReviewService(store))
    poll_interval = poll_interval or settings.SCHEDULER_POLL_SECONDS

    while True:
        logger.info("Scheduler waking up to run due sweeps...")
        try:
            scheduler.run_pending(utcnow())
        except Exception as e:
            logger.error(f"Error in booking scheduler loop: {e}")

        # Wait for the next poll interval
        await asyncio.sleep(poll_interval)
