"""Who may do what to a booking, given its current status."""

import enum
from typing import NamedTuple, Optional

from .booking_state import BookingStatus, is_terminal
from .errors import ErrorCode


class BookingAction(str, enum.Enum):
    REQUEST = "request"
    INSTANT_BOOK = "instant_book"
    APPROVE = "approve"
    CANCEL = "cancel"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"


class Decision(NamedTuple):
    allowed: bool
    reason: Optional[str] = None
    code: Optional[ErrorCode] = None


ALLOWED = Decision(True)


def _deny_role(reason: str) -> Decision:
    return Decision(False, reason, ErrorCode.UNAUTHORIZED)


def _deny_status(reason: str) -> Decision:
    return Decision(False, reason, ErrorCode.INVALID_TRANSITION)


def can_perform(actor_id: str, booking, action: BookingAction) -> Decision:
    """Check role and status preconditions of `action` for `actor_id`.

    `booking` is anything with ``client_id``, ``host_id``, ``status`` and
    ``listing_snapshot`` attributes. A denial always carries a reason.
    """
    is_client = actor_id == booking.client_id
    is_host = actor_id == booking.host_id
    current = BookingStatus(booking.status)

    if not is_client and not is_host:
        return _deny_role("You are not a participant of this booking")

    if action in (BookingAction.REQUEST, BookingAction.INSTANT_BOOK):
        if not is_client:
            return _deny_role("Only the client can book")
        if current != BookingStatus.INQUIRY:
            return _deny_status("Only an inquiry can be turned into a booking")
        if action == BookingAction.INSTANT_BOOK and not (booking.listing_snapshot or {}).get("instant_booking"):
            return _deny_status("This listing does not allow instant booking")
        return ALLOWED

    if action == BookingAction.APPROVE:
        if not is_host:
            return _deny_role("Only the provider can approve")
        if current != BookingStatus.PENDING_APPROVAL:
            return _deny_status("The booking is not waiting for approval")
        return ALLOWED

    if action == BookingAction.CANCEL:
        if is_terminal(current):
            return _deny_status("A finished booking cannot be canceled")
        return ALLOWED

    if action == BookingAction.CHECK_IN:
        if not is_host:
            return _deny_role("Only the provider can start the service")
        if current != BookingStatus.CONFIRMED:
            return _deny_status("The booking is not confirmed")
        return ALLOWED

    if action == BookingAction.CHECK_OUT:
        if not is_host:
            return _deny_role("Only the provider can finish the service")
        if current != BookingStatus.ACTIVE:
            return _deny_status("The service is not in progress")
        return ALLOWED

    return _deny_status(f"Unknown action: {action}")
