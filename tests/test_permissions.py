from types import SimpleNamespace

import pytest

from booking_service.booking_state import BookingStatus
from booking_service.errors import ErrorCode
from booking_service.permissions import BookingAction, can_perform

CLIENT = "client-1"
HOST = "host-1"
STRANGER = "stranger-1"


def make_booking(status: BookingStatus, instant_booking: bool = False):
    return SimpleNamespace(
        client_id=CLIENT,
        host_id=HOST,
        status=status,
        listing_snapshot={"instant_booking": instant_booking},
    )


@pytest.mark.parametrize("action", list(BookingAction))
def test_non_participants_are_always_refused(action):
    decision = can_perform(STRANGER, make_booking(BookingStatus.CONFIRMED), action)
    assert decision.allowed is False
    assert decision.code == ErrorCode.UNAUTHORIZED
    assert decision.reason


def test_host_can_approve_pending_request():
    assert can_perform(HOST, make_booking(BookingStatus.PENDING_APPROVAL), BookingAction.APPROVE).allowed


def test_client_cannot_approve():
    decision = can_perform(CLIENT, make_booking(BookingStatus.PENDING_APPROVAL), BookingAction.APPROVE)
    assert decision.allowed is False
    assert decision.code == ErrorCode.UNAUTHORIZED


def test_approve_requires_pending_approval():
    decision = can_perform(HOST, make_booking(BookingStatus.INQUIRY), BookingAction.APPROVE)
    assert decision.allowed is False
    assert decision.code == ErrorCode.INVALID_TRANSITION
    assert "approval" in decision.reason


@pytest.mark.parametrize("actor", [CLIENT, HOST])
@pytest.mark.parametrize("status", [
    BookingStatus.INQUIRY,
    BookingStatus.PENDING_APPROVAL,
    BookingStatus.PENDING_PAYMENT,
    BookingStatus.CONFIRMED,
    BookingStatus.ACTIVE,
])
def test_either_party_may_cancel_an_open_booking(actor, status):
    assert can_perform(actor, make_booking(status), BookingAction.CANCEL).allowed


@pytest.mark.parametrize("status", [
    BookingStatus.COMPLETED,
    BookingStatus.CANCELED_BY_GUEST,
    BookingStatus.CANCELED_BY_HOST,
    BookingStatus.EXPIRED,
])
def test_finished_bookings_cannot_be_canceled(status):
    decision = can_perform(CLIENT, make_booking(status), BookingAction.CANCEL)
    assert decision.allowed is False
    assert decision.code == ErrorCode.INVALID_TRANSITION


def test_check_in_only_by_host_on_confirmed():
    assert can_perform(HOST, make_booking(BookingStatus.CONFIRMED), BookingAction.CHECK_IN).allowed
    assert can_perform(CLIENT, make_booking(BookingStatus.CONFIRMED), BookingAction.CHECK_IN).code == ErrorCode.UNAUTHORIZED
    assert can_perform(HOST, make_booking(BookingStatus.PENDING_PAYMENT), BookingAction.CHECK_IN).code == ErrorCode.INVALID_TRANSITION


def test_check_out_only_by_host_on_active():
    assert can_perform(HOST, make_booking(BookingStatus.ACTIVE), BookingAction.CHECK_OUT).allowed
    assert can_perform(CLIENT, make_booking(BookingStatus.ACTIVE), BookingAction.CHECK_OUT).code == ErrorCode.UNAUTHORIZED
    assert can_perform(HOST, make_booking(BookingStatus.CONFIRMED), BookingAction.CHECK_OUT).code == ErrorCode.INVALID_TRANSITION


def test_only_the_client_requests_an_inquiry():
    assert can_perform(CLIENT, make_booking(BookingStatus.INQUIRY), BookingAction.REQUEST).allowed
    assert can_perform(HOST, make_booking(BookingStatus.INQUIRY), BookingAction.REQUEST).code == ErrorCode.UNAUTHORIZED
    assert can_perform(CLIENT, make_booking(BookingStatus.CONFIRMED), BookingAction.REQUEST).code == ErrorCode.INVALID_TRANSITION


def test_instant_book_needs_a_listing_that_allows_it():
    decision = can_perform(CLIENT, make_booking(BookingStatus.INQUIRY), BookingAction.INSTANT_BOOK)
    assert decision.allowed is False
    assert decision.code == ErrorCode.INVALID_TRANSITION

    assert can_perform(CLIENT, make_booking(BookingStatus.INQUIRY, instant_booking=True), BookingAction.INSTANT_BOOK).allowed
