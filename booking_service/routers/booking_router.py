from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from .. import schemas
from ..lifecycle import BookingLifecycle
from .dependencies import (
    CurrentUser,
    get_lifecycle,
    raise_for_result,
    read_limiter,
    write_limiter,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _get_participant_booking(lifecycle: BookingLifecycle, booking_id: str, user_id: str):
    booking = lifecycle.get_booking(booking_id)
    # Non-participants get the same answer as for a missing booking
    if booking is None or not booking.is_participant(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


@router.post("/", response_model=schemas.BookingRead, status_code=status.HTTP_201_CREATED)
def create_booking(
        booking: schemas.BookingCreate,
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(write_limiter)
):
    """
    Send an inquiry to a provider. The authenticated user is the client.
    """
    result = raise_for_result(lifecycle.create_inquiry(
        schemas.CreateInquiry(client_id=user_id, **booking.model_dump())
    ))
    return lifecycle.get_booking(result.booking_id)


@router.get("/", response_model=List[schemas.BookingRead])
def read_user_bookings(
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        skip: int = 0,
        limit: int = 100,
        limit2: None = Depends(read_limiter)
):
    """
    Get all bookings where the authenticated user is the client or the provider.
    """
    return lifecycle.list_bookings(user_id, skip=skip, limit=limit)


@router.get("/{booking_id}", response_model=schemas.BookingRead)
def read_booking(
        booking_id: str,
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(read_limiter)
):
    return _get_participant_booking(lifecycle, booking_id, user_id)


@router.post("/{booking_id}/request", response_model=schemas.BookingActionResult)
def request_to_book(
        booking_id: str,
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(write_limiter)
):
    """Ask the provider to accept the booking."""
    return raise_for_result(lifecycle.request_to_book(booking_id, user_id))


@router.post("/{booking_id}/instant-book", response_model=schemas.BookingActionResult)
def instant_book(
        booking_id: str,
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(write_limiter)
):
    """Skip provider approval on listings that allow it."""
    return raise_for_result(lifecycle.instant_book(booking_id, user_id))


@router.post("/{booking_id}/approve", response_model=schemas.BookingActionResult)
def approve_booking(
        booking_id: str,
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(write_limiter)
):
    return raise_for_result(lifecycle.approve_booking(booking_id, user_id))


@router.post("/{booking_id}/confirm-payment", response_model=schemas.BookingActionResult)
def confirm_payment(
        booking_id: str,
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(write_limiter)
):
    """
    Marks the payment as received. Only the paying client may call this;
    the history records the change as made by the system.
    """
    booking = _get_participant_booking(lifecycle, booking_id, user_id)
    if user_id != booking.client_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the client can confirm payment")
    return raise_for_result(lifecycle.confirm_payment(booking_id))


@router.post("/{booking_id}/check-in", response_model=schemas.BookingActionResult)
def check_in(
        booking_id: str,
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(write_limiter)
):
    return raise_for_result(lifecycle.check_in(booking_id, user_id))


@router.post("/{booking_id}/check-out", response_model=schemas.BookingActionResult)
def check_out(
        booking_id: str,
        user_id: CurrentUser,
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(write_limiter)
):
    return raise_for_result(lifecycle.check_out(booking_id, user_id))


@router.post("/{booking_id}/cancel", response_model=schemas.BookingActionResult)
def cancel_booking(
        booking_id: str,
        user_id: CurrentUser,
        body: schemas.BookingCancel = schemas.BookingCancel(),
        lifecycle: BookingLifecycle = Depends(get_lifecycle),
        limit: None = Depends(write_limiter)
):
    return raise_for_result(lifecycle.cancel_booking(booking_id, user_id, reason=body.reason))
