"""Booking state machine."""

import enum


class BookingStatus(str, enum.Enum):
    INQUIRY = "INQUIRY"
    PENDING_APPROVAL = "PENDING_APPROVAL"  # waiting for the host, expires after 24h
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"  # between check-in and check-out
    COMPLETED = "COMPLETED"  # opens the review window
    CANCELED_BY_GUEST = "CANCELED_BY_GUEST"
    CANCELED_BY_HOST = "CANCELED_BY_HOST"
    EXPIRED = "EXPIRED"


BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.INQUIRY: frozenset({
        BookingStatus.PENDING_APPROVAL,
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.CANCELED_BY_GUEST,
    }),
    BookingStatus.PENDING_APPROVAL: frozenset({
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.EXPIRED,
        BookingStatus.CANCELED_BY_HOST,
        BookingStatus.CANCELED_BY_GUEST,
    }),
    BookingStatus.PENDING_PAYMENT: frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELED_BY_GUEST,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.ACTIVE,
        BookingStatus.CANCELED_BY_GUEST,
        BookingStatus.CANCELED_BY_HOST,
    }),
    BookingStatus.ACTIVE: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELED_BY_GUEST: frozenset(),
    BookingStatus.CANCELED_BY_HOST: frozenset(),
    BookingStatus.EXPIRED: frozenset(),
}

_missing = set(BookingStatus) - set(BOOKING_TRANSITIONS)
if _missing:
    raise RuntimeError(f"Booking transition table has no entry for: {sorted(s.value for s in _missing)}")

TERMINAL_STATUSES = frozenset(s for s, targets in BOOKING_TRANSITIONS.items() if not targets)


def is_valid_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return BookingStatus(target) in BOOKING_TRANSITIONS[BookingStatus(current)]


def is_terminal(current: BookingStatus) -> bool:
    return BookingStatus(current) in TERMINAL_STATUSES


def allowed_targets(current: BookingStatus) -> frozenset[BookingStatus]:
    return BOOKING_TRANSITIONS[BookingStatus(current)]
