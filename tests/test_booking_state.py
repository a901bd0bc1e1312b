import itertools

import pytest

from booking_service.booking_state import (
    BOOKING_TRANSITIONS,
    TERMINAL_STATUSES,
    BookingStatus,
    allowed_targets,
    is_terminal,
    is_valid_transition,
)

S = BookingStatus

EXPECTED_EDGES = {
    (S.INQUIRY, S.PENDING_APPROVAL),
    (S.INQUIRY, S.PENDING_PAYMENT),
    (S.INQUIRY, S.CANCELED_BY_GUEST),
    (S.PENDING_APPROVAL, S.PENDING_PAYMENT),
    (S.PENDING_APPROVAL, S.EXPIRED),
    (S.PENDING_APPROVAL, S.CANCELED_BY_HOST),
    (S.PENDING_APPROVAL, S.CANCELED_BY_GUEST),
    (S.PENDING_PAYMENT, S.CONFIRMED),
    (S.PENDING_PAYMENT, S.CANCELED_BY_GUEST),
    (S.CONFIRMED, S.ACTIVE),
    (S.CONFIRMED, S.CANCELED_BY_GUEST),
    (S.CONFIRMED, S.CANCELED_BY_HOST),
    (S.ACTIVE, S.COMPLETED),
}


@pytest.mark.parametrize("current,target", sorted(EXPECTED_EDGES))
def test_listed_edges_are_valid(current, target):
    assert is_valid_transition(current, target) is True


def test_every_unlisted_pair_is_rejected():
    for current, target in itertools.product(BookingStatus, BookingStatus):
        assert is_valid_transition(current, target) is ((current, target) in EXPECTED_EDGES), (current, target)


def test_table_covers_every_status():
    assert set(BOOKING_TRANSITIONS) == set(BookingStatus)


@pytest.mark.parametrize("terminal", [S.COMPLETED, S.CANCELED_BY_GUEST, S.CANCELED_BY_HOST, S.EXPIRED])
def test_terminal_states_have_no_way_out(terminal):
    assert is_terminal(terminal)
    assert allowed_targets(terminal) == frozenset()
    assert not any(is_valid_transition(terminal, target) for target in BookingStatus)


def test_terminal_set_is_exactly_the_four_end_states():
    assert TERMINAL_STATUSES == {S.COMPLETED, S.CANCELED_BY_GUEST, S.CANCELED_BY_HOST, S.EXPIRED}


def test_plain_strings_are_accepted():
    # Rows and payloads carry the raw value
    assert is_valid_transition("ACTIVE", "COMPLETED")
    assert not is_valid_transition("ACTIVE", "INQUIRY")
