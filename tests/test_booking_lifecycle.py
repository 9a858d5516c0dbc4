from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from slotbook.exceptions import ForbiddenError, InvalidStatus, InvalidTransition
from slotbook.schemas.booking_schema import BookingRole, BookingStatus
from slotbook.services import booking_lifecycle


def blank_booking(status="pending"):
    return SimpleNamespace(
        status=status,
        confirmed_at=None,
        declined_at=None,
        cancelled_at=None,
        completed_at=None,
    )


@pytest.mark.parametrize(
    "current, target",
    [
        ("pending", "confirmed"),
        ("pending", "declined"),
        ("pending", "cancelled"),
        ("pending", "paid"),
        ("paid", "confirmed"),
        ("paid", "cancelled"),
        ("confirmed", "in_progress"),
        ("confirmed", "cancelled"),
        ("in_progress", "completed"),
        ("in_progress", "cancelled"),
    ],
)
def test_allowed_transitions(current, target):
    assert booking_lifecycle.can_transition(current, target)
    assert booking_lifecycle.check_transition(current, target) == BookingStatus(target)


@pytest.mark.parametrize("terminal", ["declined", "cancelled", "completed"])
def test_terminal_statuses_have_no_exits(terminal):
    assert BookingStatus(terminal) in booking_lifecycle.TERMINAL_STATUSES
    for target in BookingStatus:
        assert not booking_lifecycle.can_transition(terminal, target)


def test_completed_cannot_go_back_to_pending():
    with pytest.raises(InvalidTransition) as exc:
        booking_lifecycle.check_transition("completed", "pending")
    assert exc.value.status_code == 409
    assert exc.value.detail == "Cannot transition from completed to pending"


def test_confirmed_cannot_skip_to_completed():
    with pytest.raises(InvalidTransition):
        booking_lifecycle.check_transition("confirmed", "completed")


def test_unknown_status_is_rejected():
    with pytest.raises(InvalidStatus) as exc:
        booking_lifecycle.parse_status("archived")
    assert exc.value.status_code == 400


def test_apply_transition_stamps_only_the_matching_timestamp():
    booking = blank_booking()
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    booking_lifecycle.apply_transition(booking, "confirmed", now)

    assert booking.status == "confirmed"
    assert booking.confirmed_at == now
    assert booking.declined_at is None
    assert booking.cancelled_at is None
    assert booking.completed_at is None


def test_apply_transition_keeps_earlier_timestamps():
    booking = blank_booking()
    first = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    later = datetime(2026, 1, 2, 12, 0, tzinfo=timezone.utc)

    booking_lifecycle.apply_transition(booking, "confirmed", first)
    booking_lifecycle.apply_transition(booking, "in_progress", later)
    booking_lifecycle.apply_transition(booking, "completed", later)

    assert booking.confirmed_at == first
    assert booking.completed_at == later
    assert booking.cancelled_at is None


def test_failed_transition_leaves_booking_untouched():
    booking = blank_booking("completed")
    with pytest.raises(InvalidTransition):
        booking_lifecycle.apply_transition(booking, "pending", datetime.now(timezone.utc))
    assert booking.status == "completed"


def test_role_rules():
    booking_lifecycle.check_actor(BookingStatus.confirmed, BookingRole.provider)
    booking_lifecycle.check_actor(BookingStatus.completed, BookingRole.customer)
    booking_lifecycle.check_actor(BookingStatus.cancelled, BookingRole.customer)
    booking_lifecycle.check_actor(BookingStatus.cancelled, BookingRole.provider)

    with pytest.raises(ForbiddenError):
        booking_lifecycle.check_actor(BookingStatus.confirmed, BookingRole.customer)
    with pytest.raises(ForbiddenError):
        booking_lifecycle.check_actor(BookingStatus.completed, BookingRole.provider)
    with pytest.raises(ForbiddenError):
        booking_lifecycle.check_actor(BookingStatus.cancelled, None)


def test_role_of():
    booking = SimpleNamespace(provider_id="p", customer_id="c")
    assert booking_lifecycle.role_of(booking, "p") == BookingRole.provider
    assert booking_lifecycle.role_of(booking, "c") == BookingRole.customer
    assert booking_lifecycle.role_of(booking, "x") is None
