"""Booking status state machine.

Every status change goes through ``check_transition``; callers never write
``Booking.status`` directly. The table below is the whole lifecycle graph:

    pending     -> confirmed, declined, cancelled, paid
    paid        -> confirmed, cancelled
    confirmed   -> in_progress, cancelled
    in_progress -> completed, cancelled

``declined``, ``cancelled`` and ``completed`` are terminal.
"""
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from slotbook.exceptions import ForbiddenError, InvalidStatus, InvalidTransition
from slotbook.schemas.booking_schema import BookingRole, BookingStatus

TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.pending: frozenset(
        {BookingStatus.confirmed, BookingStatus.declined, BookingStatus.cancelled, BookingStatus.paid}
    ),
    BookingStatus.paid: frozenset({BookingStatus.confirmed, BookingStatus.cancelled}),
    BookingStatus.confirmed: frozenset({BookingStatus.in_progress, BookingStatus.cancelled}),
    BookingStatus.in_progress: frozenset({BookingStatus.completed, BookingStatus.cancelled}),
    BookingStatus.declined: frozenset(),
    BookingStatus.cancelled: frozenset(),
    BookingStatus.completed: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# The single timestamp column stamped when a booking enters each status
TIMESTAMP_FIELDS: Dict[BookingStatus, str] = {
    BookingStatus.confirmed: "confirmed_at",
    BookingStatus.declined: "declined_at",
    BookingStatus.cancelled: "cancelled_at",
    BookingStatus.completed: "completed_at",
}

# Who may request each target through the generic status endpoint.
# None means either party.
ROLE_FOR_TARGET: Dict[BookingStatus, Optional[BookingRole]] = {
    BookingStatus.confirmed: BookingRole.provider,
    BookingStatus.declined: BookingRole.provider,
    BookingStatus.in_progress: BookingRole.provider,
    BookingStatus.completed: BookingRole.customer,
    BookingStatus.paid: BookingRole.customer,
    BookingStatus.cancelled: None,
}


def parse_status(value) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise InvalidStatus(value)


def can_transition(current, target) -> bool:
    return BookingStatus(target) in TRANSITIONS[BookingStatus(current)]


def check_transition(current, target) -> BookingStatus:
    """Return the parsed target status or raise if it is not reachable from ``current``"""
    target_status = parse_status(target)
    current_status = BookingStatus(current)
    if target_status not in TRANSITIONS[current_status]:
        raise InvalidTransition(current_status.value, target_status.value)
    return target_status


def check_actor(target: BookingStatus, role: Optional[BookingRole]) -> None:
    if role is None:
        raise ForbiddenError("Not a party to this booking")
    required = ROLE_FOR_TARGET.get(target)
    if required is not None and required != role:
        raise ForbiddenError(f"Only the {required.value} can move a booking to {target.value}")


def role_of(booking, user_id: str) -> Optional[BookingRole]:
    if booking.provider_id == user_id:
        return BookingRole.provider
    if booking.customer_id == user_id:
        return BookingRole.customer
    return None


def apply_transition(booking, target, now: datetime) -> BookingStatus:
    """Validate and apply a status change in memory, stamping the matching timestamp.

    Nothing is flushed; the caller owns the transaction.
    """
    target_status = check_transition(booking.status, target)
    booking.status = target_status.value
    field = TIMESTAMP_FIELDS.get(target_status)
    if field is not None and getattr(booking, field) is None:
        setattr(booking, field, now)
    return target_status
