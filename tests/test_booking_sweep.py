from datetime import timedelta

from conftest import TestingSessionLocal
from slotbook.models.booking_model import Booking, BookingEvent
from slotbook.schemas.booking_schema import BookingStatus
from slotbook.services.booking_crud import booking_crud
from slotbook.services.cancellation_crud import cancellation_crud
from slotbook.utils.timeutils import as_utc, utcnow
from slotbook.workers.expiry_worker import sweep_once


def stored(db, booking):
    return db.get(Booking, booking.id)


def test_confirmed_booking_starts_when_its_time_comes(db, make_booking, provider):
    booking = make_booking(BookingStatus.confirmed, starts_in=timedelta(minutes=-10))
    upcoming = make_booking(BookingStatus.confirmed, starts_in=timedelta(hours=3))

    assert booking_crud.advance_due_bookings(db) == (1, 0)

    db.expire_all()
    assert stored(db, booking).status == "in_progress"
    assert stored(db, upcoming).status == "confirmed"
    events = db.query(BookingEvent).filter(BookingEvent.booking_id == booking.id).all()
    assert [(e.event_type, e.actor_id) for e in events] == [("status_changed", None)]

    policies = cancellation_crud.get_applicable_policies(db, booking.id, provider.id)
    assert "customer_no_show" in [p.reason_key for p in policies]


def test_booking_completes_after_its_slot_ends(db, make_booking):
    now = utcnow()
    running = make_booking(BookingStatus.in_progress, starts_in=timedelta(minutes=-90), now=now)
    still_running = make_booking(BookingStatus.in_progress, starts_in=timedelta(minutes=-30), now=now)

    assert booking_crud.advance_due_bookings(db, now=now) == (0, 1)

    db.expire_all()
    finished = stored(db, running)
    assert finished.status == "completed"
    assert as_utc(finished.completed_at) == now
    assert as_utc(finished.confirmed_at) == now
    assert stored(db, still_running).status == "in_progress"


def test_missed_slot_goes_through_both_steps(db, make_booking):
    booking = make_booking(BookingStatus.confirmed, starts_in=timedelta(hours=-2))
    pending = make_booking(BookingStatus.pending, starts_in=timedelta(hours=-2))

    assert booking_crud.advance_due_bookings(db) == (1, 1)

    db.expire_all()
    assert stored(db, booking).status == "completed"
    assert stored(db, pending).status == "pending"
    transitions = [
        e.payload for e in db.query(BookingEvent).filter(BookingEvent.booking_id == booking.id).all()
    ]
    assert len(transitions) == 2


def test_worker_sweep_runs_every_job(db, make_booking):
    make_booking(BookingStatus.confirmed, starts_in=timedelta(minutes=-5))
    make_booking(BookingStatus.confirmed, starts_in=timedelta(days=1))

    result = sweep_once(TestingSessionLocal)

    assert result == {"expired_reschedules": 0, "started": 1, "completed": 0}
