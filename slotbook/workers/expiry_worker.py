import asyncio

from fastapi.concurrency import run_in_threadpool

from slotbook.config import EXPIRY_SWEEP_INTERVAL_SECONDS
from slotbook.database import SessionLocal
from slotbook.services.booking_crud import booking_crud
from slotbook.services.reschedule_crud import reschedule_crud
from slotbook.logger import get_logger

logger = get_logger(__name__)


def sweep_once(session_factory=SessionLocal) -> dict:
    """Expire stale reschedule requests, then move bookings along by the clock"""
    db = session_factory()
    try:
        expired = reschedule_crud.expire_overdue(db)
        started, completed = booking_crud.advance_due_bookings(db)
        return {"expired_reschedules": expired, "started": started, "completed": completed}
    finally:
        db.close()


async def expiry_loop(stop_event: asyncio.Event, interval: float = EXPIRY_SWEEP_INTERVAL_SECONDS,
                      session_factory=SessionLocal):
    while not stop_event.is_set():
        try:
            await run_in_threadpool(sweep_once, session_factory)
        except Exception as e:
            logger.error(f"Scheduled sweep failed: {str(e)}")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
