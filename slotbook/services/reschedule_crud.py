from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional
from slotbook.config import RESCHEDULE_REQUEST_TTL_HOURS, VISITOR_RESCHEDULE_LIMIT
from slotbook.exceptions import (
    BookingNotFound,
    ConflictError,
    DuplicatePendingReschedule,
    ForbiddenError,
    InternalError,
    InvalidReschedule,
    RescheduleRequestNotFound,
)
from slotbook.models.booking_model import Booking
from slotbook.models.reschedule_model import RescheduleRequest
from slotbook.schemas.booking_schema import BookingRole, BookingStatus
from slotbook.schemas.reschedule_schema import RescheduleCreate, RescheduleStatus
from slotbook.services import booking_lifecycle
from slotbook.services.booking_crud import booking_crud
from slotbook.utils.timeutils import as_utc, utcnow
from slotbook.logger import get_logger

logger = get_logger(__name__)

RESCHEDULABLE_STATUSES = {BookingStatus.pending.value, BookingStatus.paid.value, BookingStatus.confirmed.value}
REQUESTER_ROLES = {BookingRole.provider: "host", BookingRole.customer: "visitor"}


class RescheduleCRUD:
    @staticmethod
    def _pending_for_booking(db: Session, booking_id: str) -> Optional[RescheduleRequest]:
        return (
            db.query(RescheduleRequest)
            .filter(
                RescheduleRequest.booking_id == booking_id,
                RescheduleRequest.status == RescheduleStatus.pending.value,
            )
            .first()
        )

    @staticmethod
    def _expire_if_overdue(db: Session, request: RescheduleRequest, now: datetime) -> bool:
        if request.status == RescheduleStatus.pending.value and as_utc(request.expires_at) <= now:
            request.status = RescheduleStatus.expired.value
            db.commit()
            logger.info(f"Reschedule request {request.id} expired")
            return True
        return False

    @staticmethod
    def create_request(
            db: Session,
            booking_id: str,
            request: RescheduleCreate,
            user_id: str,
            now: Optional[datetime] = None,
    ) -> RescheduleRequest:
        """Either party proposes a new start time; the other party resolves it"""
        now = now or utcnow()
        booking = booking_crud.get_booking_by_id(db, booking_id)
        if not booking:
            raise BookingNotFound()

        role = booking_lifecycle.role_of(booking, user_id)
        if role is None:
            raise ForbiddenError("Not authorized to reschedule this booking")

        if booking.status not in RESCHEDULABLE_STATUSES:
            raise ConflictError(f"Cannot reschedule a booking that is {booking.status}")

        proposed = as_utc(request.proposed_scheduled_at)
        if proposed <= now:
            raise InvalidReschedule("Proposed time must be in the future")
        if proposed == as_utc(booking.scheduled_at):
            raise InvalidReschedule("Proposed time matches the current schedule")

        if role == BookingRole.customer and booking.visitor_reschedule_count >= VISITOR_RESCHEDULE_LIMIT:
            raise ConflictError("Visitors can only reschedule a booking once")

        existing = RescheduleCRUD._pending_for_booking(db, booking.id)
        if existing and not RescheduleCRUD._expire_if_overdue(db, existing, now):
            raise DuplicatePendingReschedule()

        try:
            db_request = RescheduleRequest(
                booking_id=booking.id,
                requester_id=user_id,
                requester_role=REQUESTER_ROLES[role],
                proposed_scheduled_at=proposed,
                proposed_duration_minutes=request.proposed_duration_minutes,
                reason=request.reason,
                status=RescheduleStatus.pending.value,
                created_at=now,
                expires_at=now + timedelta(hours=RESCHEDULE_REQUEST_TTL_HOURS),
            )
            db.add(db_request)
            db.commit()
            db.refresh(db_request)
            logger.info(f"Reschedule request {db_request.id} created for booking {booking.id} by {role.value}")
            return db_request

        except IntegrityError:
            # Lost a race with another request for the same booking
            db.rollback()
            raise DuplicatePendingReschedule()
        except Exception as e:
            db.rollback()
            logger.error(f"Error creating reschedule request for booking {booking_id}: {str(e)}")
            raise InternalError("Error occurred while creating reschedule request")

    @staticmethod
    def get_requests_for_booking(db: Session, booking_id: str, user_id: str) -> List[RescheduleRequest]:
        booking_crud.get_booking_for_party(db, booking_id, user_id)
        return (
            db.query(RescheduleRequest)
            .filter(RescheduleRequest.booking_id == str(booking_id))
            .order_by(RescheduleRequest.created_at.desc())
            .all()
        )

    @staticmethod
    def _load_pending(db: Session, request_id: str, now: datetime) -> RescheduleRequest:
        db_request = db.query(RescheduleRequest).filter(RescheduleRequest.id == str(request_id)).first()
        if not db_request:
            raise RescheduleRequestNotFound()
        if RescheduleCRUD._expire_if_overdue(db, db_request, now):
            raise ConflictError("Reschedule request has expired")
        if db_request.status != RescheduleStatus.pending.value:
            raise ConflictError(f"Reschedule request is already {db_request.status}")
        return db_request

    @staticmethod
    def respond(
            db: Session,
            request_id: str,
            approve: bool,
            user_id: str,
            response_notes: Optional[str] = None,
            now: Optional[datetime] = None,
    ) -> RescheduleRequest:
        """The party that did not ask approves or rejects; approval moves the booking"""
        now = now or utcnow()
        db_request = RescheduleCRUD._load_pending(db, request_id, now)
        booking: Booking = db_request.booking

        role = booking_lifecycle.role_of(booking, user_id)
        if role is None or user_id == db_request.requester_id:
            raise ForbiddenError("Only the other party can respond to this reschedule request")

        if approve and booking.status not in RESCHEDULABLE_STATUSES:
            raise ConflictError(f"Cannot reschedule a booking that is {booking.status}")
        if approve and as_utc(db_request.proposed_scheduled_at) <= now:
            raise InvalidReschedule("Proposed time is no longer in the future")

        try:
            db_request.status = (RescheduleStatus.approved if approve else RescheduleStatus.rejected).value
            db_request.responder_id = user_id
            db_request.responded_at = now
            db_request.response_notes = response_notes

            if approve:
                previous = as_utc(booking.scheduled_at)
                if booking.original_scheduled_at is None:
                    booking.original_scheduled_at = previous
                booking.scheduled_at = as_utc(db_request.proposed_scheduled_at)
                if db_request.proposed_duration_minutes:
                    booking.duration_minutes = db_request.proposed_duration_minutes
                booking.last_rescheduled_at = now
                booking.rescheduled_by = db_request.requester_id
                if db_request.requester_role == "visitor":
                    booking.visitor_reschedule_count = (booking.visitor_reschedule_count or 0) + 1
                booking_crud.record_event(
                    db,
                    booking,
                    "rescheduled",
                    user_id,
                    {
                        "request_id": db_request.id,
                        "from": previous.isoformat(),
                        "to": booking.scheduled_at.isoformat(),
                    },
                )

            db.commit()
            db.refresh(db_request)
            logger.info(f"Reschedule request {db_request.id} {db_request.status} by {role.value}")

        except Exception as e:
            db.rollback()
            logger.error(f"Error responding to reschedule request {request_id}: {str(e)}")
            raise InternalError("Error occurred while responding to reschedule request")

        if approve:
            booking_crud.notify_parties(booking, "booking_updated")
        return db_request

    @staticmethod
    def withdraw(db: Session, request_id: str, user_id: str, now: Optional[datetime] = None) -> RescheduleRequest:
        now = now or utcnow()
        db_request = RescheduleCRUD._load_pending(db, request_id, now)
        if db_request.requester_id != user_id:
            raise ForbiddenError("Only the requester can withdraw this reschedule request")

        try:
            db_request.status = RescheduleStatus.withdrawn.value
            db_request.responded_at = now
            db.commit()
            db.refresh(db_request)
            logger.info(f"Reschedule request {db_request.id} withdrawn")
            return db_request

        except Exception as e:
            db.rollback()
            logger.error(f"Error withdrawing reschedule request {request_id}: {str(e)}")
            raise InternalError("Error occurred while withdrawing reschedule request")

    @staticmethod
    def expire_overdue(db: Session, now: Optional[datetime] = None) -> int:
        """Mark every pending request past its expiry as expired"""
        now = now or utcnow()
        try:
            expired_count = (
                db.query(RescheduleRequest)
                .filter(
                    RescheduleRequest.status == RescheduleStatus.pending.value,
                    RescheduleRequest.expires_at <= now,
                )
                .update({RescheduleRequest.status: RescheduleStatus.expired.value}, synchronize_session=False)
            )
            db.commit()

            if expired_count > 0:
                logger.info(f"Expired {expired_count} reschedule request(s)")

            return expired_count

        except Exception as e:
            db.rollback()
            logger.error(f"Error expiring reschedule requests: {str(e)}")
            raise


reschedule_crud = RescheduleCRUD()
