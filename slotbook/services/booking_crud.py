import json
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from slotbook.config import PLATFORM_FEE_RATE
from slotbook.exceptions import (
    BookingNotFound,
    ConflictError,
    ForbiddenError,
    InternalError,
    ServiceNotFound,
    ValidationError,
)
from slotbook.models.booking_model import Booking, BookingEvent
from slotbook.models.service_model import Service
from slotbook.realtime.hub import publish_safely, user_channel
from slotbook.schemas.booking_schema import BookingCreate, BookingRole, BookingStatus, BookingWithDetails
from slotbook.services import booking_lifecycle
from slotbook.utils.money import percentage_of, to_cents
from slotbook.utils.timeutils import as_utc, utcnow
from slotbook.logger import get_logger

logger = get_logger(__name__)


class BookingCRUD:
    @staticmethod
    def create_booking(db: Session, booking: BookingCreate, customer_id: str) -> Booking:
        """Create a booking at checkout; it starts paid when a payment reference is supplied"""
        service = (
            db.query(Service)
            .filter(Service.id == booking.service_id, Service.is_active == True)
            .first()
        )
        if not service:
            raise ServiceNotFound()

        if service.owner_id == customer_id:
            raise ValidationError("You cannot book your own service")

        price = to_cents(service.price)
        initial_status = BookingStatus.paid if booking.payment_reference else BookingStatus.pending

        try:
            db_booking = Booking(
                service_id=service.id,
                customer_id=customer_id,
                provider_id=service.owner_id,
                status=initial_status.value,
                scheduled_at=as_utc(booking.scheduled_at),
                duration_minutes=service.duration_minutes,
                total_price=price,
                service_fee=percentage_of(price, Decimal(PLATFORM_FEE_RATE) * 100),
                payment_reference=booking.payment_reference,
                location=booking.location if booking.location is not None else service.location,
                is_online=booking.is_online if booking.is_online is not None else service.is_online,
                meeting_platform=booking.meeting_platform,
                meeting_link=booking.meeting_link,
                customer_notes=booking.customer_notes,
            )
            db.add(db_booking)
            db.commit()
            db.refresh(db_booking)
            logger.info(f"Booking created: {db_booking.id} ({db_booking.status}) by user {customer_id}")

        except Exception as e:
            db.rollback()
            logger.error(f"Error creating booking: {str(e)}")
            raise InternalError("Error occurred while creating booking")

        BookingCRUD.notify_parties(db_booking, "new_booking")
        return db_booking

    @staticmethod
    def get_booking_by_id(db: Session, booking_id: str) -> Optional[Booking]:
        """Get booking by ID"""
        return db.query(Booking).filter(Booking.id == str(booking_id)).first()

    @staticmethod
    def get_booking_for_party(db: Session, booking_id: str, user_id: str, is_admin: bool = False) -> Booking:
        """Fetch a booking the user takes part in (admins see everything)"""
        booking = BookingCRUD.get_booking_by_id(db, booking_id)
        if not booking:
            raise BookingNotFound()
        if not is_admin and booking_lifecycle.role_of(booking, user_id) is None:
            raise ForbiddenError("Not authorized to access this booking")
        return booking

    @staticmethod
    def get_bookings(
            db: Session,
            user_id: str,
            role: BookingRole = BookingRole.customer,
            status: Optional[BookingStatus] = None,
            skip: int = 0,
            limit: int = 100,
    ) -> List[Booking]:
        """Visitor booking list (role=customer) or host order list (role=provider)"""
        query = db.query(Booking)
        if role == BookingRole.provider:
            query = query.filter(Booking.provider_id == user_id)
        else:
            query = query.filter(Booking.customer_id == user_id)

        if status:
            query = query.filter(Booking.status == BookingStatus(status).value)

        return query.order_by(Booking.scheduled_at.desc()).offset(skip).limit(limit).all()

    @staticmethod
    def record_event(db: Session, booking: Booking, event_type: str, actor_id: Optional[str], payload: dict):
        db.add(
            BookingEvent(
                booking_id=booking.id,
                event_type=event_type,
                actor_id=actor_id,
                payload=json.dumps(payload, default=str),
            )
        )

    @staticmethod
    def transition_status(
            db: Session,
            booking_id: str,
            new_status: str,
            user_id: str,
            now: Optional[datetime] = None,
    ) -> Booking:
        """Move a booking along the lifecycle graph on behalf of one of its parties"""
        target = booking_lifecycle.parse_status(new_status)

        booking = BookingCRUD.get_booking_by_id(db, booking_id)
        if not booking:
            raise BookingNotFound()

        role = booking_lifecycle.role_of(booking, user_id)
        if role is None:
            raise ForbiddenError("Not authorized to access this booking")
        booking_lifecycle.check_transition(booking.status, target)
        booking_lifecycle.check_actor(target, role)

        # Money has changed hands past pending; those cancellations carry a refund breakdown
        if target == BookingStatus.cancelled and booking.status != BookingStatus.pending.value:
            raise ConflictError(
                "Paid bookings must be cancelled through a cancellation policy or rejected by the provider"
            )

        previous = booking.status
        now = now or utcnow()
        try:
            booking_lifecycle.apply_transition(booking, target, now)
            if target == BookingStatus.cancelled:
                booking.cancelled_by = user_id
            BookingCRUD.record_event(
                db, booking, "status_changed", user_id, {"from": previous, "to": target.value}
            )
            db.commit()
            db.refresh(booking)
            logger.info(f"Booking {booking.id} status changed from {previous} to {target.value}")

        except Exception as e:
            db.rollback()
            logger.error(f"Error updating booking {booking_id} status: {str(e)}")
            raise InternalError("Error occurred while updating booking status")

        BookingCRUD.notify_parties(booking, "booking_updated")
        return booking

    @staticmethod
    def delete_booking(db: Session, booking_id: str) -> BookingWithDetails:
        """Physically remove a booking (admin path, distinct from cancellation)"""
        db_booking = BookingCRUD.get_booking_by_id(db, booking_id)
        if not db_booking:
            raise BookingNotFound()

        snapshot = BookingWithDetails.model_validate(db_booking)
        try:
            db.delete(db_booking)
            db.commit()
            logger.info(f"Booking deleted: {booking_id}")
            return snapshot

        except Exception as e:
            db.rollback()
            logger.error(f"Error deleting booking {booking_id}: {str(e)}")
            raise InternalError("Error occurred while deleting booking")

    @staticmethod
    def _advance(db: Session, bookings: List[Booking], target: BookingStatus, now: datetime) -> List[Booking]:
        try:
            for booking in bookings:
                previous = booking.status
                booking_lifecycle.apply_transition(booking, target, now)
                BookingCRUD.record_event(
                    db, booking, "status_changed", None, {"from": previous, "to": target.value, "automatic": True}
                )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Error moving bookings to {target.value}: {str(e)}")
            raise

        for booking in bookings:
            db.refresh(booking)
            BookingCRUD.notify_parties(booking, "booking_updated")
        return bookings

    @staticmethod
    def advance_due_bookings(db: Session, now: Optional[datetime] = None) -> Tuple[int, int]:
        """Start confirmed bookings whose time has come and complete those that have ended.

        Returns ``(started, completed)``. A booking whose whole slot already
        passed goes through both steps in one sweep.
        """
        now = now or utcnow()

        due = (
            db.query(Booking)
            .filter(Booking.status == BookingStatus.confirmed.value, Booking.scheduled_at <= now)
            .all()
        )
        started = BookingCRUD._advance(db, due, BookingStatus.in_progress, now)

        running = db.query(Booking).filter(Booking.status == BookingStatus.in_progress.value).all()
        ended = [
            booking for booking in running
            if as_utc(booking.scheduled_at) + timedelta(minutes=booking.duration_minutes) <= now
        ]
        completed = BookingCRUD._advance(db, ended, BookingStatus.completed, now)

        if started or completed:
            logger.info(f"Lifecycle sweep: {len(started)} started, {len(completed)} completed")
        return len(started), len(completed)

    @staticmethod
    def notify_parties(booking: Booking, event: str) -> None:
        try:
            payload = BookingWithDetails.model_validate(booking).model_dump(mode="json")
        except Exception as e:
            logger.error(f"Could not serialize booking {booking.id} for {event}: {str(e)}")
            return
        for party_id in {booking.customer_id, booking.provider_id}:
            publish_safely(user_channel(party_id), event, payload)


booking_crud = BookingCRUD()
