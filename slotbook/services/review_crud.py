from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional
from slotbook.exceptions import BookingNotFound, ConflictError, ForbiddenError, InternalError, ValidationError
from slotbook.models.review_model import Review
from slotbook.models.booking_model import Booking
from slotbook.schemas.booking_schema import BookingStatus
from slotbook.schemas.review_schema import ReviewCreate
from slotbook.logger import get_logger

logger = get_logger(__name__)


class ReviewCRUD:
    @staticmethod
    def create_review(db: Session, review: ReviewCreate, user_id: str) -> Review:
        """Create a review for a completed booking; one per booking, written by its customer"""
        booking = db.query(Booking).filter(Booking.id == str(review.booking_id)).first()
        if not booking:
            raise BookingNotFound()

        if booking.customer_id != user_id:
            raise ForbiddenError("Only the customer of this booking can review it")

        if booking.status != BookingStatus.completed.value:
            raise ValidationError("Can only review completed bookings")

        existing_review = db.query(Review).filter(Review.booking_id == booking.id).first()
        if existing_review:
            raise ConflictError("A review already exists for this booking")

        try:
            db_review = Review(
                booking_id=booking.id,
                reviewer_id=user_id,
                provider_id=booking.provider_id,
                rating=review.rating,
                comment=review.comment,
            )
            db.add(db_review)
            db.commit()
            db.refresh(db_review)
            logger.info(f"Review created: {db_review.id} for booking {booking.id}")
            return db_review

        except IntegrityError:
            db.rollback()
            raise ConflictError("A review already exists for this booking")
        except Exception as e:
            db.rollback()
            logger.error(f"Error creating review: {str(e)}")
            raise InternalError("Error occurred while creating review")

    @staticmethod
    def get_review_by_id(db: Session, review_id: str) -> Optional[Review]:
        """Get review by ID"""
        return db.query(Review).filter(Review.id == str(review_id)).first()


review_crud = ReviewCRUD()
