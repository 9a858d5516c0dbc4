from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from slotbook.services.review_crud import review_crud
from slotbook.schemas.review_schema import ReviewCreate, ReviewResponse
from slotbook.database import get_db
from slotbook.security.auth import get_current_user
from slotbook.models.user_model import User
from slotbook.logger import get_logger

review_router = APIRouter()
logger = get_logger(__name__)


@review_router.post(
    "/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED
)
def create_review(
    review: ReviewCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a new review (must be for a completed booking by the same user)"""
    try:
        logger.info(f"User {current_user.id} creating review for booking {review.booking_id}")
        db_review = review_crud.create_review(db, review, current_user.id)
        return ReviewResponse.model_validate(db_review)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating review: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while creating review",
        )


@review_router.get(
    "/reviews/{review_id}",
    response_model=ReviewResponse,
    status_code=status.HTTP_200_OK,
)
def get_review(
    review_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get review by ID"""
    try:
        review = review_crud.get_review_by_id(db, review_id)
        if not review:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Review not found"
            )

        return ReviewResponse.model_validate(review)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching review {review_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching review",
        )
