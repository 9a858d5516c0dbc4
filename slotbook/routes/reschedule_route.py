from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
from slotbook.services.reschedule_crud import reschedule_crud
from slotbook.schemas.reschedule_schema import RescheduleCreate, RescheduleRespond, RescheduleResponse
from slotbook.database import get_db
from slotbook.security.auth import get_current_user
from slotbook.models.user_model import User
from slotbook.logger import get_logger

reschedule_router = APIRouter()
logger = get_logger(__name__)


@reschedule_router.post(
    "/bookings/{booking_id}/reschedule-requests",
    response_model=RescheduleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_reschedule_request(
    booking_id: str,
    request: RescheduleCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Propose a new start time for a booking"""
    try:
        db_request = reschedule_crud.create_request(db, booking_id, request, current_user.id)
        return RescheduleResponse.model_validate(db_request)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating reschedule request for {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while creating reschedule request",
        )


@reschedule_router.get(
    "/bookings/{booking_id}/reschedule-requests",
    response_model=List[RescheduleResponse],
    status_code=status.HTTP_200_OK,
)
def get_reschedule_requests(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        requests = reschedule_crud.get_requests_for_booking(db, booking_id, current_user.id)
        return [RescheduleResponse.model_validate(r) for r in requests]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching reschedule requests for {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching reschedule requests",
        )


@reschedule_router.post(
    "/reschedule-requests/{request_id}/respond",
    response_model=RescheduleResponse,
    status_code=status.HTTP_200_OK,
)
def respond_to_reschedule_request(
    request_id: str,
    response: RescheduleRespond,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Approve or reject the other party's proposal"""
    try:
        db_request = reschedule_crud.respond(
            db, request_id, response.approve, current_user.id, response_notes=response.response_notes
        )
        return RescheduleResponse.model_validate(db_request)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error responding to reschedule request {request_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while responding to reschedule request",
        )


@reschedule_router.post(
    "/reschedule-requests/{request_id}/withdraw",
    response_model=RescheduleResponse,
    status_code=status.HTTP_200_OK,
)
def withdraw_reschedule_request(
    request_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        db_request = reschedule_crud.withdraw(db, request_id, current_user.id)
        return RescheduleResponse.model_validate(db_request)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error withdrawing reschedule request {request_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while withdrawing reschedule request",
        )
