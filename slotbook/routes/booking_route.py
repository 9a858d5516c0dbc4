from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from slotbook.services.booking_crud import booking_crud
from slotbook.services.cancellation_crud import cancellation_crud
from slotbook.schemas.booking_schema import (
    BookingCreate,
    BookingRole,
    BookingStatus,
    BookingStatusUpdate,
    BookingWithDetails,
)
from slotbook.schemas.cancellation_schema import (
    ApplicablePolicy,
    CancelWithPolicyRequest,
    CancellationResult,
    RefundBreakdownRequest,
    RefundBreakdownResponse,
    RejectBookingRequest,
)
from slotbook.database import get_db
from slotbook.security.auth import get_current_user, get_current_admin_user
from slotbook.models.user_model import User
from slotbook.logger import get_logger

booking_router = APIRouter()
logger = get_logger(__name__)

# PARTY ENDPOINTS - customers and providers act on their own bookings


@booking_router.post(
    "/bookings", response_model=BookingWithDetails, status_code=status.HTTP_201_CREATED
)
def create_booking(
    booking: BookingCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a booking at checkout (customer)"""
    try:
        logger.info(f"User {current_user.id} booking service {booking.service_id}")
        db_booking = booking_crud.create_booking(db, booking, current_user.id)
        return BookingWithDetails.model_validate(db_booking)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating booking: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while creating booking",
        )


@booking_router.get(
    "/bookings", response_model=List[BookingWithDetails], status_code=status.HTTP_200_OK
)
def get_user_bookings(
    role: BookingRole = Query(
        BookingRole.customer, description="customer for the visitor list, provider for the host order list"
    ),
    booking_status: Optional[BookingStatus] = Query(
        None, alias="status", description="Filter by booking status"
    ),
    skip: int = Query(0, ge=0, description="Number of bookings to skip"),
    limit: int = Query(100, ge=1, le=100, description="Number of bookings to retrieve"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the current user's bookings as customer or provider"""
    try:
        bookings = booking_crud.get_bookings(
            db=db,
            user_id=current_user.id,
            role=role,
            status=booking_status,
            skip=skip,
            limit=limit,
        )
        return [BookingWithDetails.model_validate(booking) for booking in bookings]

    except Exception as e:
        logger.error(f"Error fetching bookings for {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching bookings",
        )


@booking_router.get(
    "/bookings/{booking_id}",
    response_model=BookingWithDetails,
    status_code=status.HTTP_200_OK,
)
def get_booking(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get booking by ID (either party or admin)"""
    try:
        booking = booking_crud.get_booking_for_party(
            db, booking_id, current_user.id, is_admin=current_user.role == "admin"
        )
        return BookingWithDetails.model_validate(booking)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching booking {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching booking",
        )


@booking_router.patch(
    "/bookings/{booking_id}",
    response_model=BookingWithDetails,
    status_code=status.HTTP_200_OK,
)
def update_booking_status(
    booking_id: str,
    booking_update: BookingStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Move a booking to a new status"""
    try:
        logger.info(f"User {current_user.id} moving booking {booking_id} to {booking_update.status}")
        booking = booking_crud.transition_status(db, booking_id, booking_update.status, current_user.id)
        return BookingWithDetails.model_validate(booking)

    except HTTPException as e:
        if e.status_code < 500:
            logger.warning(f"Status change refused for booking {booking_id}: {e.detail}")
        raise
    except Exception as e:
        logger.error(f"Error updating booking {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while updating booking",
        )


@booking_router.get(
    "/bookings/{booking_id}/cancellation-policies",
    response_model=List[ApplicablePolicy],
    status_code=status.HTTP_200_OK,
)
def get_cancellation_policies(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancellation policies the current user may invoke right now"""
    try:
        return cancellation_crud.get_applicable_policies(db, booking_id, current_user.id)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error evaluating cancellation policies for {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while evaluating cancellation policies",
        )


@booking_router.post(
    "/bookings/{booking_id}/refund-breakdown",
    response_model=RefundBreakdownResponse,
    status_code=status.HTTP_200_OK,
)
def get_refund_breakdown(
    booking_id: str,
    request: RefundBreakdownRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Preview the money split for a policy without cancelling"""
    try:
        return cancellation_crud.compute_refund_breakdown(db, booking_id, request.policy_id, current_user.id)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error computing refund breakdown for {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while computing refund breakdown",
        )


@booking_router.post(
    "/bookings/{booking_id}/cancel-with-policy",
    response_model=CancellationResult,
    status_code=status.HTTP_200_OK,
)
def cancel_with_policy(
    booking_id: str,
    request: CancelWithPolicyRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel a paid booking under a cancellation policy"""
    try:
        logger.info(f"User {current_user.id} cancelling booking {booking_id} with policy {request.policy_id}")
        return cancellation_crud.cancel_with_policy(
            db, booking_id, request.policy_id, current_user.id, explanation=request.explanation
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error cancelling booking {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process cancellation",
        )


@booking_router.post(
    "/bookings/{booking_id}/reject",
    response_model=CancellationResult,
    status_code=status.HTTP_200_OK,
)
def reject_booking(
    booking_id: str,
    request: RejectBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Provider rejects a paid booking with a full refund"""
    try:
        logger.info(f"Provider {current_user.id} rejecting booking {booking_id}")
        return cancellation_crud.reject_paid_booking(db, booking_id, current_user.id, reason=request.reason)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error rejecting booking {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reject booking",
        )


# ADMIN ENDPOINTS


@booking_router.delete(
    "/bookings/{booking_id}",
    response_model=BookingWithDetails,
    status_code=status.HTTP_200_OK,
)
def delete_booking(
    booking_id: str,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """Delete a booking (admin only)"""
    try:
        logger.info(f"Admin {current_user.id} deleting booking: {booking_id}")
        return booking_crud.delete_booking(db, booking_id)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting booking {booking_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while deleting booking",
        )
