from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from slotbook.services.user_crud import user_crud
from slotbook.schemas.user_schema import UserOut, UserSummary
from slotbook.database import get_db
from slotbook.security.auth import get_current_user
from slotbook.exceptions import UserNotFound
from slotbook.models.user_model import User
from slotbook.logger import get_logger


user_router = APIRouter()
logger = get_logger(__name__)


@user_router.get("/me", response_model=UserOut, status_code=status.HTTP_200_OK)
def get_me(current_user: User = Depends(get_current_user)):
    """Profile of the authenticated user, provisioned on first request"""
    return UserOut.model_validate(current_user)


@user_router.get("/users/{user_id}", response_model=UserSummary, status_code=status.HTTP_200_OK)
def get_user(
        user_id: str,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
):
    """Public summary of another user (chat header, booking counterpart)"""
    try:
        user = user_crud.get_user_by_id(db, user_id)
        if not user or not user.is_active:
            raise UserNotFound()
        return UserSummary.model_validate(user)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching user {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching user"
        )
