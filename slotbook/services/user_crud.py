from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional
from slotbook.models.user_model import User
from slotbook.exceptions import InternalError
from slotbook.logger import get_logger

logger = get_logger(__name__)


class UserCRUD:
    @staticmethod
    def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == str(user_id)).first()

    @staticmethod
    def provision_user(db: Session, user_id: str, claims: dict) -> User:
        """Get the local row for an identity-provider subject, creating it on first sight"""
        user = UserCRUD.get_user_by_id(db, user_id)
        if user:
            return user

        display_name = claims.get("name") or claims.get("email") or f"user-{str(user_id)[:8]}"
        try:
            user = User(
                id=str(user_id),
                display_name=display_name,
                email=claims.get("email"),
                role="admin" if claims.get("role") == "admin" else "user",
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info(f"Provisioned user {user.id} from identity token")
            return user

        except IntegrityError:
            # Another request provisioned the same subject first
            db.rollback()
            user = UserCRUD.get_user_by_id(db, user_id)
            if user:
                return user
            logger.error(f"Could not provision user {user_id}: email already taken")
            raise InternalError("Error occurred while provisioning user")


user_crud = UserCRUD()
