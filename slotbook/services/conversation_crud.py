from datetime import datetime, timedelta
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from slotbook.config import MESSAGE_PAGE_MAX, MESSAGE_PAGE_SIZE
from slotbook.exceptions import (
    BookingNotFound,
    ConversationNotFound,
    EmptyMessage,
    ForbiddenError,
    InternalError,
    UserNotFound,
    ValidationError,
)
from slotbook.models.booking_model import Booking
from slotbook.models.conversation_model import Conversation, Message
from slotbook.realtime.hub import conversation_channel, publish_safely, user_channel
from slotbook.schemas.conversation_schema import ConversationWithDetails, MessageResponse
from slotbook.schemas.user_schema import UserSummary
from slotbook.services.user_crud import user_crud
from slotbook.utils.timeutils import as_utc, utcnow
from slotbook.logger import get_logger

logger = get_logger(__name__)

MESSAGE_CLOCK_STEP = timedelta(microseconds=1)


def participant_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class ConversationCRUD:
    @staticmethod
    def _find_by_pair(db: Session, low: str, high: str) -> Optional[Conversation]:
        return (
            db.query(Conversation)
            .filter(Conversation.participant_low_id == low, Conversation.participant_high_id == high)
            .first()
        )

    @staticmethod
    def get_or_create_conversation(
            db: Session,
            user_id: str,
            participant_id: str,
            booking_id: Optional[str] = None,
    ) -> Tuple[Conversation, bool]:
        """Return the single conversation between two users, creating it if needed.

        The second element is ``True`` when the conversation already existed.
        """
        if participant_id == user_id:
            raise ValidationError("Cannot start a conversation with yourself")

        if not user_crud.get_user_by_id(db, participant_id):
            raise UserNotFound()

        if booking_id is not None:
            booking = db.query(Booking).filter(Booking.id == str(booking_id)).first()
            if not booking:
                raise BookingNotFound()
            if {booking.customer_id, booking.provider_id} != {user_id, participant_id}:
                raise ForbiddenError("Booking does not belong to these participants")

        low, high = participant_pair(user_id, participant_id)
        existing = ConversationCRUD._find_by_pair(db, low, high)
        if existing:
            return existing, True

        now = utcnow()
        try:
            with db.begin_nested():
                conversation = Conversation(
                    participant_low_id=low,
                    participant_high_id=high,
                    booking_id=booking_id,
                    created_at=now,
                    updated_at=now,
                )
                db.add(conversation)
            db.commit()
            db.refresh(conversation)
            logger.info(f"Conversation created: {conversation.id} between {low} and {high}")
            return conversation, False

        except IntegrityError:
            # The other participant opened it at the same moment
            db.rollback()
            existing = ConversationCRUD._find_by_pair(db, low, high)
            if existing:
                return existing, True
            logger.error(f"Conversation between {low} and {high} vanished after a unique violation")
            raise InternalError("Error occurred while creating conversation")

    @staticmethod
    def get_conversation_for_participant(db: Session, conversation_id: str, user_id: str) -> Conversation:
        conversation = db.query(Conversation).filter(Conversation.id == str(conversation_id)).first()
        if not conversation:
            raise ConversationNotFound()
        if not conversation.has_participant(user_id):
            raise ForbiddenError("Not a participant in this conversation")
        return conversation

    @staticmethod
    def unread_count(db: Session, conversation_id: str, user_id: str) -> int:
        return (
            db.query(func.count(Message.id))
            .filter(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.is_read == False,
            )
            .scalar()
        ) or 0

    @staticmethod
    def with_details(
            db: Session,
            conversation: Conversation,
            user_id: str,
            is_existing: Optional[bool] = None,
    ) -> ConversationWithDetails:
        other = user_crud.get_user_by_id(db, conversation.other_participant_id(user_id))
        details = ConversationWithDetails.model_validate(conversation)
        details.other_participant = UserSummary.model_validate(other) if other else None
        details.unread_count = ConversationCRUD.unread_count(db, conversation.id, user_id)
        details.is_existing = is_existing
        return details

    @staticmethod
    def list_conversations(db: Session, user_id: str) -> List[ConversationWithDetails]:
        """Conversations the user takes part in, most recently active first"""
        conversations = (
            db.query(Conversation)
            .filter(or_(Conversation.participant_low_id == user_id, Conversation.participant_high_id == user_id))
            .order_by(Conversation.updated_at.desc())
            .all()
        )
        return [ConversationCRUD.with_details(db, c, user_id) for c in conversations]

    @staticmethod
    def get_messages(
            db: Session,
            conversation_id: str,
            user_id: str,
            limit: int = MESSAGE_PAGE_SIZE,
            before: Optional[datetime] = None,
    ) -> List[Message]:
        """A page of messages in ascending time order, optionally strictly older than ``before``"""
        ConversationCRUD.get_conversation_for_participant(db, conversation_id, user_id)
        limit = max(1, min(limit, MESSAGE_PAGE_MAX))

        query = db.query(Message).filter(Message.conversation_id == str(conversation_id))
        if before is not None:
            query = query.filter(Message.created_at < as_utc(before))

        newest_first = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit).all()
        return list(reversed(newest_first))

    @staticmethod
    def _next_message_time(db: Session, conversation_id: str, now: datetime) -> datetime:
        latest = (
            db.query(func.max(Message.created_at))
            .filter(Message.conversation_id == conversation_id)
            .scalar()
        )
        if latest is not None and as_utc(latest) >= now:
            return as_utc(latest) + MESSAGE_CLOCK_STEP
        return now

    @staticmethod
    def send_message(db: Session, conversation_id: str, user_id: str, content: str) -> Message:
        conversation = ConversationCRUD.get_conversation_for_participant(db, conversation_id, user_id)

        text = (content or "").strip()
        if not text:
            raise EmptyMessage()

        try:
            created_at = ConversationCRUD._next_message_time(db, conversation.id, utcnow())
            message = Message(
                conversation_id=conversation.id,
                sender_id=user_id,
                content=text,
                created_at=created_at,
                is_read=False,
            )
            db.add(message)
            conversation.last_message_at = created_at
            conversation.updated_at = created_at
            db.commit()
            db.refresh(message)
            logger.info(f"Message {message.id} sent in conversation {conversation.id}")

        except Exception as e:
            db.rollback()
            logger.error(f"Error sending message in conversation {conversation_id}: {str(e)}")
            raise InternalError("Error occurred while sending message")

        payload = MessageResponse.model_validate(message).model_dump(mode="json")
        publish_safely(conversation_channel(conversation.id), "new_message", payload)
        publish_safely(
            user_channel(conversation.other_participant_id(user_id)),
            "conversation_updated",
            {"conversation_id": conversation.id, "last_message_at": payload["created_at"]},
        )
        return message

    @staticmethod
    def mark_as_read(db: Session, conversation_id: str, user_id: str) -> int:
        """Mark every unread message from the other participant as read"""
        conversation = ConversationCRUD.get_conversation_for_participant(db, conversation_id, user_id)

        try:
            marked = (
                db.query(Message)
                .filter(
                    Message.conversation_id == conversation.id,
                    Message.sender_id != user_id,
                    Message.is_read == False,
                )
                .update({Message.is_read: True, Message.read_at: utcnow()}, synchronize_session=False)
            )
            db.commit()

        except Exception as e:
            db.rollback()
            logger.error(f"Error marking conversation {conversation_id} as read: {str(e)}")
            raise InternalError("Error occurred while marking messages as read")

        if marked:
            publish_safely(
                conversation_channel(conversation.id),
                "messages_read",
                {"conversation_id": conversation.id, "reader_id": user_id, "count": marked},
            )
        return marked


conversation_crud = ConversationCRUD()
