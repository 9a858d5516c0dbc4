from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Boolean
import uuid
from slotbook.database import Base
from sqlalchemy.orm import relationship


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    # The participant pair is stored sorted so (a, b) and (b, a) collide on the unique constraint
    participant_low_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    participant_high_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_message_at = Column(DateTime(timezone=True), nullable=True)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")
    participant_low = relationship("User", foreign_keys=[participant_low_id])
    participant_high = relationship("User", foreign_keys=[participant_high_id])

    __table_args__ = (
        UniqueConstraint("participant_low_id", "participant_high_id", name="uq_conversation_participants"),
        CheckConstraint("participant_low_id < participant_high_id", name="ordered_participants"),
    )

    @property
    def participant_ids(self):
        return (self.participant_low_id, self.participant_high_id)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participant_ids

    def other_participant_id(self, user_id: str) -> str:
        return self.participant_high_id if user_id == self.participant_low_id else self.participant_low_id


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    conversation = relationship("Conversation", back_populates="messages")
