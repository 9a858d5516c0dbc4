from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from slotbook.schemas.user_schema import UserSummary


class ConversationCreate(BaseModel):
    participant_id: str = Field(..., description="The other participant")
    booking_id: Optional[str] = None


class ConversationResponse(BaseModel):
    id: str
    participant_ids: List[str]
    booking_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConversationWithDetails(ConversationResponse):
    other_participant: Optional[UserSummary] = None
    unread_count: int = 0
    is_existing: Optional[bool] = None


class MessageCreate(BaseModel):
    content: str = Field(..., max_length=5000)


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: datetime
    is_read: bool

    class Config:
        from_attributes = True


class MarkReadResponse(BaseModel):
    conversation_id: str
    messages_marked_read: int
