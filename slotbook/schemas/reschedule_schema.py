from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


class RescheduleStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    withdrawn = "withdrawn"
    expired = "expired"


class RescheduleCreate(BaseModel):
    proposed_scheduled_at: datetime
    proposed_duration_minutes: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=1000)

    @field_validator('proposed_scheduled_at')
    @classmethod
    def assume_utc(cls, v):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v


class RescheduleRespond(BaseModel):
    approve: bool
    response_notes: Optional[str] = Field(None, max_length=1000)


class RescheduleResponse(BaseModel):
    id: str
    booking_id: str
    requester_id: str
    requester_role: str
    proposed_scheduled_at: datetime
    proposed_duration_minutes: Optional[int] = None
    reason: Optional[str] = None
    status: RescheduleStatus
    response_notes: Optional[str] = None
    responder_id: Optional[str] = None
    responded_at: Optional[datetime] = None
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True
