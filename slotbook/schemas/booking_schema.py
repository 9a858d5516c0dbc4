from decimal import Decimal
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime, timezone
from enum import Enum

from slotbook.schemas.service_schema import ServiceSummary
from slotbook.schemas.user_schema import UserSummary


class BookingStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    confirmed = "confirmed"
    declined = "declined"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class BookingRole(str, Enum):
    customer = "customer"
    provider = "provider"


class BookingCreate(BaseModel):
    service_id: str = Field(..., description="ID of the service being booked")
    scheduled_at: datetime = Field(..., description="Booking start time")
    location: Optional[str] = None
    is_online: Optional[bool] = None
    meeting_platform: Optional[str] = None
    meeting_link: Optional[str] = None
    customer_notes: Optional[str] = Field(None, max_length=2000)
    payment_reference: Optional[str] = Field(
        None, description="Set when checkout already captured payment; the booking starts as paid"
    )

    @field_validator('scheduled_at')
    @classmethod
    def scheduled_at_must_be_in_future(cls, v):
        now = datetime.now(timezone.utc)
        # If v is timezone-naive, assume it's UTC
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= now:
            raise ValueError('scheduled_at must be in the future')
        return v


class BookingStatusUpdate(BaseModel):
    # Plain string so unknown values reach the lifecycle check and come back as 400
    status: str = Field(..., description="Target booking status")


class BookingResponse(BaseModel):
    id: str
    service_id: str
    customer_id: str
    provider_id: str
    status: BookingStatus
    scheduled_at: datetime
    duration_minutes: int
    total_price: Decimal
    service_fee: Decimal
    location: Optional[str] = None
    is_online: Optional[bool] = None
    meeting_platform: Optional[str] = None
    meeting_link: Optional[str] = None
    customer_notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_policy_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancellation_explanation: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    provider_earnings: Optional[Decimal] = None
    platform_fee: Optional[Decimal] = None
    rejection_reason: Optional[str] = None
    original_scheduled_at: Optional[datetime] = None
    last_rescheduled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BookingWithDetails(BookingResponse):
    service: Optional[ServiceSummary] = None
    provider: Optional[UserSummary] = None
    customer: Optional[UserSummary] = None

    class Config:
        from_attributes = True
