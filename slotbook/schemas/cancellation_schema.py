from decimal import Decimal
from pydantic import BaseModel, Field, model_validator
from typing import Optional

from slotbook.schemas.booking_schema import BookingWithDetails


class CancellationPolicyBase(BaseModel):
    reason_key: str
    title: str
    description: str
    customer_refund_percentage: int = Field(..., ge=0, le=100)
    provider_earnings_percentage: int = Field(..., ge=0, le=100)
    platform_fee_percentage: int = Field(..., ge=0, le=100)
    requires_explanation: bool = False

    @model_validator(mode='after')
    def percentages_must_sum_to_100(self):
        total = (
            self.customer_refund_percentage
            + self.provider_earnings_percentage
            + self.platform_fee_percentage
        )
        if total != 100:
            raise ValueError(f'policy percentages must sum to 100, got {total}')
        return self


class ApplicablePolicy(CancellationPolicyBase):
    id: str
    minutes_until_start: int
    user_role: str

    class Config:
        from_attributes = True


class RefundBreakdown(BaseModel):
    customer_refund: Decimal
    provider_earnings: Decimal
    platform_fee: Decimal


class RefundPercentages(BaseModel):
    customer_refund_percentage: int
    provider_earnings_percentage: int
    platform_fee_percentage: int


class RefundBreakdownRequest(BaseModel):
    policy_id: str


class RefundBreakdownResponse(BaseModel):
    policy_id: str
    policy_title: str
    policy_description: str
    requires_explanation: bool
    total_amount: Decimal
    original_service_fee: Decimal
    breakdown: RefundBreakdown
    percentages: RefundPercentages


class CancelWithPolicyRequest(BaseModel):
    policy_id: str
    explanation: Optional[str] = Field(None, max_length=2000)


class RejectBookingRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class CancellationResult(BaseModel):
    booking: BookingWithDetails
    refund_breakdown: RefundBreakdownResponse
