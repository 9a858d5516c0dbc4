from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ReviewBase(BaseModel):
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    comment: Optional[str] = Field(None, max_length=1000, description="Review comment")


class ReviewCreate(ReviewBase):
    booking_id: str


class ReviewResponse(ReviewBase):
    id: str
    booking_id: str
    reviewer_id: str
    provider_id: str
    created_at: datetime

    class Config:
        from_attributes = True
