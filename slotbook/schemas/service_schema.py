from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ServiceBase(BaseModel):
    title: str = Field(..., min_length=1, examples=["Guitar lesson"])
    description: Optional[str] = Field(None, examples=["One-on-one lesson for beginners"])
    price: Decimal = Field(..., ge=0, decimal_places=2, examples=["49.99"])
    duration_minutes: int = Field(..., gt=0, examples=[60])
    is_online: bool = True
    location: Optional[str] = None


class ServiceCreate(ServiceBase):
    pass


class ServiceResponse(ServiceBase):
    id: str
    is_active: bool
    created_at: datetime
    owner_id: str

    class Config:
        from_attributes = True


class ServiceSummary(BaseModel):
    id: str
    title: str
    duration_minutes: int

    class Config:
        from_attributes = True
