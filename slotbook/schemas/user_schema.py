from pydantic import BaseModel
from enum import Enum
from typing import Optional
from datetime import datetime


class Role(str, Enum):
    user = "user"
    admin = "admin"


class UserSummary(BaseModel):
    id: str
    display_name: str

    class Config:
        from_attributes = True


class UserOut(UserSummary):
    email: Optional[str] = None
    role: Role = Role.user
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
