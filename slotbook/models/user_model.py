from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Boolean
import uuid
from slotbook.database import Base
from sqlalchemy.orm import relationship


class User(Base):
    __tablename__ = "users"

    # Subject id issued by the identity provider
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    display_name = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=True, index=True)
    role = Column(String, default="user")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    services = relationship("Service", back_populates="owner")
    customer_bookings = relationship(
        "Booking", back_populates="customer", foreign_keys="Booking.customer_id"
    )
    provider_bookings = relationship(
        "Booking", back_populates="provider", foreign_keys="Booking.provider_id"
    )
