from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Boolean,
    Text,
    CheckConstraint,
)
import uuid
from slotbook.database import Base
from sqlalchemy.orm import relationship


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="pending", index=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    service_fee = Column(Numeric(10, 2), nullable=False, default=0)
    payment_reference = Column(String, nullable=True)

    location = Column(String, nullable=True)
    is_online = Column(Boolean, default=True)
    meeting_platform = Column(String, nullable=True)
    meeting_link = Column(String, nullable=True)
    customer_notes = Column(Text, nullable=True)

    # Set once, when the matching transition happens
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation audit
    cancelled_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    cancellation_policy_id = Column(String(36), ForeignKey("cancellation_policies.id"), nullable=True)
    cancellation_reason = Column(String, nullable=True)
    cancellation_explanation = Column(Text, nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    provider_earnings = Column(Numeric(10, 2), nullable=True)
    platform_fee = Column(Numeric(10, 2), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Reschedule tracking
    original_scheduled_at = Column(DateTime(timezone=True), nullable=True)
    last_rescheduled_at = Column(DateTime(timezone=True), nullable=True)
    rescheduled_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    visitor_reschedule_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    service = relationship("Service", back_populates="bookings")
    customer = relationship("User", back_populates="customer_bookings", foreign_keys=[customer_id])
    provider = relationship("User", back_populates="provider_bookings", foreign_keys=[provider_id])
    review = relationship("Review", back_populates="booking", uselist=False, cascade="all, delete-orphan")
    events = relationship("BookingEvent", back_populates="booking", cascade="all, delete-orphan")
    reschedule_requests = relationship(
        "RescheduleRequest", back_populates="booking", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("refund_amount IS NULL OR refund_amount >= 0", name="refund_amount_non_negative"),
        CheckConstraint(
            "provider_earnings IS NULL OR provider_earnings >= 0", name="provider_earnings_non_negative"
        ),
        CheckConstraint("platform_fee IS NULL OR platform_fee >= 0", name="platform_fee_non_negative"),
    )


class BookingEvent(Base):
    """Audit trail and settlement intent, written in the same transaction as the booking change"""

    __tablename__ = "booking_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)
    actor_id = Column(String(36), nullable=True)
    payload = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    booking = relationship("Booking", back_populates="events")
