from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, Index, CheckConstraint, text
import uuid
from slotbook.database import Base
from sqlalchemy.orm import relationship


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    requester_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    requester_role = Column(String, nullable=False)  # host | visitor

    proposed_scheduled_at = Column(DateTime(timezone=True), nullable=False)
    proposed_duration_minutes = Column(Integer, nullable=True)  # None keeps the original duration
    reason = Column(Text, nullable=True)

    status = Column(String, nullable=False, default="pending", index=True)
    response_notes = Column(Text, nullable=True)
    responder_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    booking = relationship("Booking", back_populates="reschedule_requests")

    __table_args__ = (
        CheckConstraint("requester_role IN ('host', 'visitor')", name="valid_requester_role"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'withdrawn', 'expired')",
            name="valid_reschedule_status",
        ),
        # Only one pending request per booking at a time
        Index(
            "ix_reschedule_requests_one_pending_per_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
