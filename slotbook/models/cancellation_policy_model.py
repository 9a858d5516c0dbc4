from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Integer, Text, CheckConstraint
import uuid
from slotbook.database import Base
from sqlalchemy.orm import relationship


class CancellationPolicy(Base):
    __tablename__ = "cancellation_policies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    reason_key = Column(String, nullable=False, unique=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    customer_refund_percentage = Column(Integer, nullable=False)
    provider_earnings_percentage = Column(Integer, nullable=False)
    platform_fee_percentage = Column(Integer, nullable=False)
    requires_explanation = Column(Boolean, default=False)
    # "customer" or "provider"
    allowed_role = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    conditions = relationship(
        "CancellationPolicyCondition", back_populates="policy", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "customer_refund_percentage BETWEEN 0 AND 100"
            " AND provider_earnings_percentage BETWEEN 0 AND 100"
            " AND platform_fee_percentage BETWEEN 0 AND 100",
            name="percentage_range",
        ),
        CheckConstraint(
            "customer_refund_percentage + provider_earnings_percentage + platform_fee_percentage = 100",
            name="valid_percentage_total",
        ),
    )


class CancellationPolicyCondition(Base):
    __tablename__ = "cancellation_policy_conditions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    policy_id = Column(String(36), ForeignKey("cancellation_policies.id"), nullable=False, index=True)
    # booking_status | min_time_before_start | max_time_before_start
    condition_type = Column(String, nullable=False)
    condition_value = Column(String, nullable=False)

    policy = relationship("CancellationPolicy", back_populates="conditions")

    __table_args__ = (
        CheckConstraint(
            "condition_type IN ('booking_status', 'min_time_before_start', 'max_time_before_start')",
            name="valid_condition_type",
        ),
    )
