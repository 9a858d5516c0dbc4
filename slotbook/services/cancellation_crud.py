"""Cancellation policies, refund breakdowns and money-bearing cancellations.

A policy is applicable when all of its conditions hold for the booking at
evaluation time:

* ``booking_status`` conditions form a set of allowed statuses (any match),
* ``min_time_before_start`` requires ``minutes_until_start >= value``,
* ``max_time_before_start`` requires ``minutes_until_start < value``,
* the acting user's role equals ``allowed_role``.
"""
from datetime import datetime
from sqlalchemy.orm import Session, selectinload
from typing import List, Optional, Tuple
from slotbook.config import CANCELLATION_WINDOW_MINUTES
from slotbook.exceptions import (
    BookingNotFound,
    ConflictError,
    ExplanationRequired,
    ForbiddenError,
    InternalError,
    PolicyNotFound,
)
from slotbook.models.booking_model import Booking
from slotbook.models.cancellation_policy_model import CancellationPolicy, CancellationPolicyCondition
from slotbook.schemas.booking_schema import BookingRole, BookingStatus, BookingWithDetails
from slotbook.schemas.cancellation_schema import (
    ApplicablePolicy,
    CancellationResult,
    RefundBreakdown,
    RefundBreakdownResponse,
    RefundPercentages,
)
from slotbook.services import booking_lifecycle, settlement
from slotbook.services.booking_crud import booking_crud
from slotbook.utils.money import percentage_of, to_cents
from slotbook.utils.timeutils import minutes_until, utcnow
from slotbook.logger import get_logger

logger = get_logger(__name__)

DEFAULT_POLICIES = [
    {
        "reason_key": "customer_early_cancel",
        "title": "Customer Early Cancellation",
        "description": "Customer requested cancellation with advance notice",
        "percentages": (100, 0, 0),
        "requires_explanation": False,
        "allowed_role": BookingRole.customer.value,
        "conditions": [
            ("booking_status", BookingStatus.paid.value),
            ("booking_status", BookingStatus.confirmed.value),
            ("min_time_before_start", str(CANCELLATION_WINDOW_MINUTES)),
        ],
    },
    {
        "reason_key": "customer_late_cancel",
        "title": "Customer Late Cancellation",
        "description": "Customer requested cancellation with short notice",
        "percentages": (50, 0, 50),
        "requires_explanation": False,
        "allowed_role": BookingRole.customer.value,
        "conditions": [
            ("booking_status", BookingStatus.paid.value),
            ("booking_status", BookingStatus.confirmed.value),
            ("min_time_before_start", "0"),
            ("max_time_before_start", str(CANCELLATION_WINDOW_MINUTES)),
        ],
    },
    {
        "reason_key": "provider_cancel",
        "title": "Provider Cancellation",
        "description": "Provider cancelled the appointment",
        "percentages": (100, 0, 0),
        "requires_explanation": True,
        "allowed_role": BookingRole.provider.value,
        "conditions": [
            ("booking_status", BookingStatus.paid.value),
            ("booking_status", BookingStatus.confirmed.value),
            ("booking_status", BookingStatus.in_progress.value),
        ],
    },
    {
        "reason_key": "customer_no_show",
        "title": "Customer No Show",
        "description": "Customer failed to attend the scheduled appointment",
        "percentages": (0, 100, 0),
        "requires_explanation": True,
        "allowed_role": BookingRole.provider.value,
        "conditions": [
            ("booking_status", BookingStatus.in_progress.value),
        ],
    },
]


def split_total(total, customer_pct: int, provider_pct: int, platform_pct: int) -> RefundBreakdown:
    """Split ``total`` by percentage; the rounding remainder lands on the platform fee"""
    if customer_pct + provider_pct + platform_pct != 100:
        raise ValueError("policy percentages must sum to 100")
    total = to_cents(total)
    customer_refund = percentage_of(total, customer_pct)
    provider_earnings = min(percentage_of(total, provider_pct), total - customer_refund)
    platform_fee = total - customer_refund - provider_earnings
    return RefundBreakdown(
        customer_refund=customer_refund,
        provider_earnings=provider_earnings,
        platform_fee=platform_fee,
    )


def policy_applies(policy: CancellationPolicy, booking_status: str, minutes_until_start: int, role) -> bool:
    if role is None or policy.allowed_role != BookingRole(role).value:
        return False

    allowed_statuses = set()
    for condition in policy.conditions:
        if condition.condition_type == "booking_status":
            allowed_statuses.add(condition.condition_value)
        elif condition.condition_type == "min_time_before_start":
            if minutes_until_start < int(condition.condition_value):
                return False
        elif condition.condition_type == "max_time_before_start":
            if minutes_until_start >= int(condition.condition_value):
                return False

    return not allowed_statuses or booking_status in allowed_statuses


class CancellationCRUD:
    @staticmethod
    def seed_default_policies(db: Session) -> int:
        """Insert the default policy table; existing reason keys are left untouched"""
        existing = {key for (key,) in db.query(CancellationPolicy.reason_key).all()}
        created = 0
        try:
            for spec in DEFAULT_POLICIES:
                if spec["reason_key"] in existing:
                    continue
                customer_pct, provider_pct, platform_pct = spec["percentages"]
                policy = CancellationPolicy(
                    reason_key=spec["reason_key"],
                    title=spec["title"],
                    description=spec["description"],
                    customer_refund_percentage=customer_pct,
                    provider_earnings_percentage=provider_pct,
                    platform_fee_percentage=platform_pct,
                    requires_explanation=spec["requires_explanation"],
                    allowed_role=spec["allowed_role"],
                    conditions=[
                        CancellationPolicyCondition(condition_type=ctype, condition_value=value)
                        for ctype, value in spec["conditions"]
                    ],
                )
                db.add(policy)
                created += 1
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Error seeding cancellation policies: {str(e)}")
            raise
        if created:
            logger.info(f"Seeded {created} cancellation policies")
        return created

    @staticmethod
    def _load_party_booking(db: Session, booking_id: str, user_id: str) -> Tuple[Booking, BookingRole]:
        booking = booking_crud.get_booking_by_id(db, booking_id)
        if not booking:
            raise BookingNotFound()
        role = booking_lifecycle.role_of(booking, user_id)
        if role is None:
            raise ForbiddenError("Unauthorized to cancel this booking")
        return booking, role

    @staticmethod
    def _applicable(db: Session, booking: Booking, role: BookingRole, now: datetime):
        minutes = minutes_until(booking.scheduled_at, now)
        policies = (
            db.query(CancellationPolicy)
            .options(selectinload(CancellationPolicy.conditions))
            .filter(CancellationPolicy.is_active == True)
            .all()
        )
        applicable = [p for p in policies if policy_applies(p, booking.status, minutes, role)]
        applicable.sort(key=lambda p: (-p.customer_refund_percentage, p.reason_key))
        return applicable, minutes

    @staticmethod
    def get_applicable_policies(
            db: Session, booking_id: str, user_id: str, now: Optional[datetime] = None
    ) -> List[ApplicablePolicy]:
        """Policies the acting user may pick right now, best refund first"""
        booking, role = CancellationCRUD._load_party_booking(db, booking_id, user_id)
        policies, minutes = CancellationCRUD._applicable(db, booking, role, now or utcnow())
        return [
            ApplicablePolicy(
                id=p.id,
                reason_key=p.reason_key,
                title=p.title,
                description=p.description,
                customer_refund_percentage=p.customer_refund_percentage,
                provider_earnings_percentage=p.provider_earnings_percentage,
                platform_fee_percentage=p.platform_fee_percentage,
                requires_explanation=bool(p.requires_explanation),
                minutes_until_start=minutes,
                user_role=role.value,
            )
            for p in policies
        ]

    @staticmethod
    def _select_policy(db: Session, booking: Booking, role: BookingRole, policy_id: str, now: datetime):
        policies, _ = CancellationCRUD._applicable(db, booking, role, now)
        for policy in policies:
            if policy.id == str(policy_id):
                return policy
        raise PolicyNotFound()

    @staticmethod
    def _breakdown_response(booking: Booking, policy: CancellationPolicy) -> RefundBreakdownResponse:
        return RefundBreakdownResponse(
            policy_id=policy.id,
            policy_title=policy.title,
            policy_description=policy.description,
            requires_explanation=bool(policy.requires_explanation),
            total_amount=to_cents(booking.total_price),
            original_service_fee=to_cents(booking.service_fee or 0),
            breakdown=split_total(
                booking.total_price,
                policy.customer_refund_percentage,
                policy.provider_earnings_percentage,
                policy.platform_fee_percentage,
            ),
            percentages=RefundPercentages(
                customer_refund_percentage=policy.customer_refund_percentage,
                provider_earnings_percentage=policy.provider_earnings_percentage,
                platform_fee_percentage=policy.platform_fee_percentage,
            ),
        )

    @staticmethod
    def compute_refund_breakdown(
            db: Session, booking_id: str, policy_id: str, user_id: str, now: Optional[datetime] = None
    ) -> RefundBreakdownResponse:
        booking, role = CancellationCRUD._load_party_booking(db, booking_id, user_id)
        policy = CancellationCRUD._select_policy(db, booking, role, policy_id, now or utcnow())
        return CancellationCRUD._breakdown_response(booking, policy)

    @staticmethod
    def cancel_with_policy(
            db: Session,
            booking_id: str,
            policy_id: str,
            user_id: str,
            explanation: Optional[str] = None,
            now: Optional[datetime] = None,
    ) -> CancellationResult:
        """Cancel under a policy; status, audit fields and settlement intent commit together"""
        now = now or utcnow()
        booking, role = CancellationCRUD._load_party_booking(db, booking_id, user_id)
        policy = CancellationCRUD._select_policy(db, booking, role, policy_id, now)

        explanation = explanation.strip() if explanation else ""
        if policy.requires_explanation and not explanation:
            raise ExplanationRequired()

        booking_lifecycle.check_transition(booking.status, BookingStatus.cancelled)
        refund = CancellationCRUD._breakdown_response(booking, policy)
        breakdown = refund.breakdown
        previous = booking.status

        try:
            booking_lifecycle.apply_transition(booking, BookingStatus.cancelled, now)
            booking.cancelled_by = user_id
            booking.cancellation_policy_id = policy.id
            booking.cancellation_reason = policy.title
            booking.cancellation_explanation = explanation or None
            booking.refund_amount = breakdown.customer_refund
            booking.provider_earnings = breakdown.provider_earnings
            booking.platform_fee = breakdown.platform_fee
            booking_crud.record_event(
                db,
                booking,
                "cancellation_settlement_requested",
                user_id,
                {
                    "from": previous,
                    "policy": policy.reason_key,
                    "explanation": explanation or None,
                    "customer_refund": breakdown.customer_refund,
                    "provider_earnings": breakdown.provider_earnings,
                    "platform_fee": breakdown.platform_fee,
                },
            )
            db.commit()
            db.refresh(booking)
            logger.info(
                f"Booking {booking.id} cancelled by {role.value} under {policy.reason_key}: "
                f"refund={breakdown.customer_refund}"
            )

        except Exception as e:
            db.rollback()
            logger.error(f"Error cancelling booking {booking_id}: {str(e)}")
            raise InternalError("Failed to process cancellation")

        settlement.hand_off(booking.id, breakdown, policy.reason_key, booking.payment_reference)
        booking_crud.notify_parties(booking, "booking_updated")
        return CancellationResult(
            booking=BookingWithDetails.model_validate(booking), refund_breakdown=refund
        )

    @staticmethod
    def reject_paid_booking(
            db: Session,
            booking_id: str,
            user_id: str,
            reason: Optional[str] = None,
            now: Optional[datetime] = None,
    ) -> CancellationResult:
        """Provider turns down a paid booking it never confirmed; the customer gets everything back"""
        now = now or utcnow()
        booking = booking_crud.get_booking_by_id(db, booking_id)
        if not booking:
            raise BookingNotFound()
        if booking.provider_id != user_id:
            raise ForbiddenError("Only the provider can reject this booking")
        if booking.status != BookingStatus.paid.value:
            raise ConflictError("Only paid bookings awaiting confirmation can be rejected")

        total = to_cents(booking.total_price)
        breakdown = split_total(total, 100, 0, 0)
        reason = reason.strip() if reason and reason.strip() else "No reason provided"

        try:
            booking_lifecycle.apply_transition(booking, BookingStatus.cancelled, now)
            booking.cancelled_by = user_id
            booking.cancellation_reason = "Provider rejected booking"
            booking.rejection_reason = reason
            booking.refund_amount = breakdown.customer_refund
            booking.provider_earnings = breakdown.provider_earnings
            booking.platform_fee = breakdown.platform_fee
            booking_crud.record_event(
                db,
                booking,
                "rejection_refund_requested",
                user_id,
                {"reason": reason, "customer_refund": breakdown.customer_refund},
            )
            db.commit()
            db.refresh(booking)
            logger.info(f"Booking {booking.id} rejected by provider: {reason}")

        except Exception as e:
            db.rollback()
            logger.error(f"Error rejecting booking {booking_id}: {str(e)}")
            raise InternalError("Failed to reject booking")

        settlement.hand_off(booking.id, breakdown, "provider_rejection", booking.payment_reference)
        booking_crud.notify_parties(booking, "booking_updated")
        return CancellationResult(
            booking=BookingWithDetails.model_validate(booking),
            refund_breakdown=RefundBreakdownResponse(
                policy_id="provider_rejection",
                policy_title="Provider Rejection",
                policy_description="Provider declined a paid booking before confirming it",
                requires_explanation=False,
                total_amount=total,
                original_service_fee=to_cents(booking.service_fee or 0),
                breakdown=breakdown,
                percentages=RefundPercentages(
                    customer_refund_percentage=100,
                    provider_earnings_percentage=0,
                    platform_fee_percentage=0,
                ),
            ),
        )


cancellation_crud = CancellationCRUD()
