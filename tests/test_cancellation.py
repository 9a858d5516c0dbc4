from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException

from conftest import auth
from slotbook.models.booking_model import Booking, BookingEvent
from slotbook.models.cancellation_policy_model import CancellationPolicy
from slotbook.schemas.booking_schema import BookingStatus
from slotbook.services import settlement
from slotbook.services.booking_crud import booking_crud
from slotbook.services.cancellation_crud import cancellation_crud, split_total
from slotbook.utils.timeutils import utcnow


class RecordingGateway(settlement.SettlementGateway):
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def request_settlement(self, booking_id, customer_refund, provider_earnings, platform_fee, reason,
                           payment_reference=None):
        self.calls.append((booking_id, customer_refund, provider_earnings, platform_fee, reason))
        if self.fail:
            raise RuntimeError("gateway down")


@pytest.fixture
def gateway():
    previous = settlement.get_settlement_gateway()
    recording = RecordingGateway()
    settlement.set_settlement_gateway(recording)
    yield recording
    settlement.set_settlement_gateway(previous)


def policy_id(db, reason_key):
    return db.query(CancellationPolicy).filter(CancellationPolicy.reason_key == reason_key).one().id


def test_split_total_exact():
    breakdown = split_total(Decimal("100.00"), 70, 20, 10)
    assert breakdown.customer_refund == Decimal("70.00")
    assert breakdown.provider_earnings == Decimal("20.00")
    assert breakdown.platform_fee == Decimal("10.00")


def test_split_total_remainder_goes_to_platform():
    breakdown = split_total(Decimal("33.33"), 50, 0, 50)
    assert breakdown.customer_refund == Decimal("16.67")
    assert breakdown.platform_fee == Decimal("16.66")
    assert breakdown.customer_refund + breakdown.provider_earnings + breakdown.platform_fee == Decimal("33.33")


def test_split_total_rejects_bad_percentages():
    with pytest.raises(ValueError):
        split_total(Decimal("10.00"), 50, 50, 10)


def test_seeded_policies_sum_to_100_and_seed_is_idempotent(db):
    policies = db.query(CancellationPolicy).all()
    assert {p.reason_key for p in policies} == {
        "customer_early_cancel",
        "customer_late_cancel",
        "provider_cancel",
        "customer_no_show",
    }
    for p in policies:
        assert p.customer_refund_percentage + p.provider_earnings_percentage + p.platform_fee_percentage == 100

    assert cancellation_crud.seed_default_policies(db) == 0


def test_customer_early_and_late_windows(db, make_booking, customer):
    now = utcnow()
    early = make_booking(BookingStatus.paid, starts_in=timedelta(minutes=720), now=now)
    late = make_booking(BookingStatus.paid, starts_in=timedelta(minutes=719, seconds=30), now=now)

    early_policies = cancellation_crud.get_applicable_policies(db, early.id, customer.id, now=now)
    assert [p.reason_key for p in early_policies] == ["customer_early_cancel"]
    assert early_policies[0].minutes_until_start == 720
    assert early_policies[0].user_role == "customer"

    late_policies = cancellation_crud.get_applicable_policies(db, late.id, customer.id, now=now)
    assert [p.reason_key for p in late_policies] == ["customer_late_cancel"]
    assert late_policies[0].minutes_until_start == 719


def test_policy_evaluation_is_deterministic(db, make_booking, customer):
    now = utcnow()
    booking = make_booking(BookingStatus.confirmed, starts_in=timedelta(hours=3), now=now)
    first = cancellation_crud.get_applicable_policies(db, booking.id, customer.id, now=now)
    second = cancellation_crud.get_applicable_policies(db, booking.id, customer.id, now=now)
    assert first == second


def test_provider_policies_in_progress_ordered_by_refund(db, make_booking, provider):
    booking = make_booking(BookingStatus.in_progress, starts_in=timedelta(minutes=-10))
    policies = cancellation_crud.get_applicable_policies(db, booking.id, provider.id)
    assert [p.reason_key for p in policies] == ["provider_cancel", "customer_no_show"]
    assert all(p.requires_explanation for p in policies)


def test_pending_booking_has_no_policies(client, make_booking, customer):
    booking = make_booking()
    resp = client.get(f"/api/bookings/{booking.id}/cancellation-policies", headers=auth(customer))
    assert resp.status_code == 200
    assert resp.json() == []


def test_policies_forbidden_for_strangers(client, make_booking, stranger):
    booking = make_booking(BookingStatus.paid)
    resp = client.get(f"/api/bookings/{booking.id}/cancellation-policies", headers=auth(stranger))
    assert resp.status_code == 403


def test_refund_breakdown_route(client, db, make_booking, customer):
    booking = make_booking(BookingStatus.paid)
    resp = client.post(
        f"/api/bookings/{booking.id}/refund-breakdown",
        json={"policy_id": policy_id(db, "customer_early_cancel")},
        headers=auth(customer),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert Decimal(data["total_amount"]) == Decimal("100.00")
    assert Decimal(data["breakdown"]["customer_refund"]) == Decimal("100.00")
    assert data["percentages"]["customer_refund_percentage"] == 100


def test_refund_breakdown_for_inapplicable_policy_is_404(client, db, make_booking, customer):
    booking = make_booking(BookingStatus.paid)
    resp = client.post(
        f"/api/bookings/{booking.id}/refund-breakdown",
        json={"policy_id": policy_id(db, "customer_late_cancel")},
        headers=auth(customer),
    )
    assert resp.status_code == 404


def test_explanation_required_leaves_booking_untouched(client, db, make_booking, provider, gateway):
    booking = make_booking(BookingStatus.paid)
    resp = client.post(
        f"/api/bookings/{booking.id}/cancel-with-policy",
        json={"policy_id": policy_id(db, "provider_cancel"), "explanation": "   "},
        headers=auth(provider),
    )
    assert resp.status_code == 400

    db.expire_all()
    assert db.get(Booking, booking.id).status == "paid"
    assert db.query(BookingEvent).filter(BookingEvent.booking_id == booking.id).count() == 0
    assert gateway.calls == []


def test_cancel_with_policy_records_settlement(client, db, make_booking, provider, gateway):
    booking = make_booking(BookingStatus.confirmed)
    resp = client.post(
        f"/api/bookings/{booking.id}/cancel-with-policy",
        json={"policy_id": policy_id(db, "provider_cancel"), "explanation": "Studio flooded"},
        headers=auth(provider),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["booking"]["status"] == "cancelled"
    assert data["booking"]["cancelled_at"] is not None
    assert data["booking"]["cancellation_explanation"] == "Studio flooded"
    assert Decimal(data["booking"]["refund_amount"]) == Decimal("100.00")
    assert Decimal(data["refund_breakdown"]["breakdown"]["platform_fee"]) == Decimal("0.00")

    events = db.query(BookingEvent).filter(BookingEvent.booking_id == booking.id).all()
    assert [e.event_type for e in events] == ["cancellation_settlement_requested"]
    assert len(gateway.calls) == 1
    assert gateway.calls[0][4] == "provider_cancel"


def test_customer_late_cancel_splits_with_platform(db, make_booking, customer, gateway):
    booking = make_booking(BookingStatus.paid, starts_in=timedelta(hours=2), total_price=Decimal("80.00"))
    result = cancellation_crud.cancel_with_policy(
        db, booking.id, policy_id(db, "customer_late_cancel"), customer.id
    )
    assert result.refund_breakdown.breakdown.customer_refund == Decimal("40.00")
    assert result.refund_breakdown.breakdown.platform_fee == Decimal("40.00")
    assert result.booking.cancelled_by == customer.id


def test_cancellation_rolls_back_when_event_write_fails(db, make_booking, customer, gateway, monkeypatch):
    booking = make_booking(BookingStatus.paid)

    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(booking_crud, "record_event", boom)

    with pytest.raises(HTTPException) as exc:
        cancellation_crud.cancel_with_policy(db, booking.id, policy_id(db, "customer_early_cancel"), customer.id)
    assert exc.value.status_code == 500

    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.status == "paid"
    assert stored.cancelled_at is None
    assert stored.refund_amount is None
    assert gateway.calls == []


def test_gateway_failure_does_not_fail_cancellation(db, make_booking, customer):
    previous = settlement.get_settlement_gateway()
    settlement.set_settlement_gateway(RecordingGateway(fail=True))
    try:
        booking = make_booking(BookingStatus.paid)
        result = cancellation_crud.cancel_with_policy(
            db, booking.id, policy_id(db, "customer_early_cancel"), customer.id
        )
    finally:
        settlement.set_settlement_gateway(previous)
    assert result.booking.status == BookingStatus.cancelled


def test_cancelled_booking_has_no_policies(db, make_booking, customer, gateway):
    booking = make_booking(BookingStatus.paid)
    early = policy_id(db, "customer_early_cancel")
    cancellation_crud.cancel_with_policy(db, booking.id, early, customer.id)
    assert cancellation_crud.get_applicable_policies(db, booking.id, customer.id) == []
    with pytest.raises(HTTPException) as exc:
        cancellation_crud.cancel_with_policy(db, booking.id, early, customer.id)
    assert exc.value.status_code == 404


def test_provider_rejects_paid_booking(client, db, make_booking, provider, customer, gateway):
    booking = make_booking(BookingStatus.paid)
    assert client.post(
        f"/api/bookings/{booking.id}/reject", json={"reason": "Away"}, headers=auth(customer)
    ).status_code == 403

    resp = client.post(f"/api/bookings/{booking.id}/reject", json={"reason": "Away"}, headers=auth(provider))
    assert resp.status_code == 200
    data = resp.json()
    assert data["booking"]["status"] == "cancelled"
    assert data["booking"]["rejection_reason"] == "Away"
    assert Decimal(data["refund_breakdown"]["breakdown"]["customer_refund"]) == Decimal("100.00")

    events = db.query(BookingEvent).filter(BookingEvent.booking_id == booking.id).all()
    assert [e.event_type for e in events] == ["rejection_refund_requested"]
    assert gateway.calls[0][4] == "provider_rejection"


def test_only_paid_bookings_can_be_rejected(client, make_booking, provider):
    booking = make_booking(BookingStatus.confirmed)
    resp = client.post(f"/api/bookings/{booking.id}/reject", json={}, headers=auth(provider))
    assert resp.status_code == 409
