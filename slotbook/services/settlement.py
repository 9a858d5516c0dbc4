"""Hand-off point to the external payment/settlement service.

The booking core only records settlement intent (a ``BookingEvent`` written
in the same transaction as the status change). Once that transaction has
committed, the gateway is told about it. Executing refunds and payouts is
the external service's job.
"""
from decimal import Decimal
from typing import Optional

from slotbook.logger import get_logger

logger = get_logger(__name__)


class SettlementGateway:
    def request_settlement(
            self,
            booking_id: str,
            customer_refund: Decimal,
            provider_earnings: Decimal,
            platform_fee: Decimal,
            reason: str,
            payment_reference: Optional[str] = None,
    ) -> None:
        raise NotImplementedError


class LoggingSettlementGateway(SettlementGateway):
    """Default gateway: logs the request so an operator or worker can pick it up"""

    def request_settlement(
            self,
            booking_id: str,
            customer_refund: Decimal,
            provider_earnings: Decimal,
            platform_fee: Decimal,
            reason: str,
            payment_reference: Optional[str] = None,
    ) -> None:
        logger.info(
            f"Settlement requested for booking {booking_id} ({reason}): "
            f"refund={customer_refund} provider={provider_earnings} platform={platform_fee} "
            f"payment={payment_reference or 'n/a'}"
        )


settlement_gateway: SettlementGateway = LoggingSettlementGateway()


def set_settlement_gateway(gateway: SettlementGateway) -> None:
    global settlement_gateway
    settlement_gateway = gateway


def get_settlement_gateway() -> SettlementGateway:
    return settlement_gateway


def hand_off(booking_id: str, breakdown, reason: str, payment_reference: Optional[str] = None) -> None:
    """Call the gateway after commit; failures are logged since the intent is already recorded"""
    try:
        settlement_gateway.request_settlement(
            booking_id=booking_id,
            customer_refund=breakdown.customer_refund,
            provider_earnings=breakdown.provider_earnings,
            platform_fee=breakdown.platform_fee,
            reason=reason,
            payment_reference=payment_reference,
        )
    except Exception as e:
        logger.error(f"Settlement hand-off failed for booking {booking_id}: {str(e)}")
