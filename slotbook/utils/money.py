from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_cents(value) -> Decimal:
    """Round a monetary amount half-up to two decimal places"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(total, percentage) -> Decimal:
    return to_cents(Decimal(str(total)) * Decimal(percentage) / Decimal(100))
