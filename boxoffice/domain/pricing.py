from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BookingTotals:
    subtotal: Decimal
    discount_amount: Decimal
    booking_fee: Decimal
    total_amount: Decimal


def compute_totals(seat_count: int, base_price, fee_rate) -> BookingTotals:
    """Flat per-seat price plus a percentage booking fee. No discounts."""
    if seat_count <= 0:
        raise ValueError("seat_count must be positive")
    subtotal = to_money(Decimal(seat_count) * to_money(base_price))
    fee = to_money(subtotal * Decimal(str(fee_rate)))
    return BookingTotals(
        subtotal=subtotal,
        discount_amount=to_money(0),
        booking_fee=fee,
        total_amount=subtotal + fee,
    )
