# tests/unit/test_pricing.py

from decimal import Decimal

import pytest

from boxoffice.domain.pricing import compute_totals, to_money


def test_single_seat_totals():
    totals = compute_totals(1, Decimal("45.00"), Decimal("0.025"))

    assert totals.subtotal == Decimal("45.00")
    assert totals.booking_fee == Decimal("1.13")
    assert totals.discount_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("46.13")


def test_party_totals():
    totals = compute_totals(4, "38.50", "0.025")

    assert totals.subtotal == Decimal("154.00")
    assert totals.booking_fee == Decimal("3.85")
    assert totals.total_amount == Decimal("157.85")


def test_to_money_rounds_half_up():
    assert to_money("0.125") == Decimal("0.13")
    assert to_money(2) == Decimal("2.00")


def test_rejects_empty_party():
    with pytest.raises(ValueError):
        compute_totals(0, "45.00", "0.025")
