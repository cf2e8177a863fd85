"""Tests for cart totals."""
from __future__ import annotations

from decimal import Decimal

import pytest

from clinic.errors import ValidationError
from clinic.pricing import CartLineItem, compute_totals, round_money, to_cents


def _lines():
    return [
        CartLineItem(id="a", name="Facial", unit_price=Decimal("10"), quantity=2),
        CartLineItem(id="b", name="Oil", unit_price=Decimal("5"), quantity=1, category="product"),
    ]


def test_discount_tax_and_tip_add_up() -> None:
    totals = compute_totals(_lines(), discount_enabled=True, discount_percent=10, tip_mode="percent", tip_value=15)

    assert totals.subtotal == Decimal("25")
    assert totals.discount_amount == Decimal("2.5")
    assert totals.taxable_base == Decimal("22.5")
    assert totals.tax == Decimal("1.8")
    assert totals.tip_amount == Decimal("3.75")
    assert totals.total == Decimal("28.05")
    assert totals.total == totals.subtotal - totals.discount_amount + totals.tax + totals.tip_amount


def test_tip_is_taken_on_the_undiscounted_subtotal() -> None:
    with_discount = compute_totals(_lines(), discount_enabled=True, discount_percent=50, tip_value=20)
    without_discount = compute_totals(_lines(), tip_value=20)

    assert with_discount.tip_amount == without_discount.tip_amount == Decimal("5")


def test_disabled_discount_ignores_percent() -> None:
    totals = compute_totals(_lines(), discount_enabled=False, discount_percent=40)

    assert totals.discount_amount == 0
    assert totals.tax == Decimal("2")


def test_fixed_tip() -> None:
    totals = compute_totals(_lines(), tip_mode="fixed", tip_value="7.25")

    assert totals.tip_amount == Decimal("7.25")
    assert totals.total == Decimal("34.25")


def test_empty_cart_is_all_zero() -> None:
    totals = compute_totals([])

    assert totals.to_dict() == {
        "subtotal": 0.0,
        "discount_amount": 0.0,
        "taxable_base": 0.0,
        "tax": 0.0,
        "tip_amount": 0.0,
        "total": 0.0,
    }
    assert totals.total_cents == 0


def test_rounding_happens_only_on_presentation() -> None:
    lines = [CartLineItem(id="x", name="Tea", unit_price=Decimal("3.33"), quantity=3)]
    totals = compute_totals(lines, tip_value="12.5")

    # 9.99 * 0.08 = 0.7992 and 9.99 * 0.125 = 1.24875
    assert totals.tax == Decimal("0.7992")
    assert totals.tip_amount == Decimal("1.24875")
    assert totals.to_dict()["total"] == 12.04
    assert totals.total_cents == 1204


def test_round_money_and_cents_use_half_up() -> None:
    assert round_money(Decimal("0.125")) == Decimal("0.13")
    assert to_cents(Decimal("100.8")) == 10080


def test_line_item_from_payload_accepts_price_alias() -> None:
    item = CartLineItem.from_payload({"id": 3, "name": " Massage ", "price": 80.5, "quantity": 2})

    assert item.id == "3"
    assert item.name == "Massage"
    assert item.unit_price == Decimal("80.5")
    assert item.to_dict()["line_total"] == 161.0


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "No id", "unit_price": 1},
        {"id": "1", "unit_price": 1},
        {"id": "1", "name": "Bad price", "unit_price": "abc"},
        {"id": "1", "name": "Negative", "unit_price": -1},
        {"id": "1", "name": "Zero qty", "unit_price": 1, "quantity": 0},
        {"id": "1", "name": "Bool qty", "unit_price": 1, "quantity": True},
        {"id": "1", "name": "Odd category", "unit_price": 1, "category": "gift"},
    ],
)
def test_line_item_from_payload_rejects_bad_input(payload) -> None:
    with pytest.raises(ValidationError):
        CartLineItem.from_payload(payload)
