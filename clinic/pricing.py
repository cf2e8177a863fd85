"""Point-of-sale pricing.

All arithmetic is done with :class:`~decimal.Decimal` at full precision.
Rounding to cents only happens when totals are presented or charged.

Order of operations::

    subtotal  = sum(unit_price * quantity)
    discount  = subtotal * discount_percent / 100     (only when enabled)
    tax       = (subtotal - discount) * tax_rate
    tip       = subtotal * tip_value / 100            (percent mode)
              = tip_value                             (fixed mode)
    total     = subtotal - discount + tax + tip

The tip is taken on the pre-discount subtotal, matching the front desk's
long-standing behaviour.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from .errors import ValidationError

DEFAULT_TAX_RATE = Decimal("0.08")
CENT = Decimal("0.01")
HUNDRED = Decimal(100)

LINE_CATEGORIES = ("service", "product")
TIP_MODES = ("percent", "fixed")


def to_decimal(value, field: str = "value") -> Decimal:
    """Coerce ints, floats and numeric strings to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number") from None


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    return int(round_money(amount) * 100)


@dataclass
class CartLineItem:
    id: str
    name: str
    unit_price: Decimal
    quantity: int = 1
    category: str = "service"

    @classmethod
    def from_payload(cls, payload: dict) -> "CartLineItem":
        if not isinstance(payload, dict):
            raise ValidationError("line item must be an object")

        item_id = payload.get("id")
        name = (payload.get("name") or "").strip()
        if item_id in (None, ""):
            raise ValidationError("line item id is required")
        if not name:
            raise ValidationError("line item name is required")

        unit_price = to_decimal(payload.get("unit_price", payload.get("price")), "unit_price")
        if unit_price < 0:
            raise ValidationError("unit_price must not be negative")

        quantity = payload.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("quantity must be an integer of at least 1")

        category = payload.get("category", "service")
        if category not in LINE_CATEGORIES:
            raise ValidationError(f"category must be one of: {', '.join(LINE_CATEGORIES)}")

        return cls(id=str(item_id), name=name, unit_price=unit_price, quantity=quantity, category=category)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "unit_price": float(round_money(self.unit_price)),
            "quantity": self.quantity,
            "category": self.category,
            "line_total": float(round_money(self.line_total)),
        }


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    taxable_base: Decimal
    tax: Decimal
    tip_amount: Decimal
    total: Decimal

    @property
    def total_cents(self) -> int:
        return to_cents(self.total)

    def to_dict(self) -> dict[str, float]:
        return {
            "subtotal": float(round_money(self.subtotal)),
            "discount_amount": float(round_money(self.discount_amount)),
            "taxable_base": float(round_money(self.taxable_base)),
            "tax": float(round_money(self.tax)),
            "tip_amount": float(round_money(self.tip_amount)),
            "total": float(round_money(self.total)),
        }


def compute_totals(
    lines: Iterable[CartLineItem],
    discount_enabled: bool = False,
    discount_percent=0,
    tip_mode: str = "percent",
    tip_value=0,
    tax_rate=DEFAULT_TAX_RATE,
) -> Totals:
    """Price a cart. Never raises for a well-formed session; an empty cart is all zeros."""
    subtotal = sum((line.line_total for line in lines), Decimal(0))

    if discount_enabled:
        discount_amount = subtotal * (to_decimal(discount_percent) / HUNDRED)
    else:
        discount_amount = Decimal(0)

    taxable_base = subtotal - discount_amount
    tax = taxable_base * to_decimal(tax_rate)

    if tip_mode == "percent":
        tip_amount = subtotal * (to_decimal(tip_value) / HUNDRED)
    else:
        tip_amount = to_decimal(tip_value)

    total = subtotal - discount_amount + tax + tip_amount

    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable_base=taxable_base,
        tax=tax,
        tip_amount=tip_amount,
        total=total,
    )
