"""Point-of-sale checkout sessions.

A session walks ``cart -> payment -> receipt``. The forward steps call the
payment gateway and only advance once that call succeeds; ``back`` moves one
stage back without touching the cart or any gateway. Completing the receipt
records the payment and resets the session to an empty cart.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from decimal import Decimal

from .errors import InvalidState, NotFound, ValidationError
from .models import PAYMENT_METHODS
from .pricing import (DEFAULT_TAX_RATE, TIP_MODES, CartLineItem, Totals,
                      compute_totals, round_money, to_decimal)

logger = logging.getLogger(__name__)

STAGES = ("cart", "payment", "receipt")
EDITABLE_STAGES = ("cart", "payment")

SETTING_FIELDS = (
    "discount_enabled",
    "discount_percent",
    "tip_mode",
    "tip_value",
    "customer_id",
    "payment_method",
    "gift_card_code",
    "appointment_id",
)


def _optional_id(value, field: str):
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


class CheckoutSession:

    def __init__(self, session_id: str | None = None, tax_rate=DEFAULT_TAX_RATE) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.tax_rate = to_decimal(tax_rate, "tax_rate")
        self._reset()

    def _reset(self) -> None:
        self.lines: list[CartLineItem] = []
        self.discount_enabled = False
        self.discount_percent = Decimal(0)
        self.tip_mode = "percent"
        self.tip_value = Decimal(0)
        self.customer_id: int | None = None
        self.payment_method = "credit"
        self.gift_card_code: str | None = None
        self.appointment_id: int | None = None
        self.stage = "cart"
        self.payment_intent_ref: str | None = None
        self.client_secret: str | None = None

    # cart editing ---------------------------------------------------------

    def _require_stage(self, *stages: str) -> None:
        if self.stage not in stages:
            raise InvalidState(f"Not allowed while checkout is at the {self.stage} stage")

    def _find_line(self, item_id: str) -> CartLineItem | None:
        for line in self.lines:
            if line.id == str(item_id):
                return line
        return None

    def add_item(self, payload: dict) -> CartLineItem:
        self._require_stage("cart")
        item = CartLineItem.from_payload(payload)
        existing = self._find_line(item.id)
        if existing is not None:
            existing.quantity += item.quantity
            return existing
        self.lines.append(item)
        return item

    def decrease_item(self, item_id: str) -> CartLineItem | None:
        """Take one off a line; the line is dropped when it reaches zero."""
        self._require_stage("cart")
        line = self._find_line(item_id)
        if line is None:
            raise NotFound(f"Item {item_id} is not in the cart")
        line.quantity -= 1
        if line.quantity <= 0:
            self.lines.remove(line)
            return None
        return line

    def remove_item(self, item_id: str) -> None:
        self._require_stage("cart")
        line = self._find_line(item_id)
        if line is None:
            raise NotFound(f"Item {item_id} is not in the cart")
        self.lines.remove(line)

    def update_settings(self, payload: dict) -> None:
        """Validate every field first, then apply them together."""
        self._require_stage(*EDITABLE_STAGES)
        if not isinstance(payload, dict):
            raise ValidationError("settings must be an object")

        unknown = set(payload) - set(SETTING_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        changes = {}
        if "discount_enabled" in payload:
            if not isinstance(payload["discount_enabled"], bool):
                raise ValidationError("discount_enabled must be true or false")
            changes["discount_enabled"] = payload["discount_enabled"]
        if "discount_percent" in payload:
            percent = to_decimal(payload["discount_percent"], "discount_percent")
            if percent < 0 or percent > 100:
                raise ValidationError("discount_percent must be between 0 and 100")
            changes["discount_percent"] = percent
        if "tip_mode" in payload:
            if payload["tip_mode"] not in TIP_MODES:
                raise ValidationError(f"tip_mode must be one of: {', '.join(TIP_MODES)}")
            changes["tip_mode"] = payload["tip_mode"]
        if "tip_value" in payload:
            tip = to_decimal(payload["tip_value"], "tip_value")
            if tip < 0:
                raise ValidationError("tip_value must not be negative")
            changes["tip_value"] = tip
        if "payment_method" in payload:
            if payload["payment_method"] not in PAYMENT_METHODS:
                raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
            changes["payment_method"] = payload["payment_method"]
        if "customer_id" in payload:
            changes["customer_id"] = _optional_id(payload["customer_id"], "customer_id")
        if "appointment_id" in payload:
            changes["appointment_id"] = _optional_id(payload["appointment_id"], "appointment_id")
        if "gift_card_code" in payload:
            code = payload["gift_card_code"]
            if code is not None:
                code = str(code).strip() or None
            changes["gift_card_code"] = code

        for key, value in changes.items():
            setattr(self, key, value)

    # pricing --------------------------------------------------------------

    def totals(self) -> Totals:
        return compute_totals(
            self.lines,
            discount_enabled=self.discount_enabled,
            discount_percent=self.discount_percent,
            tip_mode=self.tip_mode,
            tip_value=self.tip_value,
            tax_rate=self.tax_rate,
        )

    # stage transitions ----------------------------------------------------

    def begin_checkout(self) -> None:
        self._require_stage("cart")
        if not self.lines:
            raise InvalidState("Cannot check out an empty cart", error="empty_cart")
        self.stage = "payment"

    def confirm(self, gateway) -> dict[str, object]:
        """Create the payment intent and move to the receipt stage."""
        self._require_stage("payment")
        if self.payment_method == "gift" and not self.gift_card_code:
            raise ValidationError("gift_card_code is required for gift card payments")
        gateway.require_customer(self.customer_id)

        totals = self.totals()
        metadata = {"checkout_session": self.id}
        if self.appointment_id is not None:
            metadata["appointment_id"] = self.appointment_id
        intent = gateway.create_payment_intent(
            round_money(totals.total),
            self.lines,
            customer_id=self.customer_id,
            metadata=metadata,
        )

        self.payment_intent_ref = intent["payment_intent_id"]
        self.client_secret = intent.get("client_secret")
        self.stage = "receipt"
        return intent

    def complete(self, gateway) -> dict[str, object]:
        """Record the payment, hand back a receipt and start a fresh cart."""
        self._require_stage("receipt")
        totals = self.totals()
        lines = [line.to_dict() for line in self.lines]

        payment = gateway.record_payment(
            round_money(totals.total),
            self.payment_method,
            items=lines,
            customer_id=self.customer_id,
            appointment_id=self.appointment_id,
            payment_intent_id=self.payment_intent_ref,
            status="completed",
            gift_card_code=self.gift_card_code,
        )

        receipt = {
            "session_id": self.id,
            "payment": payment.to_dict(),
            "lines": lines,
            "totals": totals.to_dict(),
            "payment_method": self.payment_method,
            "customer_id": self.customer_id,
            "payment_intent_id": self.payment_intent_ref,
        }
        logger.info("Checkout session %s completed with payment %s", self.id, payment.payment_id)
        self._reset()
        return receipt

    def back(self) -> None:
        if self.stage == "payment":
            self.stage = "cart"
        elif self.stage == "receipt":
            self.stage = "payment"
        else:
            raise InvalidState("Already at the cart stage")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "stage": self.stage,
            "lines": [line.to_dict() for line in self.lines],
            "discount_enabled": self.discount_enabled,
            "discount_percent": float(self.discount_percent),
            "tip_mode": self.tip_mode,
            "tip_value": float(self.tip_value),
            "customer_id": self.customer_id,
            "payment_method": self.payment_method,
            "gift_card_code": self.gift_card_code,
            "appointment_id": self.appointment_id,
            "payment_intent_id": self.payment_intent_ref,
            "client_secret": self.client_secret,
            "totals": self.totals().to_dict(),
        }


CHECKOUT_SESSION_IDLE_SECONDS = 3600


class CheckoutSessionStore:
    """Process-local registry of open checkout sessions.

    Sessions untouched for ``idle_seconds`` are dropped the next time the
    store is used.
    """

    def __init__(
        self,
        tax_rate=DEFAULT_TAX_RATE,
        idle_seconds: float = CHECKOUT_SESSION_IDLE_SECONDS,
        clock=time.monotonic,
    ) -> None:
        self.tax_rate = tax_rate
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._sessions: dict[str, CheckoutSession] = {}
        self._last_used: dict[str, float] = {}
        self._lock = threading.Lock()

    def _evict_idle(self, now: float) -> None:
        expired = [sid for sid, seen in self._last_used.items() if now - seen > self.idle_seconds]
        for sid in expired:
            del self._sessions[sid]
            del self._last_used[sid]
        if expired:
            logger.info("Dropped %d idle checkout sessions", len(expired))

    def create(self) -> CheckoutSession:
        session = CheckoutSession(tax_rate=self.tax_rate)
        with self._lock:
            now = self._clock()
            self._evict_idle(now)
            self._sessions[session.id] = session
            self._last_used[session.id] = now
        return session

    def get(self, session_id: str) -> CheckoutSession:
        with self._lock:
            now = self._clock()
            self._evict_idle(now)
            session = self._sessions.get(session_id)
            if session is not None:
                self._last_used[session_id] = now
        if session is None:
            raise NotFound(f"Checkout session {session_id} not found")
        return session

    def discard(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise NotFound(f"Checkout session {session_id} not found")
            del self._last_used[session_id]

    def __len__(self) -> int:
        with self._lock:
            self._evict_idle(self._clock())
            return len(self._sessions)
