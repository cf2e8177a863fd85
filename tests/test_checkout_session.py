"""Tests for the point-of-sale checkout stages."""
from __future__ import annotations

from decimal import Decimal

import pytest

from clinic.checkout import CheckoutSession, CheckoutSessionStore
from clinic.errors import InvalidState, NotFound, UpstreamFailure, ValidationError

MASSAGE = {"id": "massage", "name": "Massage", "unit_price": 80, "quantity": 1}


class FailingGateway:
    def require_customer(self, customer_id):
        return None

    def create_payment_intent(self, *args, **kwargs):
        raise UpstreamFailure("processor timed out")

    def record_payment(self, *args, **kwargs):
        raise UpstreamFailure("processor timed out")


def test_massage_checkout_end_to_end(gateway, repo, patient) -> None:
    session = CheckoutSession()
    session.add_item(MASSAGE)
    session.update_settings({"tip_mode": "percent", "tip_value": 18, "customer_id": patient.patient_id})

    totals = session.totals()
    assert totals.subtotal == Decimal("80")
    assert totals.tax == Decimal("6.4")
    assert totals.tip_amount == Decimal("14.4")
    assert totals.total == Decimal("100.8")

    session.begin_checkout()
    assert session.stage == "payment"

    intent = session.confirm(gateway)
    assert session.stage == "receipt"
    assert intent["payment_intent_id"].startswith("local_")
    assert session.payment_intent_ref == intent["payment_intent_id"]

    receipt = session.complete(gateway)
    assert receipt["totals"]["total"] == 100.8
    assert receipt["payment"]["amount_cents"] == 10080
    assert receipt["payment"]["status"] == "completed"
    assert receipt["payment"]["stripe_payment_intent_id"] == intent["payment_intent_id"]
    assert receipt["lines"][0]["name"] == "Massage"

    assert session.stage == "cart"
    assert session.lines == []
    assert session.tip_value == 0
    assert session.tip_mode == "percent"
    assert session.discount_enabled is False
    assert session.customer_id is None
    assert session.payment_method == "credit"
    assert session.payment_intent_ref is None

    # 100.80 paid -> 100 points
    assert repo.get_patient_loyalty(patient.patient_id).points == 100


def test_empty_cart_cannot_check_out() -> None:
    session = CheckoutSession()

    with pytest.raises(InvalidState) as excinfo:
        session.begin_checkout()

    assert excinfo.value.error == "empty_cart"
    assert session.stage == "cart"


def test_failed_payment_intent_keeps_payment_stage() -> None:
    session = CheckoutSession()
    session.add_item(MASSAGE)
    session.begin_checkout()

    with pytest.raises(UpstreamFailure):
        session.confirm(FailingGateway())

    assert session.stage == "payment"
    assert session.payment_intent_ref is None
    assert len(session.lines) == 1


def test_failed_recording_keeps_receipt_stage(gateway) -> None:
    session = CheckoutSession()
    session.add_item(MASSAGE)
    session.update_settings({"payment_method": "gift", "gift_card_code": "MISSING"})
    session.begin_checkout()
    session.confirm(gateway)
    intent_ref = session.payment_intent_ref

    with pytest.raises(NotFound):
        session.complete(gateway)

    assert session.stage == "receipt"
    assert session.payment_intent_ref == intent_ref
    assert session.lines[0].id == "massage"


def test_fully_discounted_checkout(gateway, repo, patient) -> None:
    session = CheckoutSession()
    session.add_item(MASSAGE)
    session.update_settings({"discount_enabled": True, "discount_percent": 100, "customer_id": patient.patient_id})
    session.begin_checkout()

    intent = session.confirm(gateway)
    assert session.stage == "receipt"
    assert intent["amount_cents"] == 0

    receipt = session.complete(gateway)
    assert receipt["payment"]["amount_cents"] == 0
    assert receipt["totals"]["total"] == 0
    assert repo.get_patient_loyalty(patient.patient_id) is None


def test_unknown_customer_blocks_confirm(gateway, repo) -> None:
    session = CheckoutSession()
    session.add_item(MASSAGE)
    session.update_settings({"customer_id": 999})
    session.begin_checkout()

    with pytest.raises(NotFound):
        session.confirm(gateway)

    assert session.stage == "payment"
    assert session.payment_intent_ref is None
    assert repo.payments.all() == []


def test_back_navigation_keeps_cart_and_intent(gateway) -> None:
    session = CheckoutSession()
    session.add_item(MASSAGE)
    session.update_settings({"discount_enabled": True, "discount_percent": 10})
    session.begin_checkout()
    session.back()

    assert session.stage == "cart"
    assert session.discount_enabled is True
    assert len(session.lines) == 1

    session.begin_checkout()
    session.confirm(gateway)
    intent_ref = session.payment_intent_ref
    session.back()

    assert session.stage == "payment"
    assert session.payment_intent_ref == intent_ref
    assert session.totals().total == Decimal("77.76")


def test_back_from_cart_is_rejected() -> None:
    with pytest.raises(InvalidState):
        CheckoutSession().back()


def test_adding_same_item_merges_quantity_and_decrease_drops_at_zero() -> None:
    session = CheckoutSession()
    session.add_item(MASSAGE)
    session.add_item({**MASSAGE, "quantity": 2})

    assert len(session.lines) == 1
    assert session.lines[0].quantity == 3

    session.decrease_item("massage")
    session.decrease_item("massage")
    assert session.lines[0].quantity == 1

    assert session.decrease_item("massage") is None
    assert session.lines == []


def test_remove_unknown_item() -> None:
    session = CheckoutSession()

    with pytest.raises(NotFound):
        session.remove_item("nope")


def test_invalid_settings_change_nothing() -> None:
    session = CheckoutSession()

    with pytest.raises(ValidationError):
        session.update_settings({"tip_value": 20, "discount_percent": 150})

    assert session.tip_value == 0
    assert session.discount_percent == 0


@pytest.mark.parametrize(
    "settings",
    [
        {"tip_mode": "sometimes"},
        {"tip_value": -1},
        {"payment_method": "bitcoin"},
        {"discount_enabled": "yes"},
        {"customer_id": "abc"},
        {"surprise": True},
    ],
)
def test_settings_validation(settings) -> None:
    with pytest.raises(ValidationError):
        CheckoutSession().update_settings(settings)


def test_settings_are_locked_at_receipt(gateway) -> None:
    session = CheckoutSession()
    session.add_item(MASSAGE)
    session.begin_checkout()
    session.update_settings({"tip_value": 10})
    session.confirm(gateway)

    with pytest.raises(InvalidState):
        session.update_settings({"tip_value": 20})
    with pytest.raises(InvalidState):
        session.add_item(MASSAGE)


def test_store_lookup_and_discard() -> None:
    store = CheckoutSessionStore()
    session = store.create()

    assert store.get(session.id) is session
    store.discard(session.id)

    with pytest.raises(NotFound):
        store.get(session.id)
    with pytest.raises(NotFound):
        store.discard(session.id)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_store_drops_idle_sessions() -> None:
    clock = FakeClock()
    store = CheckoutSessionStore(idle_seconds=600, clock=clock)
    idle = store.create()
    active = store.create()

    clock.now = 500
    store.get(active.id)
    clock.now = 700

    assert store.get(active.id) is active
    with pytest.raises(NotFound):
        store.get(idle.id)
    assert len(store) == 1
