"""Payment-intent gateways and payment recording."""
from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod

import stripe

from .errors import NotFound, UpstreamFailure, ValidationError
from .models import PAYMENT_METHODS, PAYMENT_STATUSES
from .pricing import to_cents, to_decimal

logger = logging.getLogger(__name__)


def _item_summary(items) -> str:
    names = []
    for item in items or []:
        if isinstance(item, dict):
            name = item.get("name")
            quantity = item.get("quantity", 1)
        else:
            name = getattr(item, "name", None)
            quantity = getattr(item, "quantity", 1)
        if name:
            names.append(f"{name} x{quantity}")
    # Stripe caps metadata values at 500 characters.
    return ", ".join(names)[:500]


def _serialize_items(items) -> list:
    return [item if isinstance(item, dict) else item.to_dict() for item in items or []]


def _amount_cents(amount) -> int:
    """Accept dollars as Decimal/float/str and return whole cents."""
    value = to_decimal(amount, "amount")
    if value < 0:
        raise ValidationError("amount must not be negative")
    return to_cents(value)


def _local_intent(amount_cents: int) -> dict[str, object]:
    return {
        "payment_intent_id": f"local_{uuid.uuid4().hex}",
        "client_secret": None,
        "amount_cents": amount_cents,
    }


class PaymentGateway(ABC):
    """Creates payment intents and records settled payments.

    Subclasses only implement :meth:`_create_intent`; recording is shared so
    every backend gets the same idempotency and loyalty behaviour.
    """

    def __init__(self, repository, ledger=None, currency: str = "usd") -> None:
        self.repository = repository
        self.ledger = ledger
        self.currency = currency

    @abstractmethod
    def _create_intent(self, amount_cents: int, metadata: dict[str, str]) -> dict[str, object]: ...

    def require_customer(self, customer_id) -> None:
        if customer_id is not None and self.repository.get_patient(customer_id) is None:
            raise NotFound(f"Patient with ID {customer_id} not found")

    def create_payment_intent(self, amount, items, customer_id=None, metadata=None) -> dict[str, object]:
        amount_cents = _amount_cents(amount)
        if amount_cents == 0:
            # Zero totals never reach the processor.
            intent = _local_intent(0)
            logger.info("Issued %s for a zero total without contacting the processor", intent["payment_intent_id"])
            return intent

        intent_metadata = {
            "customer_id": str(customer_id) if customer_id is not None else "",
            "items": _item_summary(items),
        }
        intent_metadata.update({k: str(v) for k, v in (metadata or {}).items()})

        intent = self._create_intent(amount_cents, intent_metadata)
        logger.info("Created payment intent %s for %s cents", intent["payment_intent_id"], amount_cents)
        return intent

    def record_payment(
        self,
        amount,
        payment_method: str,
        items=None,
        customer_id=None,
        appointment_id=None,
        payment_intent_id: str | None = None,
        status: str = "completed",
        transaction_id: str | None = None,
        gift_card_code: str | None = None,
    ):
        """Persist a payment and award loyalty points.

        Retrying with the same ``payment_intent_id`` returns the payment that
        was already recorded and awards nothing further.
        """
        if payment_intent_id:
            existing = self.repository.find_payment_by_intent(payment_intent_id)
            if existing is not None:
                logger.info("Payment for intent %s already recorded as %s", payment_intent_id, existing.payment_id)
                return existing

        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
        if status not in PAYMENT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(PAYMENT_STATUSES)}")
        if payment_method == "gift" and not gift_card_code:
            raise ValidationError("gift_card_code is required for gift card payments")
        amount_cents = _amount_cents(amount)
        self.require_customer(customer_id)

        payment, created = self.repository.create_payment(
            {
                "patient_id": customer_id,
                "appointment_id": appointment_id,
                "amount_cents": amount_cents,
                "payment_method": payment_method,
                "status": status,
                "transaction_id": transaction_id,
                "stripe_payment_intent_id": payment_intent_id,
                "items": _serialize_items(items),
            },
            gift_card_code=gift_card_code if payment_method == "gift" else None,
        )
        if not created:
            logger.info("Payment for intent %s was recorded concurrently as %s", payment_intent_id, payment.payment_id)
            return payment

        if self.ledger is not None:
            self.ledger.award_for_payment(payment)

        logger.info(
            "Recorded %s payment %s of %s cents (appointment=%s, patient=%s)",
            payment.status,
            payment.payment_id,
            payment.amount_cents,
            appointment_id,
            customer_id,
        )
        return payment


class StripePaymentGateway(PaymentGateway):
    def __init__(self, repository, api_key: str, ledger=None, currency: str = "usd") -> None:
        super().__init__(repository, ledger=ledger, currency=currency)
        self.api_key = api_key

    def _create_intent(self, amount_cents: int, metadata: dict[str, str]) -> dict[str, object]:
        stripe.api_key = self.api_key
        try:
            intent = stripe.PaymentIntent.create(
                amount=int(amount_cents),
                currency=self.currency,
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            logger.exception("Stripe API error while creating payment intent")
            raise UpstreamFailure("An error occurred while processing the payment.") from exc

        return {
            "payment_intent_id": intent.id,
            "client_secret": intent.client_secret,
            "amount_cents": amount_cents,
        }


class LocalPaymentGateway(PaymentGateway):
    """Offline gateway for cash desks and development without Stripe keys."""

    def _create_intent(self, amount_cents: int, metadata: dict[str, str]) -> dict[str, object]:
        return _local_intent(amount_cents)


def build_gateway(config, repository, ledger=None) -> PaymentGateway:
    currency = config.get("STRIPE_CURRENCY") or "usd"
    api_key = config.get("STRIPE_SECRET_KEY")
    if api_key:
        return StripePaymentGateway(repository, api_key, ledger=ledger, currency=currency)
    logger.warning("Stripe secret key not configured; using the local payment gateway")
    return LocalPaymentGateway(repository, ledger=ledger, currency=currency)
