"""Abstract ledger store shared by every storage backend."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

from ..errors import ValidationError

# Rolling window for the "new patients", revenue and cancellation counts.
STATS_WINDOW = timedelta(days=7)


def format_date(value: date | datetime) -> str:
    """Render a date the way the front desk reads it, e.g. 3/7/2025."""
    return f"{value.month}/{value.day}/{value.year}"


def appointment_activity(kind: str, appointment) -> dict[str, object]:
    descriptions = {
        "created": "New appointment scheduled for {}",
        "updated": "Appointment updated for {}",
        "canceled": "Appointment canceled for {}",
    }
    return {
        "type": f"appointment.{kind}",
        "description": descriptions[kind].format(format_date(appointment.date)),
        "entity_id": appointment.appointment_id,
        "entity_type": "appointment",
    }


def payment_activity(payment) -> dict[str, object]:
    amount = f"{payment.amount_cents / 100:.2f}".rstrip("0").rstrip(".")
    return {
        "type": "payment.created",
        "description": f"Payment received: ${amount}",
        "entity_id": payment.payment_id,
        "entity_type": "payment",
    }


def as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def debit_gift_card(card, amount_cents: int, now: datetime) -> None:
    """Take ``amount_cents`` off a gift card or raise ValidationError."""
    if card.status != "active":
        raise ValidationError(f"Gift card {card.code} is {card.status}", error="gift_card_unavailable")
    if card.expiry_date is not None and as_aware(card.expiry_date) < now:
        raise ValidationError(f"Gift card {card.code} has expired", error="gift_card_unavailable")
    if card.remaining_balance_cents < amount_cents:
        raise ValidationError(
            f"Gift card balance ${card.remaining_balance_cents / 100:.2f} is less than ${amount_cents / 100:.2f}",
            error="insufficient_balance",
        )

    card.remaining_balance_cents -= amount_cents
    card.last_used = now
    if card.remaining_balance_cents == 0:
        card.status = "depleted"


class Repository(ABC):
    """Persistence contract used by the appointment, checkout and loyalty services.

    Implementations return model instances from :mod:`clinic.models`. Every
    write method is one logical unit: it either fully applies (including the
    activity entries it produces) or leaves the store untouched.
    """

    # patients / catalog
    @abstractmethod
    def create_patient(self, data: dict): ...

    @abstractmethod
    def get_patient(self, patient_id: int): ...

    @abstractmethod
    def list_patients(self) -> list: ...

    @abstractmethod
    def create_service(self, data: dict): ...

    @abstractmethod
    def get_service(self, service_id: int): ...

    @abstractmethod
    def list_services(self) -> list: ...

    @abstractmethod
    def create_room(self, data: dict): ...

    @abstractmethod
    def get_room(self, room_id: int): ...

    @abstractmethod
    def list_rooms(self) -> list: ...

    # appointments
    @abstractmethod
    def get_appointment(self, appointment_id: int): ...

    @abstractmethod
    def list_appointments(self, on_date: date | None = None, room_id: int | None = None) -> list: ...

    @abstractmethod
    def create_appointment(self, data: dict): ...

    @abstractmethod
    def update_appointment(self, appointment_id: int, data: dict): ...

    @abstractmethod
    def cancel_appointment(self, appointment_id: int, data: dict | None = None): ...

    # payments
    @abstractmethod
    def create_payment(self, data: dict, gift_card_code: str | None = None):
        """Insert a payment and return ``(payment, created)``.

        When a payment with the same ``stripe_payment_intent_id`` already
        exists it is returned with ``created`` False and nothing is written.
        """

    @abstractmethod
    def get_payment(self, payment_id: int): ...

    @abstractmethod
    def get_payments_by_patient(self, patient_id: int) -> list: ...

    @abstractmethod
    def get_payments_by_appointment(self, appointment_id: int) -> list: ...

    @abstractmethod
    def find_payment_by_intent(self, payment_intent_id: str): ...

    # gift cards
    @abstractmethod
    def create_gift_card(self, data: dict): ...

    @abstractmethod
    def get_gift_card_by_code(self, code: str): ...

    # activity feed
    @abstractmethod
    def create_activity(self, data: dict): ...

    @abstractmethod
    def get_recent_activities(self, limit: int = 10) -> list: ...

    @abstractmethod
    def get_dashboard_stats(self, now: datetime) -> dict[str, int]: ...

    # loyalty
    @abstractmethod
    def get_patient_loyalty(self, patient_id: int): ...

    @abstractmethod
    def create_or_update_loyalty_points(
        self,
        patient_id: int,
        points: int,
        type_: str,
        source: str | None = None,
        source_id: int | None = None,
        description: str | None = None,
        dollars_spent_cents: int | None = None,
    ): ...

    @abstractmethod
    def get_loyalty_transactions(self, patient_id: int, limit: int | None = None) -> list: ...

    @abstractmethod
    def create_loyalty_subscription(self, data: dict): ...

    @abstractmethod
    def get_patient_loyalty_subscription(self, patient_id: int): ...

    @abstractmethod
    def get_loyalty_subscription(self, subscription_id: int): ...

    @abstractmethod
    def cancel_loyalty_subscription(self, subscription_id: int, reason: str | None = None): ...
