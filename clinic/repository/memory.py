"""Process-local ledger store.

Uses the same model classes as the SQL backend, kept as transient objects
in dictionaries. A single lock makes every write method one atomic unit.
"""
from __future__ import annotations

import itertools
import threading
from datetime import date, datetime

from ..errors import DuplicateSubscription, NotFound
from ..loyalty import apply_points
from ..models import (Activity, Appointment, GiftCard, LoyaltyPoints,
                      LoyaltySubscription, LoyaltyTransaction, Patient, Payment,
                      Room, Service, utc_now)
from .base import (STATS_WINDOW, Repository, appointment_activity, as_aware,
                   debit_gift_card, payment_activity)


class _Table:
    def __init__(self, model, pk: str) -> None:
        self.model = model
        self.pk = pk
        self.rows: dict[int, object] = {}
        self._ids = itertools.count(1)

    def insert(self, data: dict):
        instance = self.model(**data)
        setattr(instance, self.pk, next(self._ids))
        self.rows[getattr(instance, self.pk)] = instance
        return instance

    def get(self, key):
        return self.rows.get(key)

    def all(self) -> list:
        return list(self.rows.values())


class MemoryRepository(Repository):

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.patients = _Table(Patient, "patient_id")
        self.services = _Table(Service, "service_id")
        self.rooms = _Table(Room, "room_id")
        self.appointments = _Table(Appointment, "appointment_id")
        self.payments = _Table(Payment, "payment_id")
        self.gift_cards = _Table(GiftCard, "gift_card_id")
        self.activities = _Table(Activity, "activity_id")
        self.loyalty_accounts = _Table(LoyaltyPoints, "loyalty_points_id")
        self.loyalty_transactions = _Table(LoyaltyTransaction, "loyalty_transaction_id")
        self.subscriptions = _Table(LoyaltySubscription, "subscription_id")

    # patients / catalog ---------------------------------------------------

    def create_patient(self, data: dict):
        with self._lock:
            return self.patients.insert({"status": "active", "created_at": utc_now(), **data})

    def get_patient(self, patient_id: int):
        return self.patients.get(patient_id)

    def list_patients(self) -> list:
        return sorted(self.patients.all(), key=lambda p: p.name)

    def create_service(self, data: dict):
        with self._lock:
            return self.services.insert(data)

    def get_service(self, service_id: int):
        return self.services.get(service_id)

    def list_services(self) -> list:
        return sorted(self.services.all(), key=lambda s: s.name)

    def create_room(self, data: dict):
        with self._lock:
            return self.rooms.insert({"capacity": 1, "is_active": True, **data})

    def get_room(self, room_id: int):
        return self.rooms.get(room_id)

    def list_rooms(self) -> list:
        return self.rooms.all()

    # appointments ---------------------------------------------------------

    def get_appointment(self, appointment_id: int):
        return self.appointments.get(appointment_id)

    def list_appointments(self, on_date: date | None = None, room_id: int | None = None) -> list:
        rows = self.appointments.all()
        if on_date is not None:
            rows = [a for a in rows if a.date == on_date]
        if room_id is not None:
            rows = [a for a in rows if a.room_id == room_id]
        return sorted(rows, key=lambda a: (a.date, a.time))

    def _record_activity(self, data: dict):
        return self.activities.insert({"created_at": utc_now(), **data})

    def create_appointment(self, data: dict):
        with self._lock:
            now = utc_now()
            appointment = self.appointments.insert({
                "status": "scheduled",
                "payment_status": "pending",
                "created_at": now,
                "updated_at": now,
                **data,
            })
            self._record_activity(appointment_activity("created", appointment))
            return appointment

    def _apply_appointment_update(self, appointment, data: dict) -> None:
        for key, value in data.items():
            setattr(appointment, key, value)
        appointment.updated_at = utc_now()
        self._record_activity(appointment_activity("updated", appointment))

    def update_appointment(self, appointment_id: int, data: dict):
        with self._lock:
            appointment = self.get_appointment(appointment_id)
            if appointment is None:
                raise NotFound(f"Appointment with ID {appointment_id} not found")
            self._apply_appointment_update(appointment, data)
            return appointment

    def cancel_appointment(self, appointment_id: int, data: dict | None = None):
        with self._lock:
            appointment = self.get_appointment(appointment_id)
            if appointment is None:
                raise NotFound(f"Appointment with ID {appointment_id} not found")
            if appointment.status == "canceled":
                return appointment
            for key, value in (data or {}).items():
                setattr(appointment, key, value)
            appointment.status = "canceled"
            appointment.updated_at = utc_now()
            self._record_activity(appointment_activity("canceled", appointment))
            return appointment

    # payments -------------------------------------------------------------

    def create_payment(self, data: dict, gift_card_code: str | None = None):
        with self._lock:
            intent_id = data.get("stripe_payment_intent_id")
            if intent_id:
                existing = self._payment_for_intent(intent_id)
                if existing is not None:
                    return existing, False

            appointment = None
            if data.get("appointment_id") is not None:
                appointment = self.get_appointment(data["appointment_id"])
                if appointment is None:
                    raise NotFound(f"Appointment with ID {data['appointment_id']} not found")

            now = utc_now()
            card = None
            if gift_card_code:
                card = self.get_gift_card_by_code(gift_card_code)
                if card is None:
                    raise NotFound(f"Gift card {gift_card_code} not found")
                debit_gift_card(card, data["amount_cents"], now)

            payment = self.payments.insert({
                "status": "pending",
                "date": now,
                **data,
                "gift_card_id": card.gift_card_id if card is not None else None,
            })

            if appointment is not None and payment.status == "completed":
                self._apply_appointment_update(appointment, {
                    "payment_status": "paid",
                    "payment_amount_cents": payment.amount_cents,
                    "payment_method": payment.payment_method,
                })

            self._record_activity(payment_activity(payment))
            return payment, True

    def get_payment(self, payment_id: int):
        return self.payments.get(payment_id)

    def get_payments_by_patient(self, patient_id: int) -> list:
        rows = [p for p in self.payments.all() if p.patient_id == patient_id]
        return sorted(rows, key=lambda p: p.payment_id, reverse=True)

    def get_payments_by_appointment(self, appointment_id: int) -> list:
        rows = [p for p in self.payments.all() if p.appointment_id == appointment_id]
        return sorted(rows, key=lambda p: p.payment_id, reverse=True)

    def _payment_for_intent(self, payment_intent_id: str):
        for payment in self.payments.all():
            if payment.stripe_payment_intent_id == payment_intent_id:
                return payment
        return None

    def find_payment_by_intent(self, payment_intent_id: str):
        return self._payment_for_intent(payment_intent_id)

    # gift cards -----------------------------------------------------------

    def create_gift_card(self, data: dict):
        with self._lock:
            return self.gift_cards.insert({"status": "active", "created_at": utc_now(), **data})

    def get_gift_card_by_code(self, code: str):
        for card in self.gift_cards.all():
            if card.code == code:
                return card
        return None

    # activity feed --------------------------------------------------------

    def create_activity(self, data: dict):
        with self._lock:
            return self._record_activity(data)

    def get_recent_activities(self, limit: int = 10) -> list:
        rows = sorted(self.activities.all(), key=lambda a: a.activity_id, reverse=True)
        return rows[:limit]

    def get_dashboard_stats(self, now: datetime) -> dict[str, int]:
        since = now - STATS_WINDOW
        appointments = self.appointments.all()
        return {
            "today_appointments": sum(1 for a in appointments if a.date == now.date()),
            "new_patients": sum(
                1 for p in self.patients.all() if p.created_at is not None and as_aware(p.created_at) >= since
            ),
            "weekly_revenue_cents": sum(
                p.amount_cents
                for p in self.payments.all()
                if p.status == "completed" and as_aware(p.date) >= since
            ),
            "cancellations": sum(
                1 for a in appointments if a.status == "canceled" and a.date >= since.date()
            ),
        }

    # loyalty --------------------------------------------------------------

    def get_patient_loyalty(self, patient_id: int):
        for account in self.loyalty_accounts.all():
            if account.patient_id == patient_id:
                return account
        return None

    def create_or_update_loyalty_points(
        self,
        patient_id: int,
        points: int,
        type_: str,
        source: str | None = None,
        source_id: int | None = None,
        description: str | None = None,
        dollars_spent_cents: int | None = None,
    ):
        with self._lock:
            now = utc_now()
            account = self.get_patient_loyalty(patient_id)
            if account is None:
                account = self.loyalty_accounts.insert({
                    "patient_id": patient_id,
                    "points": 0,
                    "total_earned": 0,
                    "monthly_points_earned": 0,
                    "level": "none",
                    "referrals_count": 0,
                })

            apply_points(account, points, type_)
            account.updated_at = now

            transaction = self.loyalty_transactions.insert({
                "patient_id": patient_id,
                "points": points,
                "type": type_,
                "source": source,
                "source_id": source_id,
                "description": description,
                "dollars_spent_cents": dollars_spent_cents,
                "created_at": now,
            })
            return account, transaction

    def get_loyalty_transactions(self, patient_id: int, limit: int | None = None) -> list:
        rows = [t for t in self.loyalty_transactions.all() if t.patient_id == patient_id]
        rows.sort(key=lambda t: t.loyalty_transaction_id, reverse=True)
        return rows[:limit] if limit else rows

    def create_loyalty_subscription(self, data: dict):
        with self._lock:
            if self.get_patient_loyalty_subscription(data["patient_id"]) is not None:
                raise DuplicateSubscription("Patient already has an active subscription")
            now = utc_now()
            return self.subscriptions.insert({"created_at": now, "updated_at": now, **data})

    def get_patient_loyalty_subscription(self, patient_id: int):
        for subscription in self.subscriptions.all():
            if subscription.patient_id == patient_id and subscription.status == "active":
                return subscription
        return None

    def get_loyalty_subscription(self, subscription_id: int):
        return self.subscriptions.get(subscription_id)

    def cancel_loyalty_subscription(self, subscription_id: int, reason: str | None = None):
        with self._lock:
            subscription = self.get_loyalty_subscription(subscription_id)
            if subscription is None:
                raise NotFound("Subscription not found")
            if subscription.status == "cancelled":
                return subscription
            now = utc_now()
            subscription.status = "cancelled"
            subscription.cancel_reason = reason
            subscription.cancelled_at = now
            subscription.updated_at = now
            return subscription
