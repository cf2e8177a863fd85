"""Relational ledger store backed by the Flask-SQLAlchemy session."""
from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import DuplicateSubscription, NotFound
from ..extensions import db
from ..loyalty import apply_points
from ..models import (Activity, Appointment, GiftCard, LoyaltyPoints,
                      LoyaltySubscription, LoyaltyTransaction, Patient, Payment,
                      Room, Service, utc_now)
from .base import (STATS_WINDOW, Repository, appointment_activity,
                   debit_gift_card, payment_activity)

logger = logging.getLogger(__name__)


class SqlRepository(Repository):
    """Each write commits once; any failure rolls the whole unit back."""

    def _commit(self) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def _add(self, instance):
        db.session.add(instance)
        self._commit()
        return instance

    # patients / catalog ---------------------------------------------------

    def create_patient(self, data: dict):
        return self._add(Patient(**data))

    def get_patient(self, patient_id: int):
        return db.session.get(Patient, patient_id)

    def list_patients(self) -> list:
        return Patient.query.order_by(Patient.name.asc()).all()

    def create_service(self, data: dict):
        return self._add(Service(**data))

    def get_service(self, service_id: int):
        return db.session.get(Service, service_id)

    def list_services(self) -> list:
        return Service.query.order_by(Service.name.asc()).all()

    def create_room(self, data: dict):
        return self._add(Room(**data))

    def get_room(self, room_id: int):
        return db.session.get(Room, room_id)

    def list_rooms(self) -> list:
        return Room.query.order_by(Room.room_id.asc()).all()

    # appointments ---------------------------------------------------------

    def get_appointment(self, appointment_id: int):
        return db.session.get(Appointment, appointment_id)

    def list_appointments(self, on_date: date | None = None, room_id: int | None = None) -> list:
        query = Appointment.query
        if on_date is not None:
            query = query.filter(Appointment.date == on_date)
        if room_id is not None:
            query = query.filter(Appointment.room_id == room_id)
        return query.order_by(Appointment.date.asc(), Appointment.time.asc()).all()

    def _record_activity(self, data: dict) -> Activity:
        activity = Activity(**data)
        db.session.add(activity)
        return activity

    def create_appointment(self, data: dict):
        try:
            appointment = Appointment(**data)
            db.session.add(appointment)
            db.session.flush()  # assigns appointment_id for the activity entry
            self._record_activity(appointment_activity("created", appointment))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return appointment

    def _apply_appointment_update(self, appointment: Appointment, data: dict) -> None:
        for key, value in data.items():
            setattr(appointment, key, value)
        self._record_activity(appointment_activity("updated", appointment))

    def update_appointment(self, appointment_id: int, data: dict):
        appointment = self.get_appointment(appointment_id)
        if appointment is None:
            raise NotFound(f"Appointment with ID {appointment_id} not found")
        try:
            self._apply_appointment_update(appointment, data)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return appointment

    def cancel_appointment(self, appointment_id: int, data: dict | None = None):
        appointment = self.get_appointment(appointment_id)
        if appointment is None:
            raise NotFound(f"Appointment with ID {appointment_id} not found")
        if appointment.status == "canceled":
            return appointment
        try:
            for key, value in (data or {}).items():
                setattr(appointment, key, value)
            appointment.status = "canceled"
            self._record_activity(appointment_activity("canceled", appointment))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return appointment

    # payments -------------------------------------------------------------

    def create_payment(self, data: dict, gift_card_code: str | None = None):
        now = utc_now()
        try:
            appointment = None
            if data.get("appointment_id") is not None:
                appointment = self.get_appointment(data["appointment_id"])
                if appointment is None:
                    raise NotFound(f"Appointment with ID {data['appointment_id']} not found")

            payment = Payment(date=now, **data)
            if gift_card_code:
                card = GiftCard.query.filter_by(code=gift_card_code).first()
                if card is None:
                    raise NotFound(f"Gift card {gift_card_code} not found")
                debit_gift_card(card, payment.amount_cents, now)
                payment.gift_card_id = card.gift_card_id

            db.session.add(payment)
            db.session.flush()

            if appointment is not None and payment.status == "completed":
                self._apply_appointment_update(appointment, {
                    "payment_status": "paid",
                    "payment_amount_cents": payment.amount_cents,
                    "payment_method": payment.payment_method,
                })

            self._record_activity(payment_activity(payment))
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            intent_id = data.get("stripe_payment_intent_id")
            existing = self._payment_for_intent(intent_id) if intent_id else None
            if existing is not None:
                logger.warning("Duplicate payment attempt detected for payment_intent %s", intent_id)
                return existing, False
            raise
        except Exception:
            db.session.rollback()
            raise
        return payment, True

    def get_payment(self, payment_id: int):
        return db.session.get(Payment, payment_id)

    def get_payments_by_patient(self, patient_id: int) -> list:
        return Payment.query.filter_by(patient_id=patient_id).order_by(Payment.date.desc()).all()

    def get_payments_by_appointment(self, appointment_id: int) -> list:
        return Payment.query.filter_by(appointment_id=appointment_id).order_by(Payment.date.desc()).all()

    def _payment_for_intent(self, payment_intent_id: str):
        return Payment.query.filter_by(stripe_payment_intent_id=payment_intent_id).first()

    def find_payment_by_intent(self, payment_intent_id: str):
        return self._payment_for_intent(payment_intent_id)

    # gift cards -----------------------------------------------------------

    def create_gift_card(self, data: dict):
        return self._add(GiftCard(**data))

    def get_gift_card_by_code(self, code: str):
        return GiftCard.query.filter_by(code=code).first()

    # activity feed --------------------------------------------------------

    def create_activity(self, data: dict):
        activity = self._record_activity(data)
        self._commit()
        return activity

    def get_recent_activities(self, limit: int = 10) -> list:
        return (
            Activity.query.order_by(Activity.created_at.desc(), Activity.activity_id.desc())
            .limit(limit)
            .all()
        )

    def get_dashboard_stats(self, now: datetime) -> dict[str, int]:
        since = now - STATS_WINDOW
        since_naive = since.replace(tzinfo=None)
        revenue = (
            db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
            .filter(Payment.status == "completed", Payment.date >= since_naive)
            .scalar()
        )
        return {
            "today_appointments": Appointment.query.filter(Appointment.date == now.date()).count(),
            "new_patients": Patient.query.filter(Patient.created_at >= since_naive).count(),
            "weekly_revenue_cents": int(revenue),
            "cancellations": Appointment.query.filter(
                Appointment.status == "canceled", Appointment.date >= since.date()
            ).count(),
        }

    # loyalty --------------------------------------------------------------

    def get_patient_loyalty(self, patient_id: int):
        return LoyaltyPoints.query.filter_by(patient_id=patient_id).first()

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
        try:
            account = self.get_patient_loyalty(patient_id)
            if account is None:
                account = LoyaltyPoints(
                    patient_id=patient_id,
                    points=0,
                    total_earned=0,
                    monthly_points_earned=0,
                    level="none",
                    referrals_count=0,
                )
                db.session.add(account)

            apply_points(account, points, type_)

            transaction = LoyaltyTransaction(
                patient_id=patient_id,
                points=points,
                type=type_,
                source=source,
                source_id=source_id,
                description=description,
                dollars_spent_cents=dollars_spent_cents,
            )
            db.session.add(transaction)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return account, transaction

    def get_loyalty_transactions(self, patient_id: int, limit: int | None = None) -> list:
        query = LoyaltyTransaction.query.filter_by(patient_id=patient_id).order_by(
            LoyaltyTransaction.created_at.desc(),
            LoyaltyTransaction.loyalty_transaction_id.desc(),
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def create_loyalty_subscription(self, data: dict):
        try:
            if self.get_patient_loyalty_subscription(data["patient_id"]) is not None:
                raise DuplicateSubscription("Patient already has an active subscription")
            subscription = LoyaltySubscription(**data)
            db.session.add(subscription)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return subscription

    def get_patient_loyalty_subscription(self, patient_id: int):
        return LoyaltySubscription.query.filter_by(patient_id=patient_id, status="active").first()

    def get_loyalty_subscription(self, subscription_id: int):
        return db.session.get(LoyaltySubscription, subscription_id)

    def cancel_loyalty_subscription(self, subscription_id: int, reason: str | None = None):
        subscription = self.get_loyalty_subscription(subscription_id)
        if subscription is None:
            raise NotFound("Subscription not found")
        if subscription.status == "cancelled":
            return subscription
        subscription.status = "cancelled"
        subscription.cancel_reason = reason
        subscription.cancelled_at = utc_now()
        self._commit()
        return subscription
