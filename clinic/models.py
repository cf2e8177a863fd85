"""Database models for the clinic backend."""
from __future__ import annotations

from datetime import datetime, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def cents_to_dollars(cents: int | None) -> float | None:
    if cents is None:
        return None
    return cents / 100.0


def _iso(value) -> str | None:
    return value.isoformat() if value else None


APPOINTMENT_STATUSES = ("scheduled", "checked-in", "complete", "canceled")
PAYMENT_STATUSES = ("pending", "completed", "failed")
PAYMENT_METHODS = ("credit", "cash", "gift", "other")
INTAKE_FORM_STATUSES = ("not_started", "skipped", "completed")
LOYALTY_LEVELS = ("none", "bronze", "silver", "gold", "platinum")
LOYALTY_TRANSACTION_TYPES = (
    "earned",
    "redeemed",
    "referral",
    "birthday",
    "subscription_started",
    "expired",
)
SUBSCRIPTION_STATUSES = ("active", "cancelled")


class Patient(db.Model):
    __tablename__ = "patients"

    patient_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(30))
    date_of_birth = db.Column(db.Date)
    address = db.Column(db.String(255))
    insurance_provider = db.Column(db.String(150))
    insurance_number = db.Column(db.String(100))
    status = db.Column(db.String(30), nullable=False, default="active")
    last_visit = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.patient_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "date_of_birth": _iso(self.date_of_birth),
            "address": self.address,
            "insurance_provider": self.insurance_provider,
            "insurance_number": self.insurance_number,
            "status": self.status,
            "last_visit": _iso(self.last_visit),
            "created_at": _iso(self.created_at),
        }


class Service(db.Model):
    """Treatments offered by the clinic."""

    __tablename__ = "services"

    service_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    duration_minutes = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "name": self.name,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "price_cents": self.price_cents,
            "price_dollars": cents_to_dollars(self.price_cents),
        }


class Room(db.Model):
    __tablename__ = "rooms"

    room_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    capacity = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.room_id,
            "name": self.name,
            "description": self.description,
            "capacity": self.capacity,
            "is_active": bool(self.is_active),
        }


class Appointment(db.Model):
    """Booked treatment slots. Cancellation is a status, rows are never deleted."""

    __tablename__ = "appointments"

    appointment_id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patients.patient_id"), nullable=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    room_id = db.Column(db.Integer, db.ForeignKey("rooms.room_id"), nullable=True)
    date = db.Column(db.Date, nullable=False)
    time = db.Column(db.String(5), nullable=False)  # HH:MM, 24h
    duration_minutes = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum(
            *APPOINTMENT_STATUSES,
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="scheduled",
    )
    notes = db.Column(db.Text)
    payment_status = db.Column(
        db.Enum(
            "pending",
            "paid",
            name="appointment_payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    payment_amount_cents = db.Column(db.Integer)
    payment_method = db.Column(db.String(30))
    intake_form_status = db.Column(db.String(30))
    intake_form_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "patient_id": self.patient_id,
            "service_id": self.service_id,
            "room_id": self.room_id,
            "date": _iso(self.date),
            "time": self.time,
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "notes": self.notes,
            "payment_status": self.payment_status,
            "payment_amount": cents_to_dollars(self.payment_amount_cents),
            "payment_method": self.payment_method,
            "intake_form_status": self.intake_form_status,
            "intake_form_at": _iso(self.intake_form_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class GiftCard(db.Model):
    __tablename__ = "gift_cards"

    gift_card_id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    remaining_balance_cents = db.Column(db.Integer, nullable=False)
    issued_to = db.Column(db.String(150))
    issued_email = db.Column(db.String(255))
    purchased_by = db.Column(db.Integer, db.ForeignKey("patients.patient_id"), nullable=True)
    status = db.Column(db.String(30), nullable=False, default="active")  # active, depleted
    expiry_date = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    last_used = db.Column(db.DateTime)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.gift_card_id,
            "code": self.code,
            "amount": cents_to_dollars(self.amount_cents),
            "remaining_balance": cents_to_dollars(self.remaining_balance_cents),
            "issued_to": self.issued_to,
            "issued_email": self.issued_email,
            "purchased_by": self.purchased_by,
            "status": self.status,
            "expiry_date": _iso(self.expiry_date),
            "created_at": _iso(self.created_at),
            "last_used": _iso(self.last_used),
        }


class Payment(db.Model):
    """Recorded payments; a completed payment marks its appointment as paid."""

    __tablename__ = "payments"

    payment_id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patients.patient_id"), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(30), nullable=False)
    status = db.Column(
        db.Enum(
            *PAYMENT_STATUSES,
            name="payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    transaction_id = db.Column(db.String(255))
    # Stripe (or local) payment intent id, unique so retries cannot double-record
    stripe_payment_intent_id = db.Column(db.String(255), unique=True, nullable=True)
    gift_card_id = db.Column(db.Integer, db.ForeignKey("gift_cards.gift_card_id"), nullable=True)
    items = db.Column(db.JSON, nullable=True)
    date = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.payment_id,
            "appointment_id": self.appointment_id,
            "patient_id": self.patient_id,
            "amount_cents": self.amount_cents,
            "amount": cents_to_dollars(self.amount_cents),
            "payment_method": self.payment_method,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "gift_card_id": self.gift_card_id,
            "items": self.items or [],
            "date": _iso(self.date),
        }


class Activity(db.Model):
    """Audit feed entries (appointment.created, payment.created, ...)."""

    __tablename__ = "activities"

    activity_id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False)
    entity_id = db.Column(db.Integer)
    entity_type = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.activity_id,
            "type": self.type,
            "description": self.description,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "timestamp": _iso(self.created_at),
        }


class LoyaltyPoints(db.Model):
    """One loyalty account per patient, created on the first transaction."""

    __tablename__ = "loyalty_points"

    loyalty_points_id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patients.patient_id"), unique=True, nullable=False)
    points = db.Column(db.Integer, nullable=False, default=0)
    total_earned = db.Column(db.Integer, nullable=False, default=0)
    monthly_points_earned = db.Column(db.Integer, nullable=False, default=0)
    level = db.Column(db.String(20), nullable=False, default="none")
    referrals_count = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "patient_id": self.patient_id,
            "points": self.points,
            "total_earned": self.total_earned,
            "monthly_points_earned": self.monthly_points_earned,
            "level": self.level,
            "referrals_count": self.referrals_count,
            "updated_at": _iso(self.updated_at),
        }


class LoyaltyTransaction(db.Model):
    """Append-only loyalty audit log."""

    __tablename__ = "loyalty_transactions"

    loyalty_transaction_id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patients.patient_id"), nullable=False)
    points = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(30), nullable=False)
    source = db.Column(db.String(50))
    source_id = db.Column(db.Integer)
    description = db.Column(db.Text)
    dollars_spent_cents = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.loyalty_transaction_id,
            "patient_id": self.patient_id,
            "points": self.points,
            "type": self.type,
            "source": self.source,
            "source_id": self.source_id,
            "description": self.description,
            "dollars_spent": cents_to_dollars(self.dollars_spent_cents),
            "created_at": _iso(self.created_at),
        }


class LoyaltySubscription(db.Model):
    __tablename__ = "loyalty_subscriptions"

    subscription_id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patients.patient_id"), nullable=False)
    plan_type = db.Column(db.String(20), nullable=False)
    monthly_fee_cents = db.Column(db.Integer, nullable=False)
    included_sessions = db.Column(db.Integer, nullable=False)
    includes_reiki = db.Column(db.Boolean, nullable=False, default=False)
    includes_pet_add_on = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(
        db.Enum(
            *SUBSCRIPTION_STATUSES,
            name="subscription_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="active",
    )
    start_date = db.Column(db.DateTime, nullable=False)
    next_billing_date = db.Column(db.DateTime)
    cancel_reason = db.Column(db.Text)
    cancelled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.subscription_id,
            "patient_id": self.patient_id,
            "plan_type": self.plan_type,
            "monthly_fee": cents_to_dollars(self.monthly_fee_cents),
            "included_sessions": self.included_sessions,
            "includes_reiki": bool(self.includes_reiki),
            "includes_pet_add_on": bool(self.includes_pet_add_on),
            "status": self.status,
            "start_date": _iso(self.start_date),
            "next_billing_date": _iso(self.next_billing_date),
            "cancel_reason": self.cancel_reason,
            "cancelled_at": _iso(self.cancelled_at),
        }
