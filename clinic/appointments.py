"""Appointment booking and the appointment status state machine.

Statuses move ``scheduled -> checked-in -> complete``; ``canceled`` can be
reached from either non-terminal status. Payment status is a separate axis
that only payment recording touches.
"""
from __future__ import annotations

import logging
import re
from datetime import date

from .errors import InvalidState, NotFound, ValidationError
from .models import utc_now

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "scheduled": ("checked-in", "canceled"),
    "checked-in": ("complete", "canceled"),
    "complete": (),
    "canceled": (),
}

INTAKE_FORM_CHOICES = ("completed", "skipped")

EDITABLE_FIELDS = ("patient_id", "room_id", "date", "time", "duration_minutes", "notes")
PAYMENT_FIELDS = ("payment_status", "payment_amount", "payment_amount_cents", "payment_method")

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_date(value, field: str = "date") -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)") from None


def parse_time(value) -> str:
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise ValidationError("time must be HH:MM (24h)")
    return value


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


class IntakeFormWorkflow:
    """Offers the patient intake form after check-in.

    The front desk answers the prompt later through
    :meth:`AppointmentService.record_intake_form`.
    """

    def offer(self, appointment) -> dict[str, object]:
        logger.info("Offering intake form for appointment %s", appointment.appointment_id)
        return {
            "appointment_id": appointment.appointment_id,
            "prompt": "Would you like the patient to complete the intake form now or skip for later?",
            "choices": list(INTAKE_FORM_CHOICES),
        }


class AppointmentService:
    def __init__(self, repository, gateway=None, intake_workflow: IntakeFormWorkflow | None = None) -> None:
        self.repository = repository
        self.gateway = gateway
        self.intake_workflow = intake_workflow or IntakeFormWorkflow()

    def get(self, appointment_id: int):
        appointment = self.repository.get_appointment(appointment_id)
        if appointment is None:
            raise NotFound(f"Appointment with ID {appointment_id} not found")
        return appointment

    def list(self, on_date=None, room_id=None) -> list:
        if on_date is not None:
            on_date = parse_date(on_date)
        return self.repository.list_appointments(on_date=on_date, room_id=room_id)

    def _check_references(self, patient_id=None, room_id=None) -> None:
        if patient_id is not None and self.repository.get_patient(patient_id) is None:
            raise NotFound(f"Patient with ID {patient_id} not found")
        if room_id is not None and self.repository.get_room(room_id) is None:
            raise NotFound(f"Room with ID {room_id} not found")

    def create(self, payload: dict):
        service_id = payload.get("service_id")
        if service_id is None:
            raise ValidationError("service_id is required")
        service = self.repository.get_service(service_id)
        if service is None:
            raise NotFound(f"Service with ID {service_id} not found")
        if not payload.get("date") or not payload.get("time"):
            raise ValidationError("date and time are required")

        duration = payload.get("duration_minutes", payload.get("duration"))
        data = {
            "service_id": service_id,
            "patient_id": payload.get("patient_id"),
            "room_id": payload.get("room_id"),
            "date": parse_date(payload["date"]),
            "time": parse_time(payload["time"]),
            "duration_minutes": _positive_int(duration, "duration") if duration is not None else service.duration_minutes,
            "notes": payload.get("notes"),
        }
        self._check_references(data["patient_id"], data["room_id"])

        appointment = self.repository.create_appointment(data)
        logger.info("Scheduled appointment %s on %s at %s", appointment.appointment_id, data["date"], data["time"])
        return appointment

    def update(self, appointment_id: int, payload: dict):
        """Edit booking details; a ``status`` key goes through the state machine."""
        if not isinstance(payload, dict) or not payload:
            raise ValidationError("No fields to update")

        blocked = [key for key in payload if key in PAYMENT_FIELDS]
        if blocked:
            raise ValidationError("Payment fields are set by recording a payment, not by editing an appointment")

        payload = dict(payload)
        if "duration" in payload:
            payload["duration_minutes"] = payload.pop("duration")
        unknown = set(payload) - set(EDITABLE_FIELDS) - {"status"}
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        appointment = self.get(appointment_id)
        target = payload.pop("status", None)
        if target is not None and target not in TRANSITIONS:
            raise ValidationError(f"status must be one of: {', '.join(TRANSITIONS)}")

        changes = {}
        if "date" in payload:
            changes["date"] = parse_date(payload["date"])
        if "time" in payload:
            changes["time"] = parse_time(payload["time"])
        if "duration_minutes" in payload:
            changes["duration_minutes"] = _positive_int(payload["duration_minutes"], "duration")
        for key in ("patient_id", "room_id", "notes"):
            if key in payload:
                changes[key] = payload[key]
        self._check_references(changes.get("patient_id"), changes.get("room_id"))

        if target is not None and target != appointment.status:
            self._require_transition(appointment, target)

        if target is None or target == appointment.status:
            if changes:
                appointment = self.repository.update_appointment(appointment_id, changes)
            return appointment
        # Field edits ride along with the status change as one write.
        if target == "checked-in":
            return self.check_in(appointment_id, changes)[0]
        if target == "complete":
            return self.complete(appointment_id, changes=changes)
        return self.cancel(appointment_id, changes)

    def _require_transition(self, appointment, target: str) -> None:
        if target not in TRANSITIONS.get(appointment.status, ()):
            raise InvalidState(
                f"Cannot move appointment {appointment.appointment_id} from {appointment.status} to {target}"
            )

    def check_in(self, appointment_id: int, changes: dict | None = None):
        """Check the patient in and offer the intake form once.

        Returns ``(appointment, intake_prompt)``; the prompt is ``None`` when
        the workflow failed, which never undoes the check-in.
        """
        appointment = self.get(appointment_id)
        self._require_transition(appointment, "checked-in")

        changes = {**(changes or {}), "status": "checked-in"}
        if appointment.intake_form_status is None:
            changes["intake_form_status"] = "not_started"
        appointment = self.repository.update_appointment(appointment_id, changes)
        logger.info("Checked in appointment %s", appointment_id)

        try:
            prompt = self.intake_workflow.offer(appointment)
        except Exception:
            logger.exception("Intake form workflow failed for appointment %s", appointment_id)
            prompt = None
        return appointment, prompt

    def complete(self, appointment_id: int, payment: dict | None = None, changes: dict | None = None):
        """Check out a checked-in appointment, optionally recording its payment."""
        appointment = self.get(appointment_id)
        self._require_transition(appointment, "complete")

        if payment:
            if self.gateway is None:
                raise InvalidState("No payment gateway configured")
            if "amount" not in payment or "payment_method" not in payment:
                raise ValidationError("payment requires amount and payment_method")
            self.gateway.record_payment(
                payment["amount"],
                payment["payment_method"],
                items=payment.get("items"),
                customer_id=appointment.patient_id,
                appointment_id=appointment_id,
                payment_intent_id=payment.get("payment_intent_id"),
                transaction_id=payment.get("transaction_id"),
                gift_card_code=payment.get("gift_card_code"),
            )

        appointment = self.repository.update_appointment(appointment_id, {**(changes or {}), "status": "complete"})
        logger.info("Completed appointment %s", appointment_id)
        return appointment

    def cancel(self, appointment_id: int, changes: dict | None = None):
        appointment = self.get(appointment_id)
        if appointment.status == "canceled":
            return appointment
        self._require_transition(appointment, "canceled")
        appointment = self.repository.cancel_appointment(appointment_id, changes)
        logger.info("Canceled appointment %s", appointment_id)
        return appointment

    def record_intake_form(self, appointment_id: int, status: str):
        if status not in INTAKE_FORM_CHOICES:
            raise ValidationError(f"status must be one of: {', '.join(INTAKE_FORM_CHOICES)}")
        appointment = self.get(appointment_id)
        if appointment.status not in ("checked-in", "complete"):
            raise InvalidState("Intake forms are recorded after check-in")
        return self.repository.update_appointment(
            appointment_id,
            {"intake_form_status": status, "intake_form_at": utc_now()},
        )
