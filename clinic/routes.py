"""HTTP routes for the clinic backend."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .appointments import parse_date
from .errors import ClinicError, NotFound, ValidationError
from .extensions import db
from .models import cents_to_dollars, utc_now
from .pricing import to_cents, to_decimal
from .services import get_services

health_bp = Blueprint("health", __name__)
bp = Blueprint("api", __name__)


def error_response(exc: ClinicError):
    current_app.logger.warning("Request rejected (%s): %s", exc.error, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


def database_error(exc: SQLAlchemyError, message: str):
    db.session.rollback()
    current_app.logger.exception(message, exc_info=exc)
    return jsonify({"error": "database_error"}), 500


def int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


@health_bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
    """
    return jsonify({"status": "ok"}), 200


@health_bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# --- Patients and catalog ---


@bp.get("/patients")
def list_patients() -> tuple[dict[str, object], int]:
    """List patients ordered by name.
    ---
    tags:
      - Patients
    responses:
      200:
        description: Patients
      500:
        description: Database error
    """
    try:
        patients = get_services().repository.list_patients()
        return jsonify({"patients": [p.to_dict() for p in patients]}), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to list patients")


@bp.post("/patients")
def create_patient() -> tuple[dict[str, object], int]:
    """Register a patient.
    ---
    tags:
      - Patients
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name, email]
          properties:
            name:
              type: string
            email:
              type: string
            phone:
              type: string
            date_of_birth:
              type: string
              format: date
            address:
              type: string
            insurance_provider:
              type: string
            insurance_number:
              type: string
    responses:
      201:
        description: Patient created
      400:
        description: Invalid input
      500:
        description: Database error
    """
    payload = request.get_json(silent=True) or {}
    try:
        name = (payload.get("name") or "").strip()
        email = (payload.get("email") or "").strip()
        if not name or not email:
            raise ValidationError("name and email are required")

        data = {"name": name, "email": email}
        for key in ("phone", "address", "insurance_provider", "insurance_number"):
            if payload.get(key):
                data[key] = str(payload[key]).strip()
        if payload.get("date_of_birth"):
            data["date_of_birth"] = parse_date(payload["date_of_birth"], "date_of_birth")

        patient = get_services().repository.create_patient(data)
        return jsonify({"message": "Patient created successfully", "patient": patient.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create patient")


@bp.get("/patients/<int:patient_id>")
def get_patient(patient_id: int) -> tuple[dict[str, object], int]:
    """Fetch a single patient.
    ---
    tags:
      - Patients
    parameters:
      - in: path
        name: patient_id
        required: true
        type: integer
    responses:
      200:
        description: Patient
      404:
        description: Patient not found
    """
    try:
        patient = get_services().repository.get_patient(patient_id)
        if patient is None:
            return jsonify({"error": "not_found", "message": "Patient not found"}), 404
        return jsonify({"patient": patient.to_dict()}), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch patient")


@bp.get("/services")
def list_services() -> tuple[dict[str, object], int]:
    """List the treatments the clinic offers.
    ---
    tags:
      - Services
    responses:
      200:
        description: Services
    """
    try:
        services = get_services().repository.list_services()
        return jsonify({"services": [s.to_dict() for s in services]}), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to list services")


@bp.post("/services")
def create_service() -> tuple[dict[str, object], int]:
    """Add a treatment to the menu.
    ---
    tags:
      - Services
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name, price, duration_minutes]
          properties:
            name:
              type: string
            description:
              type: string
            price:
              type: number
              description: Price in dollars
            duration_minutes:
              type: integer
    responses:
      201:
        description: Service created successfully
      400:
        description: Invalid input
      500:
        description: Database error
    """
    payload = request.get_json(silent=True) or {}
    try:
        name = (payload.get("name") or "").strip()
        if not name or payload.get("price") is None or payload.get("duration_minutes") is None:
            raise ValidationError("name, price, and duration_minutes are required")

        price = to_decimal(payload["price"], "price")
        duration_minutes = payload["duration_minutes"]
        if price < 0 or isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
            raise ValidationError("price must be >= 0 and duration_minutes must be > 0")

        service = get_services().repository.create_service({
            "name": name,
            "description": (payload.get("description") or "").strip() or None,
            "price_cents": to_cents(price),
            "duration_minutes": duration_minutes,
        })
        return jsonify({"message": "Service created successfully", "service": service.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create service")


@bp.get("/rooms")
def list_rooms() -> tuple[dict[str, object], int]:
    """List treatment rooms.
    ---
    tags:
      - Rooms
    responses:
      200:
        description: Rooms
    """
    try:
        rooms = get_services().repository.list_rooms()
        return jsonify({"rooms": [r.to_dict() for r in rooms]}), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to list rooms")


@bp.post("/rooms")
def create_room() -> tuple[dict[str, object], int]:
    """Add a treatment room.
    ---
    tags:
      - Rooms
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name]
          properties:
            name:
              type: string
            description:
              type: string
            capacity:
              type: integer
    responses:
      201:
        description: Room created
      400:
        description: Invalid input
    """
    payload = request.get_json(silent=True) or {}
    try:
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required")
        capacity = payload.get("capacity", 1)
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
            raise ValidationError("capacity must be a positive integer")

        room = get_services().repository.create_room({
            "name": name,
            "description": payload.get("description"),
            "capacity": capacity,
            "is_active": True,
        })
        return jsonify({"message": "Room created successfully", "room": room.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create room")


# --- Appointments ---


@bp.get("/appointments")
def list_appointments() -> tuple[dict[str, object], int]:
    """List appointments, optionally for one day and/or room.
    ---
    tags:
      - Appointments
    parameters:
      - name: date
        in: query
        type: string
        format: date
      - name: room_id
        in: query
        type: integer
    responses:
      200:
        description: Appointments ordered by date and time
      400:
        description: Invalid filter
    """
    try:
        appointments = get_services().appointments.list(
            on_date=request.args.get("date") or None,
            room_id=int_arg("room_id"),
        )
        return jsonify({"appointments": [a.to_dict() for a in appointments]}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to list appointments")


@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Book an appointment. New bookings start as scheduled and unpaid.
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [service_id, date, time]
          properties:
            service_id:
              type: integer
            patient_id:
              type: integer
            room_id:
              type: integer
            date:
              type: string
              format: date
            time:
              type: string
              example: "14:30"
            duration:
              type: integer
              description: Minutes; defaults to the service duration
            notes:
              type: string
    responses:
      201:
        description: Appointment created
      400:
        description: Invalid input
      404:
        description: Service, patient or room not found
    """
    payload = request.get_json(silent=True) or {}
    try:
        appointment = get_services().appointments.create(payload)
        return jsonify({"message": "Appointment created successfully", "appointment": appointment.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create appointment")


@bp.get("/appointments/<int:appointment_id>")
def get_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Fetch one appointment.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: integer
    responses:
      200:
        description: Appointment
      404:
        description: Appointment not found
    """
    try:
        appointment = get_services().appointments.get(appointment_id)
        return jsonify({"appointment": appointment.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch appointment")


@bp.patch("/appointments/<int:appointment_id>")
def update_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Edit an appointment. A status change must follow the allowed transitions.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: integer
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            date:
              type: string
            time:
              type: string
            duration:
              type: integer
            room_id:
              type: integer
            patient_id:
              type: integer
            notes:
              type: string
            status:
              type: string
              enum: [scheduled, checked-in, complete, canceled]
    responses:
      200:
        description: Appointment updated
      400:
        description: Invalid input
      404:
        description: Appointment not found
      409:
        description: Status transition not allowed
    """
    payload = request.get_json(silent=True) or {}
    try:
        appointment = get_services().appointments.update(appointment_id, payload)
        return jsonify({"appointment": appointment.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update appointment")


@bp.post("/appointments/<int:appointment_id>/checkin")
def check_in_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Check a patient in and offer the intake form.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: integer
    responses:
      200:
        description: Checked in; includes the intake form prompt
      404:
        description: Appointment not found
      409:
        description: Appointment is not scheduled
    """
    try:
        appointment, prompt = get_services().appointments.check_in(appointment_id)
        return jsonify({"appointment": appointment.to_dict(), "intake_form": prompt}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to check in appointment")


@bp.post("/appointments/<int:appointment_id>/complete")
def complete_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Check out a checked-in appointment, optionally with its payment.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: integer
      - in: body
        name: body
        schema:
          type: object
          properties:
            payment:
              type: object
              properties:
                amount:
                  type: number
                payment_method:
                  type: string
                  enum: [credit, cash, gift, other]
                payment_intent_id:
                  type: string
                transaction_id:
                  type: string
                gift_card_code:
                  type: string
    responses:
      200:
        description: Appointment completed
      409:
        description: Appointment has not been checked in
      502:
        description: Payment processor failure
    """
    payload = request.get_json(silent=True) or {}
    try:
        payment = payload.get("payment")
        if payment is not None and not isinstance(payment, dict):
            raise ValidationError("payment must be an object")
        appointment = get_services().appointments.complete(appointment_id, payment)
        return jsonify({"appointment": appointment.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to complete appointment")


@bp.post("/appointments/<int:appointment_id>/cancel")
def cancel_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Cancel an appointment. Cancelling twice returns the same record.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: integer
    responses:
      200:
        description: Appointment canceled
      404:
        description: Appointment not found
      409:
        description: Completed appointments cannot be canceled
    """
    try:
        appointment = get_services().appointments.cancel(appointment_id)
        return jsonify({"appointment": appointment.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to cancel appointment")


@bp.post("/appointments/<int:appointment_id>/intake-form")
def record_intake_form(appointment_id: int) -> tuple[dict[str, object], int]:
    """Record the answer to the intake form prompt.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: integer
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [status]
          properties:
            status:
              type: string
              enum: [completed, skipped]
    responses:
      200:
        description: Intake form status stored
      400:
        description: Invalid status
      409:
        description: Appointment not checked in
    """
    payload = request.get_json(silent=True) or {}
    try:
        appointment = get_services().appointments.record_intake_form(appointment_id, payload.get("status"))
        return jsonify({"appointment": appointment.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to record intake form")


# --- Payments ---


@bp.get("/payments")
def list_payments() -> tuple[dict[str, object], int]:
    """List payments for a patient or an appointment.
    ---
    tags:
      - Payments
    parameters:
      - name: patient_id
        in: query
        type: integer
      - name: appointment_id
        in: query
        type: integer
    responses:
      200:
        description: Payments, newest first
      400:
        description: patient_id or appointment_id required
    """
    try:
        repository = get_services().repository
        patient_id = int_arg("patient_id")
        appointment_id = int_arg("appointment_id")
        if appointment_id is not None:
            payments = repository.get_payments_by_appointment(appointment_id)
        elif patient_id is not None:
            payments = repository.get_payments_by_patient(patient_id)
        else:
            raise ValidationError("patient_id or appointment_id required")
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to list payments")


@bp.post("/payments")
def record_payment() -> tuple[dict[str, object], int]:
    """Record a payment. Retrying with the same payment_intent_id is safe.
    ---
    tags:
      - Payments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [amount, payment_method]
          properties:
            amount:
              type: number
            payment_method:
              type: string
              enum: [credit, cash, gift, other]
            patient_id:
              type: integer
            appointment_id:
              type: integer
            payment_intent_id:
              type: string
            transaction_id:
              type: string
            gift_card_code:
              type: string
            status:
              type: string
              enum: [pending, completed, failed]
            items:
              type: array
              items:
                type: object
    responses:
      201:
        description: Payment recorded
      400:
        description: Invalid input
      404:
        description: Appointment or gift card not found
    """
    payload = request.get_json(silent=True) or {}
    try:
        if payload.get("amount") is None or not payload.get("payment_method"):
            raise ValidationError("amount and payment_method are required")
        payment = get_services().gateway.record_payment(
            payload["amount"],
            payload["payment_method"],
            items=payload.get("items"),
            customer_id=payload.get("patient_id"),
            appointment_id=payload.get("appointment_id"),
            payment_intent_id=payload.get("payment_intent_id"),
            status=payload.get("status", "completed"),
            transaction_id=payload.get("transaction_id"),
            gift_card_code=payload.get("gift_card_code"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to record payment")


@bp.post("/create-payment-intent")
def create_payment_intent() -> tuple[dict[str, object], int]:
    """Create a payment intent for an amount or an appointment's service.
    ---
    tags:
      - Payments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            amount:
              type: number
              description: Dollars; defaults to the appointment's service price
            appointment_id:
              type: integer
            customer_id:
              type: integer
            items:
              type: array
              items:
                type: object
    responses:
      200:
        description: Payment intent created successfully
        schema:
          type: object
          properties:
            client_secret:
              type: string
            payment_intent_id:
              type: string
      400:
        description: Invalid request payload
      404:
        description: Appointment not found
      502:
        description: Payment processor error
    """
    payload = request.get_json(silent=True) or {}
    try:
        services = get_services()
        amount = payload.get("amount")
        appointment_id = payload.get("appointment_id")
        metadata = {}
        if appointment_id is not None:
            appointment = services.repository.get_appointment(appointment_id)
            if appointment is None:
                raise NotFound("Appointment not found")
            metadata["appointment_id"] = appointment_id
            if amount is None:
                service = services.repository.get_service(appointment.service_id)
                amount = to_decimal(service.price_cents) / 100
        if amount is None:
            raise ValidationError("amount or appointment_id required")

        intent = services.gateway.create_payment_intent(
            amount,
            payload.get("items") or [],
            customer_id=payload.get("customer_id"),
            metadata=metadata,
        )
        return jsonify(intent), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create payment intent")


# --- Dashboard ---


@bp.get("/stats")
def dashboard_stats() -> tuple[dict[str, object], int]:
    """Front-desk dashboard counters.
    ---
    tags:
      - Dashboard
    responses:
      200:
        description: Today's appointments plus new patients, revenue and cancellations over the last 7 days
        schema:
          type: object
          properties:
            today_appointments:
              type: integer
            new_patients:
              type: integer
            weekly_revenue:
              type: number
              example: 320.5
            weekly_revenue_cents:
              type: integer
            cancellations:
              type: integer
    """
    try:
        stats = get_services().repository.get_dashboard_stats(utc_now())
        stats["weekly_revenue"] = cents_to_dollars(stats["weekly_revenue_cents"])
        return jsonify(stats), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to load dashboard stats")


# --- Activity feed ---


@bp.get("/activities")
def list_activities() -> tuple[dict[str, object], int]:
    """Most recent activity entries, newest first.
    ---
    tags:
      - Activities
    parameters:
      - name: limit
        in: query
        type: integer
    responses:
      200:
        description: Activity feed
    """
    try:
        limit = int_arg("limit") or current_app.config["ACTIVITY_FEED_LIMIT"]
        if limit < 1:
            raise ValidationError("limit must be positive")
        activities = get_services().repository.get_recent_activities(limit)
        return jsonify({"activities": [a.to_dict() for a in activities]}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to load activities")


def register_routes(app) -> None:
    from .routes_extended import bp_ext

    app.register_blueprint(health_bp)
    app.register_blueprint(bp, url_prefix="/api")
    app.register_blueprint(bp_ext, url_prefix="/api")
