"""Loyalty, gift card and point-of-sale checkout routes."""
from __future__ import annotations

import random
import string
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from .appointments import parse_date
from .errors import ClinicError, NotFound, ValidationError
from .pricing import to_cents, to_decimal
from .routes import database_error, error_response, int_arg
from .services import get_services

bp_ext = Blueprint("api_ext", __name__)


def _require_patient(patient_id: int) -> None:
    if get_services().repository.get_patient(patient_id) is None:
        raise NotFound("Patient not found")


# --- Loyalty ---


@bp_ext.get("/patients/<int:patient_id>/loyalty")
def get_patient_loyalty(patient_id: int) -> tuple[dict[str, object], int]:
    """Loyalty balance, tier and active subscription for a patient.
    ---
    tags:
      - Loyalty
    parameters:
      - name: patient_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Loyalty account (level "none" before any points are earned)
      404:
        description: Patient not found
    """
    try:
        _require_patient(patient_id)
        ledger = get_services().ledger
        subscription = ledger.active_subscription(patient_id)
        return (
            jsonify({
                "loyalty": ledger.get_account(patient_id),
                "subscription": subscription.to_dict() if subscription else None,
            }),
            200,
        )
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch loyalty account")


@bp_ext.get("/patients/<int:patient_id>/loyalty/transactions")
def get_loyalty_transactions(patient_id: int) -> tuple[dict[str, object], int]:
    """Loyalty history, newest first.
    ---
    tags:
      - Loyalty
    parameters:
      - name: patient_id
        in: path
        type: integer
        required: true
      - name: limit
        in: query
        type: integer
    responses:
      200:
        description: List of loyalty transactions
    """
    try:
        limit = int_arg("limit")
        transactions = get_services().ledger.transactions(patient_id, limit)
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch loyalty transactions")


@bp_ext.post("/patients/<int:patient_id>/loyalty/add")
def add_loyalty_points(patient_id: int) -> tuple[dict[str, object], int]:
    """Credit points to a patient (manual, referral or birthday bonus).
    ---
    tags:
      - Loyalty
    parameters:
      - name: patient_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [points]
          properties:
            points:
              type: integer
            type:
              type: string
              enum: [earned, referral, birthday]
            description:
              type: string
            dollars_spent:
              type: number
    responses:
      201:
        description: Points added
      400:
        description: Invalid points
      404:
        description: Patient not found
    """
    payload = request.get_json(silent=True) or {}
    try:
        _require_patient(patient_id)
        dollars_spent = payload.get("dollars_spent")
        account, transaction = get_services().ledger.add_points(
            patient_id,
            payload.get("points"),
            payload.get("type", "earned"),
            source=payload.get("source", "manual"),
            description=payload.get("description"),
            dollars_spent_cents=to_cents(to_decimal(dollars_spent, "dollars_spent")) if dollars_spent is not None else None,
        )
        return jsonify({"loyalty": account.to_dict(), "transaction": transaction.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to add loyalty points")


@bp_ext.post("/patients/<int:patient_id>/loyalty/redeem")
def redeem_loyalty_points(patient_id: int) -> tuple[dict[str, object], int]:
    """Redeem points. Fails without changes when the balance is too low.
    ---
    tags:
      - Loyalty
    parameters:
      - name: patient_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [points]
          properties:
            points:
              type: integer
            description:
              type: string
    responses:
      201:
        description: Points redeemed
      400:
        description: Invalid points or insufficient balance
    """
    payload = request.get_json(silent=True) or {}
    try:
        _require_patient(patient_id)
        account, transaction = get_services().ledger.redeem_points(
            patient_id, payload.get("points"), payload.get("description")
        )
        return jsonify({"loyalty": account.to_dict(), "transaction": transaction.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to redeem points")


@bp_ext.get("/patients/<int:patient_id>/loyalty/subscription")
def get_loyalty_subscription(patient_id: int) -> tuple[dict[str, object], int]:
    """The patient's active membership, if any.
    ---
    tags:
      - Loyalty
    responses:
      200:
        description: Subscription or null
    """
    try:
        subscription = get_services().ledger.active_subscription(patient_id)
        return jsonify({"subscription": subscription.to_dict() if subscription else None}), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch subscription")


@bp_ext.post("/patients/<int:patient_id>/loyalty/subscription")
def create_loyalty_subscription(patient_id: int) -> tuple[dict[str, object], int]:
    """Start a membership plan. A patient can hold one active plan.
    ---
    tags:
      - Loyalty
    parameters:
      - name: patient_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [plan_type]
          properties:
            plan_type:
              type: string
              enum: [basic, premium]
            start_date:
              type: string
              format: date
    responses:
      201:
        description: Subscription created
      400:
        description: Unknown plan
      409:
        description: Patient already has an active subscription
    """
    payload = request.get_json(silent=True) or {}
    try:
        _require_patient(patient_id)
        start = None
        if payload.get("start_date"):
            start_day = parse_date(payload["start_date"], "start_date")
            start = datetime(start_day.year, start_day.month, start_day.day, tzinfo=timezone.utc)
        subscription = get_services().ledger.subscribe(patient_id, payload.get("plan_type"), start)
        return jsonify({"subscription": subscription.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create subscription")


@bp_ext.post("/loyalty/subscriptions/<int:subscription_id>/cancel")
def cancel_loyalty_subscription(subscription_id: int) -> tuple[dict[str, object], int]:
    """Cancel a membership. Cancelling again is a no-op.
    ---
    tags:
      - Loyalty
    parameters:
      - name: subscription_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            reason:
              type: string
    responses:
      200:
        description: Subscription cancelled
      404:
        description: Subscription not found
    """
    payload = request.get_json(silent=True) or {}
    try:
        subscription = get_services().ledger.cancel_subscription(subscription_id, payload.get("reason"))
        return jsonify({"subscription": subscription.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to cancel subscription")


# --- Gift cards ---


@bp_ext.post("/gift-cards")
def create_gift_card() -> tuple[dict[str, object], int]:
    """Issue a gift card. A code is generated when none is given.
    ---
    tags:
      - Gift Cards
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [amount]
          properties:
            amount:
              type: number
            code:
              type: string
            issued_to:
              type: string
            issued_email:
              type: string
            purchased_by:
              type: integer
            expiry_date:
              type: string
              format: date
    responses:
      201:
        description: Gift card issued
      400:
        description: Invalid input or duplicate code
    """
    payload = request.get_json(silent=True) or {}
    try:
        repository = get_services().repository
        amount = to_decimal(payload.get("amount"), "amount")
        if amount <= 0:
            raise ValidationError("amount must be greater than zero")

        code = (payload.get("code") or "").strip().upper()
        if not code:
            code = "GC" + "".join(random.choices(string.ascii_uppercase + string.digits, k=8))
        if repository.get_gift_card_by_code(code) is not None:
            raise ValidationError(f"Gift card code {code} already exists", error="duplicate_code")

        expiry_date = None
        if payload.get("expiry_date"):
            expiry_day = parse_date(payload["expiry_date"], "expiry_date")
            expiry_date = datetime(expiry_day.year, expiry_day.month, expiry_day.day, 23, 59, 59, tzinfo=timezone.utc)

        card = repository.create_gift_card({
            "code": code,
            "amount_cents": to_cents(amount),
            "remaining_balance_cents": to_cents(amount),
            "issued_to": payload.get("issued_to"),
            "issued_email": payload.get("issued_email"),
            "purchased_by": payload.get("purchased_by"),
            "expiry_date": expiry_date,
        })
        return jsonify({"gift_card": card.to_dict()}), 201
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to issue gift card")


@bp_ext.get("/gift-cards/<string:code>")
def get_gift_card(code: str) -> tuple[dict[str, object], int]:
    """Look up a gift card balance.
    ---
    tags:
      - Gift Cards
    parameters:
      - name: code
        in: path
        type: string
        required: true
    responses:
      200:
        description: Gift card
      404:
        description: Unknown code
    """
    try:
        card = get_services().repository.get_gift_card_by_code(code.strip().upper())
        if card is None:
            return jsonify({"error": "not_found", "message": "Gift card not found"}), 404
        return jsonify({"gift_card": card.to_dict()}), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch gift card")


# --- Point-of-sale checkout sessions ---


@bp_ext.post("/checkout/sessions")
def open_checkout_session() -> tuple[dict[str, object], int]:
    """Open an empty checkout session at the cart stage.
    ---
    tags:
      - Checkout
    responses:
      201:
        description: New session
    """
    session = get_services().checkout_sessions.create()
    current_app.logger.info("Opened checkout session %s", session.id)
    return jsonify({"session": session.to_dict()}), 201


@bp_ext.get("/checkout/sessions/<string:session_id>")
def get_checkout_session(session_id: str) -> tuple[dict[str, object], int]:
    """Current cart, settings, stage and totals.
    ---
    tags:
      - Checkout
    responses:
      200:
        description: Session
      404:
        description: Unknown session
    """
    try:
        session = get_services().checkout_sessions.get(session_id)
        return jsonify({"session": session.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)


@bp_ext.put("/checkout/sessions/<string:session_id>")
def update_checkout_session(session_id: str) -> tuple[dict[str, object], int]:
    """Change discount, tip, customer, payment method or gift card.
    ---
    tags:
      - Checkout
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            discount_enabled:
              type: boolean
            discount_percent:
              type: number
            tip_mode:
              type: string
              enum: [percent, fixed]
            tip_value:
              type: number
            customer_id:
              type: integer
            payment_method:
              type: string
              enum: [credit, cash, gift, other]
            gift_card_code:
              type: string
            appointment_id:
              type: integer
    responses:
      200:
        description: Updated session
      400:
        description: Invalid settings
      409:
        description: Settings are locked at the receipt stage
    """
    payload = request.get_json(silent=True) or {}
    try:
        session = get_services().checkout_sessions.get(session_id)
        session.update_settings(payload)
        return jsonify({"session": session.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)


@bp_ext.delete("/checkout/sessions/<string:session_id>")
def discard_checkout_session(session_id: str) -> tuple[dict[str, object], int]:
    """Abandon a checkout session.
    ---
    tags:
      - Checkout
    responses:
      200:
        description: Session discarded
      404:
        description: Unknown session
    """
    try:
        get_services().checkout_sessions.discard(session_id)
        return jsonify({"success": True}), 200
    except ClinicError as exc:
        return error_response(exc)


@bp_ext.post("/checkout/sessions/<string:session_id>/items")
def add_checkout_item(session_id: str) -> tuple[dict[str, object], int]:
    """Add a line; adding an existing item id increases its quantity.
    ---
    tags:
      - Checkout
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [id, name, unit_price]
          properties:
            id:
              type: string
            name:
              type: string
            unit_price:
              type: number
            quantity:
              type: integer
            category:
              type: string
              enum: [service, product]
    responses:
      200:
        description: Updated session
      400:
        description: Invalid line item
    """
    payload = request.get_json(silent=True) or {}
    try:
        session = get_services().checkout_sessions.get(session_id)
        session.add_item(payload)
        return jsonify({"session": session.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)


@bp_ext.post("/checkout/sessions/<string:session_id>/items/<string:item_id>/decrease")
def decrease_checkout_item(session_id: str, item_id: str) -> tuple[dict[str, object], int]:
    """Lower a line's quantity by one, dropping it at zero.
    ---
    tags:
      - Checkout
    responses:
      200:
        description: Updated session
      404:
        description: Item not in cart
    """
    try:
        session = get_services().checkout_sessions.get(session_id)
        session.decrease_item(item_id)
        return jsonify({"session": session.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)


@bp_ext.delete("/checkout/sessions/<string:session_id>/items/<string:item_id>")
def remove_checkout_item(session_id: str, item_id: str) -> tuple[dict[str, object], int]:
    """Remove a line from the cart.
    ---
    tags:
      - Checkout
    responses:
      200:
        description: Updated session
      404:
        description: Item not in cart
    """
    try:
        session = get_services().checkout_sessions.get(session_id)
        session.remove_item(item_id)
        return jsonify({"session": session.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)


@bp_ext.post("/checkout/sessions/<string:session_id>/checkout")
def begin_checkout(session_id: str) -> tuple[dict[str, object], int]:
    """Move a non-empty cart to the payment stage.
    ---
    tags:
      - Checkout
    responses:
      200:
        description: Session at the payment stage
      409:
        description: Empty cart or wrong stage
    """
    try:
        session = get_services().checkout_sessions.get(session_id)
        session.begin_checkout()
        return jsonify({"session": session.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)


@bp_ext.post("/checkout/sessions/<string:session_id>/confirm")
def confirm_checkout(session_id: str) -> tuple[dict[str, object], int]:
    """Create the payment intent for the session total.
    ---
    tags:
      - Checkout
    responses:
      200:
        description: Session at the receipt stage, with the intent
      409:
        description: Wrong stage
      502:
        description: Payment processor error; the session stays at payment
    """
    try:
        services = get_services()
        session = services.checkout_sessions.get(session_id)
        intent = session.confirm(services.gateway)
        return jsonify({"session": session.to_dict(), "payment_intent": intent}), 200
    except ClinicError as exc:
        return error_response(exc)


@bp_ext.post("/checkout/sessions/<string:session_id>/complete")
def complete_checkout(session_id: str) -> tuple[dict[str, object], int]:
    """Record the payment, return the receipt and reset the session.
    ---
    tags:
      - Checkout
    responses:
      200:
        description: Receipt; the session is back at an empty cart
      409:
        description: Wrong stage
      500:
        description: Database error; the session stays at receipt
    """
    try:
        services = get_services()
        session = services.checkout_sessions.get(session_id)
        receipt = session.complete(services.gateway)
        return jsonify({"receipt": receipt, "session": session.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to record checkout payment")


@bp_ext.post("/checkout/sessions/<string:session_id>/back")
def checkout_back(session_id: str) -> tuple[dict[str, object], int]:
    """Go back one stage without changing the cart.
    ---
    tags:
      - Checkout
    responses:
      200:
        description: Session one stage back
      409:
        description: Already at the cart stage
    """
    try:
        session = get_services().checkout_sessions.get(session_id)
        session.back()
        return jsonify({"session": session.to_dict()}), 200
    except ClinicError as exc:
        return error_response(exc)
