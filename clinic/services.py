"""Per-application service container."""
from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .appointments import AppointmentService
from .checkout import CheckoutSessionStore
from .loyalty import LoyaltyLedger
from .payments import PaymentGateway
from .repository import Repository


@dataclass
class ClinicServices:
    repository: Repository
    ledger: LoyaltyLedger
    gateway: PaymentGateway
    appointments: AppointmentService
    checkout_sessions: CheckoutSessionStore


def get_services() -> ClinicServices:
    return current_app.extensions["clinic"]
