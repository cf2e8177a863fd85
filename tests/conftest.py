"""pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the clinic package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from clinic import create_app  # noqa: E402
from clinic.appointments import AppointmentService  # noqa: E402
from clinic.config import TestingConfig  # noqa: E402
from clinic.extensions import db  # noqa: E402
from clinic.loyalty import LoyaltyLedger  # noqa: E402
from clinic.payments import LocalPaymentGateway  # noqa: E402
from clinic.repository import MemoryRepository  # noqa: E402


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["clinic"]


@pytest.fixture
def repo():
    return MemoryRepository()


@pytest.fixture
def ledger(repo):
    return LoyaltyLedger(repo)


@pytest.fixture
def gateway(repo, ledger):
    return LocalPaymentGateway(repo, ledger=ledger)


@pytest.fixture
def appointment_service(repo, gateway):
    return AppointmentService(repo, gateway)


@pytest.fixture
def massage(repo):
    return repo.create_service({
        "name": "Swedish Massage",
        "description": "Full body",
        "duration_minutes": 60,
        "price_cents": 8000,
    })


@pytest.fixture
def patient(repo):
    return repo.create_patient({"name": "Jordan Rivera", "email": "jordan@example.com"})


@pytest.fixture
def booked(appointment_service, massage, patient):
    return appointment_service.create({
        "service_id": massage.service_id,
        "patient_id": patient.patient_id,
        "date": date(2025, 3, 7).isoformat(),
        "time": "10:00",
    })
