"""Tests for the appointment, payment and activity endpoints."""
from __future__ import annotations

import pytest

from clinic import create_app


@pytest.fixture
def catalog(client):
    service = client.post(
        "/api/services",
        json={"name": "Swedish Massage", "price": 80, "duration_minutes": 60},
    ).get_json()["service"]
    patient = client.post(
        "/api/patients",
        json={"name": "Jordan Rivera", "email": "jordan@example.com"},
    ).get_json()["patient"]
    room = client.post("/api/rooms", json={"name": "Room 1"}).get_json()["room"]
    return {"service": service, "patient": patient, "room": room}


@pytest.fixture
def appointment(client, catalog):
    response = client.post(
        "/api/appointments",
        json={
            "service_id": catalog["service"]["id"],
            "patient_id": catalog["patient"]["id"],
            "room_id": catalog["room"]["id"],
            "date": "2025-03-07",
            "time": "10:00",
        },
    )
    assert response.status_code == 201
    return response.get_json()["appointment"]


def test_catalog_endpoints(client, catalog) -> None:
    assert catalog["service"]["price_cents"] == 8000
    assert client.get("/api/services").get_json()["services"][0]["name"] == "Swedish Massage"
    assert client.get(f"/api/patients/{catalog['patient']['id']}").status_code == 200
    assert client.get("/api/patients/999").status_code == 404
    assert len(client.get("/api/rooms").get_json()["rooms"]) == 1


def test_create_patient_requires_name_and_email(client) -> None:
    response = client.post("/api/patients", json={"name": "No Email"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_new_appointment_defaults(appointment) -> None:
    assert appointment["status"] == "scheduled"
    assert appointment["payment_status"] == "pending"
    assert appointment["duration_minutes"] == 60
    assert appointment["date"] == "2025-03-07"


def test_create_appointment_with_bad_time(client, catalog) -> None:
    response = client.post(
        "/api/appointments",
        json={"service_id": catalog["service"]["id"], "date": "2025-03-07", "time": "7pm"},
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_full_visit_flow(client, appointment, catalog) -> None:
    appointment_id = appointment["id"]

    response = client.post(f"/api/appointments/{appointment_id}/checkin")
    assert response.status_code == 200
    body = response.get_json()
    assert body["appointment"]["status"] == "checked-in"
    assert body["intake_form"]["choices"] == ["completed", "skipped"]

    response = client.post(f"/api/appointments/{appointment_id}/intake-form", json={"status": "completed"})
    assert response.get_json()["appointment"]["intake_form_status"] == "completed"

    response = client.post(
        f"/api/appointments/{appointment_id}/complete",
        json={"payment": {"amount": 80, "payment_method": "credit", "payment_intent_id": "local_abc"}},
    )
    assert response.status_code == 200
    completed = response.get_json()["appointment"]
    assert completed["status"] == "complete"
    assert completed["payment_status"] == "paid"
    assert completed["payment_amount"] == 80.0
    assert completed["payment_method"] == "credit"

    payments = client.get(f"/api/payments?appointment_id={appointment_id}").get_json()["payments"]
    assert len(payments) == 1
    assert payments[0]["stripe_payment_intent_id"] == "local_abc"

    descriptions = [a["description"] for a in client.get("/api/activities?limit=20").get_json()["activities"]]
    assert "Payment received: $80" in descriptions
    assert "New appointment scheduled for 3/7/2025" in descriptions

    loyalty = client.get(f"/api/patients/{catalog['patient']['id']}/loyalty").get_json()["loyalty"]
    assert loyalty["points"] == 80
    assert loyalty["level"] == "bronze"


def test_complete_before_check_in_is_conflict(client, appointment) -> None:
    response = client.post(f"/api/appointments/{appointment['id']}/complete", json={})

    assert response.status_code == 409
    assert response.get_json()["error"] == "invalid_state"


def test_cancel_twice(client, appointment) -> None:
    first = client.post(f"/api/appointments/{appointment['id']}/cancel")
    second = client.post(f"/api/appointments/{appointment['id']}/cancel")

    assert first.status_code == second.status_code == 200
    assert second.get_json()["appointment"]["status"] == "canceled"


def test_patch_appointment(client, appointment) -> None:
    response = client.patch(f"/api/appointments/{appointment['id']}", json={"time": "11:30", "notes": "late"})
    assert response.status_code == 200
    assert response.get_json()["appointment"]["time"] == "11:30"

    response = client.patch(f"/api/appointments/{appointment['id']}", json={"payment_status": "paid"})
    assert response.status_code == 400

    response = client.patch(f"/api/appointments/{appointment['id']}", json={"status": "complete"})
    assert response.status_code == 409


def test_list_appointments_filters(client, appointment, catalog) -> None:
    response = client.get(f"/api/appointments?date=2025-03-07&room_id={catalog['room']['id']}")
    assert [a["id"] for a in response.get_json()["appointments"]] == [appointment["id"]]

    assert client.get("/api/appointments?date=2025-03-08").get_json()["appointments"] == []
    assert client.get("/api/appointments?room_id=abc").status_code == 400


def test_missing_appointment(client) -> None:
    assert client.get("/api/appointments/999").status_code == 404
    assert client.post("/api/appointments/999/checkin").status_code == 404


def test_payments_require_a_filter(client) -> None:
    response = client.get("/api/payments")

    assert response.status_code == 400


def test_record_payment_endpoint_is_idempotent(client, catalog) -> None:
    payload = {
        "amount": 25.5,
        "payment_method": "cash",
        "patient_id": catalog["patient"]["id"],
        "payment_intent_id": "local_retry",
    }

    first = client.post("/api/payments", json=payload)
    second = client.post("/api/payments", json=payload)

    assert first.status_code == second.status_code == 201
    assert first.get_json()["payment"]["id"] == second.get_json()["payment"]["id"]
    assert first.get_json()["payment"]["amount"] == 25.5


def test_create_payment_intent_uses_service_price(client, appointment) -> None:
    response = client.post("/api/create-payment-intent", json={"appointment_id": appointment["id"]})

    assert response.status_code == 200
    body = response.get_json()
    assert body["amount_cents"] == 8000
    assert body["payment_intent_id"].startswith("local_")


def test_create_payment_intent_requires_amount(client) -> None:
    response = client.post("/api/create-payment-intent", json={})

    assert response.status_code == 400


def test_memory_backend_serves_the_same_api() -> None:
    app = create_app({
        "TESTING": True,
        "STORAGE_BACKEND": "memory",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
    })
    client = app.test_client()

    service = client.post("/api/services", json={"name": "Facial", "price": 60, "duration_minutes": 30}).get_json()["service"]
    response = client.post(
        "/api/appointments",
        json={"service_id": service["id"], "date": "2025-05-01", "time": "08:00"},
    )
    assert response.status_code == 201

    appointment_id = response.get_json()["appointment"]["id"]
    assert client.post(f"/api/appointments/{appointment_id}/cancel").get_json()["appointment"]["status"] == "canceled"
    assert client.get("/api/activities").get_json()["activities"][0]["type"] == "appointment.canceled"
