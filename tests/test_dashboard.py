"""Tests for the front-desk dashboard counters."""
from __future__ import annotations

from datetime import timedelta

from clinic.models import utc_now


def _book(repo, service, patient, on_date, status="scheduled"):
    return repo.create_appointment({
        "service_id": service.service_id,
        "patient_id": patient.patient_id,
        "date": on_date,
        "time": "09:00",
        "duration_minutes": service.duration_minutes,
        "status": status,
    })


def test_memory_dashboard_stats(repo, massage, patient) -> None:
    now = utc_now()
    today = now.date()
    _book(repo, massage, patient, today)
    _book(repo, massage, patient, today - timedelta(days=3), status="canceled")
    _book(repo, massage, patient, today - timedelta(days=20), status="canceled")

    base = {"patient_id": patient.patient_id, "payment_method": "cash", "status": "completed"}
    repo.create_payment({**base, "amount_cents": 8000})
    repo.create_payment({**base, "amount_cents": 1500, "status": "failed"})
    old, _ = repo.create_payment({**base, "amount_cents": 5000})
    old.date = now - timedelta(days=10)
    repo.create_patient({"name": "Old Friend", "email": "old@example.com", "created_at": now - timedelta(days=90)})

    assert repo.get_dashboard_stats(now) == {
        "today_appointments": 1,
        "new_patients": 1,
        "weekly_revenue_cents": 8000,
        "cancellations": 1,
    }


def test_stats_endpoint(client) -> None:
    service = client.post(
        "/api/services",
        json={"name": "Reiki Session", "price": 70, "duration_minutes": 45},
    ).get_json()["service"]
    patient = client.post(
        "/api/patients",
        json={"name": "Sam Lee", "email": "sam@example.com"},
    ).get_json()["patient"]
    response = client.post(
        "/api/appointments",
        json={
            "service_id": service["id"],
            "patient_id": patient["id"],
            "date": utc_now().date().isoformat(),
            "time": "13:30",
        },
    )
    assert response.status_code == 201
    client.post("/api/payments", json={"amount": 45.5, "payment_method": "cash", "patient_id": patient["id"]})

    response = client.get("/api/stats")

    assert response.status_code == 200
    assert response.get_json() == {
        "today_appointments": 1,
        "new_patients": 1,
        "weekly_revenue_cents": 4550,
        "weekly_revenue": 45.5,
        "cancellations": 0,
    }
