"""Tests for the loyalty and gift card endpoints."""
from __future__ import annotations

import pytest


@pytest.fixture
def patient_id(client):
    response = client.post("/api/patients", json={"name": "Ana Gomez", "email": "ana@example.com"})
    return response.get_json()["patient"]["id"]


def test_loyalty_before_any_points(client, patient_id) -> None:
    body = client.get(f"/api/patients/{patient_id}/loyalty").get_json()

    assert body["loyalty"]["level"] == "none"
    assert body["loyalty"]["points"] == 0
    assert body["subscription"] is None


def test_loyalty_for_unknown_patient(client) -> None:
    assert client.get("/api/patients/999/loyalty").status_code == 404


def test_add_and_redeem_points(client, patient_id) -> None:
    response = client.post(f"/api/patients/{patient_id}/loyalty/add", json={"points": 300, "type": "birthday"})
    assert response.status_code == 201
    assert response.get_json()["loyalty"]["level"] == "silver"

    response = client.post(f"/api/patients/{patient_id}/loyalty/redeem", json={"points": 500})
    assert response.status_code == 400
    assert response.get_json()["error"] == "insufficient_points"

    response = client.post(f"/api/patients/{patient_id}/loyalty/redeem", json={"points": 100})
    assert response.status_code == 201
    assert response.get_json()["loyalty"]["points"] == 200

    transactions = client.get(f"/api/patients/{patient_id}/loyalty/transactions").get_json()["transactions"]
    assert [t["type"] for t in transactions] == ["redeemed", "birthday"]


def test_add_points_rejects_bad_input(client, patient_id) -> None:
    response = client.post(f"/api/patients/{patient_id}/loyalty/add", json={"points": "lots"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_subscription_lifecycle(client, patient_id) -> None:
    response = client.post(
        f"/api/patients/{patient_id}/loyalty/subscription",
        json={"plan_type": "basic", "start_date": "2025-01-15"},
    )
    assert response.status_code == 201
    subscription = response.get_json()["subscription"]
    assert subscription["monthly_fee"] == 150.0
    assert subscription["included_sessions"] == 3
    assert subscription["next_billing_date"].startswith("2025-02-15")

    duplicate = client.post(f"/api/patients/{patient_id}/loyalty/subscription", json={"plan_type": "premium"})
    assert duplicate.status_code == 409
    assert duplicate.get_json()["error"] == "duplicate_subscription"

    cancel_url = f"/api/loyalty/subscriptions/{subscription['id']}/cancel"
    response = client.post(cancel_url, json={"reason": "moving"})
    assert response.status_code == 200
    assert response.get_json()["subscription"]["status"] == "cancelled"
    assert client.post(cancel_url).status_code == 200

    current = client.get(f"/api/patients/{patient_id}/loyalty/subscription").get_json()
    assert current["subscription"] is None

    assert client.post(f"/api/patients/{patient_id}/loyalty/subscription", json={"plan_type": "premium"}).status_code == 201


def test_cancel_unknown_subscription(client) -> None:
    assert client.post("/api/loyalty/subscriptions/404/cancel").status_code == 404


def test_gift_card_issue_and_lookup(client) -> None:
    response = client.post("/api/gift-cards", json={"amount": 75, "issued_to": "Kim"})
    assert response.status_code == 201
    card = response.get_json()["gift_card"]
    assert card["code"].startswith("GC")
    assert card["remaining_balance"] == 75.0

    found = client.get(f"/api/gift-cards/{card['code'].lower()}")
    assert found.status_code == 200
    assert found.get_json()["gift_card"]["id"] == card["id"]

    duplicate = client.post("/api/gift-cards", json={"amount": 10, "code": card["code"]})
    assert duplicate.status_code == 400
    assert duplicate.get_json()["error"] == "duplicate_code"

    assert client.get("/api/gift-cards/NOPE").status_code == 404


def test_gift_card_amount_must_be_positive(client) -> None:
    assert client.post("/api/gift-cards", json={"amount": 0}).status_code == 400
