"""Tests for loyalty points, tiers and subscriptions."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from clinic.errors import DuplicateSubscription, InsufficientPoints, NotFound, ValidationError
from clinic.loyalty import add_months, level_for


def test_account_view_before_any_activity(ledger, patient) -> None:
    account = ledger.get_account(patient.patient_id)

    assert account["points"] == 0
    assert account["level"] == "none"


def test_first_points_create_bronze_account(ledger, repo, patient) -> None:
    account, transaction = ledger.add_points(patient.patient_id, 50, source="manual")

    assert account.points == 50
    assert account.total_earned == 50
    assert account.monthly_points_earned == 50
    assert account.level == "bronze"
    assert transaction.points == 50
    assert transaction.type == "earned"
    assert transaction.description == "Manual points addition"


def test_redeem_more_than_balance_changes_nothing(ledger, patient) -> None:
    ledger.add_points(patient.patient_id, 40)

    with pytest.raises(InsufficientPoints):
        ledger.redeem_points(patient.patient_id, 41)
    with pytest.raises(InsufficientPoints):
        ledger.redeem_points(patient.patient_id, 41)

    assert ledger.get_account(patient.patient_id)["points"] == 40
    assert [t.type for t in ledger.transactions(patient.patient_id)] == ["earned"]


def test_redeem_without_account_is_insufficient(ledger, patient) -> None:
    with pytest.raises(InsufficientPoints):
        ledger.redeem_points(patient.patient_id, 1)


def test_redeem_records_negative_delta(ledger, patient) -> None:
    ledger.add_points(patient.patient_id, 100)

    account, transaction = ledger.redeem_points(patient.patient_id, "30")

    assert account.points == 70
    assert account.total_earned == 100
    assert transaction.points == -30
    assert transaction.type == "redeemed"


def test_tier_never_drops_after_redemption(ledger, patient) -> None:
    levels = []
    for points in (150, 100, 300, 500):
        account, _ = ledger.add_points(patient.patient_id, points)
        levels.append(account.level)

    assert levels == ["bronze", "silver", "gold", "platinum"]

    account, _ = ledger.redeem_points(patient.patient_id, 1000)
    assert account.points == 50
    assert account.level == "platinum"


@pytest.mark.parametrize(
    ("total", "current", "expected"),
    [
        (0, "none", "none"),
        (1, "none", "bronze"),
        (199, "bronze", "bronze"),
        (200, "bronze", "silver"),
        (500, "silver", "gold"),
        (1000, "gold", "platinum"),
        (10, "gold", "gold"),
        (10, "mystery", "bronze"),
    ],
)
def test_level_for(total, current, expected) -> None:
    assert level_for(total, current) == expected


@pytest.mark.parametrize("points", [0, -5, "abc", 2.5, True, None])
def test_add_points_rejects_non_positive_or_non_numeric(ledger, patient, points) -> None:
    with pytest.raises(ValidationError):
        ledger.add_points(patient.patient_id, points)


def test_add_points_rejects_deduction_types(ledger, patient) -> None:
    with pytest.raises(ValidationError):
        ledger.add_points(patient.patient_id, 10, "redeemed")


def test_referral_counts(ledger, patient) -> None:
    ledger.add_points(patient.patient_id, 25, "referral")
    account, _ = ledger.add_points(patient.patient_id, 25, "referral")

    assert account.referrals_count == 2


def test_transactions_newest_first(ledger, patient) -> None:
    ledger.add_points(patient.patient_id, 10, description="first")
    ledger.add_points(patient.patient_id, 20, description="second")

    assert [t.description for t in ledger.transactions(patient.patient_id)] == ["second", "first"]
    assert len(ledger.transactions(patient.patient_id, limit=1)) == 1


def test_one_active_subscription_per_patient(ledger, patient) -> None:
    first = ledger.subscribe(patient.patient_id, "basic")

    with pytest.raises(DuplicateSubscription):
        ledger.subscribe(patient.patient_id, "premium")

    ledger.cancel_subscription(first.subscription_id, "moving away")
    second = ledger.subscribe(patient.patient_id, "premium")

    assert second.status == "active"
    assert ledger.active_subscription(patient.patient_id) is second


def test_subscription_plan_fields(ledger, patient) -> None:
    start = datetime(2025, 1, 31, tzinfo=timezone.utc)

    subscription = ledger.subscribe(patient.patient_id, "premium", start)

    assert subscription.monthly_fee_cents == 25000
    assert subscription.included_sessions == 4
    assert subscription.includes_reiki is True
    assert subscription.includes_pet_add_on is True
    assert subscription.next_billing_date == datetime(2025, 2, 28, tzinfo=timezone.utc)

    transaction = ledger.transactions(patient.patient_id)[0]
    assert transaction.type == "subscription_started"
    assert transaction.points == 0
    assert transaction.source_id == subscription.subscription_id


def test_unknown_plan(ledger, patient) -> None:
    with pytest.raises(ValidationError):
        ledger.subscribe(patient.patient_id, "gold")


def test_cancel_subscription_is_idempotent(ledger, patient) -> None:
    subscription = ledger.subscribe(patient.patient_id, "basic")

    cancelled = ledger.cancel_subscription(subscription.subscription_id, "too expensive")
    cancelled_at = cancelled.cancelled_at
    again = ledger.cancel_subscription(subscription.subscription_id, "other reason")

    assert again.status == "cancelled"
    assert again.cancel_reason == "too expensive"
    assert again.cancelled_at == cancelled_at


def test_cancel_missing_subscription(ledger) -> None:
    with pytest.raises(NotFound):
        ledger.cancel_subscription(404)


def test_add_months_clamps_to_month_end() -> None:
    assert add_months(datetime(2024, 1, 31)) == datetime(2024, 2, 29)
    assert add_months(datetime(2024, 12, 15)) == datetime(2025, 1, 15)
