"""Loyalty ledger: points, tiers and membership subscriptions."""
from __future__ import annotations

import calendar
import logging
from datetime import datetime

from .errors import InsufficientPoints, NotFound, ValidationError
from .models import LOYALTY_LEVELS, LOYALTY_TRANSACTION_TYPES, utc_now

logger = logging.getLogger(__name__)

# Lifetime points needed for each tier, highest first.
TIER_THRESHOLDS = (
    (1000, "platinum"),
    (500, "gold"),
    (200, "silver"),
)

# Earning types accepted by add_points; deductions go through redeem_points.
EARNING_TYPES = tuple(t for t in LOYALTY_TRANSACTION_TYPES if t not in ("redeemed", "expired"))

SUBSCRIPTION_PLANS = {
    "basic": {
        "monthly_fee_cents": 15000,
        "included_sessions": 3,
        "includes_reiki": False,
        "includes_pet_add_on": False,
    },
    "premium": {
        "monthly_fee_cents": 25000,
        "included_sessions": 4,
        "includes_reiki": True,
        "includes_pet_add_on": True,
    },
}


def level_for(total_earned: int, current_level: str | None = "none") -> str:
    """Return the tier for ``total_earned`` lifetime points.

    Tiers never go down: the result is the higher of the computed tier and
    ``current_level``. Any account that has earned points is at least bronze.
    """
    computed = "none"
    if total_earned > 0:
        computed = "bronze"
    for threshold, name in TIER_THRESHOLDS:
        if total_earned >= threshold:
            computed = name
            break

    current = current_level if current_level in LOYALTY_LEVELS else "none"
    if LOYALTY_LEVELS.index(current) > LOYALTY_LEVELS.index(computed):
        return current
    return computed


def apply_points(account, points: int, type_: str) -> None:
    """Apply a signed point delta to a LoyaltyPoints row in place."""
    if points > 0:
        account.points = (account.points or 0) + points
        account.total_earned = (account.total_earned or 0) + points
        account.monthly_points_earned = (account.monthly_points_earned or 0) + points
    elif points < 0:
        # Callers check the balance first; the clamp covers concurrent redemptions.
        account.points = max(0, (account.points or 0) + points)

    if type_ == "referral":
        account.referrals_count = (account.referrals_count or 0) + 1

    account.level = level_for(account.total_earned or 0, account.level)


def add_months(value: datetime, months: int = 1) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _require_positive_points(points) -> int:
    if isinstance(points, str) and points.strip().isdigit():
        value = int(points.strip())
    elif isinstance(points, int) and not isinstance(points, bool):
        value = points
    elif isinstance(points, float) and points.is_integer():
        value = int(points)
    else:
        raise ValidationError("points must be a whole number")
    if value <= 0:
        raise ValidationError("points must be greater than zero")
    return value


class LoyaltyLedger:
    """Business rules over the repository's loyalty tables."""

    def __init__(self, repository, points_per_dollar: int = 1) -> None:
        self.repository = repository
        self.points_per_dollar = points_per_dollar

    def get_account(self, patient_id: int) -> dict[str, object]:
        account = self.repository.get_patient_loyalty(patient_id)
        if account is None:
            return {
                "patient_id": patient_id,
                "points": 0,
                "total_earned": 0,
                "monthly_points_earned": 0,
                "level": "none",
                "referrals_count": 0,
                "updated_at": None,
            }
        return account.to_dict()

    def transactions(self, patient_id: int, limit: int | None = None) -> list:
        return self.repository.get_loyalty_transactions(patient_id, limit)

    def add_points(
        self,
        patient_id: int,
        points,
        type_: str = "earned",
        source: str | None = None,
        description: str | None = None,
        dollars_spent_cents: int | None = None,
        source_id: int | None = None,
    ):
        points = _require_positive_points(points)
        if type_ not in EARNING_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(EARNING_TYPES)}")

        account, transaction = self.repository.create_or_update_loyalty_points(
            patient_id,
            points,
            type_,
            source=source,
            source_id=source_id,
            description=description or "Manual points addition",
            dollars_spent_cents=dollars_spent_cents,
        )
        logger.info("Added %s %s points for patient %s (level %s)", points, type_, patient_id, account.level)
        return account, transaction

    def redeem_points(self, patient_id: int, points, description: str | None = None):
        points = _require_positive_points(points)

        account = self.repository.get_patient_loyalty(patient_id)
        balance = account.points if account is not None else 0
        if points > balance:
            raise InsufficientPoints(
                f"Cannot redeem {points} points; current balance is {balance}"
            )

        account, transaction = self.repository.create_or_update_loyalty_points(
            patient_id,
            -points,
            "redeemed",
            source="redemption",
            description=description or "Points redeemed for discount",
        )
        logger.info("Redeemed %s points for patient %s", points, patient_id)
        return account, transaction

    def award_for_payment(self, payment):
        """Earn points for a completed payment tied to a patient."""
        if payment.patient_id is None or payment.status != "completed":
            return None

        points = (payment.amount_cents // 100) * self.points_per_dollar
        if points <= 0:
            return None

        return self.add_points(
            payment.patient_id,
            points,
            "earned",
            source="payment",
            source_id=payment.payment_id,
            description=f"Earned {points} points on ${payment.amount_cents / 100:.2f} payment",
            dollars_spent_cents=payment.amount_cents,
        )

    def subscribe(self, patient_id: int, plan_type: str, start_date: datetime | None = None):
        plan = SUBSCRIPTION_PLANS.get(plan_type)
        if plan is None:
            raise ValidationError(f"plan_type must be one of: {', '.join(SUBSCRIPTION_PLANS)}")

        start = start_date or utc_now()
        subscription = self.repository.create_loyalty_subscription({
            "patient_id": patient_id,
            "plan_type": plan_type,
            "start_date": start,
            "next_billing_date": add_months(start, 1),
            "status": "active",
            **plan,
        })

        self.repository.create_or_update_loyalty_points(
            patient_id,
            0,
            "subscription_started",
            source="subscription",
            source_id=subscription.subscription_id,
            description=f"Started {plan_type} subscription (${plan['monthly_fee_cents'] / 100:.0f}/month)",
        )
        logger.info("Patient %s subscribed to %s plan", patient_id, plan_type)
        return subscription

    def active_subscription(self, patient_id: int):
        return self.repository.get_patient_loyalty_subscription(patient_id)

    def cancel_subscription(self, subscription_id: int, reason: str | None = None):
        subscription = self.repository.get_loyalty_subscription(subscription_id)
        if subscription is None:
            raise NotFound("Subscription not found")
        if subscription.status == "cancelled":
            return subscription
        return self.repository.cancel_loyalty_subscription(subscription_id, reason)
