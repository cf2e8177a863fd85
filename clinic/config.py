"""Configuration objects for the clinic backend."""
from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    return float(raw)


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///clinic.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    # "sql" or "memory"
    STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "sql")

    # Payments fall back to the offline gateway when no key is configured
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_CURRENCY = os.environ.get("STRIPE_CURRENCY", "usd")

    TAX_RATE = _env_float("TAX_RATE", 0.08)
    LOYALTY_POINTS_PER_DOLLAR = int(os.environ.get("LOYALTY_POINTS_PER_DOLLAR", 1))
    ACTIVITY_FEED_LIMIT = int(os.environ.get("ACTIVITY_FEED_LIMIT", 10))
    CHECKOUT_SESSION_IDLE_SECONDS = int(os.environ.get("CHECKOUT_SESSION_IDLE_SECONDS", 3600))

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STORAGE_BACKEND = "sql"
    STRIPE_SECRET_KEY = None
