from __future__ import annotations

from collections.abc import Mapping

from flasgger import Swagger
from flask import Flask
from flask_cors import CORS

from .appointments import AppointmentService, IntakeFormWorkflow
from .checkout import CheckoutSessionStore
from .config import Config
from .extensions import db
from .loyalty import LoyaltyLedger
from .payments import build_gateway
from .repository import build_repository
from .routes import register_routes
from .services import ClinicServices


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)

    app.config.from_object(Config)
    if isinstance(config_object, Mapping):
        app.config.from_mapping(config_object)
    elif config_object:
        app.config.from_object(config_object)
    else:
        app.config.from_envvar("APP_SETTINGS", silent=True)

    db.init_app(app)

    # Allow frontend to talk to backend
    CORS(app,
         origins=app.config.get("CORS_ORIGINS", "*"),
         supports_credentials=True,
         allow_headers=["Content-Type"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )

    Swagger(app, template={"info": {"title": "Clinic API", "version": "1.0"}})

    repository = build_repository(app.config)
    ledger = LoyaltyLedger(repository, points_per_dollar=app.config["LOYALTY_POINTS_PER_DOLLAR"])
    gateway = build_gateway(app.config, repository, ledger=ledger)
    app.extensions["clinic"] = ClinicServices(
        repository=repository,
        ledger=ledger,
        gateway=gateway,
        appointments=AppointmentService(repository, gateway, IntakeFormWorkflow()),
        checkout_sessions=CheckoutSessionStore(
            tax_rate=app.config["TAX_RATE"],
            idle_seconds=app.config["CHECKOUT_SESSION_IDLE_SECONDS"],
        ),
    )

    if app.config.get("STORAGE_BACKEND", "sql") == "sql":
        with app.app_context():
            db.create_all()

    register_routes(app)

    return app
