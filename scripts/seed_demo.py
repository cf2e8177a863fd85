#!/usr/bin/env python3
"""Seed the database with a small demo menu, rooms, a patient and a gift card."""
import sys
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from clinic import create_app
from clinic.models import Service

SAMPLE_SERVICES = [
    {"name": "Swedish Massage", "description": "Full body relaxation massage", "duration_minutes": 60, "price_cents": 8000},
    {"name": "Deep Tissue Massage", "description": "Focused pressure on muscle knots", "duration_minutes": 60, "price_cents": 9500},
    {"name": "Reiki Session", "description": "Energy healing session", "duration_minutes": 45, "price_cents": 7000},
    {"name": "Red Light Therapy", "description": "Light therapy for skin and recovery", "duration_minutes": 30, "price_cents": 4500},
]

SAMPLE_ROOMS = [
    {"name": "Room 1", "description": "Massage table, dimmable lights", "capacity": 1},
    {"name": "Room 2", "description": "Couples room", "capacity": 2},
    {"name": "Light Room", "description": "Red light therapy bed", "capacity": 1},
]


def seed_demo():
    app = create_app({"STORAGE_BACKEND": "sql"})

    with app.app_context():
        repository = app.extensions["clinic"].repository

        if Service.query.count():
            print("Services already present; skipping seed")
            return

        for data in SAMPLE_SERVICES:
            repository.create_service(data)
        for data in SAMPLE_ROOMS:
            repository.create_room(data)

        patient = repository.create_patient({
            "name": "Jordan Rivera",
            "email": "jordan.rivera@example.com",
            "phone": "555-0142",
        })
        repository.create_gift_card({
            "code": "GCDEMO0001",
            "amount_cents": 10000,
            "remaining_balance_cents": 10000,
            "issued_to": patient.name,
            "issued_email": patient.email,
        })

        print(f"Seeded {len(SAMPLE_SERVICES)} services, {len(SAMPLE_ROOMS)} rooms, 1 patient and gift card GCDEMO0001")


if __name__ == "__main__":
    seed_demo()
