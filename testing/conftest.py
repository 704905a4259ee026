# testing/conftest.py
"""
Shared fixtures: a fresh sqlite database per test plus small row factories.
"""

import os

import pytest

# Set required environment variables before importing
os.environ.setdefault("SCHEDULE_LOOKAHEAD_DAYS", "14")
os.environ.setdefault("APP_TIMEZONE", "America/Regina")
os.environ.setdefault("DB_RETRY_DELAY", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from src import db


@pytest.fixture
def clean_db(tmp_path, monkeypatch):
    """Point the store at a temporary database file and create the schema."""
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "scheduler_test.db"))
    db.init_db()
    yield
    db.clear_all()


@pytest.fixture
def client_location(clean_db):
    """An ACTIVE client with one active location. Returns (client_id, location_id)."""
    client_id = db.add_client("C1", first_name="Dana", last_name="Reyes", billing_customer_id="cus_1")
    location_id = db.add_location(client_id, "12 Elm St", "Regina", "S4P 1A1", location_id="L1")
    return client_id, location_id


@pytest.fixture
def technician(clean_db):
    return db.add_technician("T1", first_name="Jane", last_name="Doe")


@pytest.fixture
def make_subscription(client_location):
    """Factory for subscriptions on the default client/location."""
    client_id, location_id = client_location

    def _make(frequency="WEEKLY", status="ACTIVE", created_at="2024-03-01",
              preferred_day=None, price_cents=4500, **kwargs):
        subscription_id = db.insert_subscription(
            kwargs.pop("client_id", client_id),
            kwargs.pop("location_id", location_id),
            frequency, status, price_cents, created_at,
            preferred_day=preferred_day, **kwargs,
        )
        return db.get_subscription(subscription_id)

    return _make
