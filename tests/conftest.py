"""
Shared pytest fixtures for the Customer Registry test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB reset + event bus reset (autouse)
    - client: Flask test client (function-scoped)
    - customer_payload: Factory for valid create-customer bodies
    - make_customer: Factory creating customers through the API
    - customer: Pre-created PENDING customer "C-001" (created by "creator")
"""

import pytest

from customer_registry import create_app
from customer_registry.models import db as _db
from customer_registry.services.events import event_bus


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        event_bus.reset()
        yield
        event_bus.reset()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


def _customer_payload(identifier, **overrides):
    """Minimal valid create-customer body."""
    body = {
        "identifier": identifier,
        "type": "PERSON",
        "given_name": "Ada",
        "surname": "Lovelace",
        "date_of_birth": "1990-12-10",
        "member": True,
        "address": {
            "street": "1 Main Street",
            "city": "Nairobi",
            "country_code": "KE",
            "country": "Kenya",
        },
        "contact_details": [
            {"type": "EMAIL", "group": "PRIVATE", "value": "ada@example.com", "preference_level": 1},
        ],
    }
    body.update(overrides)
    return body


@pytest.fixture()
def customer_payload():
    """Factory for valid create-customer bodies: customer_payload("C-002", surname="X")."""
    return _customer_payload


@pytest.fixture()
def make_customer(client):
    """Factory creating a customer via the API and returning its JSON."""

    def _make(identifier="C-001", user="creator", **overrides):
        res = client.post(
            "/api/v1/customers",
            json=_customer_payload(identifier, **overrides),
            headers={"User": user},
        )
        assert res.status_code == 202, res.get_json()
        return client.get(f"/api/v1/customers/{identifier}").get_json()

    return _make


@pytest.fixture()
def customer(make_customer):
    """Customer C-001 (state PENDING) created by user "creator"."""
    return make_customer()

