"""
Pytest fixtures for cashbook backend tests.

Provides the application on in-memory SQLite, a clean database per test,
operator accounts with capability grants, and catalog/customer/bank records.
"""

import pytest
from sqlalchemy.exc import OperationalError

from cashbook import create_app
from cashbook.config import TestingConfig
from cashbook.extensions import db
from cashbook.models import Customer, Item
from cashbook.permissions import (
    ACCESS_DRAWER,
    ACCESS_INVENTORY,
    ACCESS_POS,
    ACCESS_REGISTER_HISTORY,
    APPROVE_REGISTER_ACCESS,
)
from cashbook.services import auth_service, ledger_service

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Core deletes bypass the append-only mapper events
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin(db_session):
    return auth_service.create_user("admin", "Admin", PASSWORD, is_admin=True)


@pytest.fixture(scope='function')
def cashier(db_session):
    """Drawer and POS operator."""
    return auth_service.create_user(
        "cashier",
        "Cashier",
        PASSWORD,
        permissions=[ACCESS_DRAWER, ACCESS_POS, ACCESS_INVENTORY, ACCESS_REGISTER_HISTORY],
    )


@pytest.fixture(scope='function')
def cashier_b(db_session):
    """Second operator, used for ownership checks."""
    return auth_service.create_user(
        "cashier_b",
        "Second Cashier",
        PASSWORD,
        permissions=[ACCESS_DRAWER, ACCESS_POS, ACCESS_REGISTER_HISTORY],
    )


@pytest.fixture(scope='function')
def manager(db_session):
    """Approves access to closed sessions, but is not an administrator."""
    return auth_service.create_user(
        "manager",
        "Manager",
        PASSWORD,
        permissions=[ACCESS_REGISTER_HISTORY, APPROVE_REGISTER_ACCESS],
    )


@pytest.fixture(scope='function')
def item(db_session):
    item = Item(sku="WIDGET-001", name="Widget", price_cents=50000, stock=0)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def part_items(db_session):
    """Two part items with stock plus an empty final item."""
    bolt = Item(sku="BOLT-001", name="Bolt", price_cents=100, stock=10)
    plate = Item(sku="PLATE-001", name="Plate", price_cents=500, stock=3)
    bracket = Item(sku="BRACKET-001", name="Bracket", price_cents=2500, stock=0)
    db_session.add_all([bolt, plate, bracket])
    db_session.commit()
    return bolt, plate, bracket


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Juan Dela Cruz", debt_balance_cents=0)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def bank(db_session):
    return ledger_service.create_bank_account("Metrobank", "Store Account", "0001-2345")


def auth_headers(user) -> dict:
    """Issue a fresh token for ``user`` and build the Authorization header."""
    return {'Authorization': f'Bearer {auth_service.issue_token(user)}'}


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user through the login endpoint."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def fail_commits(monkeypatch, times: int) -> list:
    """
    Make the next ``times`` commits raise SQLite's busy error.

    Returns the list of commit attempts so tests can count retries.
    """
    attempts = []
    real_commit = db.session.commit

    def _busy_commit():
        attempts.append(1)
        if len(attempts) <= times:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        return real_commit()

    monkeypatch.setattr(db.session, "commit", _busy_commit)
    return attempts
