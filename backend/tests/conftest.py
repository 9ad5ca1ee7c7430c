"""
Pytest fixtures for stockflow backend tests.

Provides an in-memory application, a wiped database per test, stores and a
seeded central warehouse.
"""

import pytest
from stockflow import create_app
from stockflow.extensions import db
from stockflow.models import CentralStockLine
from stockflow.services import inventory_service, stock_service, store_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def store_a(db_session):
    """Branch store A."""
    return store_service.create_store("Store A", kind="BRANCH", city="La Paz")


@pytest.fixture(scope='function')
def store_b(db_session):
    """Branch store B."""
    return store_service.create_store("Store B", kind="BRANCH", city="El Alto")


@pytest.fixture(scope='function')
def central_seed(db_session):
    """
    Central warehouse stock:
    - Bosch 75Ah: 10 units, cost 5000, price 8000
    - Varta 60Ah: 4 units, cost 4000, price 6500
    - Exide 45Ah: empty line (central lines persist at zero)

    Returns units ever received per lowercase "brand rating" key.
    """
    inventory_service.receive_central_stock("Bosch", "75Ah", 10, unit_cost_cents=5000, unit_price_cents=8000)
    inventory_service.receive_central_stock("Varta", "60Ah", 4, unit_cost_cents=4000, unit_price_cents=6500)
    db_session.add(CentralStockLine(
        brand="Exide", rating="45Ah", quantity=0, unit_cost_cents=3000, unit_price_cents=4500,
    ))
    db_session.commit()
    return {"bosch 75ah": 10, "varta 60ah": 4, "exide 45ah": 0}


@pytest.fixture
def stock_qty():
    """Current quantity at a stock key (0 when the line does not exist)."""
    return stock_service.available_quantity


@pytest.fixture
def assert_conserved():
    """
    Check on_hand_total + sold == units received for every key.

    Takes a mapping of lowercase "brand rating" to units ever received.
    """
    def _check(received: dict):
        report = {f"{row['brand']} {row['rating']}": row for row in stock_service.conservation_report()}
        for key, units in received.items():
            row = report.get(key, {"on_hand_total": 0, "sold": 0})
            assert row["on_hand_total"] + row["sold"] == units, (key, row)
            assert row.get("central", 0) >= 0 and row.get("stores", 0) >= 0
    return _check
