"""
Pytest fixtures for stockrecon backend tests.

Provides an in-memory database, a test client, catalog reference data and
helpers to drive a count through finalization.
"""

import pytest

from stockrecon import create_app
from stockrecon.extensions import db
from stockrecon.models import Branch, Category, Product, StockLedgerRecord
from stockrecon.services import control_session_service


CLERK_ID = 101
ADMIN_ID = 900
OTHER_ADMIN_ID = 901


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
def branch(db_session):
    branch = Branch(name="Centro", code="CEN")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Norte", code="NOR")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def beverages(db_session):
    category = Category(name="Beverages")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def snacks(db_session):
    category = Category(name="Snacks")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def products(db_session, beverages, snacks):
    """Three products: two beverages, one snack."""
    rows = [
        Product(sku="COLA-500", name="Cola 500ml", category_id=beverages.id, min_stock=5, max_stock=50),
        Product(sku="WATER-1L", name="Water 1L", category_id=beverages.id, min_stock=10, max_stock=80),
        Product(sku="CHIPS-90", name="Chips 90g", category_id=snacks.id, min_stock=2, max_stock=20),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture(scope='function')
def set_stock(db_session):
    """Seed a ledger record directly (the surrounding system's writes)."""
    def _set(product, branch, quantity):
        record = StockLedgerRecord(
            product_id=product.id,
            branch_id=branch.id,
            quantity=quantity,
            min_threshold=product.min_stock,
            max_threshold=product.max_stock,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _set


@pytest.fixture(scope='function')
def finalize_count(db_session):
    """Open and finalize a FULL count; returns the finalized session."""
    def _finalize(branch, counts, user_id=CLERK_ID):
        session = control_session_service.open_session(branch.id, user_id, "FULL")
        return control_session_service.finalize_session(
            session.id,
            [{"product_id": p.id, "counted_quantity": q} for p, q in counts],
            user_id=user_id,
        )
    return _finalize


def principal(user_id: int) -> dict:
    """Headers carrying an upstream-authenticated user."""
    return {'X-User-Id': str(user_id)}
