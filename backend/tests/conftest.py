"""
Pytest fixtures for branchledger tests.

Provides an in-memory database, tenant/branch/product fixtures and a test
client. Requests made through the client reuse the fixture's app context, so
tests and routes share one session.
"""

import pytest
from branchledger import create_app
from branchledger.extensions import db
from branchledger.models import Tenant, Branch, Product, StockTrackingMode
from branchledger.decorators import ACTOR_HEADER


def pytest_configure(config):
    config.addinivalue_line("markers", "api: exercises HTTP routes through the Flask test client")
    config.addinivalue_line("markers", "cli: exercises Flask CLI commands")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
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
def tenant_a(db_session):
    """Create Tenant A."""
    tenant = Tenant(name="Tenant A - Acme Retail", code="ACME", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (foreign tenant)."""
    tenant = Tenant(name="Tenant B - Beta Stores", code="BETA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def branch_a(db_session, tenant_a):
    """Create the main branch of Tenant A."""
    branch = Branch(tenant_id=tenant_a.id, name="Main", code="MAIN", timezone="UTC")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_a2(db_session, tenant_a):
    """Create a second branch of Tenant A."""
    branch = Branch(tenant_id=tenant_a.id, name="West", code="WEST", timezone="UTC")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b(db_session, tenant_b):
    """Create a branch of Tenant B."""
    branch = Branch(tenant_id=tenant_b.id, name="Beta Main", code="BMAIN", timezone="UTC")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def product_a(db_session, tenant_a):
    """Quantity-tracked product: 100.00 selling, 60.00 purchase, 18% GST."""
    product = Product(
        tenant_id=tenant_a.id,
        sku="CABLE-001",
        name="USB Cable",
        selling_price_cents=10000,
        purchase_price_cents=6000,
        gst_rate_bps=1800,
        min_stock=2,
        stock_tracking_mode=StockTrackingMode.QUANTITY.value,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def serial_product_a(db_session, tenant_a):
    """Serial-tracked product, inactive until serials are added."""
    product = Product(
        tenant_id=tenant_a.id,
        sku="PHONE-001",
        name="Smartphone",
        selling_price_cents=2500000,
        purchase_price_cents=2000000,
        gst_rate_bps=1800,
        stock_tracking_mode=StockTrackingMode.SERIAL.value,
        is_active=False,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b):
    """Product owned by Tenant B."""
    product = Product(
        tenant_id=tenant_b.id,
        sku="BETA-001",
        name="Beta Widget",
        selling_price_cents=5000,
        purchase_price_cents=2500,
        gst_rate_bps=500,
    )
    db_session.add(product)
    db_session.commit()
    return product


def actor_headers(actor_id: str = "user-1") -> dict:
    """Helper to create the upstream actor header."""
    return {ACTOR_HEADER: actor_id}
