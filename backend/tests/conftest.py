"""
Pytest fixtures for back office tests.

Provides an in-memory database, a test client and a small branch with a
cashier, an admin and stocked products.
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import (
    Branch,
    Category,
    InventoryChangeType,
    PaymentMethod,
    Product,
    ProductVariant,
    Subdivision,
    TransactionType,
    User,
    UserRole,
)
from backoffice.services import session_service
from backoffice.services.inventory_service import apply_stock_change
from backoffice.validation import PaymentRequest, SaleItemRequest, SaleRequest


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BUSINESS_TIMEZONE': 'UTC',
        'RECEIPT_PREFIX': 'RCP',
        'SALE_RETRY_ATTEMPTS': 3,
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
    """Branch with 1,000.00 of cashback float and a 2% service charge."""
    branch = Branch(
        name="Main Street",
        code="MAIN",
        business_name="Main Street Pharmacy",
        business_address="1 Main Street",
        business_phone="0800-000-000",
        currency="NGN",
        cashback_capital_cents=100_000,
        cashback_service_charge_rate_bps=200,
        is_active=True,
    )
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Harbour Road", code="HARB", cashback_capital_cents=0, is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def subdivision(db_session, branch):
    sub = Subdivision(branch_id=branch.id, name="Front Counter")
    db_session.add(sub)
    db_session.commit()
    return sub


@pytest.fixture(scope='function')
def cashier(db_session, branch, subdivision):
    user = User(
        username="cashier",
        first_name="Ada",
        last_name="Obi",
        role=UserRole.CASHIER,
        branch_id=branch.id,
        assigned_subdivision_id=subdivision.id,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session, branch):
    user = User(username="admin", role=UserRole.ADMIN, branch_id=branch.id, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def category(db_session, branch):
    cat = Category(branch_id=branch.id, name="Drinks")
    db_session.add(cat)
    db_session.commit()
    return cat


def _stock(product, variant, quantity):
    apply_stock_change(product, variant, quantity, InventoryChangeType.RESTOCK, reason="Opening stock")
    db.session.commit()


@pytest.fixture(scope='function')
def product(db_session, branch, category):
    """Bare product with 10 in stock, 5.00 each (cost 3.00)."""
    product = Product(
        branch_id=branch.id,
        category_id=category.id,
        sku="WATER-50CL",
        name="Bottled Water",
        selling_price_cents=500,
        cost_price_cents=300,
        quantity_in_stock=0,
        low_stock_threshold=2,
    )
    db_session.add(product)
    db_session.commit()
    _stock(product, None, 10)
    return product


@pytest.fixture(scope='function')
def product_with_variants(db_session, branch, category):
    """Soda with two variants: cola (20 in stock) and lemon (4 in stock)."""
    product = Product(
        branch_id=branch.id,
        category_id=category.id,
        sku="SODA",
        name="Soda",
        has_variants=True,
        quantity_in_stock=None,
    )
    db_session.add(product)
    db_session.flush()

    cola = ProductVariant(
        product_id=product.id, name="Cola", sku="SODA-COLA",
        selling_price_cents=250, cost_price_cents=150, quantity_in_stock=0, low_stock_threshold=5,
    )
    lemon = ProductVariant(
        product_id=product.id, name="Lemon", sku="SODA-LEMON",
        selling_price_cents=250, cost_price_cents=150, quantity_in_stock=0, low_stock_threshold=5,
    )
    db_session.add_all([cola, lemon])
    db_session.commit()

    _stock(product, cola, 20)
    _stock(product, lemon, 4)
    return product, cola, lemon


@pytest.fixture(scope='function')
def open_session(db_session, branch, cashier):
    """Cashier session with a 50.00 opening float."""
    return session_service.start_session(branch.id, cashier.id, opening_balance_cents=5_000, name="Morning")


@pytest.fixture
def purchase_request():
    """Factory for a PURCHASE request with one cash payment."""
    def _build(lines, paid_cents, method=PaymentMethod.CASH, **kwargs):
        return SaleRequest(
            transaction_type=TransactionType.PURCHASE,
            items=[SaleItemRequest(**line) for line in lines],
            payments=[PaymentRequest(method=method, amount_cents=paid_cents)] if paid_cents else [],
            **kwargs,
        )
    return _build


@pytest.fixture
def cashback_request():
    def _build(amount_cents, paid_cents, service_charge_cents=None, method=PaymentMethod.TRANSFER, **kwargs):
        return SaleRequest(
            transaction_type=TransactionType.CASHBACK,
            cashback_amount_cents=amount_cents,
            service_charge_cents=service_charge_cents,
            payments=[PaymentRequest(method=method, amount_cents=paid_cents)] if paid_cents else [],
            **kwargs,
        )
    return _build
