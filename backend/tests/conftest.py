"""
Pytest fixtures for canteen backend tests.

Provides test database setup, an outlet with a small menu and stock,
customer/staff/superadmin accounts, and test client helpers.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from canteen import create_app
from canteen.extensions import db
from canteen.models import Coupon, Inventory, Outlet, Product, Wallet
from canteen.models.auth import ROLE_ADMIN, ROLE_STAFF, ROLE_SUPERADMIN
from canteen.services.auth_service import create_user
from canteen.services.payment_gateway import RazorpaySignatureVerifier
from canteen.time_utils import utcnow

TEST_PASSWORD = "Password123"
TEST_GATEWAY_SECRET = "test_secret"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RAZORPAY_KEY_SECRET': TEST_GATEWAY_SECRET,
        'BACKGROUND_TASKS_SYNC': True,
        'DAILY_FREE_LIMIT': 5,
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
def outlet(db_session):
    outlet = Outlet(name="Main Canteen", address="Block A", is_active=True)
    db_session.add(outlet)
    db_session.commit()
    return outlet


@pytest.fixture(scope='function')
def other_outlet(db_session):
    outlet = Outlet(name="Annex Canteen", address="Block C", is_active=True)
    db_session.add(outlet)
    db_session.commit()
    return outlet


def _product(db_session, outlet, name, price_paise, stock, company_paid=False, category="Meals"):
    product = Product(
        outlet_id=outlet.id,
        name=name,
        category=category,
        price_paise=price_paise,
        company_paid=company_paid,
    )
    db_session.add(product)
    db_session.flush()
    db_session.add(Inventory(product_id=product.id, outlet_id=outlet.id, quantity=stock, threshold=2))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def thali(db_session, outlet):
    """Company-paid meal, 50.00 a plate."""
    return _product(db_session, outlet, "Veg Thali", 5000, 50, company_paid=True)


@pytest.fixture(scope='function')
def biryani(db_session, outlet):
    """Regular product, 100.00 a plate."""
    return _product(db_session, outlet, "Chicken Biryani", 10000, 20)


@pytest.fixture(scope='function')
def jamun(db_session, outlet):
    """Regular dessert, 40.00 a portion."""
    return _product(db_session, outlet, "Gulab Jamun", 4000, 10, category="Desserts")


@pytest.fixture(scope='function')
def samosa_elsewhere(db_session, other_outlet):
    return _product(db_session, other_outlet, "Samosa", 2000, 10, category="Starters")


@pytest.fixture(scope='function')
def customer(db_session):
    return create_user("customer@test.local", "Test Customer", TEST_PASSWORD)


@pytest.fixture(scope='function')
def other_customer(db_session):
    return create_user("other@test.local", "Other Customer", TEST_PASSWORD)


@pytest.fixture(scope='function')
def staff(db_session, outlet):
    return create_user("staff@test.local", "Counter Staff", TEST_PASSWORD, role=ROLE_STAFF, outlet_id=outlet.id)


@pytest.fixture(scope='function')
def other_staff(db_session, other_outlet):
    return create_user("annex@test.local", "Annex Admin", TEST_PASSWORD, role=ROLE_ADMIN, outlet_id=other_outlet.id)


@pytest.fixture(scope='function')
def superadmin(db_session):
    return create_user("root@test.local", "Super Admin", TEST_PASSWORD, role=ROLE_SUPERADMIN)


def fund_wallet(customer_id: int, amount_paise: int) -> Wallet:
    """Set a customer's wallet balance directly."""
    wallet = db.session.query(Wallet).filter_by(customer_id=customer_id).one()
    wallet.balance_paise = amount_paise
    db.session.commit()
    return wallet


def wallet_balance(customer_id: int) -> int:
    return db.session.query(Wallet).filter_by(customer_id=customer_id).one().balance_paise


def stock_of(product_id: int) -> int:
    return db.session.query(Inventory).filter_by(product_id=product_id).one().quantity


def make_coupon(code, reward_value, min_order_value_paise=0, **kwargs) -> Coupon:
    now = utcnow()
    coupon = Coupon(
        code=code,
        reward_value=Decimal(str(reward_value)),
        min_order_value_paise=min_order_value_paise,
        valid_from=kwargs.pop("valid_from", now - timedelta(days=1)),
        valid_until=kwargs.pop("valid_until", now + timedelta(days=30)),
        is_active=kwargs.pop("is_active", True),
        used_count=kwargs.pop("used_count", 0),
        **kwargs,
    )
    db.session.add(coupon)
    db.session.commit()
    return coupon


def gateway_details(order_id="order_test_1", payment_id="pay_test_1") -> dict:
    """Payment details signed with the test gateway secret."""
    signature = RazorpaySignatureVerifier(TEST_GATEWAY_SECRET).expected_signature(order_id, payment_id)
    return {
        "gateway_order_id": order_id,
        "gateway_payment_id": payment_id,
        "gateway_signature": signature,
    }


def order_payload(outlet_id, items, payment_method="WALLET", **extra) -> dict:
    payload = {
        "outlet_id": outlet_id,
        "payment_method": payment_method,
        "delivery_slot": "SLOT_12_13",
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
    }
    payload.update(extra)
    return payload


def get_auth_token(client, email: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
