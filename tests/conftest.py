import pytest
from decimal import Decimal
import uuid

from order_hub import create_app
from order_hub.database import get_session, create_all, drop_all
from order_hub.models import AppUser, UserRole, Vendor, Product


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(autouse=True)
def app_context(app):
    """Keep one app context per test so requests share the test's db session."""
    with app.app_context():
        yield


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app_context):
    """Fresh schema per test on the in-memory database."""
    create_all()
    session = get_session()
    yield session
    session.rollback()
    session.remove()
    drop_all()


def _user(session, prefix, role):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(
        email=f'{prefix}-{suffix}@test.com',
        full_name=prefix.title(),
        role=role,
        active=True
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def buyer(session):
    """Create a buyer."""
    return _user(session, 'buyer', UserRole.BUYER.value)


@pytest.fixture(scope='function')
def other_buyer(session):
    """Second buyer for isolation tests."""
    return _user(session, 'other', UserRole.BUYER.value)


@pytest.fixture(scope='function')
def admin(session):
    """Create an admin."""
    return _user(session, 'admin', UserRole.ADMIN.value)


def _vendor(session, name):
    suffix = str(uuid.uuid4())[:8]
    vendor = Vendor(vendor_connect_id=f'V-{suffix}', name=name)
    session.add(vendor)
    session.commit()
    return vendor


@pytest.fixture(scope='function')
def vendor(session):
    return _vendor(session, 'Acme Pantry')


@pytest.fixture(scope='function')
def other_vendor(session):
    return _vendor(session, 'Borealis Foods')


@pytest.fixture(scope='function')
def make_product(session, vendor):
    """Factory for active products. Keyword args set ordering constraints."""
    def _make(name, unit_price, case_price=None, vendor=vendor, category='Pantry', active=True, **constraints):
        product = Product(
            product_connect_id=f'P-{uuid.uuid4().hex[:10]}',
            vendor_id=vendor.id,
            product_name=name,
            category=category,
            wholesale_unit_price=Decimal(str(unit_price)) if unit_price is not None else None,
            wholesale_case_price=Decimal(str(case_price)) if case_price is not None else None,
            active=active,
            **constraints
        )
        session.add(product)
        session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """$10/unit, $110/case of 12."""
    return make_product('Olive Oil 500ml', '10.00', '110.00', case_pack=12)


@pytest.fixture(scope='function')
def products(make_product, other_vendor):
    """Three unit-priced products across two vendors."""
    return [
        make_product('Honey 250g', '12.50'),
        make_product('Jam 300g', '20.00'),
        make_product('Tea 100g', '7.50', vendor=other_vendor),
    ]


def _login(client, user):
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
    return client


@pytest.fixture(scope='function')
def buyer_client(client, buyer):
    """Test client logged in as the buyer."""
    return _login(client, buyer)


@pytest.fixture(scope='function')
def admin_client(app, admin):
    """Test client logged in as the admin."""
    return _login(app.test_client(), admin)
