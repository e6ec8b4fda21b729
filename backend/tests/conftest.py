"""
Pytest fixtures for storefront backend tests.

Provides the app on an in-memory database, per-test table wipe, catalog and
customer factories, a signed payment event builder, and a mocked Twilio API.
"""

import time

import httpx
import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.models import Customer, Product, Variant
from storefront.services import notification_service
from storefront.services.order_service import create_order
from storefront.services.payment_provider import DEFAULT_SIGNED_PROPERTIES, event_checksum


EVENT_SECRET = "test_events_secret"
INTEGRITY_SECRET = "test_integrity_secret"
PUBLIC_KEY = "pub_test_abc123"

TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test',
    'APP_ENV': 'test',
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'NOTIFICATIONS_ASYNC': False,
    'ORDER_EXPIRY_HOURS': 2,
    'STOCK_RETRY_ATTEMPTS': 3,
    'PAYMENT_CURRENCY': 'COP',
    'PAYMENT_CHECKOUT_BASE_URL': 'https://checkout.wompi.co/p/',
    'WOMPI_PUBLIC_KEY': PUBLIC_KEY,
    'WOMPI_INTEGRITY_SECRET': INTEGRITY_SECRET,
    'WOMPI_EVENT_SECRET': EVENT_SECRET,
    'TWILIO_ACCOUNT_SID': 'ACtest',
    'TWILIO_AUTH_TOKEN': 'token',
    'TWILIO_WHATSAPP_FROM': 'whatsapp:+14155238886',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(dict(TEST_CONFIG))

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
def make_product(db_session):
    """Factory: make_product(sku, sizes={42: 3}, price_cents=..., ...)."""
    def _make(sku, sizes, *, brand="Nike", model=None, price_cents=45000000,
              category="sneakers", colorway=None, active=True):
        product = Product(
            sku=sku,
            brand=brand,
            model=model or f"Model {sku}",
            colorway=colorway,
            category=category,
            price_cents=price_cents,
            active=active,
        )
        db_session.add(product)
        db_session.flush()
        for size, stock in sizes.items():
            db_session.add(Variant(product_id=product.id, size=float(size), stock=stock))
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def jordan(make_product):
    """Air Jordan 1 in sizes 40 (1 unit), 42 (3 units), 43 (0 units)."""
    return make_product(
        "AJ1-RED",
        {40: 1, 42: 3, 43: 0},
        brand="Nike",
        model="Air Jordan 1",
        colorway="Chicago",
        price_cents=45000000,
    )


@pytest.fixture(scope='function')
def samba(make_product):
    """Adidas Samba in size 41 (2 units)."""
    return make_product(
        "SAMBA-WHT",
        {41: 2},
        brand="Adidas",
        model="Samba OG",
        colorway="White",
        price_cents=32000000,
    )


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(phone_e164="whatsapp:+573001112233", name="Ana Gómez")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def shipping():
    return {
        "shipping_name": "Ana Gómez",
        "shipping_address": "Cra 7 # 12-34",
        "shipping_city": "Bogotá",
    }


def variant_for(product, size):
    """Helper to get a product's variant by size."""
    for variant in product.variants:
        if variant.size == float(size):
            return variant
    raise LookupError(size)


@pytest.fixture(scope='function')
def place_order(customer, shipping):
    """Factory: place_order([(product, size, qty), ...]) -> OrderResult."""
    def _place(lines):
        items = [
            {"product_ref": product.sku, "size": size, "quantity": qty}
            for product, size, qty in lines
        ]
        return create_order(customer.id, items, shipping)

    return _place


@pytest.fixture(scope='function')
def signed_event():
    """Factory for Wompi transaction events carrying a valid checksum."""
    def _build(reference, status, *, amount_cents=45000000, tx_id="12345-1700000000-00001",
               event="transaction.updated", secret=EVENT_SECRET, timestamp=None):
        timestamp = timestamp if timestamp is not None else int(time.time())
        data = {
            "transaction": {
                "id": tx_id,
                "reference": reference,
                "status": status,
                "amount_in_cents": amount_cents,
                "currency": "COP",
            }
        }
        checksum = event_checksum(data, DEFAULT_SIGNED_PROPERTIES, timestamp, secret)
        return {
            "event": event,
            "data": data,
            "environment": "test",
            "signature": {"properties": list(DEFAULT_SIGNED_PROPERTIES), "checksum": checksum},
            "timestamp": timestamp,
        }

    return _build


class TwilioStub:
    """Records outbound WhatsApp requests; responds with `status_code`/`payload`."""

    def __init__(self):
        self.requests = []
        self.status_code = 201
        self.payload = {"sid": "SM0000000000000000000000000000001", "status": "queued"}
        self.exc = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, json=self.payload)

    def sent_bodies(self):
        from urllib.parse import parse_qs
        return [parse_qs(r.content.decode())["Body"][0] for r in self.requests]


@pytest.fixture(scope='function')
def twilio(monkeypatch):
    """Route notification HTTP calls to an in-process mock transport."""
    stub = TwilioStub()
    monkeypatch.setattr(
        notification_service,
        "_http_client",
        lambda: httpx.Client(transport=httpx.MockTransport(stub.handler), timeout=1.0),
    )
    return stub
