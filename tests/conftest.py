import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["PAYMENT_GATEWAY"] = "fake"
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

import copy
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from marketplace.data.database import Base, build_engine
from marketplace.data.models import CouponModel, StockLevelModel, UserModel
from marketplace.services.cart_service import CartService
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.deadline_enforcer import DeadlineEnforcer
from marketplace.services.order_creation import OrderCreationService
from marketplace.services.order_service import OrderService
from marketplace.services.payment_gateway import FakeGateway
from marketplace.services.refund_service import RefundService
from marketplace.utils.clock import utcnow
from marketplace.utils.errors import AddressNotFoundError

BUYER = 1
SELLER = 2
OTHER_SELLER = 3
SECOND_BUYER = 4
STRANGER = 9

SELLER_LAT, SELLER_LNG = 12.9352, 77.6245

ITEMS = {
    1: {
        "id": 1,
        "seller_id": SELLER,
        "name": "Ceramic Mug",
        "is_active": True,
        "base_price": 250.00,
        "requires_personalization": False,
        "personalization_price": 0,
        "variants": {},
        "addons": {"1": 30.00, "2": 15.00},
    },
    2: {
        "id": 2,
        "seller_id": SELLER,
        "name": "Engraved Photo Frame",
        "is_active": True,
        "base_price": 450.00,
        "requires_personalization": True,
        "personalization_price": 99.00,
        "variants": {"1": 450.00, "2": 650.00},
        "addons": {},
    },
    3: {
        "id": 3,
        "seller_id": SELLER,
        "name": "Scented Candle",
        "is_active": False,
        "base_price": 199.00,
        "requires_personalization": False,
        "personalization_price": 0,
        "variants": {},
        "addons": {},
    },
    4: {
        "id": 4,
        "seller_id": OTHER_SELLER,
        "name": "Sourdough Loaf",
        "is_active": True,
        "base_price": 100.00,
        "requires_personalization": False,
        "personalization_price": 0,
        "variants": {},
        "addons": {},
    },
}

ADDRESSES = {
    # about 1.1 km from the seller
    1: {"id": 1, "user_id": BUYER, "latitude": 12.9452, "longitude": 77.6245},
    2: {"id": 2, "user_id": SECOND_BUYER, "latitude": 12.9452, "longitude": 77.6245},
    # about 11 km from the seller
    3: {"id": 3, "user_id": BUYER, "latitude": 13.0352, "longitude": 77.6245},
}

PERSONALIZED = {"enabled": True, "option_id": "engraving"}


class FakeCatalog:
    def __init__(self):
        self.items = copy.deepcopy(ITEMS)
        self.calls = 0

    def fetch_item(self, item_id):
        self.calls += 1
        item = self.items.get(item_id)
        return copy.deepcopy(item) if item else None


class FakeLocation:
    def __init__(self):
        self.addresses = copy.deepcopy(ADDRESSES)

    def fetch_address(self, address_id):
        address = self.addresses.get(address_id)
        if not address:
            raise AddressNotFoundError(address_id=address_id)
        return dict(address)


class RecordingNotifier:
    def __init__(self):
        self.orders = []
        self.previews = []

    def order_changed(self, order):
        self.orders.append((order.id, order.status))

    def preview_changed(self, preview, order):
        self.previews.append((preview.id, preview.status, order.id))


class InMemoryLock:
    def __init__(self):
        self.held = {}

    def acquire(self, name, owner, ttl):
        if name in self.held:
            return False
        self.held[name] = owner
        return True

    def release(self, name, owner):
        if self.held.get(name) != owner:
            return False
        del self.held[name]
        return True


@pytest.fixture
def engine(tmp_path):
    # a file database so that several sessions (and threads) see each other's commits
    engine = build_engine(f"sqlite:///{tmp_path / 'marketplace.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory, seed_data):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seed_data(session_factory):
    session = session_factory()
    session.add_all(
        [
            UserModel(id=BUYER, name="Asha", role="buyer", wallet_balance=Decimal("0")),
            UserModel(id=SELLER, name="Clay Studio", role="seller", latitude=SELLER_LAT, longitude=SELLER_LNG),
            UserModel(id=OTHER_SELLER, name="Corner Bakery", role="seller", latitude=12.90, longitude=77.60),
            UserModel(id=SECOND_BUYER, name="Ravi", role="buyer", wallet_balance=Decimal("0")),
            UserModel(id=STRANGER, name="Someone Else", role="buyer", wallet_balance=Decimal("0")),
            StockLevelModel(item_id=1, variant_id=None, quantity=10),
            StockLevelModel(item_id=2, variant_id=1, quantity=5),
            StockLevelModel(item_id=2, variant_id=2, quantity=3),
            StockLevelModel(item_id=4, variant_id=None, quantity=10),
            CouponModel(
                code="WELCOME10",
                kind="percent",
                value=Decimal("10"),
                min_order_value=Decimal("300"),
                max_discount=Decimal("100"),
                is_active=True,
                expires_at=utcnow() + timedelta(days=30),
            ),
            CouponModel(code="FLAT50", kind="flat", value=Decimal("50"), min_order_value=Decimal("0"), is_active=True),
            CouponModel(
                code="OLD5",
                kind="flat",
                value=Decimal("5"),
                min_order_value=Decimal("0"),
                is_active=True,
                expires_at=utcnow() - timedelta(days=1),
            ),
        ]
    )
    session.commit()
    session.close()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def location():
    return FakeLocation()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lock():
    return InMemoryLock()


class Market:
    """Drives the services the way the API does, for tests that need an order in some state."""

    def __init__(self, db, catalog, location, gateway, notifier):
        self.db = db
        self.catalog = catalog
        self.location = location
        self.gateway = gateway
        self.notifier = notifier
        self._payments = 0

    def carts(self, db=None):
        return CartService(db or self.db, self.catalog)

    def checkouts(self, db=None):
        return CheckoutService(db or self.db, self.catalog, self.location, self.gateway)

    def creation(self, db=None):
        return OrderCreationService(db or self.db, self.gateway, self.catalog, self.notifier)

    def orders(self, db=None):
        db = db or self.db
        return OrderService(db, self.notifier, RefundService(db, self.gateway))

    def enforcer(self, db=None):
        return DeadlineEnforcer(db or self.db, self.gateway, self.notifier)

    def add(self, item_id=1, quantity=1, buyer_id=BUYER, **line):
        result = self.carts().add_item(user_id=buyer_id, item_id=item_id, quantity=quantity, **line)
        assert result.ok, result
        return result.data

    def checkout(self, buyer_id=BUYER, address_id=1, **kwargs):
        result = self.checkouts().open_payment(buyer_id=buyer_id, address_id=address_id, **kwargs)
        assert result.ok, result
        return result.data

    def payment_id(self):
        self._payments += 1
        return f"pay_{self._payments:04d}"

    def pay(self, checkout, payment_id=None):
        payment_id = payment_id or self.payment_id()
        result = self.creation().verify_payment(
            gateway_order_id=checkout["gateway_order_id"],
            payment_id=payment_id,
            signature=self.gateway.sign(checkout["gateway_order_id"], payment_id),
            draft_id=checkout["draft_id"],
        )
        assert result.ok, result
        return result.data

    def place_order(self, item_id=1, quantity=1, buyer_id=BUYER, address_id=1, **line) -> int:
        self.add(item_id=item_id, quantity=quantity, buyer_id=buyer_id, **line)
        address_id = 2 if buyer_id == SECOND_BUYER else address_id
        return self.pay(self.checkout(buyer_id=buyer_id, address_id=address_id))["order_id"]

    def place_personalized_order(self, buyer_id=BUYER) -> int:
        return self.place_order(item_id=2, variant_id=1, personalization=PERSONALIZED, buyer_id=buyer_id)


@pytest.fixture
def market(db, catalog, location, gateway, notifier):
    return Market(db, catalog, location, gateway, notifier)
