import json
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core import deps
from core.db import Base, get_db, enable_sqlite_foreign_keys
from core.redis import _FakeRedis
from models.cart import Cart
from models.order import Order
from models.product import Product, ProductSku
from models.promocode import Promocode
from models.user import User
from security import jwt as jwt_utils
from services.carts import CartService
from services.gateway import FakeGateway
from services.money import EXCHANGE_RATES_KEY, PriceService
from services.orders import OrderService
from services.payments import PaymentService
from services.promocodes import PromocodeService

RATES = {"RUB": 1.0, "USD": 0.0125, "EUR": 0.011}


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    """Create a fresh database for each test."""
    db_session = session_factory()
    yield db_session
    db_session.close()


@pytest.fixture()
def prices():
    cache = _FakeRedis()
    cache.setex(EXCHANGE_RATES_KEY, 3600, json.dumps(RATES))
    service = PriceService(cache, base_currency="RUB")
    service.exchange_rates = dict(RATES)
    return service


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def carts(db, prices):
    return CartService(db, prices, max_items=3)


@pytest.fixture()
def orders(db, carts, prices):
    return OrderService(db, carts, prices, payment_ttl_minutes=30, max_pending_orders=3)


@pytest.fixture()
def payments(db, orders, gateway):
    return PaymentService(db, orders, gateway, client_url="http://shop.example.com", client_orders_path="/orders")


@pytest.fixture()
def promocodes(db):
    return PromocodeService(db, base_currency="RUB")


@pytest.fixture()
def client(db, prices, gateway):
    def _get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_price_service] = lambda: prices
    app.dependency_overrides[deps.get_payment_gateway] = lambda: gateway
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(verified: bool = True, is_admin: bool = False, with_cart: bool = True, created_at: datetime | None = None) -> User:
        counter["n"] += 1
        user = User(
            first_name="Test",
            last_name=f"User{counter['n']}",
            email=f"user{counter['n']}@example.com",
            is_verified=verified,
            is_admin=is_admin,
        )
        if created_at:
            user.created_at = created_at
        db.add(user)
        db.flush()
        if with_cart:
            db.add(Cart(user_id=user.id))
        db.commit()
        return user

    return _make


@pytest.fixture()
def test_user(make_user):
    return make_user()


@pytest.fixture()
def admin_user(make_user):
    return make_user(is_admin=True)


@pytest.fixture()
def make_sku(db):
    counter = {"n": 0}

    def _make(price: int = 10000, quantity: int = 5, sale_price: int | None = None) -> ProductSku:
        counter["n"] += 1
        product = Product(name=f"Chair {counter['n']}", short_description="Oak chair")
        db.add(product)
        db.flush()
        sku = ProductSku(product_id=product.id, sku=f"CHAIR-{counter['n']:03d}", price=price, sale_price=sale_price, quantity=quantity)
        db.add(sku)
        db.commit()
        return sku

    return _make


@pytest.fixture()
def make_promocode(db):
    def _make(
        code: str = "SALE20",
        type: str = "percent",
        discount_value: int = 20,
        usage_limit: int = 10,
        usage_count: int = 0,
        valid_from: datetime | None = None,
        valid_to: datetime | None = None,
    ) -> Promocode:
        now = datetime.utcnow()
        promocode = Promocode(
            code=code,
            type=type,
            discount_value=discount_value,
            usage_limit=usage_limit,
            usage_count=usage_count,
            valid_from=valid_from or now - timedelta(days=1),
            valid_to=valid_to or now + timedelta(days=1),
        )
        db.add(promocode)
        db.commit()
        return promocode

    return _make


@pytest.fixture()
def order_data():
    address = {"city": "Moscow", "street": "Tverskaya", "home": "1", "apartment": "12"}
    return {
        "name": "Test User",
        "email": "buyer@example.com",
        "phone_number": "+79990000000",
        "currency": "RUB",
        "billing_address": address,
        "delivery_address": address,
    }


def _auth_headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(user.id))}"}


@pytest.fixture()
def headers_for():
    return _auth_headers_for


@pytest.fixture()
def auth_headers(test_user):
    """Return authorization headers with valid token."""
    return _auth_headers_for(test_user)


@pytest.fixture()
def make_order(db):
    """Insert an order row directly, bypassing checkout."""

    def _make(user: User, status: str = "pending", promocode: Promocode | None = None, total: int = 10000) -> Order:
        order = Order(
            user_id=user.id,
            promocode_id=promocode.id if promocode else None,
            status=status,
            currency="RUB",
            total=total,
            name="Test User",
            email=user.email,
            phone_number="+79990000000",
            billing_address_city="Moscow",
            billing_address_street="Tverskaya",
            billing_address_home="1",
            billing_address_apartment="",
            delivery_address_city="Moscow",
            delivery_address_street="Tverskaya",
            delivery_address_home="1",
            delivery_address_apartment="",
        )
        db.add(order)
        db.commit()
        return order

    return _make
