"""Shared fixtures: in-memory SQLite, fixed clock, fakes for Redis, gateway and notifier."""
import os
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PAYMENT_GATEWAY", "fake")
os.environ.setdefault("NOTIFICATION_WEBHOOK_URL", "")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.api import create_app
from marketplace.api.dependencies import (
    get_clock,
    get_lock_service,
    get_notifier,
    get_payment_gateway,
    get_sleep,
)
from marketplace.data import models  # noqa: F401
from marketplace.data.database import Base, get_db
from marketplace.data.models import ChefModel, MealModel, OrderItemModel, OrderModel
from marketplace.services.cart_service import CartService
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.gateway.fake_adapter import FakeGateway
from marketplace.services.lock_service import LockService
from marketplace.services.notification_service import NotificationService
from marketplace.services.order_service import OrderService
from marketplace.services.payment_service import PaymentService

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)
CUSTOMER_ID = 42
OTHER_CUSTOMER_ID = 77

ADDRESS = {
    "street": "350 5th Ave",
    "city": "New York",
    "state": "NY",
    "zip_code": "10118",
    "coordinates": [-73.9857, 40.7484],
}


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRedis:
    """The subset of redis.Redis that LockService uses."""

    def __init__(self):
        self.store: dict[str, str] = {}

    def set(self, name, value, nx=False, ex=None):
        if nx and name in self.store:
            return None
        self.store[name] = value
        return True

    def get(self, name):
        return self.store.get(name)

    def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0


class RecordingNotifier(NotificationService):
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def publish(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def of(self, event: str) -> list[dict]:
        return [payload for name, payload in self.events if name == event]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def lock_service(redis_client):
    return LockService(client=redis_client)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def catalog(db):
    """Three chefs around Midtown, meals available all afternoon of NOW's date."""
    chefs = [
        ChefModel(id=1, user_id=101, business_name="Nonna's Kitchen", longitude=-73.9903, latitude=40.7505),
        ChefModel(id=2, user_id=102, business_name="Spice Route", longitude=-73.9680, latitude=40.7850),
        ChefModel(id=3, user_id=103, business_name="Green Bowl", longitude=-74.0060, latitude=40.7128),
    ]
    window = dict(available_date=NOW.date(), start_time=time(9, 0), end_time=time(21, 0))
    meals = [
        MealModel(id=1, chef_id=1, name="Lasagna", price=Decimal("15.99"), preparation_time=20,
                  quantity=10, remaining_quantity=10, **window),
        MealModel(id=2, chef_id=1, name="Tiramisu", price=Decimal("10.00"), preparation_time=45,
                  quantity=10, remaining_quantity=10, **window),
        MealModel(id=3, chef_id=2, name="Chana Masala", price=Decimal("10.00"), preparation_time=30,
                  quantity=10, remaining_quantity=10, **window),
        MealModel(id=4, chef_id=3, name="Quinoa Bowl", price=Decimal("12.50"), preparation_time=15,
                  quantity=5, remaining_quantity=5, **window),
    ]
    db.add_all(chefs + meals)
    db.commit()
    return SimpleNamespace(
        chef_a=chefs[0],
        chef_b=chefs[1],
        chef_c=chefs[2],
        lasagna=meals[0],
        tiramisu=meals[1],
        masala=meals[2],
        bowl=meals[3],
    )


@pytest.fixture
def stock(db):
    """Live (remaining_quantity, total_orders) of a meal, straight from the table."""

    def _stock(meal_id: int) -> tuple[int, int]:
        row = db.execute(
            select(MealModel.remaining_quantity, MealModel.total_orders).where(MealModel.id == meal_id)
        ).one()
        return row.remaining_quantity, row.total_orders

    return _stock


@pytest.fixture
def make_order(db, catalog, clock):
    """Insert an order directly, in any status, bypassing checkout."""

    def _make_order(status="pending", payment_status="pending", payment_intent_id=None,
                    customer_id=CUSTOMER_ID, meal=None, quantity=2):
        meal = meal or catalog.lasagna
        subtotal = Decimal(meal.price) * quantity
        order = OrderModel(
            checkout_id="00000000-0000-0000-0000-000000000001",
            customer_id=customer_id,
            chef_id=meal.chef_id,
            items=[OrderItemModel(meal_id=meal.id, chef_id=meal.chef_id, quantity=quantity, price=meal.price)],
            total_amount=subtotal,
            delivery_fee=Decimal("0.00"),
            tax=Decimal("0.00"),
            discount=Decimal("0.00"),
            final_amount=subtotal,
            delivery_type="pickup",
            status=status,
            payment_status=payment_status,
            payment_intent_id=payment_intent_id,
            estimated_delivery_time=clock() + timedelta(minutes=50),
            refund_amount=Decimal("0.00"),
            version=1,
            created_at=clock(),
            updated_at=clock(),
        )
        db.add(order)
        db.commit()
        return order

    return _make_order


@pytest.fixture
def cart_service(db, clock):
    return CartService(db, clock=clock)


@pytest.fixture
def checkout_service(db, lock_service, notifier, clock):
    return CheckoutService(db, lock_service=lock_service, notifier=notifier, clock=clock)


@pytest.fixture
def order_service(db, notifier, clock):
    return OrderService(db, notifier=notifier, clock=clock)


@pytest.fixture
def payment_service(db, gateway, notifier, lock_service, clock, sleeps):
    return PaymentService(
        db, gateway=gateway, notifier=notifier, lock_service=lock_service, clock=clock, sleep=sleeps.append
    )


@pytest.fixture
def client(db, clock, lock_service, notifier, gateway, sleeps):
    app = create_app()

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_lock_service] = lambda: lock_service
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_sleep] = lambda: sleeps.append

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def customer_headers(user_id: int = CUSTOMER_ID) -> dict:
    return {"X-User-Id": str(user_id), "X-User-Role": "customer"}


def chef_headers(chef_id: int, user_id: int | None = None) -> dict:
    return {"X-User-Id": str(user_id or 100 + chef_id), "X-User-Role": "chef", "X-Chef-Id": str(chef_id)}
