import os

# Must be set before settings are loaded by the app imports below
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("LOG_DIR", "logs")

import asyncio
from typing import Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from main import app, dispatcher, locations
from core.database import Base, SessionLocal, engine
from models.delivery_partners import DeliveryPartner
from models.products import Product
from models.users import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_DELIVERY, User
from services.authorization import Actor
from services.dispatcher import BroadcastDispatcher
from services.locations import LocationStore
from services.order_service import LineRequest, OrderService
from services.subscriptions import SubscriptionRegistry
from services.token_service import TokenService
from utils.deps import get_db


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """
    Creates a fresh, empty database for each test.
    Same engine as the app, so the WebSocket gateway sees the same rows.
    """
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

    Base.metadata.drop_all(bind=engine)
    locations.clear()


@pytest.fixture
async def client(session: Session):
    """
    Yields an HTTP client that interacts with the app using the test database.
    ASGITransport does not run the lifespan, so the dispatcher is started here.
    """
    def override_get_db():
        try:
            yield session
        finally:
            pass  # Session cleanup handled by session fixture

    app.dependency_overrides[get_db] = override_get_db
    await dispatcher.start()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    await dispatcher.stop()
    app.dependency_overrides.clear()


# -------------------- real-time doubles --------------------

class FakeChannel:
    """In-memory channel that records every frame pushed to it."""

    def __init__(self, channel_id: str, fail: bool = False, delay: float = 0):
        self.channel_id = channel_id
        self.is_open = True
        self.fail = fail
        self.delay = delay
        self.sent: list[dict] = []

    async def send_json(self, message: dict) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(message)

    def of_type(self, message_type: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == message_type]


@pytest.fixture
def make_channel():
    return FakeChannel


@pytest.fixture
def fanout():
    """A private registry/dispatcher/location store trio, not shared with the app."""
    registry_ = SubscriptionRegistry()
    return registry_, BroadcastDispatcher(registry_, send_timeout=0.5, notify_admins=True), LocationStore()


@pytest.fixture
async def running_fanout(fanout):
    """fanout with its dispatcher task started on the test loop."""
    registry_, dispatcher_, locations_ = fanout
    await dispatcher_.start()
    yield fanout
    await dispatcher_.stop()


@pytest.fixture
def order_service(session, fanout):
    registry_, dispatcher_, locations_ = fanout
    return OrderService(session, dispatcher_, locations_)


# -------------------- data factories --------------------

@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    def factory(role=ROLE_CUSTOMER, name=None, address="12 MG Road, Bengaluru", is_active=True):
        counter["n"] += 1
        user = User(
            phone=f"+9198000{counter['n']:05d}",
            name=name or f"{role}-{counter['n']}",
            address=address,
            role=role,
            is_active=is_active,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return factory


@pytest.fixture
def customer(make_user):
    return make_user(ROLE_CUSTOMER, name="Asha")


@pytest.fixture
def other_customer(make_user):
    return make_user(ROLE_CUSTOMER, name="Ravi")


@pytest.fixture
def admin(make_user):
    return make_user(ROLE_ADMIN, name="Ops")


@pytest.fixture
def make_partner(session, make_user):
    def factory(name=None, is_available=True):
        user = make_user(ROLE_DELIVERY, name=name, address=None)
        partner = DeliveryPartner(user_id=user.id, vehicle_number="KA01AB1234", is_available=is_available)
        session.add(partner)
        session.commit()
        session.refresh(partner)
        return partner

    return factory


@pytest.fixture
def partner(make_partner):
    return make_partner(name="Vikram")


@pytest.fixture
def other_partner(make_partner):
    return make_partner(name="Sunil")


@pytest.fixture
def products(session):
    rows = [
        Product(name="Milk 1L", unit="1 L", price=6500, stock=10),
        Product(name="Bread", unit="400 g", price=4500, stock=5),
        Product(name="Eggs x6", unit="6 pcs", price=5400, stock=2),
    ]
    session.add_all(rows)
    session.commit()
    for row in rows:
        session.refresh(row)
    return rows


@pytest.fixture
def inactive_product(session):
    product = Product(name="Discontinued", unit="1 pc", price=1000, stock=50, is_active=False)
    session.add(product)
    session.commit()
    session.refresh(product)
    return product


def _actor(user) -> Actor:
    return Actor(user_id=user.id, role=user.role)


@pytest.fixture
def actor_for():
    return _actor


@pytest.fixture
def place_order(order_service, products):
    """Places a milk + bread order for the given customer."""
    def factory(user, lines=None, payment_method="upi"):
        lines = lines or [LineRequest(products[0].id, 2), LineRequest(products[1].id, 1)]
        return order_service.create_order(_actor(user), user.id, lines, None, payment_method)

    return factory


@pytest.fixture
def auth_headers():
    def build(user) -> dict:
        token = TokenService.create_access_token(user_id=user.id, role=user.role)
        return {"Authorization": f"Bearer {token}"}

    return build
