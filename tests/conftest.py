"""
Shared fixtures: an in-memory SQLite database, seeded users and catalog,
recording fakes for SMS, notifications and both payment gateways.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_MIGRATIONS"] = "false"
os.environ["JWT_SECRET"] = "test-secret"

from types import SimpleNamespace

import pytest
from fastapi import BackgroundTasks
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.api.auth import create_access_token
from marketplace.api.deps import get_card_gateway, get_mobile_gateway, get_side_effects
from marketplace.application.side_effects import SideEffects
from marketplace.core_settings import get_settings
from marketplace.domain.models import Base, User, Restaurant, Dish
from marketplace.infrastructure.db import get_db
from marketplace.infrastructure.payment_gateways import CardGateway, CardIntent, MobileMoneyGateway
from marketplace.main import app


class RecordingNotifications:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, notice):
        self.sent.append((user_id, notice))

    def types_for(self, user_id):
        return [notice.type for uid, notice in self.sent if uid == user_id]


class RecordingSms:
    def __init__(self):
        self.sent = []

    def send_sms(self, phone, text):
        self.sent.append((phone, text))

    def phones(self):
        return [phone for phone, _ in self.sent]


class FakeCardGateway(CardGateway):
    """Card processor stand-in; intent statuses can be set per test."""

    def __init__(self):
        super().__init__(get_settings())
        self.created = []
        self.statuses = {}

    def create_intent(self, amount, currency, metadata=None):
        intent = CardIntent(id=f"pi_test_{len(self.created) + 1}", client_secret="secret_test",
                            status="requires_payment_method")
        self.created.append((intent.id, amount, currency, metadata))
        return intent

    def retrieve_intent(self, intent_id):
        return CardIntent(id=intent_id, client_secret=None, status=self.statuses.get(intent_id, "processing"))


class FakeMobileGateway(MobileMoneyGateway):
    def __init__(self):
        super().__init__(get_settings())
        self.collections = []

    def initiate_collection(self, amount, phone, reference):
        self.collections.append((amount, phone, reference))
        return f"LAB-{len(self.collections)}"


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def sms():
    return RecordingSms()


@pytest.fixture
def effects(notifications, sms):
    return SideEffects(notifications, sms)


@pytest.fixture
def card_gateway():
    return FakeCardGateway()


@pytest.fixture
def mobile_gateway():
    return FakeMobileGateway()


@pytest.fixture
def seed(db):
    """Users of every role, one restaurant with two dishes and a foreign dish."""
    users = {
        "client": User(name="Alice Client", phone="0810000001", role="client"),
        "other_client": User(name="Bob Client", phone="0810000002", role="client"),
        "merchant": User(name="Chez Mama", phone="0810000003", role="merchant"),
        "other_merchant": User(name="Other Owner", phone="0810000004", role="merchant"),
        "courier": User(name="Carl Courier", phone="0810000005", role="courier"),
        "other_courier": User(name="Dina Courier", phone="0810000006", role="courier"),
        "dispatcher": User(name="Dan Dispatch", phone="0810000007", role="dispatcher"),
        "admin": User(name="Ada Admin", phone="0810000008", role="admin"),
    }
    db.add_all(users.values())
    db.flush()

    restaurant = Restaurant(name="Chez Mama", address="Campus block C", owner_user_id=users["merchant"].id)
    other_restaurant = Restaurant(name="Other Place", owner_user_id=users["other_merchant"].id)
    db.add_all([restaurant, other_restaurant])
    db.flush()

    fufu = Dish(restaurant_id=restaurant.id, name="Fufu", price=3500)
    juice = Dish(restaurant_id=restaurant.id, name="Juice", price=1500)
    foreign = Dish(restaurant_id=other_restaurant.id, name="Pizza", price=9000)
    db.add_all([fufu, juice, foreign])
    db.commit()

    return SimpleNamespace(
        restaurant=restaurant,
        other_restaurant=other_restaurant,
        fufu=fufu,
        juice=juice,
        foreign=foreign,
        **users,
    )


@pytest.fixture
def client(db, effects, card_gateway, mobile_gateway):
    def override_get_db():
        yield db

    def override_side_effects(background_tasks: BackgroundTasks):
        background_tasks.add_task(effects.run)
        return effects

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_side_effects] = override_side_effects
    app.dependency_overrides[get_card_gateway] = lambda: card_gateway
    app.dependency_overrides[get_mobile_gateway] = lambda: mobile_gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def order_payload(seed, **overrides) -> dict:
    """Three fufu for campus delivery, paid cash on delivery."""
    payload = {
        "customer_id": seed.client.id,
        "restaurant_id": seed.restaurant.id,
        "items": [{"dish_id": seed.fufu.id, "quantity": 3}],
        "delivery_method": "campus",
        "payment_method": "cod",
        "address": "Hostel 4, room 12",
    }
    payload.update(overrides)
    return payload
