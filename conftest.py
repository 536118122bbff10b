import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db.session import get_db
from app.models.base import Base
from app.models.order import Order
from app.models.application import Application
from app.models.user import StaffUser, ClientUser
from app.core import redis as redis_module
from app.core.clock import FixedClock, get_clock
from app.core.config import settings
from app.core.enums import StaffRole, ClientCategory, OrderStatus, PaymentStatus, ApplicationStatus
from app.core.errors import ExternalGatewayError
from app.core.security import create_access_token, hash_password
from app.services.notifications import NotificationDispatcher, get_notifier
from app.services.order_state import apply_pricing
from app.services.payment_gateway import GatewaySession, GatewayPaymentStatus, get_payment_gateway, map_gateway_status
from app.services.pricing import calculate


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 2025-03-10 09:00 UTC; scheduler tests count delivery dates from this day
TODAY = date(2025, 3, 10)


class RecordingNotifier(NotificationDispatcher):
    """Keeps dispatched events in memory instead of queueing them"""

    def __init__(self):
        self.events = []

    def dispatch(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def names(self) -> list:
        return [event for event, _ in self.events]


class FailingNotifier(NotificationDispatcher):

    def dispatch(self, event: str, payload: dict) -> None:
        raise ConnectionError("broker down")


class FakeGateway:
    """Scripted payment gateway double"""

    def __init__(self):
        self.sessions = []
        self.status = "charged"
        self.amount_charged = Decimal("0.00")
        self.fail_create = False
        self.fail_check = False
        self.status_checks = 0

    async def create_session(self, *, amount, currency, merchant_order_id, return_url, customer):
        if self.fail_create:
            raise ExternalGatewayError("Payment gateway unavailable")
        session_id = f"gw-{merchant_order_id}-{len(self.sessions) + 1}"
        self.sessions.append({
            "session_id": session_id,
            "amount": amount,
            "currency": currency,
            "merchant_order_id": merchant_order_id,
            "return_url": return_url,
            "customer": customer,
        })
        return GatewaySession(session_id=session_id, payment_url=f"https://pay.test/{session_id}")

    async def check_status(self, session_id):
        self.status_checks += 1
        if self.fail_check:
            raise ExternalGatewayError("Payment gateway unavailable")
        return GatewayPaymentStatus(
            payment_status=map_gateway_status(self.status),
            raw_status=self.status,
            amount_charged=self.amount_charged,
        )


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the service uses"""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value.encode() if isinstance(value, str) else value
        return True

    async def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value).encode()
        return value

    async def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def ping(self):
        return True


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_module, "redis", fake)
    return fake


@pytest.fixture(autouse=True)
def fast_optimistic_retry(monkeypatch):
    monkeypatch.setattr(settings, "OPT_LOCK_BASE_DELAY_MS", 0)
    monkeypatch.setattr(settings, "OPT_LOCK_JITTER_MS", 0)


@pytest.fixture
def make_staff(db):
    async def _make_staff(username="coordinator", role=StaffRole.COORDINATOR):
        user = StaffUser(
            username=username,
            name=username.title(),
            password_hash=hash_password("secret-pass"),
            staff_role=role,
        )
        db.add(user)
        await db.commit()
        return user
    return _make_staff


@pytest.fixture
def make_client(db):
    async def _make_client(email="client@example.com", category=ClientCategory.ONE_TIME, **kwargs):
        user = ClientUser(
            username=email,
            email=email,
            name=kwargs.pop("name", "Test Client"),
            phone=kwargs.pop("phone", "+15550100"),
            password_hash=hash_password("secret-pass"),
            client_category=category,
            **kwargs,
        )
        db.add(user)
        await db.commit()
        return user
    return _make_client


@pytest.fixture
def sample_items():
    return [
        {"id": 1, "name": "Canape set", "unit_price": "15.50", "quantity": 2},
        {"id": 2, "name": "Lemonade", "unit_price": "8.00", "quantity": 1},
    ]


@pytest.fixture
def make_order(db, sample_items):
    """Insert an order directly in a given state, bypassing the transition checks"""
    async def _make_order(client, status=OrderStatus.SUBMITTED, items=None, **fields):
        breakdown = calculate(
            sample_items if items is None else items,
            fields.pop("discount_fixed", None),
            fields.pop("discount_percent", None),
            fields.pop("delivery_cost", None),
        )
        order = Order(
            client=client,
            status=status,
            payment_status=fields.pop("payment_status", PaymentStatus.NONE),
            **fields,
        )
        apply_pricing(order, breakdown)
        db.add(order)
        await db.commit()
        return order
    return _make_order


@pytest.fixture
def make_application(db, sample_items):
    async def _make_application(email="guest@example.com", cart_items=None, **fields):
        application = Application(
            first_name=fields.pop("first_name", "Guest"),
            last_name=fields.pop("last_name", "Person"),
            email=email,
            phone=fields.pop("phone", "+15550111"),
            cart_items=sample_items if cart_items is None else cart_items,
            status=fields.pop("status", ApplicationStatus.NEW),
            **fields,
        )
        db.add(application)
        await db.commit()
        return application
    return _make_application


@pytest.fixture
async def api_client(session_factory, notifier, gateway, clock, fake_redis):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers(user) -> dict:
    token = create_access_token(str(user.id), str(user.kind))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: marks tests that go through the HTTP API"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "pricing: marks tests related to pricing"
    )
    config.addinivalue_line(
        "markers", "payments: marks tests related to payment sessions and reconciliation"
    )
    config.addinivalue_line(
        "markers", "scheduler: marks tests related to the daily status sweep"
    )
