"""
Pytest fixtures for test database, client, collaborators and authentication.

Uses an in-memory SQLite database (aiosqlite) with tables created and
dropped per test for isolation. Redis and the background sweeper are
disabled through the environment before the application is imported.
"""

import json
import os
import uuid
from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator

os.environ["REDIS_ENABLED"] = "false"
os.environ["SWEEP_ENABLED"] = "false"
os.environ["PAYMENT_GATEWAY"] = "mock"
os.environ["NOTIFIER"] = "log"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "whsec-test"
os.environ["JWT_SECRET"] = "test-secret-key-with-at-least-32-bytes!"

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event as sa_event
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from boxoffice.main import app
from boxoffice.db.base import Base
from boxoffice.db.session import get_db
from boxoffice.core.security import create_access_token
from boxoffice.models.event import Event, TicketCategory
from boxoffice.models.order import Order
from boxoffice.schemas.order import CartItem, CustomerDetails
from boxoffice.services import checkout_service, event_service, payment_service
from boxoffice.services.collaborator_factory import get_notifier, get_payment_gateway
from boxoffice.services.interfaces.mock_gateway import SIGNATURE_HEADER, MockPaymentGateway, sign_payload
from boxoffice.services.interfaces.notifier import NotificationMessage, Notifier

WEBHOOK_SECRET = os.environ["PAYMENT_WEBHOOK_SECRET"]

test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)


# pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
@sa_event.listens_for(test_engine.sync_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@sa_event.listens_for(test_engine.sync_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


class RecordingNotifier(Notifier):
    """Keeps every message; can be told to fail."""

    def __init__(self):
        self.messages: list[NotificationMessage] = []
        self.fail = False

    async def send(self, message: NotificationMessage) -> bool:
        if self.fail:
            raise ConnectionError("delivery service down")
        self.messages.append(message)
        return True

    def kinds(self) -> list[str]:
        return [m.kind for m in self.messages]


class FailingGateway(MockPaymentGateway):
    """Payment provider that refuses every intent."""

    async def create_intent(self, order_id, amount, currency, customer, attempt=1):
        raise ConnectionError("provider unreachable")


def webhook_event(intent_id: str, amount: int | None = None, kind: str = "payment_intent.succeeded") -> dict:
    obj = {"id": intent_id, "status": kind.rsplit(".", 1)[-1]}
    if amount is not None:
        obj["amount"] = amount
    return {"id": f"evt_{uuid.uuid4().hex}", "type": kind, "data": {"object": obj}}


def signed_webhook(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict]:
    body = json.dumps(event).encode()
    return body, {SIGNATURE_HEADER: sign_payload(body, secret), "content-type": "application/json"}


def bearer(sub: str, **claims) -> dict:
    token = create_access_token(data={"sub": sub, **claims})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def gateway() -> MockPaymentGateway:
    return MockPaymentGateway(WEBHOOK_SECRET)


@pytest_asyncio.fixture
async def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    gateway: MockPaymentGateway,
    notifier: RecordingNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and collaborator dependencies."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_headers() -> dict:
    """Authorization headers for a regular customer."""
    return bearer("user-1")


@pytest_asyncio.fixture
async def admin_headers() -> dict:
    return bearer("admin-1", role="admin")


@pytest_asyncio.fixture
async def staff_headers() -> dict:
    return bearer("gate-1", role="staff")


@pytest_asyncio.fixture
async def test_event(db_session: AsyncSession) -> Event:
    """Published event 30 days out with a VIP (10) and a GA (100) category."""
    starts_at = datetime.now(timezone.utc) + timedelta(days=30)
    event = Event(
        title="Test Concert",
        description="A test event",
        venue="Test Venue",
        starts_at=starts_at,
        ends_at=starts_at + timedelta(hours=4),
        status="published",
    )
    db_session.add(event)
    await db_session.flush()
    db_session.add_all([
        TicketCategory(event_id=event.id, name="VIP", price_cents=50000, currency="idr",
                       capacity=10, max_per_order=10),
        TicketCategory(event_id=event.id, name="GA", price_cents=25000, currency="idr",
                       capacity=100, max_per_order=10),
    ])
    await db_session.commit()
    return await event_service.get_event(db_session, event.id)


# Plain ids: a rollback inside a service expires every loaded instance
@pytest_asyncio.fixture
async def event_id(test_event: Event) -> int:
    return test_event.id


@pytest_asyncio.fixture
async def vip_id(test_event: Event) -> int:
    return test_event.categories[0].id


@pytest_asyncio.fixture
async def ga_id(test_event: Event) -> int:
    return test_event.categories[1].id


@pytest_asyncio.fixture
async def customer() -> CustomerDetails:
    return CustomerDetails(email="buyer@example.com", name="Test Buyer")


@pytest_asyncio.fixture
async def place_order(db_session: AsyncSession, gateway: MockPaymentGateway, customer: CustomerDetails):
    """Factory: checkout `quantity` units of a category for a user."""

    async def _place(category_id: int, quantity: int, user_id: str = "user-1"):
        return await checkout_service.create_order(
            db_session,
            user_id,
            [CartItem(category_id=category_id, quantity=quantity)],
            customer,
            gateway,
        )

    return _place


@pytest_asyncio.fixture
async def paid_order(db_session: AsyncSession, gateway: MockPaymentGateway, notifier: RecordingNotifier, place_order):
    """Factory: checkout and confirm payment through the webhook handler."""

    async def _paid(category_id: int, quantity: int, user_id: str = "user-1") -> Order:
        result = await place_order(category_id, quantity, user_id)
        await payment_service.handle_event(
            db_session,
            webhook_event(result.intent.intent_id, result.order.total_cents),
            gateway,
            notifier,
        )
        return await checkout_service.get_order(db_session, result.order.id)

    return _paid


async def expire_hold(db: AsyncSession, order_id: int, minutes_ago: int = 1) -> None:
    """Move an order's hold window into the past without touching its status."""
    await db.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago))
    )
    await db.commit()
