"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, fake Redis, and a real
RazorpayGateway wrapped around an in-memory SDK client.
"""

import os

# Settings are read at import time; set them before the app is imported
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")

import uuid

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.database import Base, get_db
from config.redis_client import get_redis
from main import create_app
from services.booking.state_machine import BookingStateMachine
from services.dependencies import get_payment_gateway
from services.payment.gateway import RazorpayGateway
from services.pricing.resolver import PricingResolver
from services.slots.ledger import SlotLedger
from shared.models.models import (
    Service,
    Slot,
    SlotStatus,
    User,
    UserAddress,
    UserRole,
    UserStatus,
    Vehicle,
)
from tests.utils import TEST_KEY_ID, TEST_KEY_SECRET, FakeRazorpayClient, future_day


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


# ── Gateway ───────────────────────────────────────────────────

@pytest.fixture
def rzp():
    return FakeRazorpayClient()


@pytest.fixture
def gateway(rzp):
    return RazorpayGateway(TEST_KEY_ID, TEST_KEY_SECRET, client=rzp, fail_max=3, reset_timeout=60)


# ── Components (direct, without HTTP) ─────────────────────────

@pytest.fixture
def ledger(db):
    return SlotLedger(db)


@pytest.fixture
def pricing(db):
    return PricingResolver(db)


@pytest.fixture
def bookings(db, ledger, pricing):
    return BookingStateMachine(db, ledger, pricing)


# ── App / Client ──────────────────────────────────────────────

@pytest.fixture
def app(session_factory, redis, gateway):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    return app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ── Users ─────────────────────────────────────────────────────

async def _make_user(db: AsyncSession, role: UserRole, name: str, status=UserStatus.ACTIVE) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{name.lower().replace(' ', '.')}.{uuid.uuid4().hex[:6]}@example.com",
        name=name,
        phone="+919876543210",
        role=role,
        status=status,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def customer(db):
    return await _make_user(db, UserRole.CUSTOMER, "Asha Rao")


@pytest_asyncio.fixture
async def other_customer(db):
    return await _make_user(db, UserRole.CUSTOMER, "Vikram Sen")


@pytest_asyncio.fixture
async def staff(db):
    return await _make_user(db, UserRole.STAFF, "Ravi Kumar")


@pytest_asyncio.fixture
async def other_staff(db):
    return await _make_user(db, UserRole.STAFF, "Imran Shaikh")


@pytest_asyncio.fixture
async def inactive_staff(db):
    return await _make_user(db, UserRole.STAFF, "Old Hand", status=UserStatus.INACTIVE)


@pytest_asyncio.fixture
async def admin(db):
    return await _make_user(db, UserRole.ADMIN, "Ops Admin")


# ── Catalog / Customer data ───────────────────────────────────

@pytest_asyncio.fixture
async def service(db):
    service = Service(
        id=uuid.uuid4(),
        name="Foam Wash",
        description="Exterior foam wash",
        pricing=[
            {"vehicle_type": "sedan", "price": 500},
            {"vehicle_type": "bike", "price": 200},
        ],
        is_active=True,
    )
    db.add(service)
    await db.commit()
    return service


@pytest_asyncio.fixture
async def vehicle(db, customer):
    vehicle = Vehicle(
        id=uuid.uuid4(),
        user_id=customer.id,
        category="car",
        body_type="sedan",
        brand="Honda",
        model="City",
        registration_number="KA01AB1234",
    )
    db.add(vehicle)
    await db.commit()
    return vehicle


@pytest_asyncio.fixture
async def address(db, customer):
    address = UserAddress(
        id=uuid.uuid4(),
        user_id=customer.id,
        label="Home",
        line1="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
    )
    db.add(address)
    await db.commit()
    return address


@pytest.fixture
def day():
    return future_day(3)


@pytest_asyncio.fixture
async def slots(db, day):
    """09:00 and 10:00 open, 11:00 closed, all on `day`."""
    rows = {
        "09:00": Slot(id=uuid.uuid4(), date=day, time="09:00", status=SlotStatus.AVAILABLE),
        "10:00": Slot(id=uuid.uuid4(), date=day, time="10:00", status=SlotStatus.AVAILABLE),
        "11:00": Slot(id=uuid.uuid4(), date=day, time="11:00", status=SlotStatus.UNAVAILABLE),
    }
    db.add_all(rows.values())
    await db.commit()
    return rows
