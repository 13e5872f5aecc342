"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, fake Redis, in-memory object
storage, and ready-made users, services and bookings.
"""

import itertools
import os
from datetime import date, time, timedelta
from decimal import Decimal

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_UNAUTH_PER_MINUTE"] = "1000"
os.environ["EMAIL_NOTIFICATIONS_ENABLED"] = "false"

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import config.redis_client as redis_module
from config.database import Base, get_db
from main import app
from services.booking.lifecycle import BookingLifecycle
from services.notification.dispatcher import NotificationDispatcher
from services.realtime.channel import RealtimeChannel
from shared.models.models import (
    Booking,
    BookingStatus,
    Language,
    PriceType,
    Service,
    ServiceProvider,
    ServiceType,
    User,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password
from shared.utils.storage import ObjectStorage, get_storage

TEST_PASSWORD = "Str0ngPass!"

_slot_days = itertools.count(1)


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(
        user_id=str(user.id),
        role=UserRole(user.role).value,
        email=user.email,
    )
    return {"Authorization": f"Bearer {token}"}


def future_slot() -> tuple[date, time]:
    """A distinct future slot per call, so bookings never collide on the live-slot index."""
    return date.today() + timedelta(days=next(_slot_days)), time(10, 0)


class FakeS3Client:
    """Just enough of boto3's S3 client for ObjectStorage."""

    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = (Body, ContentType)

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)


# ── Infrastructure ─────────────────────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def session_factory():
    """A fresh in-memory database per test; StaticPool shares its single connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    redis_module.redis_client = client
    yield client
    await client.flushall()
    await client.aclose()
    redis_module.redis_client = None


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage() -> ObjectStorage:
    return ObjectStorage(client=FakeS3Client(), public_base_url="https://cdn.test")


@pytest_asyncio.fixture
async def client(session_factory, storage):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def lifecycle(db, fake_redis) -> BookingLifecycle:
    realtime = RealtimeChannel(fake_redis)
    return BookingLifecycle(db, NotificationDispatcher(db, realtime), realtime)


# ── Users ──────────────────────────────────────────────────────────────────────

async def _make_user(db: AsyncSession, email: str, first_name: str, last_name: str,
                     role: UserRole, language: Language) -> User:
    user = User(
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        first_name=first_name,
        last_name=last_name,
        role=role,
        preferred_language=language,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def user(db: AsyncSession) -> User:
    """A client who books services."""
    return await _make_user(db, "client@example.com", "Amira", "Ben Salah", UserRole.CLIENT, Language.EN)


@pytest_asyncio.fixture
async def other_user(db: AsyncSession) -> User:
    return await _make_user(db, "other@example.com", "Karim", "Trabelsi", UserRole.CLIENT, Language.EN)


@pytest_asyncio.fixture
async def provider_user(db: AsyncSession) -> User:
    provider = await _make_user(db, "provider@example.com", "Sami", "Gharbi", UserRole.PROVIDER, Language.FR)
    db.add(ServiceProvider(user_id=provider.id, business_name="Sami Plomberie", hourly_rate=Decimal("40.00")))
    await db.commit()
    return provider


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    return await _make_user(db, "admin@example.com", "Admin", "User", UserRole.ADMIN, Language.EN)


# ── Catalog & bookings ─────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def service(db: AsyncSession, provider_user: User) -> Service:
    service = Service(
        provider_id=provider_user.id,
        business_name="Sami Plomberie",
        service_title="Plumbing repair",
        description="Leaks, pipes and boilers",
        location="Tunis",
        service_type=ServiceType.ONSITE,
        price_type=PriceType.HOURLY,
        hourly_rate=Decimal("40.00"),
        images=[],
    )
    db.add(service)
    await db.commit()
    return service


async def make_booking(
    db: AsyncSession,
    client_user: User,
    provider: User,
    status: BookingStatus = BookingStatus.PENDING,
    service: Service = None,
) -> Booking:
    booking_date, booking_time = future_slot()
    booking = Booking(
        client_id=client_user.id,
        provider_id=provider.id,
        service_id=service.id if service else None,
        booking_date=booking_date,
        booking_time=booking_time,
        duration_hours=Decimal("2"),
        total_price=Decimal("80.00"),
        status=status,
    )
    db.add(booking)
    await db.commit()
    return booking


@pytest_asyncio.fixture
async def pending_booking(db: AsyncSession, user: User, provider_user: User, service: Service) -> Booking:
    return await make_booking(db, user, provider_user, BookingStatus.PENDING, service)


@pytest_asyncio.fixture
async def confirmed_booking(db: AsyncSession, user: User, provider_user: User, service: Service) -> Booking:
    return await make_booking(db, user, provider_user, BookingStatus.CONFIRMED, service)
