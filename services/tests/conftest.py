"""
PreOrder Manager test fixtures

Every test gets its own in-memory SQLite database (aiosqlite) seeded with a
few vendors and customers, and a fakeredis-backed change feed.
"""
from datetime import datetime, timedelta, timezone

import fakeredis.aioredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from preorder.db.database import Base
from preorder.models.directory import Customer, CustomerTier, Vendor
from preorder.models.preorder import PreOrder, RecurringTemplate, VendorQueueState  # noqa: F401
from preorder.schemas.preorder import OrderItem, PreOrderCreate
from preorder.services.change_feed import ChangeFeed

# Monday 19 October 2026, 09:00 UTC (TIMEZONE defaults to UTC)
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

BURGER_TRUCK = "v-burger"
CUSTOM_PREP_TRUCK = "v-custom"
CLOSED_TRUCK = "v-closed"
STANDARD_CUSTOMER = "c-standard"
PREMIUM_CUSTOMER = "c-premium"


# ─── Notification doubles ──────────────────────────────────────────────────────
class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[str, str, dict]] = []

    async def send(self, customer_id: str, kind: str, payload: dict) -> None:
        self.sent.append((customer_id, kind, payload))

    @property
    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]


class FailingNotifier:
    def __init__(self):
        self.attempts = 0

    async def send(self, customer_id: str, kind: str, payload: dict) -> None:
        self.attempts += 1
        raise RuntimeError("notification hub down")


# ─── Database ──────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add_all([
            Vendor(id=BURGER_TRUCK, name="Burger Bros"),
            Vendor(id=CUSTOM_PREP_TRUCK, name="Taco Tina", custom_prep_minutes=20, use_custom_prep=True),
            Vendor(id=CLOSED_TRUCK, name="Closed Crepes", is_active=False),
            Customer(id=STANDARD_CUSTOMER, name="Ana Lopez", tier=CustomerTier.STANDARD.value),
            Customer(id=PREMIUM_CUSTOMER, name="Ben Okafor", tier=CustomerTier.PREMIUM.value),
        ])
        await session.commit()

    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ─── Change feed / notifications ───────────────────────────────────────────────
@pytest_asyncio.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def feed(redis):
    return ChangeFeed(redis)


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ─── Builders ──────────────────────────────────────────────────────────────────
def burger_request(
    customer_id: str = STANDARD_CUSTOMER,
    vendor_id: str = BURGER_TRUCK,
    pickup_time: datetime | None = None,
    **overrides,
) -> PreOrderCreate:
    """One cheeseburger, picked up at 15:00 on NOW's day (outside peak windows)."""
    fields = {
        "customer_id": customer_id,
        "vendor_id": vendor_id,
        "items": [OrderItem(name="Cheeseburger", category="burger", quantity=1)],
        "pickup_time": pickup_time or NOW.replace(hour=15),
        "total_amount": 9.5,
    }
    fields.update(overrides)
    return PreOrderCreate(**fields)


async def wait_for_event(subscription, attempts: int = 20, timeout: float = 0.05):
    for _ in range(attempts):
        event = await subscription.next_event(timeout=timeout)
        if event is not None:
            return event
    return None


def minutes(n: int) -> timedelta:
    return timedelta(minutes=n)
