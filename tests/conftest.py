from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardkeeper.models.card import CardType
from cardkeeper.models.db import AuditLogDB, Base, CardInventoryDB, DistributionRecordDB
from cardkeeper.services.cache_store import MemoryCacheStore
from cardkeeper.services.registry import CardServices, build_services


class RecordingNotifier:
    """Notifier that keeps alerts in memory."""

    def __init__(self) -> None:
        self.alerts: list[tuple[str, str]] = []

    async def alert(self, subject: str, body: str) -> None:
        self.alerts.append((subject, body))

    @property
    def subjects(self) -> list[str]:
        return [subject for subject, _ in self.alerts]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCacheStore:
    """Cache store driven by the fake clock."""
    return MemoryCacheStore(maxsize=64, max_value_bytes=1_000_000, timer=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(session_factory, cache, notifier) -> CardServices:
    """All components wired against the test database."""
    return build_services(session_factory, cache=cache, notifier=notifier)


SeedInventory = Callable[[dict[CardType, Iterable[str]]], Awaitable[None]]
SeedDistribution = Callable[..., Awaitable[list[int]]]


@pytest.fixture
def seed_inventory(session_factory) -> SeedInventory:
    """Insert inventory rows directly, bypassing the services."""

    async def _seed(cards: dict[CardType, Iterable[str]]) -> None:
        async with session_factory() as session:
            for card_type, numbers in cards.items():
                session.add_all(
                    CardInventoryDB(card_type=card_type.value, card_number=number)
                    for number in numbers
                )
            await session.commit()

    return _seed


@pytest.fixture
def seed_distribution(session_factory) -> SeedDistribution:
    """Insert distribution rows directly. Returns their ids in insertion order."""

    async def _seed(
        entries: Iterable[tuple[CardType, str]],
        recorded_at: datetime | None = None,
        model: type = DistributionRecordDB,
        **extra: object,
    ) -> list[int]:
        when = recorded_at or datetime.now(UTC)
        async with session_factory() as session:
            records = [
                model(
                    recorded_at=when,
                    client_name="Test Client",
                    card_type=card_type.value,
                    card_number=number,
                    issued_by="tester",
                    mode="normal",
                    **extra,
                )
                for card_type, number in entries
            ]
            session.add_all(records)
            await session.commit()
            return [record.id for record in records]

    return _seed


@pytest.fixture
def seed_audit(session_factory):
    """Insert audit rows directly. Returns their ids in insertion order."""

    async def _seed(count: int, recorded_at: datetime) -> list[int]:
        async with session_factory() as session:
            records = [
                AuditLogDB(
                    recorded_at=recorded_at,
                    actor="tester",
                    action="issue",
                    card_type=CardType.WALMART.value,
                    card_number=f"AUD{i:05d}",
                )
                for i in range(count)
            ]
            session.add_all(records)
            await session.commit()
            return [record.id for record in records]

    return _seed


@pytest.fixture
async def client(session_factory, services: CardServices):
    """Provide an async test client wired to the test database and services."""
    from httpx import ASGITransport, AsyncClient

    from cardkeeper.db.database import get_session
    from cardkeeper.main import app
    from cardkeeper.services.registry import get_services

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_services] = lambda: services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
