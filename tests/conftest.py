"""Pytest configuration and fixtures for crowdfund tests"""
import asyncio
import pytest
import pytest_asyncio
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

from crowdfund.api.dependencies import get_engine
from crowdfund.main import app
from crowdfund.models.database import init_db
from crowdfund.services.engine import ProposalEngine
from crowdfund.services.identity import CallerContext
from crowdfund.services.journal import ProposalJournal
from crowdfund.services.lifecycle import ProposalParams
from crowdfund.services.registry import ProposalRegistry
from crowdfund.services.transfers import InMemoryTransferGateway

# Load environment variables
load_dotenv()

COOLDOWN = 86400
START_TIME = 1_700_000_000

PROPOSER = "0x" + "a1" * 20
TARGET = "0x" + "b2" * 20
INVESTOR_1 = "0x" + "c3" * 20
INVESTOR_2 = "0x" + "d4" * 20
INVESTOR_3 = "0x" + "e5" * 20
STRANGER = "0x" + "f6" * 20


class FakeClock:
    """Settable clock in epoch seconds"""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def scenario_params(proposal_id: int = 1, **overrides) -> ProposalParams:
    """Min 500, max 2000, 15% investor share"""
    values = dict(
        proposal_id=proposal_id,
        target=TARGET,
        min_amount=500,
        max_amount=2000,
        investor_share_percent=15,
        description="Community solar roof",
    )
    values.update(overrides)
    return ProposalParams(**values)


def ctx(identity: str, key: str = None) -> CallerContext:
    return CallerContext.for_caller(identity, key)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> ProposalRegistry:
    return ProposalRegistry(cooldown_seconds=COOLDOWN)


@pytest.fixture
def gateway() -> InMemoryTransferGateway:
    return InMemoryTransferGateway()


@pytest.fixture
def engine(registry, gateway, clock) -> ProposalEngine:
    """Engine without a journal"""
    return ProposalEngine(registry, gateway, clock=clock)


@pytest_asyncio.fixture(scope="function")
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database with the journal table"""
    bind = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind)
    yield bind
    await bind.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def journal(session_factory) -> ProposalJournal:
    return ProposalJournal(session_factory)


@pytest.fixture
def journaled_engine(gateway, clock, journal) -> ProposalEngine:
    return ProposalEngine(ProposalRegistry(cooldown_seconds=COOLDOWN), gateway, journal=journal, clock=clock)


@pytest_asyncio.fixture(scope="function")
async def client(engine: ProposalEngine) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client backed by an in-memory engine"""
    app.dependency_overrides[get_engine] = lambda: engine

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def journaled_client(journaled_engine: ProposalEngine) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client backed by an engine with an SQLite journal"""
    app.dependency_overrides[get_engine] = lambda: journaled_engine

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


class HeldGateway(InMemoryTransferGateway):
    """In-memory gateway whose transfers wait until ``release`` is called"""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self._released = asyncio.Event()

    def release(self) -> None:
        self._released.set()

    async def transfer(self, recipient, amount, reference):
        self.entered.set()
        await self._released.wait()
        return await super().transfer(recipient, amount, reference)
