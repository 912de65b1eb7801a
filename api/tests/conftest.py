"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["TESTING"] = "1"

from legalhelp.config import get_settings
from legalhelp.db.base import Base
from legalhelp.db.session import get_db, get_session_factory
from legalhelp.main import app
from legalhelp.webhooks.endpoint import WebhookEndpoint
from legalhelp.webhooks.router import get_webhook_client

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_USER_ID = "3f9c2a1e-7d4b-4c1a-9e2f-0a1b2c3d4e5f"


class FakeEndpointRepository:
    """In-memory endpoint registrations with the same filtering as the SQL repository."""

    def __init__(self, endpoints: list[WebhookEndpoint] | None = None, error: Exception | None = None):
        self.endpoints = list(endpoints or [])
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def list_for_event(self, user_id: str, event_type: str) -> list[WebhookEndpoint]:
        self.calls.append((user_id, event_type))
        if self.error is not None:
            raise self.error
        return [
            ep
            for ep in self.endpoints
            if ep.user_id == user_id and ep.is_active and ep.subscribes_to(event_type)
        ]


class FakeDeliveryLog:
    """Collects delivery records; optionally fails every write."""

    def __init__(self, error: Exception | None = None):
        self.records = []
        self.error = error

    async def record(self, record) -> None:
        if self.error is not None:
            raise self.error
        self.records.append(record)


class Receiver:
    """Stand-in for remote webhook endpoints, served through httpx.MockTransport.

    ``responses`` maps a URL to a list of outcomes consumed one per request; the
    last outcome repeats. An outcome is a status code or an exception instance.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, list] = {}

    def respond(self, url: str, *outcomes) -> None:
        self.responses[url] = list(outcomes)

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcomes = self.responses.get(str(request.url), [200])
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text="ok" if 200 <= outcome < 300 else "error")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest.fixture
def no_sleep() -> tuple[list[float], Callable]:
    """Sleep replacement that records requested delays."""
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    return delays, sleep


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
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


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    session_factory,
    receiver: Receiver,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with mocked dependencies."""

    async def override_get_db():
        yield db_session

    async def override_get_webhook_client():
        async with receiver.client() as outbound:
            yield outbound

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_webhook_client] = override_get_webhook_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def make_token(user_id: str = TEST_USER_ID, tier: str | None = "premium", **claims) -> str:
    """Issue a bearer token shaped like the identity provider's."""
    settings = get_settings()
    payload = {
        "sub": user_id,
        "aud": settings.JWT_AUDIENCE,
        "exp": datetime.now(UTC) + timedelta(minutes=5),
        **claims,
    }
    if tier is not None:
        payload["subscription_tier"] = tier
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}
