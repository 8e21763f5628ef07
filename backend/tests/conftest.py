"""Shared test configuration and fixtures.

Uses a transactional rollback strategy per test for full isolation:
- Each test gets its own engine and schema, and a transaction that rolls back.
- ``TEST_DATABASE_URL`` selects the database; the default is in-memory SQLite,
  so the suite runs without a Postgres server.
"""

import os
import uuid
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from langchain_core.language_models import FakeListChatModel
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from besttutor.ai.cache import InMemoryCache
from besttutor.ai.errors import RetryConfig
from besttutor.ai.limiter import MemoryPointsStore, build_rate_limiters, build_request_throttles
from besttutor.auth.jwt import create_token_pair
from besttutor.auth.passwords import hash_password
from besttutor.config import settings
from besttutor.context import AppContext, get_app_context
from besttutor.database import Base, get_db
from besttutor.main import app
from besttutor.models.subscription import Subscription
from besttutor.models.user import User

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def _make_engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        return create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(TEST_DATABASE_URL, pool_pre_ping=True)


# ---------------------------------------------------------------------------
# Per-test: fresh schema and transactional rollback
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    engine = _make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session wrapped in a transaction that always rolls back."""
    async with test_engine.connect() as connection:
        transaction = await connection.begin()
        session = AsyncSession(bind=connection, expire_on_commit=False)

        try:
            yield session
        finally:
            await session.close()
            await transaction.rollback()


# ---------------------------------------------------------------------------
# AI services: fake model, in-process cache and limiters
# ---------------------------------------------------------------------------


@pytest.fixture
def app_context() -> AppContext:
    """AppContext with a scripted chat model. Tests replace ``llm`` as needed."""
    store = MemoryPointsStore()
    return AppContext(
        settings=settings,
        llm=FakeListChatModel(responses=['{"joke": "Why was the math book sad? It had too many problems."}']),
        cache=InMemoryCache(max_size=100),
        limiters=build_rate_limiters(settings, store),
        throttles=build_request_throttles(settings, store),
        retry_config=RetryConfig(max_retries=0, base_delay_ms=1, max_delay_ms=1, timeout_seconds=5),
    )


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, app_context: AppContext) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB session and AI context."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_app_context] = lambda: app_context

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Convenience fixtures: parent, child profiles, auth headers
# ---------------------------------------------------------------------------


async def make_user(
    db_session: AsyncSession,
    *,
    role: str = "parent",
    parent: User | None = None,
    status: str = "free",
    grade_level: int | None = None,
    stripe_customer_id: str | None = None,
    stripe_subscription_id: str | None = None,
) -> User:
    unique = uuid.uuid4().hex[:8]
    user = User(
        email=f"{role}-{unique}@test.com",
        hashed_password=hash_password("testpass123"),
        name=f"Test {role.title()}",
        role=role,
        parent_id=parent.id if parent is not None else None,
        grade_level=grade_level,
        is_active=True,
    )
    db_session.add(user)
    await db_session.flush()

    db_session.add(
        Subscription(
            user_id=user.id,
            status=status,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
        )
    )
    await db_session.flush()
    await db_session.refresh(user)
    return user


def headers_for(user: User) -> dict[str, str]:
    tokens = create_token_pair(str(user.id), user.role)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest_asyncio.fixture
async def parent(db_session: AsyncSession) -> User:
    return await make_user(db_session)


@pytest_asyncio.fixture
async def student(db_session: AsyncSession, parent: User) -> User:
    """A free child profile of ``parent``."""
    return await make_user(db_session, role="student", parent=parent, grade_level=5)


@pytest_asyncio.fixture
async def premium_student(db_session: AsyncSession, parent: User) -> User:
    return await make_user(db_session, role="student", parent=parent, status="active", grade_level=8)


@pytest.fixture
def parent_headers(parent: User) -> dict[str, str]:
    return headers_for(parent)


@pytest.fixture
def student_headers(student: User) -> dict[str, str]:
    return headers_for(student)


@pytest.fixture
def premium_headers(premium_student: User) -> dict[str, str]:
    return headers_for(premium_student)


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """``await user_factory(role=..., parent=..., status=...)`` creates a user with a subscription row."""

    async def factory(**kwargs) -> User:
        return await make_user(db_session, **kwargs)

    return factory


@pytest.fixture
def auth_headers():
    """``auth_headers(user)`` returns bearer headers for ``user``."""
    return headers_for
