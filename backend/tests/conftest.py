import os

# Set test environment
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "change-me-in-production"
os.environ["AUTH_TRUST_HEADER"] = "false"
os.environ["FAMILY_PASSWORD_ROUNDS"] = "4"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from collections.abc import AsyncGenerator, Callable
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from medshelf.api.auth import create_access_token
from medshelf.database import Base, get_db
from medshelf.main import app
from medshelf.models import User
from medshelf.services.family_feed import FamilyChangeFeed, get_family_feed

# In-memory SQLite by default; point TEST_DATABASE_URL at Postgres to run
# against the production dialect.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async engine for each test."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture
def family_feed() -> FamilyChangeFeed:
    return FamilyChangeFeed()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession, family_feed: FamilyChangeFeed
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database session and feed overrides."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_family_feed] = lambda: family_feed

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable:
    """Factory for users with unique identifiers."""

    async def _make_user(display_name: str = "Test User") -> User:
        unique_id = uuid4()
        user = User(
            id=unique_id,
            external_id=f"test-user-{unique_id}",
            email=f"test-{unique_id}@example.com",
            display_name=display_name,
            is_active=True,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest_asyncio.fixture
async def test_user(make_user) -> User:
    return await make_user("Founder")


@pytest_asyncio.fixture
async def second_user(make_user) -> User:
    return await make_user("Bea")


@pytest_asyncio.fixture
async def third_user(make_user) -> User:
    return await make_user("Dan")


def headers_for(user: User) -> dict[str, str]:
    token = create_access_token(user.external_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """Create authorization headers for authenticated requests."""
    return headers_for(test_user)


@pytest.fixture
def second_headers(second_user: User) -> dict[str, str]:
    return headers_for(second_user)


@pytest.fixture
def third_headers(third_user: User) -> dict[str, str]:
    return headers_for(third_user)
