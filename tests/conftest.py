import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.main import app
from app.database import Base, get_db, get_session_factory
from app.api.deps import create_access_token
from app.models import Customer, User
from app.security.rbac import Actor

from tests.factories import (
    AdminUserFactory,
    CustomerFactory,
    TechnicianUserFactory,
    TEST_PASSWORD,
)


@pytest.fixture
def test_database_url(tmp_path):
    """One SQLite file per test so concurrent sessions see the same data."""
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def session_factory(test_database_url):
    """Create test database and tables."""
    engine = create_async_engine(
        test_database_url,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def db(session_factory):
    """Session for the service under test, kept apart from fixture setup."""
    async with session_factory() as session:
        yield session


async def _add(session: AsyncSession, instance):
    session.add(instance)
    await session.commit()
    await session.refresh(instance)
    return instance


@pytest_asyncio.fixture
async def admin_user(test_db: AsyncSession) -> User:
    """Create an administrator."""
    return await _add(test_db, User(**AdminUserFactory(email="admin@example.com", name="Admin")))


@pytest_asyncio.fixture
async def technician_user(test_db: AsyncSession) -> User:
    """Create an active technician."""
    return await _add(
        test_db, User(**TechnicianUserFactory(email="tech@example.com", name="Ana Quispe"))
    )


@pytest_asyncio.fixture
async def other_technician(test_db: AsyncSession) -> User:
    return await _add(
        test_db, User(**TechnicianUserFactory(email="tech2@example.com", name="Bruno Salas"))
    )


@pytest_asyncio.fixture
async def customer(test_db: AsyncSession) -> Customer:
    return await _add(test_db, Customer(**CustomerFactory(name="Carla Rojas")))


@pytest.fixture
def admin_actor(admin_user: User) -> Actor:
    return Actor.from_user(admin_user)


@pytest.fixture
def technician_actor(technician_user: User) -> Actor:
    return Actor.from_user(technician_user)


@pytest.fixture
def technician_headers(technician_user: User) -> dict:
    """Bearer header for the technician, minted without a login round trip."""
    token = create_access_token({"sub": str(technician_user.id), "email": technician_user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(session_factory):
    """Create test client with overridden database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_client(client: AsyncClient, admin_user: User):
    """Client authenticated as the administrator through the login endpoint."""
    response = await client.post(
        "/api/v2/auth/login",
        json={"email": admin_user.email, "password": TEST_PASSWORD},
    )
    token = response.json()["access_token"]

    client.headers["Authorization"] = f"Bearer {token}"
    return client
