import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import helpdesk.auditing  # noqa: F401
from helpdesk.config import settings
from helpdesk.database import get_db
from helpdesk.main import create_app
from helpdesk.models import Base
from helpdesk.models.contact import Contact
from helpdesk.models.role import Role, SystemPermission
from helpdesk.models.team import Team, TeamMembership
from helpdesk.models.user import User
from helpdesk.services.auth_service import create_access_token, hash_password
from helpdesk.storage.factory import set_storage
from helpdesk.storage.local import LocalFileStorage

# In-memory SQLite by default; set TEST_DATABASE_URL to run against PostgreSQL
TEST_DB_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

if TEST_DB_URL.startswith("sqlite"):
    # One in-memory database shared by every connection of the test engine
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_async_engine(TEST_DB_URL, echo=False)

TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

settings.run_background_jobs = False


@pytest.fixture(autouse=True)
async def setup_db(tmp_path):
    """Create all tables before each test and drop them after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    set_storage(LocalFileStorage(str(tmp_path / "uploads")))
    yield
    set_storage(None)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    async with TestSession() as session:
        yield session


@pytest.fixture
def session_factory(db: AsyncSession):
    """Session factory for background job runners that hands out the test session."""

    @asynccontextmanager
    async def _test_session():
        yield db

    return _test_session


@pytest.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to the FastAPI app with test DB override."""
    app = create_app()

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


async def make_user(
    db: AsyncSession,
    username: str,
    *,
    password: str = "password123",
    is_admin: bool = False,
    permissions: SystemPermission = SystemPermission.none,
) -> User:
    """Create a user, granting ``permissions`` through a role of their own."""
    roles = []
    if permissions:
        role = Role(label=f"{username} role", developer_name=f"{username}_role", permissions=int(permissions))
        db.add(role)
        roles.append(role)
    user = User(
        username=username,
        email=f"{username}@test.com",
        first_name=username.capitalize(),
        last_name="Tester",
        hashed_password=hash_password(password),
        is_admin=is_admin,
        roles=roles,
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def admin_user(db: AsyncSession) -> User:
    """Create and return an admin user."""
    return await make_user(db, "testadmin", password="adminpass", is_admin=True)


@pytest.fixture
async def agent_user(db: AsyncSession) -> User:
    """Create and return a user without any permissions."""
    return await make_user(db, "testagent", password="agentpass")


@pytest.fixture
def admin_token(admin_user: User) -> str:
    """Return a valid JWT access token for the admin user."""
    return create_access_token(admin_user.id, [], is_admin=True)


@pytest.fixture
def agent_token(agent_user: User) -> str:
    """Return a valid JWT access token for the agent user."""
    return create_access_token(agent_user.id, [])


@pytest.fixture
async def test_team(db: AsyncSession) -> Team:
    team = Team(name="Service Desk", description="First line support")
    db.add(team)
    await db.commit()
    return team


@pytest.fixture
async def agent_in_team(db: AsyncSession, agent_user: User, test_team: Team) -> TeamMembership:
    """Add the agent user to the test team and return the membership."""
    membership = TeamMembership(user_id=agent_user.id, team_id=test_team.id)
    db.add(membership)
    await db.commit()
    return membership


@pytest.fixture
async def contact(db: AsyncSession) -> Contact:
    contact = Contact(first_name="Jane", last_name="Customer", email="jane@example.com")
    db.add(contact)
    await db.commit()
    return contact


def token_for(user: User) -> str:
    return create_access_token(user.id, user.role_names, user.is_admin)


def auth_header(token: str) -> dict:
    """Helper to create Authorization header."""
    return {"Authorization": f"Bearer {token}"}
