# tests/conftest.py — Shared test fixtures
import os
import uuid
from typing import List, Sequence

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import (
    Base, User, Planet, PlanetCollaborator, PlanetColumn, PlanetTask,
    GlobalRole, PlanetRole,
)
from auth import AuthService, _login_attempts
from task_order import column_tasks
from database import get_db_session
from main import app

TEST_PASSWORD = "TestPassword123!"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """HTTP test client with overridden DB dependency"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_login_attempts():
    _login_attempts.clear()
    yield
    _login_attempts.clear()


async def _make_user(db: AsyncSession, username: str, email: str, role: GlobalRole) -> User:
    user = User(
        id=str(uuid.uuid4()),
        username=username,
        email=email,
        first_name=username.capitalize(),
        last_name="Tester",
        password_hash=AuthService.hash_password(TEST_PASSWORD),
        role=role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session):
    """Regular user; owns the `planet` fixture"""
    return await _make_user(db_session, "tester", "testuser@planets.dev", GlobalRole.USER)


@pytest_asyncio.fixture
async def other_user(db_session):
    """Regular user with no memberships"""
    return await _make_user(db_session, "other", "other@planets.dev", GlobalRole.USER)


@pytest_asyncio.fixture
async def third_user(db_session):
    """Another regular user, for planets with several collaborators"""
    return await _make_user(db_session, "third", "third@planets.dev", GlobalRole.USER)


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Global admin"""
    return await _make_user(db_session, "admin", "admin@planets.dev", GlobalRole.ADMIN)


@pytest_asyncio.fixture
async def planet(db_session, test_user):
    """Planet owned by test_user"""
    return await make_planet(db_session, test_user)


async def make_planet(db: AsyncSession, owner: User, collaborators: Sequence[User] = ()) -> Planet:
    planet = Planet(name="Mars", description="Red planet backlog")
    db.add(planet)
    await db.flush()
    db.add(PlanetCollaborator(planet_id=planet.id, user_id=owner.id, role=PlanetRole.OWNER))
    for user in collaborators:
        db.add(PlanetCollaborator(planet_id=planet.id, user_id=user.id, role=PlanetRole.COLLABORATOR))
    await db.commit()
    await db.refresh(planet)
    return planet


async def make_column(db: AsyncSession, planet: Planet, name: str = "To Do") -> PlanetColumn:
    column = PlanetColumn(planet_id=planet.id, name=name)
    db.add(column)
    await db.commit()
    await db.refresh(column)
    return column


async def make_tasks(db: AsyncSession, column: PlanetColumn, contents: Sequence[str]) -> List[PlanetTask]:
    """Insert tasks directly with orders 1..N in the given sequence"""
    tasks = [
        PlanetTask(column_id=column.id, content=content, order=position)
        for position, content in enumerate(contents, start=1)
    ]
    db.add_all(tasks)
    await db.commit()
    for task in tasks:
        await db.refresh(task)
    return tasks


async def column_state(factory, column_id: str) -> List[tuple]:
    """(content, order) pairs of a column, read through a fresh session"""
    async with factory() as session:
        return [(t.content, t.order) for t in await column_tasks(session, column_id)]


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(AuthService.token_claims(user))
    return {"Authorization": f"Bearer {token}"}
