import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from classchat.database import Base, get_db
from classchat.main import app, build_hub
from classchat.middleware.rbac import get_current_user
from classchat.models.user import User, UserRole, AccountStatus


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def _member(username: str, role: UserRole) -> User:
    return User(
        username=username,
        email=f"{username}@classchat.test",
        password_hash="not-a-real-hash",
        first_name=username.title(),
        last_name="Member",
        role=role,
        account_status=AccountStatus.ACTIVE,
    )


@pytest.fixture
async def teacher(db):
    user = _member("teacher", UserRole.TEACHER)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def other_teacher(db):
    user = _member("otherteacher", UserRole.TEACHER)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def student(db):
    user = _member("student", UserRole.STUDENT)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
def acting_as():
    """Set the member every request is authenticated as."""
    current = {}

    def _set(user: User) -> None:
        current["user"] = user

    app.dependency_overrides[get_current_user] = lambda: current["user"]
    yield _set
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.state.hub = build_hub()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_db, None)
