# tests/conftest.py — Shared test fixtures
import os
import tempfile

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["CLIENT_URL"] = "http://client.test"
os.environ.setdefault("AVATAR_DIR", tempfile.mkdtemp(prefix="todoria-avatars-"))
os.environ.pop("CRON_SECRET", None)
os.environ.pop("SMTP_HOST", None)

import auth
from models import (
    Base, Category, User, UserRole, Workspace, WorkspaceMember, WorkspaceRole,
)
from auth import AuthService, user_token_claims
from database import enable_sqlite_foreign_keys, get_db_session, seed_plans
from main import app

TEST_PASSWORD = "TestPassword123"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        await seed_plans(session)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )

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
    auth._login_attempts.clear()
    yield
    auth._login_attempts.clear()


async def make_user(db_session, email: str, name: str, role: UserRole = UserRole.MEMBER, **extra) -> User:
    first, _, last = name.partition(" ")
    user = User(
        email=email,
        name=name,
        first_name=first or None,
        last_name=last or None,
        password_hash=AuthService.hash_password(TEST_PASSWORD),
        role=role,
        email_verified=True,
        is_active=True,
        **extra,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


async def add_member(db_session, workspace: Workspace, user: User,
                     role: WorkspaceRole = WorkspaceRole.MEMBER) -> WorkspaceMember:
    membership = WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=role)
    db_session.add(membership)
    await db_session.commit()
    return membership


@pytest_asyncio.fixture
async def test_user(db_session):
    """Create a test user"""
    return await make_user(db_session, "testuser@todoria.dev", "Test User")


@pytest_asyncio.fixture
async def second_user(db_session):
    return await make_user(db_session, "second@todoria.dev", "Second User")


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Create a platform admin"""
    return await make_user(db_session, "admin@todoria.dev", "Admin User", role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def workspace(db_session, test_user):
    """Workspace owned by test_user, who is its admin"""
    ws = Workspace(name="Test Workspace", owner_id=test_user.id)
    db_session.add(ws)
    await db_session.flush()
    db_session.add(WorkspaceMember(workspace_id=ws.id, user_id=test_user.id, role=WorkspaceRole.ADMIN))
    await db_session.commit()
    await db_session.refresh(ws)
    return ws


@pytest_asyncio.fixture
async def category(db_session, workspace, test_user):
    cat = Category(workspace_id=workspace.id, name="To Do", color="#3B82F6", position=0,
                   created_by=test_user.id)
    db_session.add(cat)
    await db_session.commit()
    await db_session.refresh(cat)
    return cat


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(user_token_claims(user))
    return {"Authorization": f"Bearer {token}"}
