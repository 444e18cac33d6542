"""Shared test fixtures and configuration."""
import os

# Ensure required environment variables are present for module imports.
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-bytes")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SAVE_MESSAGE_SECONDS", "0.05")

from dataclasses import dataclass
from typing import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db, make_engine, make_session_factory
from app.features.catalog.models import Permission, Program, Role
from app.features.users.auth import issue_token
from app.features.users.models import User


PERMISSIONS = ["view-passenger", "create-passenger", "delete-passenger"]
ROLES = ["super-admin", "pm-manager", "manager"]


@dataclass
class Seed:
    """Ids of the seeded catalog and users."""
    permissions: dict[str, int]
    roles: dict[str, int]
    program1: int
    program2: int
    admin: int
    alice: int
    bob: int


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite database per test."""
    test_engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(db: AsyncSession) -> Seed:
    permissions = [Permission(name=name) for name in PERMISSIONS]
    roles = [Role(name=name) for name in ROLES]
    program1 = Program(name="North Route")
    program2 = Program(name="South Route")
    admin = User(name="Admin", email="admin@example.com", is_admin=True)
    alice = User(name="Alice", email="alice@example.com")
    bob = User(name="Bob", email="bob@example.com")
    db.add_all([*permissions, *roles, program1, program2, admin, alice, bob])
    await db.commit()
    return Seed(
        permissions={p.name: p.id for p in permissions},
        roles={r.name: r.id for r in roles},
        program1=program1.id,
        program2=program2.id,
        admin=admin.id,
        alice=alice.id,
        bob=bob.id,
    )


@pytest_asyncio.fixture
async def client(session_factory, seed) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client against the application, bound to the test database."""
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user."""
    def build(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(user_id)}"}
    return build
