"""
Shared fixtures: an in-memory database per test, an HTTP client bound to it,
and factories for the rows most tests need.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from datetime import timedelta
from functools import lru_cache
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from aptivo.config import settings
from aptivo.database import enable_sqlite_foreign_keys, get_db
from aptivo.main import app
from aptivo.orm.base import Base
from aptivo.orm.institution import Institution, InstitutionAdmin, InstitutionStatus
from aptivo.orm.university import University
from aptivo.orm.user import User, UserRole, UserStatus
from aptivo.security.passwords import hash_password
from aptivo.security.rate_limit import limiter
from aptivo.security.rbac import create_access_token, token_claims_for

TEST_DATABASE_URL = "sqlite+aiosqlite://"
TEST_PASSWORD = "password123"
SERVICE_KEY = "test-service-role-key"

limiter.enabled = False


@lru_cache(maxsize=None)
def password_hash(password: str = TEST_PASSWORD) -> str:
    return hash_password(password)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database; one shared connection so every session sees the same data."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(test_engine)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests run against ``db_session``."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()


@pytest.fixture
def service_key(monkeypatch) -> str:
    monkeypatch.setattr(settings, "SERVICE_ROLE_KEY", SERVICE_KEY)
    return SERVICE_KEY


@pytest.fixture
def no_service_key(monkeypatch) -> None:
    monkeypatch.setattr(settings, "SERVICE_ROLE_KEY", None)


# ================= FACTORIES =================


async def make_institution(
    db: AsyncSession,
    name: str = "Test College",
    status: InstitutionStatus = InstitutionStatus.approved,
    domain: Optional[str] = "college.example.com",
) -> Institution:
    institution = Institution(
        name=name,
        domain=domain,
        status=status.value,
        is_active=status == InstitutionStatus.approved,
    )
    db.add(institution)
    await db.flush()
    return institution


async def make_user(
    db: AsyncSession,
    email: str,
    role: UserRole = UserRole.student,
    status: UserStatus = UserStatus.active,
    institution_id: Optional[int] = None,
    email_verified: bool = True,
    full_name: Optional[str] = None,
) -> User:
    user = User(
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        password_hash=password_hash(),
        role=role,
        status=status,
        institution_id=institution_id,
        email_verified=email_verified,
    )
    db.add(user)
    await db.flush()
    if role == UserRole.institution_admin and institution_id is not None:
        db.add(InstitutionAdmin(user_id=user.id, institution_id=institution_id))
        await db.flush()
    return user


async def make_university(db: AsyncSession, name: str = "State University", status: str = "active") -> University:
    university = University(name=name, status=status)
    db.add(university)
    await db.flush()
    return university


def auth_headers(user: User) -> dict:
    token = create_access_token(token_claims_for(user), timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


# ================= COMMON ACTORS =================


@pytest_asyncio.fixture
async def institution(db_session) -> Institution:
    return await make_institution(db_session)


@pytest_asyncio.fixture
async def super_admin(db_session) -> User:
    return await make_user(db_session, "root@example.com", role=UserRole.super_admin)


@pytest_asyncio.fixture
async def institution_admin(db_session, institution) -> User:
    return await make_user(
        db_session, "admin@college.example.com",
        role=UserRole.institution_admin, institution_id=institution.id,
    )


@pytest_asyncio.fixture
async def student(db_session, institution) -> User:
    return await make_user(db_session, "student@college.example.com", institution_id=institution.id)
