"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from claimdesk.common.constants import ClaimStatus, UserRole
from claimdesk.config import settings
from claimdesk.database import Base, get_db
from claimdesk.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import claimdesk.users.models  # noqa: F401
import claimdesk.claims.models  # noqa: F401
import claimdesk.limits.models  # noqa: F401
import claimdesk.common.audit  # noqa: F401

from claimdesk.claims.models import Claim
from claimdesk.users.models import User

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from claimdesk.common.rate_limit import limiter
    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def _upload_dir(tmp_path, monkeypatch):
    """Keep receipt files inside the test's temporary directory."""
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    yield tmp_path / "uploads"


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_user(
    *,
    name: str = "Test User",
    email: Optional[str] = None,
    role: UserRole = UserRole.employee,
    manager_id: Optional[uuid.UUID] = None,
    claim_limit: Optional[Decimal] = None,
    used_claim_amount: Decimal = Decimal("0"),
    is_active: bool = True,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        email=email or f"{role.value}.{uuid.uuid4().hex[:8]}@claimdesk.io",
        role=role,
        manager_id=manager_id,
        claim_limit=claim_limit,
        used_claim_amount=used_claim_amount,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


async def add_user(db: AsyncSession, **kwargs) -> User:
    """Insert a user in *db* (flushed, not committed)."""
    user = User(**_make_user(**kwargs))
    db.add(user)
    await db.flush()
    return user


async def seed_user(**kwargs) -> User:
    """Insert and commit a user in its own session (for API tests)."""
    async with TestSessionFactory() as session:
        user = await add_user(session, **kwargs)
        await session.commit()
    return user


async def add_claim(
    db: AsyncSession,
    owner: User,
    *,
    amount: Decimal = Decimal("100"),
    status: ClaimStatus = ClaimStatus.draft,
    manager_id: Optional[uuid.UUID] = None,
    counted_in_usage: bool = False,
    submitted_at: Optional[datetime] = None,
    title: str = "Taxi to client site",
) -> Claim:
    """Insert a claim row directly, bypassing the ledger."""
    now = datetime.now(timezone.utc)
    claim = Claim(
        user_id=owner.id,
        manager_id=manager_id if manager_id is not None else owner.manager_id,
        owner_role=owner.role,
        title=title,
        amount=Decimal(amount),
        receipt="/uploads/receipts/test.pdf",
        status=status,
        counted_in_usage=counted_in_usage,
        submitted_at=submitted_at if submitted_at is not None else (
            now if status != ClaimStatus.draft else None
        ),
        created_at=now,
        updated_at=now,
    )
    db.add(claim)
    await db.flush()
    return claim


async def reload(model, obj_id):
    """Fetch a fresh copy of a row in a new session."""
    async with TestSessionFactory() as session:
        return await session.get(model, obj_id)


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
    token_type: str = "access",
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": token_type,
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role)}"}
