"""Shared test fixtures.

Each test gets its own SQLite database file; the schema comes from the ORM
metadata and badge definitions are seeded the same way the app does at
startup. Redis is left uninitialized: pub/sub pushes are skipped and the rate
limiter lets requests through.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.auth.jwt import create_access_token, reset_keys
from obelisk.config import get_settings
from obelisk.database import close_db, get_engine, get_session, init_db
from obelisk.db.base import Base
from obelisk.db.models import User, Workshop
from obelisk.gamification.seed import seed_badges
from obelisk.main import create_app


@pytest.fixture(scope="session", autouse=True)
def jwt_keys(tmp_path_factory: pytest.TempPathFactory) -> tuple[str, str]:
    """Generate an RSA key pair for the test session."""
    key_dir = tmp_path_factory.mktemp("obelisk_test_keys")
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_path = key_dir / "jwt_private.pem"
    public_path = key_dir / "jwt_public.pem"
    private_path.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    public_path.write_bytes(private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ))

    os.environ["OBELISK_JWT_PRIVATE_KEY_PATH"] = str(private_path)
    os.environ["OBELISK_JWT_PUBLIC_KEY_PATH"] = str(public_path)
    get_settings.cache_clear()
    reset_keys()
    return str(private_path), str(public_path)


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch) -> AsyncGenerator[str, None]:
    """Fresh database with the full schema and seeded badges."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'obelisk.db'}"
    monkeypatch.setenv("OBELISK_DATABASE_URL", url)
    get_settings.cache_clear()

    await init_db(url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async for session in get_session():
        await seed_badges(session)
        break

    yield url

    await close_db()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_session(database: str) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions. Commit before calling the API."""
    async with AsyncSession(get_engine(), expire_on_commit=False) as session:
        yield session


@pytest_asyncio.fixture
async def client(database: str) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client bound to the per-test database."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


async def make_user(
    db: AsyncSession,
    email: str = "member@example.com",
    role: str = "member",
    first_name: str | None = "Ada",
    last_name: str | None = "Lovelace",
) -> User:
    user = User(email=email, role=role, first_name=first_name, last_name=last_name, is_banned=False)
    db.add(user)
    await db.commit()
    return user


async def make_workshop(
    db: AsyncSession,
    title: str = "Intro to Async Python",
    token: str = "3f6c2a4e-9d1b-4c7a-8e2f-0b5d6a7c8e91",
    expires_in: timedelta | None = timedelta(hours=24),
    scheduled_at: datetime | None = None,
) -> Workshop:
    now = datetime.now(timezone.utc)
    workshop = Workshop(
        title=title,
        description="Live session",
        scheduled_at=scheduled_at or now,
        host_name="Grace Hopper",
        qr_token=token,
        qr_expires_at=now + expires_in if expires_in is not None else None,
        created_at=now,
        updated_at=now,
    )
    db.add(workshop)
    await db.commit()
    return workshop


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest_asyncio.fixture
async def member(db_session: AsyncSession) -> User:
    return await make_user(db_session)


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await make_user(db_session, email="admin@example.com", role="admin", first_name="Alan", last_name="Turing")


@pytest_asyncio.fixture
async def workshop(db_session: AsyncSession) -> Workshop:
    return await make_workshop(db_session)
