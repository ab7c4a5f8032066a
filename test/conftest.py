"""
Pytest configuration and fixtures.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.auth.jwt import JWTHandler
from cryptodash.auth.models import User
from cryptodash.auth.passwords import hash_password
from cryptodash.auth.roles import Role
from cryptodash.config import ClaimValidity, Settings
from cryptodash.main import create_app
from cryptodash.shared.database import DatabaseManager

TEST_PASSWORD = "correct-horse-battery"

UserFactory = Callable[..., Awaitable[User]]


def build_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "app_env": "dev",
        "debug": False,
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        "storage_timeout_seconds": 5,
        "jwt_secret_key": "test-secret-key-for-testing-only-0123456789",
        "jwt_access_token_expire_minutes": 60,
        "claim_validity": ClaimValidity.REVALIDATE,
        "password_reset_base_url": "http://testserver/reset",
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def user_password() -> str:
    """Plaintext password of users created by make_user."""
    return TEST_PASSWORD


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings backed by a throwaway SQLite file."""
    return build_settings(tmp_path)


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Test settings with overrides, sharing the test database."""

    def _make(**overrides) -> Settings:
        return build_settings(tmp_path, **overrides)

    return _make


@pytest_asyncio.fixture
async def db_manager(test_settings: Settings) -> AsyncGenerator[DatabaseManager, None]:
    """Create a database manager with all tables in place."""
    manager = DatabaseManager(
        database_url=test_settings.database_url,
        timeout_seconds=test_settings.storage_timeout_seconds,
        echo=False,
    )
    await manager.create_all()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def db_session(db_manager: DatabaseManager) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with db_manager.session_factory() as session:
        yield session


@pytest.fixture
def app(test_settings: Settings, db_manager: DatabaseManager) -> FastAPI:
    return create_app(settings=test_settings, database=db_manager)


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the application, redirects not followed."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
def make_user(db_manager: DatabaseManager) -> UserFactory:
    """Factory inserting a committed user in its own session."""

    async def _make(
        email: str,
        role: Role = Role.USER,
        name: str | None = None,
        password: str | None = TEST_PASSWORD,
        created_at: datetime | None = None,
    ) -> User:
        user = User(
            email=email,
            name=name or email.split("@")[0].title(),
            role=role.value,
            password_hash=hash_password(password, rounds=4) if password else None,
        )
        if created_at is not None:
            user.created_at = created_at
        async with db_manager.session() as session:
            session.add(user)
        return user

    return _make


@pytest_asyncio.fixture
async def admin_user(make_user: UserFactory) -> User:
    return await make_user("alice@example.com", Role.ADMIN, name="Alice Admin")


@pytest_asyncio.fixture
async def second_admin(make_user: UserFactory) -> User:
    return await make_user("bob@example.com", Role.ADMIN, name="Bob Admin")


@pytest_asyncio.fixture
async def regular_user(make_user: UserFactory) -> User:
    return await make_user("carol@example.com", Role.USER, name="Carol User")


@pytest.fixture
def jwt_handler(test_settings: Settings) -> JWTHandler:
    """Create JWT handler with test settings."""
    return JWTHandler(settings=test_settings)


@pytest.fixture
def token_for(jwt_handler: JWTHandler) -> Callable[..., str]:
    """Sign a claim for a user, optionally with a different role snapshot."""

    def _token(user: User, role: Role | None = None) -> str:
        return jwt_handler.create_access_token(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=(role or Role(user.role)).value,
        )

    return _token


@pytest.fixture
def auth_headers(token_for: Callable[..., str]) -> Callable[..., dict[str, str]]:
    def _headers(user: User, role: Role | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user, role)}"}

    return _headers
