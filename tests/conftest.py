"""
Test configuration and fixtures for the auth provider API.

Each test gets its own SQLite database file (or TEST_DATABASE_URL when set),
its own Settings and its own app, so nothing leaks between tests.
"""

import asyncio
import os
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from fastapi.testclient import TestClient
from sqlalchemy import select

from auth_provider.features.auth.utils.security import create_access_token
from auth_provider.features.mfa.models.email_mfa_code import EmailMfaCode
from auth_provider.main import create_app
from auth_provider.platform.config import Settings
from auth_provider.platform.db.session import Database

load_dotenv()


@pytest.fixture
def db_url(tmp_path) -> str:
    test_db_url = os.getenv("TEST_DATABASE_URL")
    if test_db_url:
        if "postgresql://" in test_db_url and "asyncpg" not in test_db_url:
            test_db_url = test_db_url.replace("postgresql://", "postgresql+asyncpg://")
        return test_db_url
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        ENVIRONMENT="local",
        BASE_URL="https://auth.example.com/",
        MAP_URL="https://map.example.com",
        SENDGRID_API_KEY="SG.test-key",
        SENDGRID_TEMPLATE_ID="",
        EMAIL_FROM="no-reply@example.com",
        EMAIL_ADMIN_DESTINATIONS="admin@example.com, ops@example.com",
        JWT_SECRET_KEY="test-secret",
        LOG_DIR=str(tmp_path / "logs"),
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path, db_url) -> Settings:
    return make_settings(tmp_path, DATABASE_URL=db_url)


@pytest.fixture
def test_app(settings):
    """Create FastAPI test application."""
    return create_app(settings)


@pytest.fixture
def client(test_app) -> Generator[TestClient, None, None]:
    """
    Create a test client for making HTTP requests.
    Entering the client runs the lifespan, which creates the tables.
    """
    with TestClient(test_app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def database(db_url):
    database = Database(db_url)
    await database.create_all()
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    async with database.session() as session:
        yield session


def run_db(db_url: str, fn):
    """Run `await fn(session)` against `db_url` from synchronous tests."""

    async def runner():
        database = Database(db_url)
        try:
            async with database.session() as session:
                return await fn(session)
        finally:
            await database.dispose()

    return asyncio.run(runner())


@pytest.fixture
def mock_sendgrid():
    """Patch the SendGrid client; `.return_value.send` is what gets called."""
    with patch("auth_provider.features.mfa.utils.delivery.SendGridAPIClient") as mock_client:
        mock_client.return_value.send.return_value = MagicMock(status_code=202)
        yield mock_client


def bearer(settings: Settings, user_id: int = 1, email: str = "user@example.com", roles=None) -> dict:
    token = create_access_token(settings, user_id=user_id, email=email, roles=roles or [])
    return {"Authorization": f"Bearer {token}"}


async def rows_for(session, email: str) -> list:
    """Every stored code for `email`, consumed or not, newest first."""
    result = await session.execute(
        select(EmailMfaCode)
        .where(EmailMfaCode.email == email)
        .order_by(EmailMfaCode.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
