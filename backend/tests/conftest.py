"""Pytest configuration and fixtures for backend tests.

Database Handling:
- If TEST_DATABASE_URL is set (e.g. a PostgreSQL asyncpg URL), tests run against it
- Otherwise each test gets its own SQLite file (aiosqlite, WAL mode) under tmp_path
"""

import os
import re
import tempfile
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment variables before importing app modules
_FALLBACK_DB_DIR = tempfile.mkdtemp(prefix="authcore-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_FALLBACK_DB_DIR}/app.db"
)
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-0123456789-abcdefghijklmnop"
os.environ.pop("SMTP_HOST", None)

from app.services.mail import MailDeliveryError, MailDispatcher  # noqa: E402

TEST_PASSWORD = "correct-horse-battery"


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a fresh database with all tables for one test."""
    from app.core.database import Base, configure_engine, init_db

    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = configure_engine(create_async_engine(url, poolclass=NullPool, echo=False))

    await init_db(engine)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for test setup and assertions."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def audit_service(session_factory):
    from app.services.audit import AuditService

    return AuditService(session_factory)


@pytest.fixture
def test_settings():
    from app.core.config import get_settings

    return get_settings()


# --- Mail ---


@dataclass
class SentMail:
    to: str
    subject: str
    body: str


class FakeMailer(MailDispatcher):
    """Captures outgoing mail instead of talking to SMTP."""

    def __init__(self):
        super().__init__(app_name="AuthCore")
        self.sent: list[SentMail] = []
        self.fail = False

    async def send(self, to_email: str, subject: str, body: str) -> None:
        if self.fail:
            raise MailDeliveryError("SMTP unavailable")
        self.sent.append(SentMail(to_email, subject, body))

    def last_code(self, to_email: str) -> str:
        """The six-digit code from the most recent message to ``to_email``."""
        for mail in reversed(self.sent):
            if mail.to == to_email:
                match = re.search(r"\b(\d{6})\b", mail.body)
                if match:
                    return match.group(1)
        raise AssertionError(f"No code was mailed to {to_email}")


@pytest.fixture
def fake_mailer() -> FakeMailer:
    return FakeMailer()


# --- Service Fixtures ---


@pytest.fixture
def credential_store(db_session):
    from app.services.credential_store import CredentialStore

    return CredentialStore(db_session)


@pytest.fixture
def otp_manager(credential_store, fake_mailer, audit_service, test_settings):
    from app.services.otp import OTPManager

    return OTPManager(credential_store, fake_mailer, audit_service, test_settings)


@pytest.fixture
def mfa_manager(credential_store, audit_service, test_settings):
    from app.services.mfa import MFAManager

    return MFAManager(credential_store, audit_service, test_settings)


@pytest.fixture
def token_service(credential_store, test_settings):
    from app.services.tokens import TokenService

    return TokenService(credential_store, test_settings)


# --- State Reset ---


@pytest.fixture(autouse=True)
def reset_auth_state():
    """Reset module-level auth state between tests.

    The login throttle tracks failed attempts per IP and the revocation
    cache remembers revoked digests; both live for the whole process.
    """
    from app.api.auth import reset_login_attempts
    from app.services.tokens import clear_revocation_cache

    reset_login_attempts()
    clear_revocation_cache()
    yield
    reset_login_attempts()
    clear_revocation_cache()


# --- HTTP Client ---


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory, audit_service, fake_mailer
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database, audit and mail overrides."""
    from app.core.database import get_db
    from app.main import app
    from app.services.audit import get_audit_service
    from app.services.mail import get_mail_dispatcher

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_service] = lambda: audit_service
    app.dependency_overrides[get_mail_dispatcher] = lambda: fake_mailer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()


# --- Test Factories ---


@pytest.fixture
def user_factory(session_factory):
    """Factory for creating users directly in the database."""
    from app.models.user import User, UserRole
    from app.services.auth import hash_password

    async def _create_user(
        email: str = "user@example.com",
        password: str = TEST_PASSWORD,
        name: str = "Test User",
        role: UserRole = UserRole.STUDENT,
        is_email_verified: bool = True,
        **kwargs: Any,
    ) -> User:
        async with session_factory() as session:
            user = User(
                name=name,
                email=email.strip().lower(),
                password_hash=hash_password(password),
                role=role,
                is_email_verified=is_email_verified,
                **kwargs,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _create_user


@pytest_asyncio.fixture
async def verified_user(user_factory):
    return await user_factory()


@pytest_asyncio.fixture
async def admin_user(user_factory):
    from app.models.user import UserRole

    return await user_factory(email="admin@example.com", name="Admin", role=UserRole.ADMIN)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def issue_access_token(test_settings):
    """Mint an access token for a user without going through login."""
    from datetime import timedelta

    from app.services.tokens import ACCESS, Identity, create_token

    def _issue(user, lifetime: timedelta | None = None, **kwargs: Any) -> str:
        return create_token(
            Identity.from_user(user),
            ACCESS,
            lifetime or timedelta(minutes=test_settings.jwt_access_token_expire_minutes),
            test_settings,
            **kwargs,
        )

    return _issue


@pytest.fixture
def user_headers(verified_user, issue_access_token) -> dict[str, str]:
    return bearer(issue_access_token(verified_user))


@pytest.fixture
def admin_headers(admin_user, issue_access_token) -> dict[str, str]:
    """Headers with JWT token for an Admin."""
    return bearer(issue_access_token(admin_user))


async def audit_events(session_factory, event: str | None = None) -> list:
    """All audit rows (optionally of one event type), oldest first."""
    from sqlalchemy import select

    from app.models.audit_log import AuditLog

    async with session_factory() as session:
        query = select(AuditLog).order_by(AuditLog.created_at)
        if event:
            query = query.where(AuditLog.event == event)
        result = await session.execute(query)
        return list(result.scalars().all())


# --- Pytest Hooks for Auto-Marking ---


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their fixtures and location.

    - Tests using async_client are marked as 'integration'
    - Everything else is marked as 'unit'
    - Tests can override with explicit markers
    """
    integration_fixtures = {"async_client"}

    for item in items:
        # Skip if already explicitly marked
        if any(mark.name in ("unit", "integration") for mark in item.iter_markers()):
            continue

        if hasattr(item, "fixturenames") and integration_fixtures & set(item.fixturenames):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
