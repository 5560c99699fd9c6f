from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import bcrypt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from wyzar.core.config import settings
from wyzar.core.errors import FederationTokenInvalidError
from wyzar.core.identity_provider import FederatedIdentity
from wyzar.core.kv_store import MemoryKeyValueStore
from wyzar.core.rate_limiting import limiter
from wyzar.models.account import Account
from wyzar.models.base import Base
from wyzar.repositories.account_repository import AccountRepository
from wyzar.services import factory
from wyzar.services.audit_log import AuditLog
from wyzar.services.lockout_guard import LockoutGuard, LockoutPolicy
from wyzar.services.otp_manager import OTPManager, OTPPolicy
from wyzar.services.session_issuer import start_session
from wyzar.services.session_resolver import SessionResolver

# In-memory SQLite shared by every session in a test (StaticPool keeps the
# single connection alive)
TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow

TEST_PASSWORD = "ValidP@ss1"  # nosec B105  # gitleaks:allow
_BCRYPT_ROUNDS = 4  # Low cost factor for fast tests
TEST_PASSWORD_HASH = bcrypt.hashpw(
    TEST_PASSWORD.encode(), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
).decode()

TEST_LOCKOUT_POLICY = LockoutPolicy(max_attempts=3, window_seconds=600, lockout_seconds=900)
TEST_OTP_POLICY = OTPPolicy(length=6, ttl_seconds=600, resend_interval_seconds=60, max_attempts=3)


class FakeClock:
    """Controllable UTC clock. Starts at the current whole second."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(UTC).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeIdentityProvider:
    """Identity provider backed by a token -> identity dict."""

    def __init__(self) -> None:
        self.identities: dict[str, FederatedIdentity] = {}
        self.calls: list[str] = []

    def add(
        self,
        token: str,
        *,
        subject_id: str,
        email: str,
        email_verified: bool = True,
    ) -> None:
        self.identities[token] = FederatedIdentity(
            subject_id=subject_id, email=email, email_verified=email_verified
        )

    async def verify(self, token: str) -> FederatedIdentity:
        self.calls.append(token)
        identity = self.identities.get(token)
        if identity is None:
            raise FederationTokenInvalidError()
        return identity


@pytest.fixture(autouse=True)
def test_settings() -> Iterator[None]:
    """Test-safe settings: known secret, plain-HTTP cookies, no IP limits."""
    originals = {
        "auth_secret": settings.auth_secret,
        "session_cookie_secure": settings.session_cookie_secure,
        "issue_legacy_tokens": settings.issue_legacy_tokens,
    }
    original_limiter_enabled = limiter.enabled

    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    # httpx only sends Secure cookies over https
    settings.session_cookie_secure = False
    settings.issue_legacy_tokens = True
    limiter.enabled = False

    yield

    for name, value in originals.items():
        setattr(settings, name, value)
    limiter.enabled = original_limiter_enabled


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def kv_store(clock: FakeClock) -> MemoryKeyValueStore:
    """Memory store whose TTLs follow the fake clock."""
    return MemoryKeyValueStore(monotonic=lambda: clock().timestamp())


@pytest.fixture
def lockout_guard(kv_store, clock) -> LockoutGuard:
    return LockoutGuard(kv_store, TEST_LOCKOUT_POLICY, clock=clock)


@pytest.fixture
def otp_manager(kv_store, clock) -> OTPManager:
    return OTPManager(kv_store, TEST_OTP_POLICY, clock=clock)


@pytest.fixture
def audit_log(session_factory, clock) -> AuditLog:
    return AuditLog(session_factory, clock=clock)


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def session_resolver(identity_provider, audit_log, clock) -> SessionResolver:
    return SessionResolver(identity_provider, audit_log, clock=clock)


@pytest.fixture
def services(
    kv_store,
    lockout_guard,
    otp_manager,
    audit_log,
    identity_provider,
    session_resolver,
) -> Iterator[None]:
    """Inject test services into the factory singletons."""
    factory._kv_store = kv_store
    factory._lockout_guard = lockout_guard
    factory._otp_manager = otp_manager
    factory._audit_log = audit_log
    factory._identity_provider = identity_provider
    factory._session_resolver = session_resolver

    yield

    factory.reset_services()


@pytest_asyncio.fixture
async def make_account(session_factory):
    """Factory fixture: create and commit an Account.

    Password is TEST_PASSWORD unless password_hash is given explicitly.
    """

    async def _make(
        email: str = "buyer@example.com",
        *,
        role: str = "buyer",
        phone: str | None = None,
        password_hash: str | None = TEST_PASSWORD_HASH,
        federation_subject_id: str | None = None,
        email_verified: bool = False,
    ) -> Account:
        async with session_factory() as session:
            account = await AccountRepository.create(
                session,
                email=email,
                password_hash=password_hash,
                phone=phone,
                role=role,
                email_verified=email_verified,
                federation_subject_id=federation_subject_id,
            )
            await session.commit()
            return account

    return _make


@pytest_asyncio.fixture
async def issue_session(session_factory):
    """Factory fixture: mint a server session, return the plain token."""

    async def _issue(account: Account) -> str:
        async with session_factory() as session:
            issued = await start_session(
                session, account, ip_address="127.0.0.1", user_agent="pytest"
            )
            await session.commit()
            return issued.token

    return _issue


@pytest_asyncio.fixture
async def client(
    session_factory,
    services,  # noqa: ARG001 - injects test singletons
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app with the test database.

    No credentials are attached; tests set the session cookie or headers.
    """
    from wyzar.core.database import get_db
    from wyzar.main import app

    # Mirrors get_db: commit on success, roll back on error
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
