import ast
import inspect
import socket
import textwrap
import uuid
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import jwt
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from drivedock.core.config import settings
from drivedock.models.base import Base

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Security: test-only secrets. Production reads real secrets from env.
TEST_SESSION_SECRET = "test-session-secret-that-is-at-least-32-chars"  # nosec B105  # gitleaks:allow
TEST_IDENTITY_HASH_SECRET = "test-identity-hash-secret-at-least-32-chars"  # nosec B105  # gitleaks:allow
TEST_IDENTITY_ENCRYPTION_KEY = Fernet.generate_key().decode()
TEST_CRON_SECRET = "test-cron-secret"  # nosec B105  # gitleaks:allow
TEST_ADMIN_TOKEN = "test-admin-token"  # nosec B105  # gitleaks:allow

TEST_IDENTITY = "046 454 286"
TEST_EMAIL = "rider@example.com"


def create_test_session_jwt(
    tracker_id: uuid.UUID,
    *,
    secret: str = TEST_SESSION_SECRET,
    expires_delta: timedelta | None = None,
    iat: datetime | None = None,
    audience: str = "drivedock-onboarding",
) -> str:
    """Create a signed onboarding session JWT for tests.

    Args:
        tracker_id: Tracker UUID to encode in the sub claim.
        secret: Signing secret (must match settings.session_secret in tests).
        expires_delta: Time until expiration. Defaults to 1 hour.
        iat: Issued-at time. Defaults to now.
        audience: aud claim.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(tracker_id),
        "aud": audience,
        "iss": settings.session_issuer,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": iat or now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def onboarding_secrets() -> Iterator[None]:
    """Install test secrets on the settings singleton.

    Identity hashing, encryption and session signing all read settings at
    call time, so swapping them here covers every module.
    """
    names = (
        "session_secret",
        "identity_hash_secret",
        "identity_encryption_key",
        "cron_secret",
        "admin_api_token",
        "session_cookie_secure",
    )
    original = {name: getattr(settings, name) for name in names}
    settings.session_secret = SecretStr(TEST_SESSION_SECRET)
    settings.identity_hash_secret = SecretStr(TEST_IDENTITY_HASH_SECRET)
    settings.identity_encryption_key = SecretStr(TEST_IDENTITY_ENCRYPTION_KEY)
    settings.cron_secret = SecretStr(TEST_CRON_SECRET)
    settings.admin_api_token = SecretStr(TEST_ADMIN_TOKEN)
    # The test client talks plain http
    settings.session_cookie_secure = False

    yield

    for name, value in original.items():
        setattr(settings, name, value)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory for tests that need several independent sessions."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def make_tracker(db_session: AsyncSession):
    """Factory fixture that inserts an onboarding tracker.

    Keyword overrides are applied to the tracker columns. With
    ``email=...`` a driver application carrying that contact email is
    created and linked. Pass ``identity=...`` for a specific identity number.

    Yields:
        Async callable returning the committed OnboardingTracker.
    """
    from drivedock.core.identity import (
        encrypt_identity,
        hash_identity,
        normalize_identity,
    )
    from drivedock.models import ApplicationForm, OnboardingTracker

    counter = iter(range(100_000_000, 999_999_999))

    async def _make(
        *, identity: str | None = None, email: str | None = None, **overrides
    ) -> OnboardingTracker:
        normalized = normalize_identity(identity or str(next(counter)))
        values = {
            "applicant_identity_hash": hash_identity(normalized),
            "applicant_identity_encrypted": encrypt_identity(normalized),
            "company_id": "ssp-ca",
            "application_type": "FLAT_BED",
            "current_step": "application-form/page-2",
            "completed_step": "application-form/page-1",
            "resume_expires_at": datetime.now(UTC) + timedelta(days=30),
        }
        values.update(overrides)
        if email is not None:
            form = ApplicationForm(
                id=uuid.uuid4(),
                payload={"page_1": {"email": email}},
                contact_email=email,
            )
            db_session.add(form)
            await db_session.flush()
            values["driver_application_id"] = form.id

        tracker = OnboardingTracker(**values)
        db_session.add(tracker)
        await db_session.commit()
        await db_session.refresh(tracker)
        return tracker

    yield _make


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def client(db_engine) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client backed by the test database.

    Sets up:
    - Test database connection via dependency override (commit on success,
      rollback on error, like the production dependency)
    - httpx.AsyncClient with ASGI transport, no cookies

    Args:
        db_engine: Test database engine from db_engine fixture.

    Yields:
        Configured AsyncClient for making API requests.
    """
    from drivedock.core.database import get_db
    from drivedock.main import app

    test_session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with test_session_factory() as session:
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


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Security: Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.

    Yields:
        None (autouse fixture).
    """
    from drivedock.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    limiter.enabled = original_enabled


# =============================================================================
# Test Antipattern Detection (warning-only)
# =============================================================================

_BANNED_FUNCTIONS = frozenset({"isinstance", "issubclass", "hasattr"})


def _find_antipatterns_in_source(source: str) -> list[str]:
    """Scan test function source for banned structural assertion patterns."""
    try:
        tree = ast.parse(textwrap.dedent(source))
    except SyntaxError:
        return []

    findings: list[str] = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        if isinstance(node.func, ast.Name) and node.func.id in _BANNED_FUNCTIONS:
            findings.append(node.func.id)
    return findings


_antipattern_warnings: list[str] = []


def pytest_runtest_teardown(item: pytest.Item) -> None:
    """Check each test for antipattern usage after it runs."""
    if not hasattr(item, "obj") or not callable(item.obj):
        return
    try:
        source = inspect.getsource(item.obj)
    except (OSError, TypeError):
        return

    patterns = _find_antipatterns_in_source(source)
    if patterns:
        _antipattern_warnings.append(f"  {item.nodeid}: {', '.join(patterns)}")


def pytest_terminal_summary(
    terminalreporter: pytest.TerminalReporter,
) -> None:
    """Report test antipatterns at the end of the test session (warning only)."""
    if _antipattern_warnings:
        terminalreporter.section("test antipattern warnings")
        terminalreporter.line(
            "The following tests assert on structure instead of behavior."
        )
        terminalreporter.line("")
        for w in _antipattern_warnings:
            terminalreporter.line(w)
        _antipattern_warnings.clear()
