"""
Pytest fixtures and configuration for the LinkedIn Capture test suite.
"""

import os
import random
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fakes import FakeClock, FakeLauncher, TEST_KEY_HEX, TEST_USER_ID, TEST_EMAIL, TEST_PASSWORD  # noqa: E402

# Set before any api.* import reads them
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("LINKEDIN_CREDENTIAL_KEY", TEST_KEY_HEX)
os.environ.setdefault("REDIS_ENABLED", "false")


# === Core Fixtures ===

@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def database(tmp_path):
    """Fresh SQLite database per test."""
    from api.database import Database
    db = Database(tmp_path / "test_linkedin_capture.db")
    await db.init()
    return db


@pytest.fixture
def vault(database):
    from core.vault import CredentialVault
    return CredentialVault.from_hex(TEST_KEY_HEX, database)


@pytest_asyncio.fixture
async def linked_user(vault):
    """Store credentials for TEST_USER_ID. Returns the credential id."""
    return await vault.store(TEST_USER_ID, TEST_EMAIL, TEST_PASSWORD)


@pytest.fixture
def simulator():
    """Seeded simulator that never actually sleeps."""
    from core.human_behavior import HumanBehaviorSimulator, BehaviorConfig
    return HumanBehaviorSimulator(BehaviorConfig(), rng=random.Random(42), sleep=AsyncMock())


@pytest.fixture
def account_manager(database, clock):
    from core.rate_limiter import AccountManager, RateLimitConfig
    return AccountManager(database, RateLimitConfig(), clock=clock)


@pytest.fixture
def session_cache(database, vault, clock):
    from core.session_cache import TieredSessionCache, MemorySessionStore, DurableSessionStore
    return TieredSessionCache(
        ephemeral=MemorySessionStore(clock),
        durable=DurableSessionStore(database, vault, clock),
        vault=vault,
        cookie_max_age_ms=86_400_000,
        clock=clock,
    )


# === Scraper Fixtures ===

@pytest.fixture
def launcher():
    """Launcher producing fake browsers. Swap launcher.page_factory to script pages."""
    return FakeLauncher()


@pytest.fixture
def login_flow():
    """Login flow mock; tests set the LoginState each call returns."""
    from core.models import LoginState
    flow = MagicMock()
    flow.login = AsyncMock(return_value=LoginState.SUCCESS)
    flow.validate_session = AsyncMock(return_value=True)
    flow.submit_code = AsyncMock(return_value=LoginState.SUCCESS)
    return flow


@pytest.fixture
def scraper(vault, account_manager, session_cache, launcher, login_flow, simulator, clock):
    from core.browser import BrowserManager
    from core.orchestrator import ProfileScraper
    from core.verification import VerificationRegistry

    return ProfileScraper(
        vault=vault,
        account_manager=account_manager,
        session_cache=session_cache,
        browser_manager=BrowserManager(launcher=launcher, rng=random.Random(7)),
        login_flow=login_flow,
        registry=VerificationRegistry(clock=clock),
        simulator=simulator,
    )


# === Authenticated Test Client ===

@pytest.fixture
def mock_scraper():
    """ProfileScraper stand-in for API tests."""
    mock = MagicMock()
    mock.scrape_profile = AsyncMock()
    mock.verification_owner = AsyncMock(return_value=TEST_USER_ID)
    mock.submit_verification_code = AsyncMock()
    mock.vault.store = AsyncMock(return_value="cred-123")
    mock.vault.revoke = AsyncMock(return_value=True)
    mock.account_manager.get_account_health = AsyncMock()
    mock.account_manager.get_rate_limit_stats = AsyncMock()
    mock.account_manager.can_make_request = AsyncMock()
    mock.account_manager.get_request_history = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def authenticated_client(mock_scraper):
    """
    Test client with authentication and the scraper overridden.
    The lifespan does not run, so no browser or database is started.
    """
    from fastapi.testclient import TestClient
    from api.main import app, get_current_user, get_scraper

    async def mock_get_current_user():
        return TEST_USER_ID

    app.dependency_overrides[get_current_user] = mock_get_current_user
    app.dependency_overrides[get_scraper] = lambda: mock_scraper

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
