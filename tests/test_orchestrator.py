"""
Profile scraper tests: the scrape pipeline end to end against fake
browsers, plus the email verification round trip.
"""

import pytest

from core.errors import (
    CheckpointRequired, EmailVerificationRequired, NoCredentials, RateLimitExceeded, ValidationError,
)
from core.models import LoginState
from core.orchestrator import ScrapeOptions
from fakes import PROFILE_URL, TEST_EMAIL, TEST_PASSWORD, TEST_USER_ID

OPTIONS = ScrapeOptions(user_id=TEST_USER_ID)


async def _history(scraper):
    return await scraper.account_manager.get_request_history(TEST_USER_ID, hours=48)


class TestScrape:

    @pytest.mark.asyncio
    async def test_validation(self, scraper, launcher):
        with pytest.raises(ValidationError):
            await scraper.scrape_profile("", OPTIONS)
        with pytest.raises(ValidationError):
            await scraper.scrape_profile(PROFILE_URL, ScrapeOptions(user_id=""))
        assert launcher.browsers == []

    @pytest.mark.asyncio
    async def test_no_credentials_never_opens_browser(self, scraper, launcher):
        with pytest.raises(NoCredentials):
            await scraper.scrape_profile(PROFILE_URL, OPTIONS)

        assert launcher.browsers == []
        assert await _history(scraper) == []

    @pytest.mark.asyncio
    async def test_first_scrape_logs_in_and_saves_session(self, scraper, launcher, login_flow, linked_user):
        profile = await scraper.scrape_profile(PROFILE_URL, OPTIONS)

        assert profile.name == "Ada Lovelace"
        assert profile.company == "Analytical Engines"
        assert profile.profile_url == PROFILE_URL

        page = launcher.pages[0]
        login_flow.login.assert_awaited_once()
        assert login_flow.login.await_args.args[1:3] == (TEST_EMAIL, TEST_PASSWORD)
        assert page.visited == [PROFILE_URL]
        assert page.closed
        assert launcher.browser.contexts[0].closed

        session = await scraper.session_cache.load_session(TEST_EMAIL)
        assert {c.name for c in session.cookies} == {"li_at", "JSESSIONID"}

        history = await _history(scraper)
        assert len(history) == 1
        assert history[0]["success"] is True

    @pytest.mark.asyncio
    async def test_second_scrape_reuses_session(self, scraper, launcher, login_flow, clock, linked_user):
        await scraper.scrape_profile(PROFILE_URL, OPTIONS)
        first_agent = launcher.browser.contexts[0].options["user_agent"]
        clock.advance(ms=120_000)

        await scraper.scrape_profile("https://www.linkedin.com/in/charles-babbage/", OPTIONS)

        assert login_flow.login.await_count == 1
        login_flow.validate_session.assert_awaited_once()
        second = launcher.browser.contexts[1]
        assert {c["name"] for c in second.added_cookies} == {"li_at", "JSESSIONID"}
        assert second.options["user_agent"] == first_agent
        assert len(launcher.browsers) == 1

    @pytest.mark.asyncio
    async def test_stale_session_falls_back_to_login(self, scraper, login_flow, clock, linked_user):
        await scraper.scrape_profile(PROFILE_URL, OPTIONS)
        clock.advance(ms=120_000)
        login_flow.validate_session.return_value = False

        await scraper.scrape_profile(PROFILE_URL, OPTIONS)

        assert login_flow.login.await_count == 2

    @pytest.mark.asyncio
    async def test_skip_validation_when_disabled(self, scraper, login_flow, clock, linked_user):
        scraper.config.validate_cookie_before_use = False
        await scraper.scrape_profile(PROFILE_URL, OPTIONS)
        clock.advance(ms=120_000)

        await scraper.scrape_profile(PROFILE_URL, OPTIONS)

        login_flow.validate_session.assert_not_awaited()
        assert login_flow.login.await_count == 1

    @pytest.mark.asyncio
    async def test_rate_limited_call_does_no_browser_work(self, scraper, launcher, linked_user):
        await scraper.scrape_profile(PROFILE_URL, OPTIONS)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await scraper.scrape_profile(PROFILE_URL, OPTIONS)

        assert exc_info.value.retryable
        assert exc_info.value.retry_after_ms == 90_000
        assert len(launcher.pages) == 1
        assert len(await _history(scraper)) == 1

    @pytest.mark.asyncio
    async def test_explicit_credentials_override_vault(self, scraper, login_flow, linked_user):
        await scraper.scrape_profile(
            PROFILE_URL, ScrapeOptions(user_id=TEST_USER_ID, email=TEST_EMAIL, password="one-off")
        )
        assert login_flow.login.await_args.args[2] == "one-off"

    @pytest.mark.asyncio
    async def test_explicit_identity_cooldown_blocks_next_call(self, scraper, login_flow, clock, linked_user):
        options = ScrapeOptions(user_id=TEST_USER_ID, email="burned@example.com", password="pw")
        login_flow.login.return_value = LoginState.PERMANENT_CHECKPOINT

        with pytest.raises(CheckpointRequired):
            await scraper.scrape_profile(PROFILE_URL, options)
        clock.advance(ms=200_000)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await scraper.scrape_profile(PROFILE_URL, options)

        assert login_flow.login.await_count == 1
        assert exc_info.value.wait_time_ms == 86_400_000 - 200_000

    @pytest.mark.asyncio
    async def test_stored_identity_limits_do_not_gate_explicit_identity(
        self, scraper, login_flow, clock, linked_user
    ):
        await scraper.scrape_profile(PROFILE_URL, OPTIONS)

        await scraper.scrape_profile(
            PROFILE_URL, ScrapeOptions(user_id=TEST_USER_ID, email="other@example.com", password="pw")
        )

        assert login_flow.login.await_count == 2

    @pytest.mark.asyncio
    async def test_explicit_credentials_still_need_linked_account(self, scraper, launcher):
        with pytest.raises(NoCredentials):
            await scraper.scrape_profile(
                PROFILE_URL, ScrapeOptions(user_id=TEST_USER_ID, email=TEST_EMAIL, password="pw")
            )
        assert launcher.browsers == []


class TestEmailVerification:

    async def _pending(self, scraper, launcher, login_flow):
        login_flow.login.return_value = LoginState.EMAIL_VERIFICATION_PENDING
        with pytest.raises(EmailVerificationRequired) as exc_info:
            await scraper.scrape_profile(PROFILE_URL, OPTIONS)
        return exc_info.value.verification_id, launcher.pages[0]

    @pytest.mark.asyncio
    async def test_page_held_for_code(self, scraper, launcher, login_flow, linked_user):
        vid, page = await self._pending(scraper, launcher, login_flow)

        assert not page.closed
        assert await scraper.verification_owner(vid) == TEST_USER_ID
        assert scraper.verification_status(vid)["status"] == "pending"

    @pytest.mark.asyncio
    async def test_correct_code_saves_session(self, scraper, launcher, login_flow, linked_user):
        vid, page = await self._pending(scraper, launcher, login_flow)

        result = await scraper.submit_verification_code(vid, "123456", user_id=TEST_USER_ID)

        assert result.success
        login_flow.submit_code.assert_awaited_once_with(page, "123456")
        assert page.closed
        assert vid not in scraper.registry
        assert await scraper.session_cache.load_session(TEST_EMAIL) is not None

        health = await scraper.account_manager.get_account_health(TEST_USER_ID)
        assert health["successfulRequests"] == 1
        assert health["failedRequests"] == 1
        assert health["consecutiveFailures"] == 0
        assert health["isActive"] is True

    @pytest.mark.asyncio
    async def test_wrong_code_counts_down(self, scraper, launcher, login_flow, linked_user):
        vid, page = await self._pending(scraper, launcher, login_flow)
        login_flow.submit_code.return_value = LoginState.EMAIL_VERIFICATION_PENDING

        first = await scraper.submit_verification_code(vid, "000000")
        second = await scraper.submit_verification_code(vid, "111111")
        assert (first.error, first.attempts_remaining) == ("Invalid verification code", 2)
        assert second.attempts_remaining == 1
        assert not page.closed

        last = await scraper.submit_verification_code(vid, "222222")
        assert (last.error, last.attempts_remaining) == ("Invalid code - no attempts remaining", 0)
        assert page.closed

        gone = await scraper.submit_verification_code(vid, "333333")
        assert gone.error == "Session not found or expired"

    @pytest.mark.asyncio
    async def test_other_user_rejected(self, scraper, launcher, login_flow, linked_user):
        vid, page = await self._pending(scraper, launcher, login_flow)

        result = await scraper.submit_verification_code(vid, "123456", user_id="intruder")

        assert result.error == "Unauthorized access to verification session"
        login_flow.submit_code.assert_not_awaited()
        assert not page.closed

    @pytest.mark.asyncio
    async def test_unknown_session(self, scraper):
        result = await scraper.submit_verification_code("missing", "123456")
        assert not result.success
        assert result.error == "Session not found or expired"

    @pytest.mark.asyncio
    async def test_expired_session(self, scraper, launcher, login_flow, clock, linked_user):
        vid, page = await self._pending(scraper, launcher, login_flow)
        clock.advance(seconds=301)

        result = await scraper.submit_verification_code(vid, "123456")

        assert result.error == "Session not found or expired"
        assert page.closed

    @pytest.mark.asyncio
    async def test_submit_error_keeps_attempts(self, scraper, launcher, login_flow, linked_user):
        vid, page = await self._pending(scraper, launcher, login_flow)
        login_flow.submit_code.side_effect = RuntimeError("Target closed")

        result = await scraper.submit_verification_code(vid, "123456")

        assert result.error == "Failed to submit verification code"
        assert result.attempts_remaining == 3
        assert vid in scraper.registry

    @pytest.mark.asyncio
    async def test_checkpoint_after_code(self, scraper, launcher, login_flow, linked_user):
        vid, page = await self._pending(scraper, launcher, login_flow)
        login_flow.submit_code.return_value = LoginState.PERMANENT_CHECKPOINT

        result = await scraper.submit_verification_code(vid, "123456")

        assert not result.success
        assert page.closed
        health = await scraper.account_manager.get_account_health(TEST_USER_ID)
        assert health["checkpointCount"] == 1
        assert health["isActive"] is False

    @pytest.mark.asyncio
    async def test_shutdown_closes_held_pages(self, scraper, launcher, login_flow, linked_user):
        vid, page = await self._pending(scraper, launcher, login_flow)

        await scraper.shutdown()

        assert page.closed
        assert launcher.browser.closed


class TestWiring:

    @pytest.mark.asyncio
    async def test_create_scraper_from_settings(self, database):
        from api.config import AppConfig
        from core.browser import BrowserManager
        from core.orchestrator import create_scraper
        from core.session_cache import MemorySessionStore
        from fakes import FakeLauncher, TEST_KEY_HEX

        settings = AppConfig(
            LINKEDIN_CREDENTIAL_KEY=TEST_KEY_HEX,
            REDIS_ENABLED=False,
            LINKEDIN_MAX_PROFILES_PER_HOUR=7,
            VERIFICATION_TTL_SECONDS=120,
        )
        scraper = await create_scraper(settings, database, BrowserManager(launcher=FakeLauncher()))

        assert isinstance(scraper.session_cache.ephemeral, MemorySessionStore)
        assert scraper.account_manager.config.max_profiles_per_hour == 7
        assert scraper.registry.ttl_seconds == 120
        scraper.start()
        await scraper.shutdown()

    @pytest.mark.asyncio
    async def test_database_path_from_settings(self, tmp_path, monkeypatch):
        import api.database
        from api.config import AppConfig
        from core.browser import BrowserManager
        from core.orchestrator import create_scraper
        from fakes import FakeLauncher, TEST_KEY_HEX

        monkeypatch.setattr(api.database, "_database", None)
        db_path = tmp_path / "capture.db"
        settings = AppConfig(
            LINKEDIN_CREDENTIAL_KEY=TEST_KEY_HEX, REDIS_ENABLED=False, DATABASE_PATH=str(db_path),
        )

        scraper = await create_scraper(settings, browser_manager=BrowserManager(launcher=FakeLauncher()))

        assert scraper.account_manager.database.path == db_path
        assert db_path.exists()
        await scraper.shutdown()

    @pytest.mark.asyncio
    async def test_bad_key_fails_fast(self, database):
        from api.config import AppConfig
        from core.errors import ConfigurationError
        from core.orchestrator import create_scraper

        with pytest.raises(ConfigurationError):
            await create_scraper(AppConfig(LINKEDIN_CREDENTIAL_KEY="short"), database)
