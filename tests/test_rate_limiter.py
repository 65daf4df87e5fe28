"""
Account manager tests: admission order, exact wait times, cooldown triggers
and health write-back.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import pytest

from core.errors import CheckpointRequired, LoginFailed, ScrapingFailed
from core.models import DenialReason
from core.rate_limiter import AccountManager, RateLimitConfig
from core.vault import CredentialVault
from fakes import TEST_USER_ID, TEST_EMAIL, PROFILE_URL

pytestmark = pytest.mark.usefixtures("linked_user")


def _manager(database, clock, **overrides) -> AccountManager:
    return AccountManager(database, RateLimitConfig(**overrides), clock=clock)


async def _log_success(manager, clock, count=1, spacing_ms=2_000):
    for _ in range(count):
        await manager.log_request(TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=True, latency_ms=1200)
        clock.advance(ms=spacing_ms)


class TestAdmission:

    @pytest.mark.asyncio
    async def test_fresh_account_allowed(self, account_manager):
        decision = await account_manager.can_make_request(TEST_USER_ID)
        assert decision.allowed
        assert decision.wait_time_ms is None

    @pytest.mark.asyncio
    async def test_no_credentials(self, account_manager):
        decision = await account_manager.can_make_request("nobody")
        assert not decision.allowed
        assert decision.denied_by == DenialReason.NO_CREDENTIALS

    @pytest.mark.asyncio
    async def test_revoked_credentials_denied(self, account_manager, vault):
        await vault.revoke(TEST_USER_ID)
        decision = await account_manager.can_make_request(TEST_USER_ID)
        assert decision.denied_by == DenialReason.NO_CREDENTIALS

    @pytest.mark.asyncio
    async def test_too_soon_reports_remaining_spacing(self, account_manager, clock):
        await account_manager.log_request(TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=True)
        clock.advance(seconds=30)

        decision = await account_manager.can_make_request(TEST_USER_ID)
        assert not decision.allowed
        assert decision.denied_by == DenialReason.TOO_SOON
        assert decision.wait_time_ms == 60_000

    @pytest.mark.asyncio
    async def test_allowed_once_spacing_elapses(self, account_manager, clock):
        await account_manager.log_request(TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=True)
        clock.advance(ms=90_000)

        assert (await account_manager.can_make_request(TEST_USER_ID)).allowed

    @pytest.mark.asyncio
    async def test_failed_request_still_spaces(self, account_manager, clock):
        await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=ScrapingFailed("boom")
        )
        clock.advance(seconds=1)

        decision = await account_manager.can_make_request(TEST_USER_ID)
        assert decision.denied_by == DenialReason.TOO_SOON

    @pytest.mark.asyncio
    async def test_hourly_limit_waits_an_hour(self, database, clock):
        manager = _manager(database, clock, min_delay_ms=1_000, max_profiles_per_hour=2)
        await _log_success(manager, clock, count=2)

        decision = await manager.can_make_request(TEST_USER_ID)
        assert decision.denied_by == DenialReason.HOURLY_LIMIT
        assert decision.wait_time_ms == 3_600_000

    @pytest.mark.asyncio
    async def test_hourly_window_slides(self, database, clock):
        manager = _manager(database, clock, min_delay_ms=1_000, max_profiles_per_hour=2)
        await _log_success(manager, clock, count=2)
        clock.advance(ms=3_600_000)

        assert (await manager.can_make_request(TEST_USER_ID)).allowed

    @pytest.mark.asyncio
    async def test_failures_do_not_consume_hourly_budget(self, database, clock):
        manager = _manager(
            database, clock, min_delay_ms=1_000, max_profiles_per_hour=1, max_consecutive_failures=10
        )
        for _ in range(3):
            await manager.log_request(
                TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=ScrapingFailed()
            )
            clock.advance(ms=2_000)

        assert (await manager.can_make_request(TEST_USER_ID)).allowed

    @pytest.mark.asyncio
    async def test_daily_limit_waits_a_day(self, database, clock):
        manager = _manager(
            database, clock, min_delay_ms=1_000, max_profiles_per_hour=100, max_profiles_per_day=3
        )
        await _log_success(manager, clock, count=3, spacing_ms=2 * 3_600_000)

        decision = await manager.can_make_request(TEST_USER_ID)
        assert decision.denied_by == DenialReason.DAILY_LIMIT
        assert decision.wait_time_ms == 86_400_000

    @pytest.mark.asyncio
    async def test_cooldown_checked_before_spacing(self, account_manager, clock):
        await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=LoginFailed()
        )

        decision = await account_manager.can_make_request(TEST_USER_ID)
        assert decision.denied_by == DenialReason.COOLDOWN
        assert decision.wait_time_ms == 3_600_000

        clock.advance(ms=1_000_000)
        decision = await account_manager.can_make_request(TEST_USER_ID)
        assert decision.denied_by == DenialReason.COOLDOWN
        assert decision.wait_time_ms == 2_600_000

    @pytest.mark.asyncio
    async def test_check_identity_without_user(self, account_manager):
        decision = await account_manager.check_identity(CredentialVault.hash_email(TEST_EMAIL))
        assert decision.allowed


class TestHealthWriteBack:

    @pytest.mark.asyncio
    async def test_success_counters(self, account_manager, clock):
        health = await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=True, latency_ms=950
        )
        assert health.total_requests == 1
        assert health.successful_requests == 1
        assert health.consecutive_failures == 0
        assert health.last_success_at == clock()
        assert health.is_active

    @pytest.mark.asyncio
    async def test_checkpoint_recorded_once_and_deactivates(self, account_manager, clock):
        health = await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=CheckpointRequired()
        )

        assert health.checkpoint_count == 1
        assert health.failed_requests == 1
        assert not health.is_active
        assert health.cooldown_until == clock() + timedelta(hours=24)

        stored = await account_manager.get_account_health(TEST_USER_ID)
        assert stored["checkpointCount"] == 1
        assert stored["isActive"] is False
        assert stored["isOnCooldown"] is True
        assert stored["checkpointRate"] == 100.0

    @pytest.mark.asyncio
    async def test_checkpoint_cooldown_written_with_counters(self, account_manager, database, clock):
        database.record_request = AsyncMock(wraps=database.record_request)

        await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=CheckpointRequired()
        )

        database.record_request.assert_awaited_once()
        kwargs = database.record_request.await_args.kwargs
        assert kwargs["cooldown_until"] == clock() + timedelta(hours=24)
        assert kwargs["deactivate"] is True

        row = await database.get_account_health(CredentialVault.hash_email(TEST_EMAIL))
        assert row["is_active"] == 0
        assert row["checkpoint_count"] == 1
        assert row["cooldown_until"] is not None

    @pytest.mark.asyncio
    async def test_failed_checkpoint_write_leaves_no_partial_health(self, account_manager, database):
        database.record_request = AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error"))

        result = await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=CheckpointRequired()
        )

        assert result is None
        assert await database.get_account_health(CredentialVault.hash_email(TEST_EMAIL)) is None

    @pytest.mark.asyncio
    async def test_first_failure_can_meet_threshold(self, database, clock):
        manager = _manager(database, clock, max_consecutive_failures=1)

        health = await manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=ScrapingFailed()
        )

        assert health.cooldown_until == clock() + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_checkpoint_flag_not_message_text(self, account_manager):
        health = await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False,
            error=ScrapingFailed("redirected to /checkpoint/challenge"),
        )
        assert health.checkpoint_count == 0
        assert health.is_active

    @pytest.mark.asyncio
    async def test_login_failure_sets_session_cooldown(self, account_manager, clock):
        health = await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=LoginFailed()
        )
        assert health.cooldown_until == clock() + timedelta(hours=1)
        assert health.is_active

    @pytest.mark.asyncio
    async def test_consecutive_failures_pause_account(self, account_manager, clock):
        for attempt in range(1, 4):
            health = await account_manager.log_request(
                TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=ScrapingFailed()
            )
            assert health.consecutive_failures == attempt
            if attempt < 3:
                assert health.cooldown_until is None
                clock.advance(ms=100_000)

        assert health.cooldown_until == clock() + timedelta(minutes=30)
        decision = await account_manager.can_make_request(TEST_USER_ID)
        assert decision.denied_by == DenialReason.COOLDOWN
        assert decision.wait_time_ms == 1_800_000

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, account_manager, clock):
        for _ in range(2):
            await account_manager.log_request(
                TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=False, error=ScrapingFailed()
            )
            clock.advance(ms=100_000)

        health = await account_manager.log_request(TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=True)
        assert health.consecutive_failures == 0
        assert health.failed_requests == 2
        assert health.successful_requests == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_swallowed(self, clock):
        database = MagicMock()
        database.record_request = AsyncMock(side_effect=aiosqlite.OperationalError("database is locked"))
        manager = AccountManager(database, clock=clock)

        result = await manager.log_request(TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=True)
        assert result is None


class TestReadHelpers:

    @pytest.mark.asyncio
    async def test_health_absent_before_first_request(self, account_manager):
        assert await account_manager.get_account_health(TEST_USER_ID) is None
        assert await account_manager.get_account_health("nobody") is None

    @pytest.mark.asyncio
    async def test_rate_limit_stats(self, account_manager, clock):
        await _log_success(account_manager, clock, count=2, spacing_ms=100_000)

        stats = await account_manager.get_rate_limit_stats(TEST_USER_ID)
        assert stats["requestsThisHour"] == 2
        assert stats["requestsToday"] == 2
        assert stats["maxPerHour"] == 20
        assert stats["maxPerDay"] == 100
        assert stats["cooldownUntil"] is None
        assert stats["nextAllowedAt"] == (clock() - timedelta(milliseconds=100_000) + timedelta(milliseconds=90_000)).isoformat()

    @pytest.mark.asyncio
    async def test_rate_limit_stats_unknown_user(self, account_manager):
        assert await account_manager.get_rate_limit_stats("nobody") is None

    @pytest.mark.asyncio
    async def test_request_history_newest_first(self, account_manager, clock):
        await account_manager.log_request(TEST_USER_ID, TEST_EMAIL, "https://www.linkedin.com/in/a/", success=True)
        clock.advance(ms=100_000)
        await account_manager.log_request(
            TEST_USER_ID, TEST_EMAIL, "https://www.linkedin.com/in/b/", success=False, error=CheckpointRequired()
        )

        history = await account_manager.get_request_history(TEST_USER_ID, hours=1)
        assert [h["profileUrl"] for h in history] == [
            "https://www.linkedin.com/in/b/",
            "https://www.linkedin.com/in/a/",
        ]
        assert history[0]["checkpointTriggered"] is True
        assert history[0]["success"] is False
        assert history[1]["success"] is True

    @pytest.mark.asyncio
    async def test_request_history_window(self, account_manager, clock):
        await account_manager.log_request(TEST_USER_ID, TEST_EMAIL, PROFILE_URL, success=True)
        clock.advance(ms=2 * 3_600_000)

        assert await account_manager.get_request_history(TEST_USER_ID, hours=1) == []
        assert len(await account_manager.get_request_history(TEST_USER_ID, hours=3)) == 1
