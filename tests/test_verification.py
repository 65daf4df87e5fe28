"""
Verification registry tests: expiry, capacity, sweeping and page cleanup.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.errors import ScrapingFailed
from core.verification import VerificationRegistry
from fakes import FakeContext, FakePage, PROFILE_URL, TEST_EMAIL, TEST_USER_ID


def _hold(registry, user_id=TEST_USER_ID):
    page = FakePage()
    context = FakeContext(page)
    vid = registry.insert(user_id, TEST_EMAIL, "cred-1", PROFILE_URL, page, context, "ua")
    return vid, page, context


class TestRegistry:

    @pytest.mark.asyncio
    async def test_insert_and_get(self, clock):
        registry = VerificationRegistry(clock=clock)
        vid, page, _ = _hold(registry)

        entry = await registry.get(vid)
        assert entry.user_id == TEST_USER_ID
        assert entry.page is page
        assert entry.attempts_remaining == 3
        assert len(registry) == 1
        assert vid in registry

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, clock):
        registry = VerificationRegistry(clock=clock)
        ids = {_hold(registry)[0] for _ in range(20)}
        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_unknown_id(self, clock):
        registry = VerificationRegistry(clock=clock)
        assert await registry.get("no-such-id") is None
        assert registry.status("no-such-id") is None
        assert await registry.remove("no-such-id") is False

    @pytest.mark.asyncio
    async def test_expired_entry_behaves_like_missing(self, clock):
        registry = VerificationRegistry(ttl_seconds=300, clock=clock)
        vid, page, context = _hold(registry)
        clock.advance(seconds=300)

        assert await registry.get(vid) is None
        assert page.closed and context.closed
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_expired_entry_left_to_inflight_submission(self, clock):
        registry = VerificationRegistry(ttl_seconds=60, clock=clock)
        vid, page, _ = _hold(registry)
        entry = registry._entries[vid]
        clock.advance(seconds=61)

        async with entry.lock:
            assert await registry.get(vid) is None
            assert not page.closed
            assert vid in registry

        assert await registry.get(vid) is None
        assert page.closed

    @pytest.mark.asyncio
    async def test_status(self, clock):
        registry = VerificationRegistry(ttl_seconds=300, clock=clock)
        vid, _, _ = _hold(registry)
        clock.advance(seconds=100)

        status = registry.status(vid)
        assert status["status"] == "pending"
        assert status["attemptsRemaining"] == 3
        assert status["secondsRemaining"] == 200

        clock.advance(seconds=250)
        assert registry.status(vid)["status"] == "expired"

    @pytest.mark.asyncio
    async def test_capacity(self, clock):
        registry = VerificationRegistry(max_pending=2, clock=clock)
        _hold(registry)
        _hold(registry)

        with pytest.raises(ScrapingFailed):
            _hold(registry)

    @pytest.mark.asyncio
    async def test_remove_closes_page_and_context(self, clock):
        registry = VerificationRegistry(clock=clock)
        vid, page, context = _hold(registry)

        assert await registry.remove(vid) is True
        assert page.closed and context.closed

    @pytest.mark.asyncio
    async def test_close_errors_ignored(self, clock):
        registry = VerificationRegistry(clock=clock)
        vid, page, context = _hold(registry)
        page.close = AsyncMock(side_effect=RuntimeError("Target page, context or browser has been closed"))

        assert await registry.remove(vid) is True
        assert context.closed
        assert vid not in registry


class TestSweeper:

    @pytest.mark.asyncio
    async def test_expire_stale_skips_locked(self, clock):
        registry = VerificationRegistry(ttl_seconds=60, clock=clock)
        busy, busy_page, _ = _hold(registry)
        idle, idle_page, _ = _hold(registry)
        clock.advance(seconds=61)

        entry = registry._entries[busy]
        async with entry.lock:
            removed = await registry.expire_stale()

        assert removed == 1
        assert idle_page.closed
        assert not busy_page.closed
        assert busy in registry and idle not in registry

    @pytest.mark.asyncio
    async def test_fresh_entries_survive_sweep(self, clock):
        registry = VerificationRegistry(ttl_seconds=60, clock=clock)
        vid, page, _ = _hold(registry)

        assert await registry.expire_stale() == 0
        assert not page.closed

    @pytest.mark.asyncio
    async def test_background_sweeper(self, clock):
        registry = VerificationRegistry(ttl_seconds=0, sweep_interval_seconds=0.01, clock=clock)
        vid, page, _ = _hold(registry)

        registry.start_sweeper()
        try:
            for _ in range(50):
                if page.closed:
                    break
                await asyncio.sleep(0.01)
        finally:
            await registry.stop_sweeper()

        assert page.closed
        assert vid not in registry

    @pytest.mark.asyncio
    async def test_close_all(self, clock):
        registry = VerificationRegistry(clock=clock)
        pages = [_hold(registry)[1] for _ in range(3)]

        await registry.close_all()

        assert len(registry) == 0
        assert all(p.closed for p in pages)
