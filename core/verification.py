"""
Verification registry - holds paused logins awaiting a one-time code.

Each entry owns an open page and its context. Entries are reached only by
their opaque id; an expired entry behaves exactly like a missing one. A
background sweeper closes abandoned pages.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable

from core.errors import ScrapingFailed
from core.models import VerificationStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PendingVerification:
    """A login paused on LinkedIn's email verification checkpoint."""
    id: str
    user_id: str
    email: str
    credential_id: Optional[str]
    profile_url: str
    page: Any
    context: Any
    user_agent: str
    expires_at: datetime
    attempts_remaining: int = 3
    status: VerificationStatus = VerificationStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class VerificationRegistry:
    """
    Arena of pending verifications keyed by uuid4.

    Usage:
        registry = VerificationRegistry(ttl_seconds=300)
        registry.start_sweeper()
        vid = registry.insert(user_id, email, credential_id, url, page, context, ua)
        entry = await registry.get(vid)
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        max_attempts: int = 3,
        max_pending: int = 100,
        sweep_interval_seconds: float = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.max_pending = max_pending
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: Dict[str, PendingVerification] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self):
        return len(self._entries)

    def __contains__(self, verification_id: str) -> bool:
        return verification_id in self._entries

    def insert(
        self,
        user_id: str,
        email: str,
        credential_id: Optional[str],
        profile_url: str,
        page,
        context,
        user_agent: str = "",
    ) -> str:
        if len(self._entries) >= self.max_pending:
            raise ScrapingFailed("Too many pending verifications, try again later")

        verification_id = str(uuid.uuid4())
        self._entries[verification_id] = PendingVerification(
            id=verification_id,
            user_id=user_id,
            email=email,
            credential_id=credential_id,
            profile_url=profile_url,
            page=page,
            context=context,
            user_agent=user_agent,
            expires_at=self._clock() + timedelta(seconds=self.ttl_seconds),
            attempts_remaining=self.max_attempts,
        )
        logger.info(f"Holding page for verification {verification_id} (user {user_id})")
        return verification_id

    async def get(self, verification_id: str) -> Optional[PendingVerification]:
        entry = self._entries.get(verification_id)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            # An in-flight submission finishes and resolves the entry itself
            if entry.lock.locked():
                return None
            entry.status = VerificationStatus.EXPIRED
            await self.remove(verification_id)
            return None
        return entry

    async def remove(self, verification_id: str) -> bool:
        """Drop an entry and close its page and context."""
        entry = self._entries.pop(verification_id, None)
        if entry is None:
            return False
        await _close_quietly(entry)
        return True

    def status(self, verification_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(verification_id)
        if entry is None:
            return None
        now = self._clock()
        status = VerificationStatus.EXPIRED if entry.is_expired(now) else entry.status
        return {
            "status": status.value,
            "attemptsRemaining": entry.attempts_remaining,
            "expiresAt": entry.expires_at.isoformat(),
            "secondsRemaining": max(0, int((entry.expires_at - now).total_seconds())),
        }

    async def expire_stale(self) -> int:
        """Close every expired entry not currently being driven. Returns count removed."""
        now = self._clock()
        stale = [
            vid for vid, entry in self._entries.items()
            if entry.is_expired(now) and not entry.lock.locked()
        ]
        for vid in stale:
            entry = self._entries.get(vid)
            if entry is not None:
                entry.status = VerificationStatus.EXPIRED
            await self.remove(vid)
        if stale:
            logger.info(f"Expired {len(stale)} abandoned verification(s)")
        return len(stale)

    # === Sweeper ===

    def start_sweeper(self):
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self):
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.expire_stale()
            except Exception as e:
                logger.error(f"Verification sweep failed: {e}")

    async def close_all(self):
        for vid in list(self._entries):
            await self.remove(vid)


async def _close_quietly(entry: PendingVerification):
    for resource in (entry.page, entry.context):
        if resource is None:
            continue
        try:
            await resource.close()
        except Exception as e:
            logger.debug(f"Ignoring close error for verification {entry.id}: {e}")
