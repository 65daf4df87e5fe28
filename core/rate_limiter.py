"""
Account Health & Rate Limiter.

Admission checks run in a fixed order and the first failure wins:
credentials -> cooldown -> request spacing -> hourly budget -> daily budget.

Every attempt that passes admission is written back through log_request(),
which keeps the request log and the per-identity health counters in step.
"""

import logging
from datetime import datetime, timedelta
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Callable

import aiosqlite

from core.errors import LoginFailed
from core.models import (
    AccountHealth, DenialReason, RateLimitDecision,
    from_db_timestamp, utcnow,
)
from core.vault import CredentialVault

logger = logging.getLogger(__name__)

HOUR_MS = 3_600_000
DAY_MS = 86_400_000


@dataclass
class RateLimitConfig:
    """Safety budgets for one LinkedIn identity."""
    # Minimum spacing between requests
    min_delay_ms: int = 90_000

    # Budgets
    max_profiles_per_hour: int = 20
    max_profiles_per_day: int = 100

    # Cooldowns
    session_cooldown_ms: int = 3_600_000
    checkpoint_cooldown_ms: int = 86_400_000
    max_consecutive_failures: int = 3
    failure_cooldown_ms: int = 1_800_000

    # Sessions
    cookie_max_age_ms: int = 86_400_000


class AccountManager:
    """
    Tracks health per identity hash and decides whether a request may run.

    Usage:
        manager = AccountManager(database)
        decision = await manager.can_make_request(user_id)
        ...
        await manager.log_request(user_id, email, url, success=True, latency_ms=1200)
    """

    def __init__(
        self,
        database,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.config = config or RateLimitConfig()
        self._clock = clock

    async def _email_hash_for(self, user_id: str) -> Optional[str]:
        row = await self.database.get_credential(user_id)
        return row["email_hash"] if row else None

    # === Admission ===

    async def can_make_request(self, user_id: str) -> RateLimitDecision:
        """Check whether the identity linked to user_id may make a request now."""
        email_hash = await self._email_hash_for(user_id)
        if not email_hash:
            return RateLimitDecision(
                allowed=False,
                reason="No LinkedIn credentials found",
                denied_by=DenialReason.NO_CREDENTIALS,
            )
        return await self.check_identity(email_hash)

    async def check_identity(self, email_hash: str) -> RateLimitDecision:
        now = self._clock()

        health_row = await self.database.get_account_health(email_hash)
        if health_row:
            cooldown_until = from_db_timestamp(health_row["cooldown_until"])
            if cooldown_until and cooldown_until > now:
                wait = _ms_between(now, cooldown_until)
                return RateLimitDecision(
                    allowed=False,
                    reason=f"Account on cooldown until {cooldown_until.isoformat()}",
                    wait_time_ms=wait,
                    denied_by=DenialReason.COOLDOWN,
                )

        last = from_db_timestamp(await self.database.last_request_time(email_hash))
        if last is not None:
            elapsed = _ms_between(last, now)
            if elapsed < self.config.min_delay_ms:
                return RateLimitDecision(
                    allowed=False,
                    reason="Too soon since last request",
                    wait_time_ms=self.config.min_delay_ms - elapsed,
                    denied_by=DenialReason.TOO_SOON,
                )

        hourly = await self.database.count_successful_since(email_hash, now - timedelta(hours=1))
        if hourly >= self.config.max_profiles_per_hour:
            return RateLimitDecision(
                allowed=False,
                reason=f"Hourly limit reached ({self.config.max_profiles_per_hour} profiles/hour)",
                wait_time_ms=HOUR_MS,
                denied_by=DenialReason.HOURLY_LIMIT,
            )

        daily = await self.database.count_successful_since(email_hash, now - timedelta(days=1))
        if daily >= self.config.max_profiles_per_day:
            return RateLimitDecision(
                allowed=False,
                reason=f"Daily limit reached ({self.config.max_profiles_per_day} profiles/day)",
                wait_time_ms=DAY_MS,
                denied_by=DenialReason.DAILY_LIMIT,
            )

        return RateLimitDecision(allowed=True)

    # === Write-back ===

    async def log_request(
        self,
        user_id: str,
        email: str,
        profile_url: str,
        success: bool,
        latency_ms: Optional[int] = None,
        error: Optional[BaseException] = None,
    ) -> Optional[AccountHealth]:
        """
        Record one attempt and update health.

        Checkpoints are recognised by the error's `checkpoint` flag only.
        Persistence failures are logged and swallowed so the caller's own
        outcome is what propagates.
        """
        email_hash = CredentialVault.hash_email(email)
        now = self._clock()
        checkpoint = bool(getattr(error, "checkpoint", False))
        error_message = str(error) if error is not None else None

        cooldown_until = None
        if checkpoint:
            cooldown_until = now + timedelta(milliseconds=self.config.checkpoint_cooldown_ms)
        elif isinstance(error, LoginFailed):
            cooldown_until = now + timedelta(milliseconds=self.config.session_cooldown_ms)

        try:
            row = await self.database.record_request(
                user_id=user_id,
                email_hash=email_hash,
                profile_url=profile_url,
                request_time=now,
                success=success,
                response_time_ms=latency_ms,
                checkpoint_triggered=checkpoint,
                error_message=error_message,
                cooldown_until=cooldown_until,
                deactivate=checkpoint,
                failure_threshold=self.config.max_consecutive_failures,
                failure_cooldown_until=now + timedelta(milliseconds=self.config.failure_cooldown_ms),
            )
        except aiosqlite.Error:
            logger.exception(f"Failed to record request for account {email_hash[:8]}")
            return None

        health = AccountHealth.from_row(row)
        if checkpoint:
            logger.warning(f"Checkpoint for account {email_hash[:8]}, cooldown until {cooldown_until.isoformat()}")
        elif cooldown_until is not None:
            logger.warning(f"Login failed for account {email_hash[:8]}, cooldown until {cooldown_until.isoformat()}")
        elif not success and health.consecutive_failures >= self.config.max_consecutive_failures:
            logger.warning(
                f"{health.consecutive_failures} consecutive failures for account {email_hash[:8]}, "
                f"pausing until {health.cooldown_until.isoformat() if health.cooldown_until else '-'}"
            )
        return health

    # === Read helpers ===

    async def get_account_health(self, user_id: str) -> Optional[Dict[str, Any]]:
        email_hash = await self._email_hash_for(user_id)
        if not email_hash:
            return None
        row = await self.database.get_account_health(email_hash)
        if not row:
            return None

        health = AccountHealth.from_row(row)
        return {
            "totalRequests": health.total_requests,
            "successfulRequests": health.successful_requests,
            "failedRequests": health.failed_requests,
            "checkpointCount": health.checkpoint_count,
            "consecutiveFailures": health.consecutive_failures,
            "successRate": round(health.success_rate, 2),
            "checkpointRate": round(health.checkpoint_rate, 2),
            "isActive": health.is_active,
            "isOnCooldown": health.is_on_cooldown(self._clock()),
            "cooldownUntil": _iso(health.cooldown_until),
            "lastRequestAt": _iso(health.last_request_at),
            "lastSuccessAt": _iso(health.last_success_at),
            "lastCheckpointAt": _iso(health.last_checkpoint_at),
        }

    async def get_rate_limit_stats(self, user_id: str) -> Optional[Dict[str, Any]]:
        email_hash = await self._email_hash_for(user_id)
        if not email_hash:
            return None

        now = self._clock()
        hourly = await self.database.count_successful_since(email_hash, now - timedelta(hours=1))
        daily = await self.database.count_successful_since(email_hash, now - timedelta(days=1))
        last = from_db_timestamp(await self.database.last_request_time(email_hash))
        health_row = await self.database.get_account_health(email_hash)
        cooldown_until = from_db_timestamp(health_row["cooldown_until"]) if health_row else None

        next_allowed = None
        if last is not None:
            next_allowed = last + timedelta(milliseconds=self.config.min_delay_ms)
        if cooldown_until and cooldown_until > now and (next_allowed is None or cooldown_until > next_allowed):
            next_allowed = cooldown_until

        return {
            "requestsThisHour": hourly,
            "requestsToday": daily,
            "maxPerHour": self.config.max_profiles_per_hour,
            "maxPerDay": self.config.max_profiles_per_day,
            "lastRequestAt": _iso(last),
            "nextAllowedAt": _iso(next_allowed),
            "cooldownUntil": _iso(cooldown_until) if cooldown_until and cooldown_until > now else None,
        }

    async def get_request_history(self, user_id: str, hours: int = 24) -> List[Dict[str, Any]]:
        since = self._clock() - timedelta(hours=hours)
        rows = await self.database.get_request_history(user_id, since)
        return [
            {
                "id": row["id"],
                "profileUrl": row["profile_url"],
                "requestTime": row["request_time"],
                "success": bool(row["success"]),
                "responseTimeMs": row["response_time_ms"],
                "checkpointTriggered": bool(row["checkpoint_triggered"]),
                "errorMessage": row["error_message"],
            }
            for row in rows
        ]


def _ms_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
