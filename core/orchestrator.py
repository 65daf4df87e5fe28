"""
Profile Scraper - ties the vault, rate limiter, session cache, browser and
checkpoint handling together into one "scrape a LinkedIn profile" operation.

Usage:
    scraper = await create_scraper(config)
    profile = await scraper.scrape_profile(url, ScrapeOptions(user_id="u1"))
    ...
    await scraper.shutdown()

Every attempt that passes admission is logged to account health exactly once,
and every page is closed unless it is held for email verification.
"""

import asyncio
import logging
import time
import weakref
from dataclasses import dataclass
from typing import Optional, Dict, Any

from core.browser import BrowserManager, PageHandle
from core.errors import (
    ProfileCaptureError, ValidationError, NoCredentials, RateLimitExceeded,
    LoginFailed, CheckpointRequired, EmailVerificationRequired, ScrapingFailed,
)
from core.extractor import extract_profile
from core.human_behavior import HumanBehaviorSimulator
from core.login import LoginFlow, is_checkpoint_url
from core.models import (
    DenialReason, LoginState, ScrapedProfile, VerificationResult, VerificationStatus,
)
from core.rate_limiter import AccountManager
from core.session_cache import TieredSessionCache, DurableSessionStore, create_ephemeral_store
from core.vault import CredentialVault
from core.verification import VerificationRegistry, PendingVerification
from api.logging_config import (
    log_auth_attempt, log_checkpoint, log_rate_limit, log_scraping_attempt, log_session_action,
)

logger = logging.getLogger(__name__)


@dataclass
class ScraperConfig:
    """Timeouts and session policy for the scraper."""
    navigation_timeout_ms: int = 30_000
    login_timeout_ms: int = 45_000
    validate_cookie_before_use: bool = True


@dataclass
class ScrapeOptions:
    """Per-call options. Credentials come from the vault when not given."""
    user_id: str
    email: Optional[str] = None
    password: Optional[str] = None
    timeout_ms: Optional[int] = None


class ProfileScraper:
    """
    Browser automation orchestrator for LinkedIn profile capture.

    Coordinates:
    - Credential vault for login secrets
    - Account manager for admission and health write-back
    - Two-tier session cache for cookie reuse
    - Shared browser with per-call isolated contexts
    - Login state machine and the verification registry
    """

    def __init__(
        self,
        vault: CredentialVault,
        account_manager: AccountManager,
        session_cache: TieredSessionCache,
        browser_manager: BrowserManager,
        login_flow: LoginFlow,
        registry: VerificationRegistry,
        simulator: HumanBehaviorSimulator,
        config: Optional[ScraperConfig] = None,
    ):
        self.vault = vault
        self.account_manager = account_manager
        self.session_cache = session_cache
        self.browser_manager = browser_manager
        self.login_flow = login_flow
        self.registry = registry
        self.simulator = simulator
        self.config = config or ScraperConfig()
        self._identity_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _identity_lock(self, email_hash: str) -> asyncio.Lock:
        lock = self._identity_locks.get(email_hash)
        if lock is None:
            lock = asyncio.Lock()
            self._identity_locks[email_hash] = lock
        return lock

    # === Scrape ===

    async def scrape_profile(self, profile_url: str, options: ScrapeOptions) -> ScrapedProfile:
        """
        Scrape one LinkedIn profile on behalf of a user.

        Raises:
            ValidationError: missing profile_url or user_id
            NoCredentials: nothing on file for the user
            RateLimitExceeded: admission denied (no browser action, not logged)
            LoginFailed / CheckpointRequired / EmailVerificationRequired
            ScrapingFailed: anything untyped after admission
        """
        if not profile_url or not options or not options.user_id:
            raise ValidationError("profile_url and user_id are required")

        email, password, credential_id = options.email, options.password, None
        explicit = bool(email and password)
        if not explicit:
            credential = await self.vault.retrieve(options.user_id)
            if credential is None:
                raise NoCredentials()
            email, password, credential_id = credential.email, credential.password, credential.credential_id
        else:
            credential_id = await self.vault.credential_id_for(email)

        email_hash = self.vault.hash_email(email)
        async with self._identity_lock(email_hash):
            decision = await self.account_manager.can_make_request(options.user_id)
            if explicit and decision.denied_by != DenialReason.NO_CREDENTIALS:
                # Limits belong to the identity being driven, not the one on file
                decision = await self.account_manager.check_identity(email_hash)
            if not decision.allowed:
                log_rate_limit(options.user_id, decision.reason, decision.wait_time_ms)
                if decision.denied_by == DenialReason.NO_CREDENTIALS:
                    raise NoCredentials()
                raise RateLimitExceeded(decision.wait_time_ms or 0, decision.reason)

            return await self._run_scrape(
                profile_url, options.user_id, email, password, credential_id, options.timeout_ms
            )

    async def _run_scrape(
        self,
        profile_url: str,
        user_id: str,
        email: str,
        password: str,
        credential_id: Optional[str],
        timeout_ms: Optional[int],
    ) -> ScrapedProfile:
        email_hash = self.vault.hash_email(email)
        started = time.monotonic()
        handle: Optional[PageHandle] = None
        held = False
        success = False
        error: Optional[ProfileCaptureError] = None

        try:
            session = await self.session_cache.load_session(email)
            handle = await self.browser_manager.new_page(user_agent=session.user_agent if session else None)
            page = handle.page

            authenticated = False
            if session is not None:
                await handle.context.add_cookies([c.to_browser() for c in session.cookies])
                if not self.config.validate_cookie_before_use:
                    authenticated = True
                elif await self.login_flow.validate_session(page):
                    authenticated = True
                    log_session_action(email_hash, "restored")
                else:
                    await self.session_cache.invalidate_session(email)
                    log_session_action(email_hash, "invalidated", "failed validation")

            if not authenticated:
                state = await self.login_flow.login(
                    page, email, password, timeout_ms or self.config.login_timeout_ms
                )
                log_auth_attempt(email_hash, state == LoginState.SUCCESS, state.value)

                if state == LoginState.LOGIN_FAILED:
                    raise LoginFailed()
                if state == LoginState.PERMANENT_CHECKPOINT:
                    await self.session_cache.invalidate_session(email)
                    log_checkpoint(email_hash, "permanent")
                    raise CheckpointRequired()
                if state == LoginState.EMAIL_VERIFICATION_PENDING:
                    verification_id = self.registry.insert(
                        user_id, email, credential_id, profile_url,
                        page, handle.context, handle.fingerprint.user_agent,
                    )
                    held = True
                    log_checkpoint(email_hash, "email verification")
                    raise EmailVerificationRequired(verification_id)

                await self.session_cache.save_session(
                    await handle.context.cookies(), handle.fingerprint.user_agent, credential_id, email
                )
                log_session_action(email_hash, "saved")

            await self.simulator.navigation_pause()
            await page.goto(profile_url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms)

            if is_checkpoint_url(page.url):
                await self.session_cache.invalidate_session(email)
                log_checkpoint(email_hash, "after navigation")
                raise CheckpointRequired()

            await self.simulator.scroll(page)
            profile = await extract_profile(page, profile_url)
            await self.simulator.simulate_reading(len(profile.title) + len(profile.bio))

            success = True
            return profile

        except ProfileCaptureError as e:
            error = e
            raise
        except Exception as e:
            error = ScrapingFailed(str(e) or type(e).__name__)
            raise error from e

        finally:
            if handle is not None and not held:
                await handle.close()
            latency_ms = int((time.monotonic() - started) * 1000)
            await self.account_manager.log_request(user_id, email, profile_url, success, latency_ms, error)
            log_scraping_attempt(
                user_id, profile_url, success, latency_ms,
                None if success or isinstance(error, EmailVerificationRequired) else str(error),
            )

    # === Verification ===

    async def verification_owner(self, verification_id: str) -> Optional[str]:
        entry = await self.registry.get(verification_id)
        return entry.user_id if entry else None

    def verification_status(self, verification_id: str) -> Optional[Dict[str, Any]]:
        return self.registry.status(verification_id)

    async def submit_verification_code(
        self,
        verification_id: str,
        code: str,
        user_id: Optional[str] = None,
    ) -> VerificationResult:
        """Type a one-time code into the held page and resolve the pending login."""
        entry = await self.registry.get(verification_id)
        if entry is None:
            return VerificationResult(success=False, error="Session not found or expired")
        if user_id is not None and entry.user_id != user_id:
            return VerificationResult(success=False, error="Unauthorized access to verification session")

        async with entry.lock:
            # Re-check after waiting for a concurrent submission
            if entry.status != VerificationStatus.PENDING or entry.id not in self.registry:
                return VerificationResult(success=False, error="Session not found or expired")
            if entry.attempts_remaining <= 0:
                return VerificationResult(success=False, error="No attempts remaining", attempts_remaining=0)

            try:
                state = await self.login_flow.submit_code(entry.page, code)
            except Exception as e:
                logger.error(f"Failed to submit verification code for {verification_id}: {e}")
                return VerificationResult(
                    success=False,
                    error="Failed to submit verification code",
                    attempts_remaining=entry.attempts_remaining,
                )

            return await self._resolve_verification(entry, state)

    async def _resolve_verification(self, entry: PendingVerification, state: LoginState) -> VerificationResult:
        email_hash = self.vault.hash_email(entry.email)

        if state == LoginState.SUCCESS:
            await self.session_cache.save_session(
                await entry.context.cookies(), entry.user_agent, entry.credential_id, entry.email
            )
            entry.status = VerificationStatus.COMPLETED
            await self.registry.remove(entry.id)
            await self.account_manager.log_request(entry.user_id, entry.email, entry.profile_url, True)
            log_session_action(email_hash, "saved", "after email verification")
            return VerificationResult(success=True)

        if state == LoginState.EMAIL_VERIFICATION_PENDING:
            entry.attempts_remaining -= 1
            if entry.attempts_remaining <= 0:
                entry.status = VerificationStatus.FAILED
                await self.registry.remove(entry.id)
                return VerificationResult(
                    success=False, error="Invalid code - no attempts remaining", attempts_remaining=0
                )
            return VerificationResult(
                success=False, error="Invalid verification code", attempts_remaining=entry.attempts_remaining
            )

        entry.status = VerificationStatus.FAILED
        await self.registry.remove(entry.id)

        if state == LoginState.PERMANENT_CHECKPOINT:
            error = CheckpointRequired()
            await self.session_cache.invalidate_session(entry.email)
            await self.account_manager.log_request(entry.user_id, entry.email, entry.profile_url, False, None, error)
            log_checkpoint(email_hash, "permanent after verification")
            return VerificationResult(success=False, error=error.message)

        return VerificationResult(success=False, error=LoginFailed().message)

    # === Lifecycle ===

    def start(self):
        self.registry.start_sweeper()

    async def shutdown(self):
        await self.registry.stop_sweeper()
        await self.registry.close_all()
        await self.browser_manager.shutdown()
        await self.session_cache.close()
        logger.info("Profile scraper shut down")


async def create_scraper(settings, database=None, browser_manager: Optional[BrowserManager] = None) -> ProfileScraper:
    """
    Wire a ProfileScraper from application settings.

    Raises:
        ConfigurationError: if the credential key is missing or malformed.
    """
    from api.database import get_database

    database = database or get_database(settings.DATABASE_PATH)
    await database.init()

    vault = CredentialVault.from_hex(settings.LINKEDIN_CREDENTIAL_KEY, database)
    rate_limits = settings.rate_limits
    scraper_config = settings.scraper

    ephemeral = await create_ephemeral_store(vault, settings.REDIS_URL, settings.REDIS_ENABLED)
    session_cache = TieredSessionCache(
        ephemeral=ephemeral,
        durable=DurableSessionStore(database, vault),
        vault=vault,
        cookie_max_age_ms=rate_limits.cookie_max_age_ms,
    )
    simulator = HumanBehaviorSimulator(settings.behavior)

    scraper = ProfileScraper(
        vault=vault,
        account_manager=AccountManager(database, rate_limits),
        session_cache=session_cache,
        browser_manager=browser_manager or BrowserManager(headless=settings.BROWSER_HEADLESS),
        login_flow=LoginFlow(
            simulator,
            navigation_timeout_ms=scraper_config.navigation_timeout_ms,
            login_timeout_ms=scraper_config.login_timeout_ms,
        ),
        registry=VerificationRegistry(
            ttl_seconds=settings.VERIFICATION_TTL_SECONDS,
            max_attempts=settings.VERIFICATION_MAX_ATTEMPTS,
            max_pending=settings.VERIFICATION_MAX_PENDING,
            sweep_interval_seconds=settings.VERIFICATION_SWEEP_INTERVAL_SECONDS,
        ),
        simulator=simulator,
        config=scraper_config,
    )
    return scraper
