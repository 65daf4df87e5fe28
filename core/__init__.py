"""
Core components for LinkedIn profile capture.

Modules:
- vault: AES-256-GCM credential encryption
- rate_limiter: Per-account admission checks and health tracking
- session_cache: Two-tier (Redis/memory + SQLite) session reuse
- human_behavior: Human-like typing, mouse and scroll timing
- login: Login / checkpoint state machine
- verification: Held pages awaiting an email verification code
- browser: Shared Chromium with per-call isolated contexts
- extractor: Profile field extraction with selector fallbacks
- orchestrator: Ties everything together
"""

from .errors import (
    ProfileCaptureError,
    ConfigurationError,
    ValidationError,
    RateLimitExceeded,
    NoCredentials,
    LoginFailed,
    CheckpointRequired,
    EmailVerificationRequired,
    DecryptionError,
    NoCookiesError,
    ScrapingFailed,
)
from .models import ScrapedProfile, LoginState, RateLimitDecision, AccountHealth
from .vault import CredentialVault
from .rate_limiter import AccountManager, RateLimitConfig
from .session_cache import TieredSessionCache
from .human_behavior import HumanBehaviorSimulator, BehaviorConfig
from .orchestrator import ProfileScraper, ScrapeOptions, ScraperConfig, create_scraper

__all__ = [
    "ProfileCaptureError",
    "ConfigurationError",
    "ValidationError",
    "RateLimitExceeded",
    "NoCredentials",
    "LoginFailed",
    "CheckpointRequired",
    "EmailVerificationRequired",
    "DecryptionError",
    "NoCookiesError",
    "ScrapingFailed",
    "ScrapedProfile",
    "LoginState",
    "RateLimitDecision",
    "AccountHealth",
    "CredentialVault",
    "AccountManager",
    "RateLimitConfig",
    "TieredSessionCache",
    "HumanBehaviorSimulator",
    "BehaviorConfig",
    "ProfileScraper",
    "ScrapeOptions",
    "ScraperConfig",
    "create_scraper",
]
