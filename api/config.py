"""
Unified Configuration Module for LinkedIn Capture

All configuration settings are centralized here.
Import from this module: from api.config import config
"""

import os
from typing import List, Optional
from dataclasses import dataclass, field

from core.human_behavior import BehaviorConfig
from core.orchestrator import ScraperConfig
from core.rate_limiter import RateLimitConfig


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Server Settings ===
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    DEBUG: bool = _env_bool("DEBUG", "false")

    # === CORS Settings ===
    CORS_ORIGINS: List[str] = field(default_factory=lambda: [
        origin.strip() for origin in
        os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ])
    CORS_ALLOW_CREDENTIALS: bool = True

    # === Security ===
    LINKEDIN_CREDENTIAL_KEY: Optional[str] = os.getenv("LINKEDIN_CREDENTIAL_KEY")
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "")

    # === Storage ===
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "./data/linkedin_capture.db")
    REDIS_ENABLED: bool = _env_bool("REDIS_ENABLED", "true")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # === Browser ===
    BROWSER_HEADLESS: bool = _env_bool("BROWSER_HEADLESS", "true")
    NAVIGATION_TIMEOUT_MS: int = int(os.getenv("NAVIGATION_TIMEOUT_MS", "30000"))
    LOGIN_TIMEOUT_MS: int = int(os.getenv("LOGIN_TIMEOUT_MS", "45000"))

    # === LinkedIn Rate Limits ===
    LINKEDIN_MIN_DELAY_MS: int = int(os.getenv("LINKEDIN_MIN_DELAY_MS", "90000"))
    LINKEDIN_MAX_DELAY_MS: int = int(os.getenv("LINKEDIN_MAX_DELAY_MS", "150000"))
    LINKEDIN_MAX_PROFILES_PER_HOUR: int = int(os.getenv("LINKEDIN_MAX_PROFILES_PER_HOUR", "20"))
    LINKEDIN_MAX_PROFILES_PER_DAY: int = int(os.getenv("LINKEDIN_MAX_PROFILES_PER_DAY", "100"))
    LINKEDIN_SESSION_COOLDOWN_MS: int = int(os.getenv("LINKEDIN_SESSION_COOLDOWN_MS", "3600000"))
    LINKEDIN_CHECKPOINT_COOLDOWN_MS: int = int(os.getenv("LINKEDIN_CHECKPOINT_COOLDOWN_MS", "86400000"))
    LINKEDIN_MAX_CONSECUTIVE_FAILURES: int = int(os.getenv("LINKEDIN_MAX_CONSECUTIVE_FAILURES", "3"))
    LINKEDIN_FAILURE_COOLDOWN_MS: int = int(os.getenv("LINKEDIN_FAILURE_COOLDOWN_MS", "1800000"))
    LINKEDIN_COOKIE_MAX_AGE_MS: int = int(os.getenv("LINKEDIN_COOKIE_MAX_AGE_MS", "86400000"))
    LINKEDIN_VALIDATE_COOKIE_BEFORE_USE: bool = _env_bool("LINKEDIN_VALIDATE_COOKIE_BEFORE_USE", "true")

    # === Email Verification ===
    VERIFICATION_TTL_SECONDS: int = int(os.getenv("VERIFICATION_TTL_SECONDS", "300"))
    VERIFICATION_MAX_ATTEMPTS: int = int(os.getenv("VERIFICATION_MAX_ATTEMPTS", "3"))
    VERIFICATION_SWEEP_INTERVAL_SECONDS: float = float(os.getenv("VERIFICATION_SWEEP_INTERVAL_SECONDS", "30"))
    VERIFICATION_MAX_PENDING: int = int(os.getenv("VERIFICATION_MAX_PENDING", "100"))

    # === Paths ===
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def rate_limits(self) -> RateLimitConfig:
        return RateLimitConfig(
            min_delay_ms=self.LINKEDIN_MIN_DELAY_MS,
            max_profiles_per_hour=self.LINKEDIN_MAX_PROFILES_PER_HOUR,
            max_profiles_per_day=self.LINKEDIN_MAX_PROFILES_PER_DAY,
            session_cooldown_ms=self.LINKEDIN_SESSION_COOLDOWN_MS,
            checkpoint_cooldown_ms=self.LINKEDIN_CHECKPOINT_COOLDOWN_MS,
            max_consecutive_failures=self.LINKEDIN_MAX_CONSECUTIVE_FAILURES,
            failure_cooldown_ms=self.LINKEDIN_FAILURE_COOLDOWN_MS,
            cookie_max_age_ms=self.LINKEDIN_COOKIE_MAX_AGE_MS,
        )

    @property
    def behavior(self) -> BehaviorConfig:
        return BehaviorConfig(
            min_delay_ms=self.LINKEDIN_MIN_DELAY_MS,
            max_delay_ms=self.LINKEDIN_MAX_DELAY_MS,
        )

    @property
    def scraper(self) -> ScraperConfig:
        return ScraperConfig(
            navigation_timeout_ms=self.NAVIGATION_TIMEOUT_MS,
            login_timeout_ms=self.LOGIN_TIMEOUT_MS,
            validate_cookie_before_use=self.LINKEDIN_VALIDATE_COOKIE_BEFORE_USE,
        )

    def validate(self) -> List[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []

        if not self.LINKEDIN_CREDENTIAL_KEY:
            missing.append("LINKEDIN_CREDENTIAL_KEY")
        elif len(self.LINKEDIN_CREDENTIAL_KEY.strip()) != 64:
            missing.append("LINKEDIN_CREDENTIAL_KEY (must be 64 hex characters)")

        if not self.JWT_SECRET_KEY:
            missing.append("JWT_SECRET_KEY")

        if self.LINKEDIN_MIN_DELAY_MS > self.LINKEDIN_MAX_DELAY_MS:
            missing.append("LINKEDIN_MIN_DELAY_MS must not exceed LINKEDIN_MAX_DELAY_MS")

        return missing


# Global config instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the application configuration."""
    return config
