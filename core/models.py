"""
Shared data models for LinkedIn Capture.

All structured types that cross component boundaries are defined here:
cookies and session payloads coming out of the browser, the scraped profile
returned to callers, and the account health / rate limit records.
"""

import json
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field, asdict
from enum import Enum
from datetime import datetime, timezone


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC string so SQL range comparisons stay lexicographic."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


# ============== Enums ==============

class LoginState(str, Enum):
    """States of the login / checkpoint state machine."""
    LOGGING_IN = "logging_in"
    SUCCESS = "success"
    LOGIN_FAILED = "login_failed"
    CHECKPOINT_CHALLENGE = "checkpoint_challenge"
    EMAIL_VERIFICATION_PENDING = "email_verification_pending"
    PERMANENT_CHECKPOINT = "permanent_checkpoint"


class DenialReason(str, Enum):
    """Which admission check rejected a request."""
    NO_CREDENTIALS = "no_credentials"
    COOLDOWN = "cooldown"
    TOO_SOON = "too_soon"
    HOURLY_LIMIT = "hourly_limit"
    DAILY_LIMIT = "daily_limit"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


# ============== Browser state ==============

@dataclass
class Cookie:
    """A single browser cookie, validated at the browser boundary."""
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float = -1
    http_only: bool = False
    secure: bool = False
    same_site: str = "Lax"

    @classmethod
    def from_browser(cls, raw: Dict[str, Any]) -> "Cookie":
        """
        Build a Cookie from a Playwright cookie dict.

        Raises:
            ValueError: if the dict lacks a usable name, value or domain.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"Cookie must be a mapping, got {type(raw).__name__}")
        name = raw.get("name")
        value = raw.get("value")
        domain = raw.get("domain")
        if not isinstance(name, str) or not name:
            raise ValueError("Cookie is missing a name")
        if not isinstance(value, str):
            raise ValueError(f"Cookie {name} has no string value")
        if not isinstance(domain, str) or not domain:
            raise ValueError(f"Cookie {name} is missing a domain")

        same_site = raw.get("sameSite", raw.get("same_site", "Lax"))
        if same_site not in ("Strict", "Lax", "None"):
            same_site = "Lax"

        return cls(
            name=name,
            value=value,
            domain=domain,
            path=raw.get("path") or "/",
            expires=float(raw.get("expires", -1)),
            http_only=bool(raw.get("httpOnly", raw.get("http_only", False))),
            secure=bool(raw.get("secure", False)),
            same_site=same_site,
        )

    def matches_domain(self, target_domain: str) -> bool:
        domain = self.domain.lstrip(".").lower()
        target = target_domain.lstrip(".").lower()
        return domain == target or domain.endswith("." + target)

    def to_browser(self) -> Dict[str, Any]:
        """Playwright `add_cookies` shape."""
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "expires": self.expires,
            "httpOnly": self.http_only,
            "secure": self.secure,
            "sameSite": self.same_site,
        }


@dataclass
class SessionPayload:
    """Reusable authenticated browser state."""
    cookies: List[Cookie]
    user_agent: str
    saved_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_json(self) -> str:
        return json.dumps({
            "cookies": [asdict(c) for c in self.cookies],
            "userAgent": self.user_agent,
            "savedAt": to_db_timestamp(self.saved_at),
            "expiresAt": to_db_timestamp(self.expires_at),
        })

    @classmethod
    def from_json(cls, data: str) -> "SessionPayload":
        raw = json.loads(data)
        return cls(
            cookies=[Cookie(**c) for c in raw["cookies"]],
            user_agent=raw["userAgent"],
            saved_at=from_db_timestamp(raw["savedAt"]),
            expires_at=from_db_timestamp(raw["expiresAt"]),
        )


# ============== Results ==============

@dataclass
class ScrapedProfile:
    """Profile record returned to callers."""
    name: str
    profile_url: str
    title: str = ""
    company: str = ""
    location: str = ""
    bio: str = ""
    platform: str = "linkedin"
    scraped_at: datetime = field(default_factory=utcnow)

    @property
    def missing_fields(self) -> List[str]:
        checks = {
            "name": bool(self.name) and self.name != "Unknown",
            "title": bool(self.title),
            "company": bool(self.company),
            "location": bool(self.location),
            "bio": bool(self.bio),
        }
        return [name for name, present in checks.items() if not present]

    @property
    def needs_manual_review(self) -> bool:
        # Critical fields: a real name plus a headline or company.
        if not self.name or self.name == "Unknown":
            return True
        return not self.title and not self.company

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "bio": self.bio,
            "profileUrl": self.profile_url,
            "platform": self.platform,
        }


@dataclass
class RateLimitDecision:
    """Outcome of an admission check."""
    allowed: bool
    reason: Optional[str] = None
    wait_time_ms: Optional[int] = None
    denied_by: Optional[DenialReason] = None


@dataclass
class AccountHealth:
    """Per-identity health counters."""
    account_email_hash: str
    user_id: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    checkpoint_count: int = 0
    consecutive_failures: int = 0
    cooldown_until: Optional[datetime] = None
    is_active: bool = True
    last_request_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_checkpoint_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AccountHealth":
        return cls(
            account_email_hash=row["account_email_hash"],
            user_id=row["user_id"],
            total_requests=row["total_requests"],
            successful_requests=row["successful_requests"],
            failed_requests=row["failed_requests"],
            checkpoint_count=row["checkpoint_count"],
            consecutive_failures=row["consecutive_failures"],
            cooldown_until=from_db_timestamp(row["cooldown_until"]),
            is_active=bool(row["is_active"]),
            last_request_at=from_db_timestamp(row["last_request_at"]),
            last_success_at=from_db_timestamp(row["last_success_at"]),
            last_failure_at=from_db_timestamp(row["last_failure_at"]),
            last_checkpoint_at=from_db_timestamp(row["last_checkpoint_at"]),
        )

    def is_on_cooldown(self, now: Optional[datetime] = None) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > (now or utcnow())

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.successful_requests / self.total_requests * 100

    @property
    def checkpoint_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.checkpoint_count / self.total_requests * 100


@dataclass
class DecryptedCredential:
    """Plaintext credential, held in memory only."""
    email: str
    password: str
    credential_id: str

    def __repr__(self) -> str:
        return f"DecryptedCredential(credential_id={self.credential_id!r})"


@dataclass
class VerificationResult:
    """Result of submitting a one-time code."""
    success: bool
    error: Optional[str] = None
    attempts_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.error:
            result["error"] = self.error
        if self.attempts_remaining is not None:
            result["attemptsRemaining"] = self.attempts_remaining
        return result
