"""
Typed error taxonomy for profile capture.

Callers branch on the exception type (or its `code`), never on message text.
The `checkpoint` flag is set once, where a checkpoint is detected, and read
downstream by the account manager.
"""

from typing import Optional, Dict, Any


class ProfileCaptureError(Exception):
    """Base class for all errors surfaced by the capture core."""

    code = "PROFILE_CAPTURE_ERROR"
    retryable = False
    checkpoint = False
    user_action: Optional[str] = None

    def __init__(self, message: str, retry_after_ms: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.retry_after_ms = retry_after_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "retryAfterMs": self.retry_after_ms,
            "userAction": self.user_action,
        }


class ConfigurationError(ProfileCaptureError):
    """Bad or missing key material; fatal at startup."""
    code = "CONFIGURATION_ERROR"


class ValidationError(ProfileCaptureError):
    """Missing or malformed call parameters."""
    code = "VALIDATION_ERROR"


class RateLimitExceeded(ProfileCaptureError):
    code = "RATE_LIMIT_EXCEEDED"
    retryable = True

    def __init__(self, wait_time_ms: int, reason: str):
        super().__init__(f"Rate limit exceeded: {reason}", retry_after_ms=wait_time_ms)
        self.wait_time_ms = wait_time_ms
        self.reason = reason
        self.user_action = f"Wait {-(-wait_time_ms // 1000)} seconds before trying again."


class NoCredentials(ProfileCaptureError):
    code = "NO_CREDENTIALS"
    user_action = "Please provide your LinkedIn email and password."

    def __init__(self, message: str = "No LinkedIn credentials stored for user"):
        super().__init__(message)


class LoginFailed(ProfileCaptureError):
    code = "LOGIN_FAILED"
    user_action = "Check your LinkedIn email and password and try again."

    def __init__(self, message: str = "Invalid credentials or login blocked"):
        super().__init__(message)


class CheckpointRequired(ProfileCaptureError):
    code = "CHECKPOINT_REQUIRED"
    checkpoint = True
    user_action = (
        "Please log in to LinkedIn on your desktop browser to complete verification, "
        "then try again in 24 hours."
    )

    def __init__(
        self,
        message: str = "LinkedIn requires additional verification (CAPTCHA/2FA)",
        retry_after_ms: int = 86_400_000,
    ):
        super().__init__(message, retry_after_ms=retry_after_ms)


class EmailVerificationRequired(ProfileCaptureError):
    code = "EMAIL_VERIFICATION_REQUIRED"
    retryable = True
    user_action = "Enter the verification code LinkedIn sent to your email."

    def __init__(self, verification_id: str):
        super().__init__("LinkedIn sent a verification code to the account email")
        self.verification_id = verification_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["verificationSessionId"] = self.verification_id
        return data


class DecryptionError(ProfileCaptureError):
    """Authentication tag check failed; the record cannot be trusted."""
    code = "DECRYPTION_ERROR"

    def __init__(self, message: str = "Failed to decrypt data"):
        super().__init__(message)


class NoCookiesError(ProfileCaptureError):
    code = "NO_COOKIES"

    def __init__(self, message: str = "No LinkedIn cookies found after login"):
        super().__init__(message)


class ScrapingFailed(ProfileCaptureError):
    code = "SCRAPING_FAILED"
    retryable = True
    user_action = "Please try again in a few minutes."

    def __init__(self, detail: Optional[str] = None):
        message = "Failed to scrape LinkedIn profile"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.detail = detail
