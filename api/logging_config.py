"""
Logging configuration for LinkedIn Capture.
Provides structured logging with proper formatting and secret redaction.
"""

import re
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

DEFAULT_LOG_DIR = Path("logs")

EVENTS_LOGGER = "linkedin_capture.events"

_configured = False

SECRET_PATTERN = re.compile(
    r"(password|cookie|token|authorization|li_at)(\s*[=:]\s*)(\"[^\"]*\"|'[^']*'|[^\s,;&]+)",
    re.IGNORECASE,
)


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        original = record.levelname
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def redact(message: str) -> str:
    return SECRET_PATTERN.sub(r"\1\2[REDACTED]", message)


class RedactingFilter(logging.Filter):
    """Scrub credential-looking key=value pairs before any handler writes them."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = ()
        return True


def setup_logging(
    name: str = "linkedin_capture",
    log_dir: Optional[Path] = None,
    level: str = "INFO",
) -> logging.Logger:
    """
    Attach console and rotating file handlers to the root logger.

    Args:
        name: base name of the log files (default: linkedin_capture)
        log_dir: directory for log files (default: ./logs)
        level: root log level name

    Returns:
        The root logger
    """
    global _configured
    logger = logging.getLogger()

    # Avoid duplicate handlers
    if _configured:
        return logger
    _configured = True

    log_dir = Path(log_dir or DEFAULT_LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    redacting = RedactingFilter()

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    console_handler.addFilter(redacting)
    logger.addHandler(console_handler)

    # File handler with rotation
    file_format = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler = RotatingFileHandler(
        log_dir / f"{name}.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)
    file_handler.addFilter(redacting)
    logger.addHandler(file_handler)

    # Error file handler (errors and above)
    error_handler = RotatingFileHandler(
        log_dir / f"{name}_errors.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)
    error_handler.addFilter(redacting)
    logger.addHandler(error_handler)

    return logger


events = logging.getLogger(EVENTS_LOGGER)


def _short(email_hash: Optional[str]) -> str:
    return email_hash[:8] if email_hash else "-"


def log_auth_attempt(email_hash: str, success: bool, state: str = None):
    """Log a LinkedIn login attempt."""
    if success:
        events.info(f"Auth [{_short(email_hash)}] login succeeded")
    else:
        events.warning(f"Auth [{_short(email_hash)}] login ended in {state}")


def log_session_action(email_hash: str, action: str, details: str = None):
    """Log a session cache event (saved, restored, invalidated)."""
    events.info(f"Session [{_short(email_hash)}] {action}: {details}" if details else f"Session [{_short(email_hash)}] {action}")


def log_rate_limit(user_id: str, reason: str, wait_time_ms: int = None):
    """Log a request rejected by the rate limiter."""
    events.info(f"RateLimit [{user_id}] {reason} (wait {wait_time_ms}ms)" if wait_time_ms else f"RateLimit [{user_id}] {reason}")


def log_checkpoint(email_hash: str, kind: str):
    """Log a LinkedIn checkpoint."""
    events.warning(f"Checkpoint [{_short(email_hash)}] {kind}")


def log_scraping_attempt(user_id: str, profile_url: str, success: bool, duration_ms: int = None, error: str = None):
    """Log the outcome of one scrape."""
    if error:
        events.error(f"Scrape [{user_id}] {profile_url} failed after {duration_ms}ms: {error}")
    else:
        events.info(f"Scrape [{user_id}] {profile_url} -> {'ok' if success else 'failed'} ({duration_ms}ms)")
