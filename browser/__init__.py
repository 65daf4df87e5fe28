"""
Browser stealth helpers.

The browser lifecycle itself lives in core.browser:
    from core.browser import BrowserManager
"""

from .stealth import (
    USER_AGENTS,
    VIEWPORTS,
    BROWSER_ARGS,
    Fingerprint,
    random_fingerprint,
    build_stealth_script,
)

__all__ = [
    "USER_AGENTS",
    "VIEWPORTS",
    "BROWSER_ARGS",
    "Fingerprint",
    "random_fingerprint",
    "build_stealth_script",
]
