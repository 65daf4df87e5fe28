"""
Stealth fingerprints for local Playwright Chromium sessions.

Each browser context gets a randomised but internally consistent fingerprint
(user agent, viewport, locale, languages, platform, plugins, timezone) drawn
from fixed preset pools, plus an init script that patches the navigator.
"""

import json
import random
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List


# Updated user agents for 2025/2026
USER_AGENTS = [
    # Chrome 131 on Windows 11
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    # Chrome 130 on Windows 11
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    # Chrome 131 on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    # Edge 131 on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
    # Chrome on Linux
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]

# Viewport sizes for randomization
VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 2560, "height": 1440},
]

# locale -> navigator.languages
LANGUAGE_SETS = {
    "en-US": ["en-US", "en"],
    "en-GB": ["en-GB", "en"],
    "en-CA": ["en-CA", "en-US", "en"],
}

TIMEZONES = {
    "en-US": ["America/New_York", "America/Chicago", "America/Los_Angeles"],
    "en-GB": ["Europe/London"],
    "en-CA": ["America/Toronto", "America/Vancouver"],
}

PLUGIN_SETS = [
    [
        {"name": "Chrome PDF Plugin", "filename": "internal-pdf-viewer"},
        {"name": "Chrome PDF Viewer", "filename": "mhjfbmdgcfjbbpaeojofohoefgiehjai"},
        {"name": "Native Client", "filename": "internal-nacl-plugin"},
    ],
    [
        {"name": "PDF Viewer", "filename": "internal-pdf-viewer"},
        {"name": "Chrome PDF Viewer", "filename": "internal-pdf-viewer"},
        {"name": "Chromium PDF Viewer", "filename": "internal-pdf-viewer"},
        {"name": "Microsoft Edge PDF Viewer", "filename": "internal-pdf-viewer"},
        {"name": "WebKit built-in PDF", "filename": "internal-pdf-viewer"},
    ],
]

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-infobars",
]


def platform_for(user_agent: str) -> str:
    """navigator.platform consistent with the user agent."""
    if "Macintosh" in user_agent:
        return "MacIntel"
    if "Linux" in user_agent:
        return "Linux x86_64"
    return "Win32"


@dataclass
class Fingerprint:
    """Everything a browser context needs to look like one ordinary desktop."""
    user_agent: str
    viewport: Dict[str, int]
    locale: str
    languages: List[str]
    timezone_id: str
    platform: str
    plugins: List[Dict[str, str]] = field(default_factory=list)
    hardware_concurrency: int = 8
    device_memory: int = 8

    def context_options(self) -> Dict[str, Any]:
        """Keyword arguments for Browser.new_context()."""
        return {
            "viewport": self.viewport,
            "user_agent": self.user_agent,
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "color_scheme": "light",
        }


def random_fingerprint(rng: Optional[random.Random] = None, user_agent: Optional[str] = None) -> Fingerprint:
    """Pick a fingerprint from the preset pools. A given user_agent overrides the pool."""
    rng = rng or random.Random()
    ua = user_agent or rng.choice(USER_AGENTS)
    locale = rng.choice(list(LANGUAGE_SETS))
    return Fingerprint(
        user_agent=ua,
        viewport=dict(rng.choice(VIEWPORTS)),
        locale=locale,
        languages=list(LANGUAGE_SETS[locale]),
        timezone_id=rng.choice(TIMEZONES[locale]),
        platform=platform_for(ua),
        plugins=list(rng.choice(PLUGIN_SETS)),
        hardware_concurrency=rng.choice([4, 8, 12, 16]),
        device_memory=rng.choice([4, 8, 16]),
    )


def build_stealth_script(fp: Fingerprint) -> str:
    """JavaScript stealth patches matching the fingerprint."""
    return """
        // Hide webdriver property
        Object.defineProperty(navigator, 'webdriver', {
            get: () => undefined
        });

        // Realistic plugins array
        Object.defineProperty(navigator, 'plugins', {
            get: () => {
                const plugins = %(plugins)s;
                plugins.item = (i) => plugins[i];
                plugins.namedItem = (n) => plugins.find(p => p.name === n);
                return plugins;
            }
        });

        Object.defineProperty(navigator, 'languages', {
            get: () => %(languages)s
        });

        Object.defineProperty(navigator, 'platform', {
            get: () => %(platform)s
        });

        Object.defineProperty(navigator, 'hardwareConcurrency', {
            get: () => %(hardware_concurrency)d
        });

        Object.defineProperty(navigator, 'deviceMemory', {
            get: () => %(device_memory)d
        });

        // Hide automation indicators
        window.chrome = {
            runtime: {},
            loadTimes: function() {},
            csi: function() {},
            app: {}
        };

        // Override permissions API
        const originalQuery = window.navigator.permissions.query;
        window.navigator.permissions.query = (parameters) => (
            parameters.name === 'notifications' ?
                Promise.resolve({ state: Notification.permission }) :
                originalQuery(parameters)
        );

        // WebGL vendor and renderer
        const getParameter = WebGLRenderingContext.prototype.getParameter;
        WebGLRenderingContext.prototype.getParameter = function(parameter) {
            if (parameter === 37445) return 'Intel Inc.';
            if (parameter === 37446) return 'Intel Iris OpenGL Engine';
            return getParameter.call(this, parameter);
        };
    """ % {
        "plugins": json.dumps(fp.plugins),
        "languages": json.dumps(fp.languages),
        "platform": json.dumps(fp.platform),
        "hardware_concurrency": fp.hardware_concurrency,
        "device_memory": fp.device_memory,
    }
