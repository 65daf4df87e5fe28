"""
Profile field extraction with selector fallback chains.

LinkedIn serves several layouts (signed-in, public, legacy). Each field tries
its selectors in order and takes the first non-empty text.
"""

import logging
from typing import Dict, List, Optional

from playwright.async_api import Page

from core.models import ScrapedProfile

logger = logging.getLogger(__name__)

FIELD_SELECTORS: Dict[str, List[str]] = {
    "name": [
        "h1.text-heading-xlarge",
        "h1.top-card-layout__title",
        "ul.pv-top-card--list > li:first-child",
    ],
    "headline": [
        "div.text-body-medium",
        "div.top-card-layout__headline",
        "h2.top-card-layout__headline",
    ],
    "location": [
        "span.text-body-small.inline.t-black--light.break-words",
        "div.top-card__subline-item:nth-child(1)",
        "ul.pv-top-card--list-bullet > li:first-child",
    ],
    "company": [
        'section:has(#experience) li span[aria-hidden="true"]',
        'a[data-field="experience_company_logo"] span[aria-hidden="true"]',
    ],
    "bio": [
        'section:has(#about) div.display-flex span[aria-hidden="true"]',
        "section.summary div.core-section-container__content",
    ],
}


async def first_text(page: Page, selectors: List[str]) -> str:
    for selector in selectors:
        element = await page.query_selector(selector)
        if element is None:
            continue
        text = (await element.inner_text() or "").strip()
        if text:
            return text
    return ""


def company_from_headline(headline: str) -> str:
    if " at " not in headline:
        return ""
    return headline.split(" at ")[-1].strip()


def build_profile(fields: Dict[str, str], profile_url: str) -> ScrapedProfile:
    """Apply the name/company fallbacks to raw field text."""
    headline = fields.get("headline", "")
    return ScrapedProfile(
        name=fields.get("name") or "Unknown",
        title=headline,
        company=fields.get("company") or company_from_headline(headline),
        location=fields.get("location", ""),
        bio=fields.get("bio", ""),
        profile_url=profile_url,
    )


async def extract_profile(page: Page, profile_url: Optional[str] = None) -> ScrapedProfile:
    fields = {}
    for field_name, selectors in FIELD_SELECTORS.items():
        fields[field_name] = await first_text(page, selectors)

    profile = build_profile(fields, profile_url or page.url)
    if profile.missing_fields:
        logger.debug(f"Profile {profile.profile_url} missing fields: {', '.join(profile.missing_fields)}")
    return profile
