"""
LinkedIn Capture API - FastAPI Backend
Links LinkedIn accounts, scrapes profiles and completes email verification.
With JWT authentication, typed error responses and per-account rate limiting.
"""

import re
import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from api.config import config
from api.auth import get_current_user
from api.logging_config import setup_logging
from core.errors import ProfileCaptureError
from core.orchestrator import ProfileScraper, ScrapeOptions, create_scraper

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

LINKEDIN_PROFILE_PATTERN = re.compile(r"^https?://([a-z]{2,3}\.)?(www\.)?linkedin\.com/in/[^/?#]+/?", re.IGNORECASE)

# Error code -> HTTP status
ERROR_STATUS = {
    "VALIDATION_ERROR": 400,
    "NO_CREDENTIALS": 401,
    "LOGIN_FAILED": 401,
    "CHECKPOINT_REQUIRED": 403,
    "RATE_LIMIT_EXCEEDED": 429,
    "EMAIL_VERIFICATION_REQUIRED": 202,
    "SCRAPING_FAILED": 500,
    "NO_COOKIES": 500,
    "DECRYPTION_ERROR": 500,
    "CONFIGURATION_ERROR": 500,
}


# === Lifespan Management ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    setup_logging(log_dir=config.LOG_DIR, level=config.LOG_LEVEL)
    logger.info("Starting LinkedIn Capture API...")
    missing = config.validate()
    if missing:
        logger.warning(f"Configuration incomplete: {', '.join(missing)}")

    scraper = await create_scraper(config)
    scraper.start()
    app.state.scraper = scraper
    logger.info("Profile scraper ready")

    yield
    # Shutdown
    logger.info("Shutting down LinkedIn Capture API...")
    await scraper.shutdown()


# Initialize FastAPI app
app = FastAPI(
    title="LinkedIn Capture API",
    description="Authenticated LinkedIn profile capture with account safety budgets",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if config.DEBUG else None,
    redoc_url="/redoc" if config.DEBUG else None,
)

# CORS configuration - restricted to specific origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


# === Request Logging Middleware ===

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    start_time = datetime.now()
    response = await call_next(request)
    duration = (datetime.now() - start_time).total_seconds() * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration:.2f}ms)")
    return response


def get_scraper(request: Request) -> ProfileScraper:
    scraper = getattr(request.app.state, "scraper", None)
    if scraper is None:
        raise HTTPException(status_code=503, detail="Profile scraper not initialized")
    return scraper


# === Pydantic Models with Validation ===

class LinkCredentialsRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1, max_length=256)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip()
        if not re.match(r'^[^@\s]+@[^@\s]+\.[^@\s]+$', v):
            raise ValueError('Invalid email address')
        return v


class ScrapeRequest(BaseModel):
    profileUrl: str = Field(..., max_length=500)

    @field_validator('profileUrl')
    @classmethod
    def validate_profile_url(cls, v):
        v = v.strip()
        if not LINKEDIN_PROFILE_PATTERN.match(v):
            raise ValueError('Must be a LinkedIn profile URL (https://www.linkedin.com/in/...)')
        return v


class VerificationCodeRequest(BaseModel):
    verificationSessionId: str = Field(..., min_length=1, max_length=64)
    verificationCode: str = Field(..., pattern=r'^\d{4,8}$')


# === Error Handlers ===

@app.exception_handler(ProfileCaptureError)
async def profile_capture_error_handler(request: Request, exc: ProfileCaptureError):
    """Map typed capture errors to status codes and a stable body."""
    status_code = ERROR_STATUS.get(exc.code, 500)
    content = {"success": False, "error": exc.to_dict()}
    verification_id = getattr(exc, "verification_id", None)
    if verification_id:
        content["verificationSessionId"] = verification_id
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


# === Health ===

@app.get("/health")
async def health(request: Request):
    """Detailed health check."""
    scraper = getattr(request.app.state, "scraper", None)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scraper_ready": scraper is not None,
        "browser": scraper.browser_manager.get_stats() if scraper else None,
        "pending_verifications": len(scraper.registry) if scraper else 0,
        "version": VERSION,
    }


# === Credential Endpoints ===

@app.post("/api/linkedin/credentials", status_code=201)
async def link_credentials(
    request: LinkCredentialsRequest,
    user_id: str = Depends(get_current_user),
    scraper: ProfileScraper = Depends(get_scraper),
):
    """Encrypt and store the caller's LinkedIn credentials."""
    credential_id = await scraper.vault.store(user_id, request.email, request.password)
    return {"success": True, "credentialId": credential_id, "message": "LinkedIn account linked"}


@app.delete("/api/linkedin/credentials")
async def revoke_credentials(
    user_id: str = Depends(get_current_user),
    scraper: ProfileScraper = Depends(get_scraper),
):
    """Deactivate the caller's LinkedIn credentials."""
    if not await scraper.vault.revoke(user_id):
        raise HTTPException(status_code=404, detail="No linked LinkedIn account")
    return {"success": True, "message": "LinkedIn account unlinked"}


# === Scraping Endpoints ===

@app.post("/api/linkedin/scrape")
async def scrape_profile(
    request: ScrapeRequest,
    user_id: str = Depends(get_current_user),
    scraper: ProfileScraper = Depends(get_scraper),
):
    """Scrape one LinkedIn profile using the caller's linked account."""
    profile = await scraper.scrape_profile(request.profileUrl, ScrapeOptions(user_id=user_id))
    return {
        "success": True,
        "profile": profile.to_dict(),
        "needsManualReview": profile.needs_manual_review,
        "missingFields": profile.missing_fields,
    }


@app.post("/api/linkedin/submit-verification-code")
async def submit_verification_code(
    request: VerificationCodeRequest,
    user_id: str = Depends(get_current_user),
    scraper: ProfileScraper = Depends(get_scraper),
):
    """Submit the email verification code for a held login."""
    owner = await scraper.verification_owner(request.verificationSessionId)
    if owner is None:
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": "Verification session not found or expired"},
        )
    if owner != user_id:
        return JSONResponse(
            status_code=403,
            content={"success": False, "error": "Unauthorized access to verification session"},
        )

    result = await scraper.submit_verification_code(
        request.verificationSessionId, request.verificationCode, user_id=user_id
    )
    if result.success:
        return {
            **result.to_dict(),
            "message": "Verification successful - you can now continue with profile scraping",
        }
    return JSONResponse(status_code=400, content=result.to_dict())


@app.get("/api/linkedin/verification-status/{verification_id}")
async def verification_status(
    verification_id: str,
    user_id: str = Depends(get_current_user),
    scraper: ProfileScraper = Depends(get_scraper),
):
    owner = await scraper.verification_owner(verification_id)
    if owner is None:
        raise HTTPException(status_code=404, detail="Verification session not found or expired")
    if owner != user_id:
        raise HTTPException(status_code=403, detail="Unauthorized access to verification session")
    return {"success": True, "session": {"id": verification_id, **scraper.verification_status(verification_id)}}


# === Account Health Endpoints ===

@app.get("/api/linkedin/account-health")
async def account_health(
    user_id: str = Depends(get_current_user),
    scraper: ProfileScraper = Depends(get_scraper),
):
    health = await scraper.account_manager.get_account_health(user_id)
    if health is None:
        raise HTTPException(status_code=404, detail="No account health recorded")
    return {"success": True, "health": health}


@app.get("/api/linkedin/rate-limit-stats")
async def rate_limit_stats(
    user_id: str = Depends(get_current_user),
    scraper: ProfileScraper = Depends(get_scraper),
):
    stats = await scraper.account_manager.get_rate_limit_stats(user_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="No linked LinkedIn account")
    decision = await scraper.account_manager.can_make_request(user_id)
    return {
        "success": True,
        "stats": stats,
        "canMakeRequest": decision.allowed,
        "waitTimeMs": decision.wait_time_ms,
        "reason": decision.reason,
    }


@app.get("/api/linkedin/request-history")
async def request_history(
    hours: int = Query(default=24, ge=1, le=168),
    user_id: str = Depends(get_current_user),
    scraper: ProfileScraper = Depends(get_scraper),
):
    history = await scraper.account_manager.get_request_history(user_id, hours=hours)
    return {"success": True, "hours": hours, "requests": history}
