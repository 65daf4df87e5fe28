"""
Bearer-token authentication for the LinkedIn Capture API.

Tokens are HS256 JWTs whose subject is the caller's user id. Every
credential, session and rate limit is keyed by that id, so the subject is
the only claim the routes read.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from dataclasses import dataclass

from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from api.config import get_config

ALGORITHM = "HS256"
ACCESS_TOKEN_TTL = timedelta(hours=24)
TOKEN_TYPE = "access"

# Used only when JWT_SECRET_KEY is unset (CLI and tests); tokens die with the process.
_FALLBACK_SECRET = secrets.token_urlsafe(32)

bearer = HTTPBearer(auto_error=False)


def _signing_key() -> str:
    return get_config().JWT_SECRET_KEY or _FALLBACK_SECRET


@dataclass
class TokenPayload:
    sub: str
    exp: datetime
    type: str


def create_access_token(user_id: str, ttl: Optional[timedelta] = None) -> str:
    """Issue a signed access token for ``user_id``."""
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + (ttl or ACCESS_TOKEN_TTL),
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[TokenPayload]:
    """Return the payload of a valid token, or None when it is expired, forged or malformed."""
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM], options={"require": ["sub", "exp"]})
    except jwt.InvalidTokenError:
        # ExpiredSignatureError and MissingRequiredClaimError are both subclasses
        return None

    return TokenPayload(
        sub=claims["sub"],
        exp=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        type=claims.get("type", TOKEN_TYPE),
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)
) -> str:
    """
    FastAPI dependency resolving the bearer token to a user id.
    Raises 401 when the header is missing or the token is unusable.
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid or expired token")
    if payload.type != TOKEN_TYPE:
        raise _unauthorized("Invalid token type")

    return payload.sub
