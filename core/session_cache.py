"""
Two-tier session cache for authenticated LinkedIn browser state.

Tiers:
- Ephemeral: Redis (TTL-bound) or an in-process dict when Redis is off/unreachable
- Durable: SQLite rows linked to the credential, encrypted at rest

Reads go ephemeral first, then durable, and a durable hit is written back to
the ephemeral tier with the remaining TTL. Writes go to both tiers.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Any, Callable

import redis.asyncio as redis
from redis.exceptions import RedisError

from core.errors import NoCookiesError
from core.models import Cookie, SessionPayload, from_db_timestamp, utcnow
from core.vault import CredentialVault, EncryptedField

logger = logging.getLogger(__name__)

TARGET_DOMAIN = "linkedin.com"
REDIS_KEY_PREFIX = "linkedin:session:"
DEFAULT_TTL_SECONDS = 86400


class SessionStore(ABC):
    """
    Storage interface shared by both tiers.

    Ephemeral stores key on the identity hash; the durable store keys on the
    credential id. Each implementation ignores the key it does not use.
    """

    @abstractmethod
    async def get(self, email_hash: str, credential_id: Optional[str]) -> Optional[SessionPayload]:
        ...

    @abstractmethod
    async def put(self, email_hash: str, credential_id: Optional[str], payload: SessionPayload):
        ...

    @abstractmethod
    async def invalidate(self, email_hash: str, credential_id: Optional[str]):
        ...

    async def close(self):
        pass


class MemorySessionStore(SessionStore):
    """In-process ephemeral tier."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._sessions: Dict[str, SessionPayload] = {}
        self._clock = clock

    async def get(self, email_hash, credential_id=None):
        payload = self._sessions.get(email_hash)
        if payload is None:
            return None
        if payload.is_expired(self._clock()):
            self._sessions.pop(email_hash, None)
            return None
        return payload

    async def put(self, email_hash, credential_id, payload):
        self._sessions[email_hash] = payload

    async def invalidate(self, email_hash, credential_id=None):
        self._sessions.pop(email_hash, None)

    def __len__(self):
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    """Redis-backed ephemeral tier. Values are vault-encrypted JSON."""

    def __init__(self, client, vault: CredentialVault, clock: Callable[[], datetime] = utcnow):
        self.client = client
        self.vault = vault
        self._clock = clock

    @classmethod
    async def connect(cls, redis_url: str, vault: CredentialVault) -> "RedisSessionStore":
        client = redis.from_url(redis_url, decode_responses=True)
        await client.ping()
        logger.info(f"Connected to Redis at {redis_url}")
        return cls(client, vault)

    @staticmethod
    def key_for(email_hash: str) -> str:
        return f"{REDIS_KEY_PREFIX}{email_hash}"

    async def get(self, email_hash, credential_id=None):
        try:
            raw = await self.client.get(self.key_for(email_hash))
        except RedisError as e:
            logger.warning(f"Redis read failed for {email_hash[:8]}: {e}")
            return None
        if not raw:
            return None

        field = EncryptedField(**json.loads(raw))
        payload = SessionPayload.from_json(self.vault.decrypt(field))
        if payload.is_expired(self._clock()):
            return None
        return payload

    async def put(self, email_hash, credential_id, payload):
        ttl = int((payload.expires_at - self._clock()).total_seconds())
        if ttl <= 0:
            return
        value = json.dumps(self.vault.encrypt(payload.to_json()).to_dict())
        try:
            await self.client.setex(self.key_for(email_hash), ttl, value)
        except RedisError as e:
            logger.warning(f"Redis write failed for {email_hash[:8]}: {e}")

    async def invalidate(self, email_hash, credential_id=None):
        try:
            await self.client.delete(self.key_for(email_hash))
        except RedisError as e:
            logger.warning(f"Redis delete failed for {email_hash[:8]}: {e}")

    async def close(self):
        await self.client.close()


class DurableSessionStore(SessionStore):
    """SQLite tier. The current session is the newest valid, unexpired row."""

    def __init__(self, database, vault: CredentialVault, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.vault = vault
        self._clock = clock

    async def get(self, email_hash, credential_id):
        if not credential_id:
            return None
        now = self._clock()
        row = await self.database.latest_valid_session(credential_id, now)
        if not row:
            return None

        cookies_json = self.vault.decrypt(EncryptedField(
            row["encrypted_cookies"], row["encryption_iv"], row["encryption_auth_tag"]
        ))
        await self.database.touch_session(row["id"], now)
        return SessionPayload(
            cookies=[Cookie(**c) for c in json.loads(cookies_json)],
            user_agent=row["user_agent"] or "",
            saved_at=from_db_timestamp(row["created_at"]),
            expires_at=from_db_timestamp(row["expires_at"]),
        )

    async def put(self, email_hash, credential_id, payload):
        if not credential_id:
            logger.warning(f"No credential linked to {email_hash[:8]}, durable session not saved")
            return
        # Superseded rows are marked invalid, never deleted
        await self.database.invalidate_sessions(credential_id)
        cookies_json = json.dumps([asdict(c) for c in payload.cookies])
        await self.database.insert_session(
            credential_id,
            self.vault.encrypt(cookies_json).to_dict(),
            payload.user_agent,
            payload.saved_at,
            payload.expires_at,
        )

    async def invalidate(self, email_hash, credential_id):
        if credential_id:
            await self.database.invalidate_sessions(credential_id)


async def create_ephemeral_store(
    vault: CredentialVault,
    redis_url: Optional[str] = None,
    enabled: bool = True,
) -> SessionStore:
    """Redis when enabled and reachable, otherwise the in-memory store."""
    if not enabled or not redis_url:
        logger.info("Redis disabled - using in-memory session cache")
        return MemorySessionStore()
    try:
        return await RedisSessionStore.connect(redis_url, vault)
    except (RedisError, OSError) as e:
        logger.warning(f"Redis connection failed ({e}) - falling back to in-memory session cache")
        return MemorySessionStore()


class TieredSessionCache:
    """Read-through / write-through composition of an ephemeral and a durable store."""

    def __init__(
        self,
        ephemeral: SessionStore,
        durable: SessionStore,
        vault: CredentialVault,
        cookie_max_age_ms: int = DEFAULT_TTL_SECONDS * 1000,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ephemeral = ephemeral
        self.durable = durable
        self.vault = vault
        self.cookie_max_age_ms = cookie_max_age_ms
        self._clock = clock

    async def save_session(
        self,
        raw_cookies: List[Dict[str, Any]],
        user_agent: str,
        credential_id: Optional[str],
        email: str,
    ) -> SessionPayload:
        """
        Persist the browser's LinkedIn cookies to both tiers.

        Raises:
            NoCookiesError: no valid cookie for the target domain.
        """
        cookies = []
        for raw in raw_cookies:
            try:
                cookie = Cookie.from_browser(raw)
            except ValueError as e:
                logger.debug(f"Skipping malformed cookie: {e}")
                continue
            if cookie.matches_domain(TARGET_DOMAIN):
                cookies.append(cookie)

        if not cookies:
            raise NoCookiesError()

        now = self._clock()
        payload = SessionPayload(
            cookies=cookies,
            user_agent=user_agent,
            saved_at=now,
            expires_at=now + timedelta(milliseconds=self.cookie_max_age_ms),
        )
        email_hash = self.vault.hash_email(email)
        await self.ephemeral.put(email_hash, credential_id, payload)
        await self.durable.put(email_hash, credential_id, payload)
        logger.info(f"Saved session for {email_hash[:8]} ({len(cookies)} cookies)")
        return payload

    async def load_session(self, email: str) -> Optional[SessionPayload]:
        email_hash = self.vault.hash_email(email)

        payload = await self.ephemeral.get(email_hash, None)
        if payload is not None:
            logger.debug(f"Session cache hit (ephemeral) for {email_hash[:8]}")
            return payload

        credential_id = await self.vault.credential_id_for(email)
        payload = await self.durable.get(email_hash, credential_id)
        if payload is None or payload.is_expired(self._clock()):
            return None

        logger.debug(f"Session cache hit (durable) for {email_hash[:8]}")
        await self.ephemeral.put(email_hash, credential_id, payload)
        return payload

    async def invalidate_session(self, email: str):
        email_hash = self.vault.hash_email(email)
        credential_id = await self.vault.credential_id_for(email)
        await self.ephemeral.invalidate(email_hash, credential_id)
        await self.durable.invalidate(email_hash, credential_id)
        logger.info(f"Invalidated session for {email_hash[:8]}")

    async def close(self):
        await self.ephemeral.close()
