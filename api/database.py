"""
Database module for LinkedIn Capture.
Implements SQLite persistence with async support.

Tables:
- linkedin_credentials: encrypted account secrets, one active row per user
- linkedin_account_health: per-identity counters and cooldowns
- linkedin_request_log: append-only audit of every scrape attempt
- linkedin_sessions: encrypted cookie jars linked to a credential
"""

import uuid
import aiosqlite
from datetime import datetime
from typing import Optional, List, Dict, Any
from pathlib import Path
from contextlib import asynccontextmanager

from core.models import to_db_timestamp, utcnow

DEFAULT_DB_PATH = Path("data") / "linkedin_capture.db"


class Database:
    """Thin async wrapper around a SQLite file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or DEFAULT_DB_PATH)

    async def init(self):
        """Initialize the database schema."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.path) as db:
            # Credentials table
            await db.execute("""
                CREATE TABLE IF NOT EXISTS linkedin_credentials (
                    id TEXT PRIMARY KEY,
                    user_id TEXT UNIQUE NOT NULL,
                    email_hash TEXT NOT NULL,
                    encrypted_email TEXT NOT NULL,
                    email_iv TEXT NOT NULL,
                    email_auth_tag TEXT NOT NULL,
                    encrypted_password TEXT NOT NULL,
                    password_iv TEXT NOT NULL,
                    password_auth_tag TEXT NOT NULL,
                    is_active BOOLEAN DEFAULT 1,
                    last_validated_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # Account health table
            await db.execute("""
                CREATE TABLE IF NOT EXISTS linkedin_account_health (
                    account_email_hash TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    total_requests INTEGER DEFAULT 0,
                    successful_requests INTEGER DEFAULT 0,
                    failed_requests INTEGER DEFAULT 0,
                    checkpoint_count INTEGER DEFAULT 0,
                    consecutive_failures INTEGER DEFAULT 0,
                    cooldown_until TEXT,
                    is_active BOOLEAN DEFAULT 1,
                    last_request_at TEXT,
                    last_success_at TEXT,
                    last_failure_at TEXT,
                    last_checkpoint_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # Request log (append-only)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS linkedin_request_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    account_email_hash TEXT NOT NULL,
                    profile_url TEXT NOT NULL,
                    request_time TEXT NOT NULL,
                    response_time_ms INTEGER,
                    success BOOLEAN NOT NULL,
                    checkpoint_triggered BOOLEAN DEFAULT 0,
                    error_message TEXT
                )
            """)

            # Sessions table
            await db.execute("""
                CREATE TABLE IF NOT EXISTS linkedin_sessions (
                    id TEXT PRIMARY KEY,
                    credential_id TEXT NOT NULL,
                    encrypted_cookies TEXT NOT NULL,
                    encryption_iv TEXT NOT NULL,
                    encryption_auth_tag TEXT NOT NULL,
                    user_agent TEXT,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    last_used_at TEXT,
                    is_valid BOOLEAN DEFAULT 1,
                    FOREIGN KEY (credential_id) REFERENCES linkedin_credentials(id)
                )
            """)

            # Create indexes
            await db.execute("CREATE INDEX IF NOT EXISTS idx_credentials_email_hash ON linkedin_credentials(email_hash)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_request_log_hash_time ON linkedin_request_log(account_email_hash, request_time)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_request_log_user_time ON linkedin_request_log(user_id, request_time)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_sessions_credential ON linkedin_sessions(credential_id, is_valid, expires_at)")

            await db.commit()

    @asynccontextmanager
    async def connect(self):
        """Get a database connection."""
        db = await aiosqlite.connect(self.path)
        db.row_factory = aiosqlite.Row
        try:
            yield db
        finally:
            await db.close()

    # === Credential operations ===

    async def upsert_credential(self, user_id: str, fields: Dict[str, str]) -> str:
        """Insert or replace the credential for a user. Returns the credential id."""
        now = to_db_timestamp(utcnow())
        async with self.connect() as db:
            cursor = await db.execute(
                "SELECT id FROM linkedin_credentials WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
            credential_id = row["id"] if row else str(uuid.uuid4())

            await db.execute("""
                INSERT INTO linkedin_credentials (
                    id, user_id, email_hash, encrypted_email, email_iv, email_auth_tag,
                    encrypted_password, password_iv, password_auth_tag,
                    is_active, last_validated_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    email_hash = excluded.email_hash,
                    encrypted_email = excluded.encrypted_email,
                    email_iv = excluded.email_iv,
                    email_auth_tag = excluded.email_auth_tag,
                    encrypted_password = excluded.encrypted_password,
                    password_iv = excluded.password_iv,
                    password_auth_tag = excluded.password_auth_tag,
                    is_active = 1,
                    last_validated_at = excluded.last_validated_at,
                    updated_at = excluded.updated_at
            """, (
                credential_id, user_id, fields["email_hash"],
                fields["encrypted_email"], fields["email_iv"], fields["email_auth_tag"],
                fields["encrypted_password"], fields["password_iv"], fields["password_auth_tag"],
                now, now, now,
            ))
            await db.commit()
            return credential_id

    async def get_credential(self, user_id: str, active_only: bool = True) -> Optional[Dict]:
        """Get the credential row for a user."""
        query = "SELECT * FROM linkedin_credentials WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        async with self.connect() as db:
            cursor = await db.execute(query, (user_id,))
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def get_credential_by_email_hash(self, email_hash: str) -> Optional[Dict]:
        """Most recently updated credential for an identity hash."""
        async with self.connect() as db:
            cursor = await db.execute(
                "SELECT * FROM linkedin_credentials WHERE email_hash = ? ORDER BY updated_at DESC LIMIT 1",
                (email_hash,)
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def deactivate_credential(self, user_id: str) -> bool:
        async with self.connect() as db:
            cursor = await db.execute(
                "UPDATE linkedin_credentials SET is_active = 0, updated_at = ? WHERE user_id = ?",
                (to_db_timestamp(utcnow()), user_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    # === Account health operations ===

    async def get_account_health(self, email_hash: str) -> Optional[Dict]:
        async with self.connect() as db:
            cursor = await db.execute(
                "SELECT * FROM linkedin_account_health WHERE account_email_hash = ?", (email_hash,)
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def record_request(
        self,
        user_id: str,
        email_hash: str,
        profile_url: str,
        request_time: datetime,
        success: bool,
        response_time_ms: Optional[int],
        checkpoint_triggered: bool,
        error_message: Optional[str],
        cooldown_until: Optional[datetime] = None,
        deactivate: bool = False,
        failure_threshold: Optional[int] = None,
        failure_cooldown_until: Optional[datetime] = None,
    ) -> Dict:
        """
        Append a request log row and upsert the health counters in one transaction.

        Args:
            cooldown_until: cooldown to set unconditionally (checkpoint, bad login)
            deactivate: flip the account inactive
            failure_threshold: consecutive failures that trigger failure_cooldown_until

        Returns:
            The updated account health row.
        """
        ts = to_db_timestamp(request_time)
        failed = 0 if success else 1
        params = {
            "email_hash": email_hash,
            "user_id": user_id,
            "succeeded": 1 - failed,
            "failed": failed,
            "checkpoint": 1 if checkpoint_triggered else 0,
            "active": 0 if deactivate else 1,
            "deactivate": 1 if deactivate else 0,
            "ts": ts,
            "success_at": ts if success else None,
            "failure_at": None if success else ts,
            "checkpoint_at": ts if checkpoint_triggered else None,
            "cooldown": to_db_timestamp(cooldown_until),
            "threshold": failure_threshold,
            "failure_cooldown": to_db_timestamp(failure_cooldown_until),
        }
        # A first failure on a fresh row can already meet a threshold of 1
        if params["cooldown"] is None and failed and failure_threshold is not None and failure_threshold <= 1:
            params["initial_cooldown"] = params["failure_cooldown"]
        else:
            params["initial_cooldown"] = params["cooldown"]

        async with self.connect() as db:
            await db.execute("""
                INSERT INTO linkedin_request_log (
                    user_id, account_email_hash, profile_url, request_time,
                    response_time_ms, success, checkpoint_triggered, error_message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (user_id, email_hash, profile_url, ts, response_time_ms,
                  int(success), int(checkpoint_triggered), error_message))

            # SET expressions read the row as it was before this update
            await db.execute("""
                INSERT INTO linkedin_account_health (
                    account_email_hash, user_id, total_requests, successful_requests,
                    failed_requests, checkpoint_count, consecutive_failures,
                    is_active, cooldown_until, last_request_at, last_success_at, last_failure_at,
                    last_checkpoint_at, created_at, updated_at
                ) VALUES (
                    :email_hash, :user_id, 1, :succeeded, :failed, :checkpoint, :failed,
                    :active, :initial_cooldown, :ts, :success_at, :failure_at,
                    :checkpoint_at, :ts, :ts
                )
                ON CONFLICT(account_email_hash) DO UPDATE SET
                    user_id = excluded.user_id,
                    total_requests = total_requests + 1,
                    successful_requests = successful_requests + excluded.successful_requests,
                    failed_requests = failed_requests + excluded.failed_requests,
                    checkpoint_count = checkpoint_count + excluded.checkpoint_count,
                    consecutive_failures = CASE WHEN excluded.successful_requests = 1
                        THEN 0 ELSE consecutive_failures + 1 END,
                    is_active = CASE
                        WHEN :deactivate = 1 THEN 0
                        WHEN excluded.successful_requests = 1 THEN 1
                        ELSE is_active END,
                    cooldown_until = CASE
                        WHEN :cooldown IS NOT NULL THEN :cooldown
                        WHEN excluded.failed_requests = 1 AND :threshold IS NOT NULL
                            AND consecutive_failures + 1 >= :threshold THEN :failure_cooldown
                        ELSE cooldown_until END,
                    last_request_at = excluded.last_request_at,
                    last_success_at = COALESCE(excluded.last_success_at, last_success_at),
                    last_failure_at = COALESCE(excluded.last_failure_at, last_failure_at),
                    last_checkpoint_at = COALESCE(excluded.last_checkpoint_at, last_checkpoint_at),
                    updated_at = excluded.updated_at
            """, params)
            await db.commit()

            cursor = await db.execute(
                "SELECT * FROM linkedin_account_health WHERE account_email_hash = ?", (email_hash,)
            )
            row = await cursor.fetchone()
            return dict(row)

    # === Request log queries ===

    async def last_request_time(self, email_hash: str) -> Optional[str]:
        async with self.connect() as db:
            cursor = await db.execute(
                "SELECT MAX(request_time) AS last FROM linkedin_request_log WHERE account_email_hash = ?",
                (email_hash,)
            )
            row = await cursor.fetchone()
            return row["last"] if row else None

    async def count_successful_since(self, email_hash: str, since: datetime) -> int:
        async with self.connect() as db:
            cursor = await db.execute(
                """SELECT COUNT(*) AS n FROM linkedin_request_log
                   WHERE account_email_hash = ? AND success = 1 AND request_time >= ?""",
                (email_hash, to_db_timestamp(since))
            )
            row = await cursor.fetchone()
            return row["n"]

    async def get_request_history(self, user_id: str, since: datetime) -> List[Dict]:
        async with self.connect() as db:
            cursor = await db.execute(
                """SELECT id, profile_url, request_time, success, response_time_ms,
                          checkpoint_triggered, error_message
                   FROM linkedin_request_log
                   WHERE user_id = ? AND request_time >= ?
                   ORDER BY request_time DESC, id DESC""",
                (user_id, to_db_timestamp(since))
            )
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    # === Session operations ===

    async def insert_session(
        self,
        credential_id: str,
        encrypted: Dict[str, str],
        user_agent: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> str:
        session_id = str(uuid.uuid4())
        async with self.connect() as db:
            await db.execute("""
                INSERT INTO linkedin_sessions (
                    id, credential_id, encrypted_cookies, encryption_iv, encryption_auth_tag,
                    user_agent, created_at, expires_at, is_valid
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)
            """, (
                session_id, credential_id, encrypted["ciphertext"], encrypted["nonce"],
                encrypted["auth_tag"], user_agent,
                to_db_timestamp(created_at), to_db_timestamp(expires_at),
            ))
            await db.commit()
        return session_id

    async def latest_valid_session(self, credential_id: str, now: datetime) -> Optional[Dict]:
        async with self.connect() as db:
            cursor = await db.execute(
                """SELECT * FROM linkedin_sessions
                   WHERE credential_id = ? AND is_valid = 1 AND expires_at > ?
                   ORDER BY created_at DESC LIMIT 1""",
                (credential_id, to_db_timestamp(now))
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def touch_session(self, session_id: str, used_at: datetime):
        async with self.connect() as db:
            await db.execute(
                "UPDATE linkedin_sessions SET last_used_at = ? WHERE id = ?",
                (to_db_timestamp(used_at), session_id)
            )
            await db.commit()

    async def invalidate_sessions(self, credential_id: str) -> int:
        """Flip every valid session of a credential to invalid. Returns rows changed."""
        async with self.connect() as db:
            cursor = await db.execute(
                "UPDATE linkedin_sessions SET is_valid = 0 WHERE credential_id = ? AND is_valid = 1",
                (credential_id,)
            )
            await db.commit()
            return cursor.rowcount


# Singleton instance
_database: Optional[Database] = None


def get_database(path: Optional[str] = None) -> Database:
    """Get or create the singleton database (path only applies on first call)."""
    global _database
    if _database is None:
        _database = Database(path)
    return _database
