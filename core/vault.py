"""
Credential Vault - AES-256-GCM encryption for LinkedIn account secrets.

Features:
- Authenticated encryption with a fresh 96-bit nonce per field
- Irreversible identity hash (SHA-256 of the normalised email)
- Upsert/retrieve/revoke against the linkedin_credentials table
"""

import os
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors import ConfigurationError, DecryptionError
from core.models import DecryptedCredential

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_ENV_VAR = "LINKEDIN_CREDENTIAL_KEY"


@dataclass
class EncryptedField:
    """Hex-encoded ciphertext, nonce and authentication tag."""
    ciphertext: str
    nonce: str
    auth_tag: str

    def to_dict(self) -> Dict[str, str]:
        return {"ciphertext": self.ciphertext, "nonce": self.nonce, "auth_tag": self.auth_tag}


class CredentialVault:
    """
    Encrypts credentials and session blobs with a single process-wide key.

    The key is validated once, when the vault is built. Per-call failures are
    integrity failures only (DecryptionError).
    """

    def __init__(self, key: bytes, database=None):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise ConfigurationError(f"Encryption key must be {KEY_LENGTH} bytes")
        self._aesgcm = AESGCM(bytes(key))
        self.database = database

    @classmethod
    def from_hex(cls, hex_key: Optional[str], database=None) -> "CredentialVault":
        if not hex_key:
            raise ConfigurationError(f"{KEY_ENV_VAR} is not set")
        try:
            key = bytes.fromhex(hex_key.strip())
        except ValueError:
            raise ConfigurationError(f"{KEY_ENV_VAR} must be hex encoded") from None
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(
                f"{KEY_ENV_VAR} must be {KEY_LENGTH * 2} hex characters, got {len(hex_key.strip())}"
            )
        return cls(key, database)

    @classmethod
    def from_env(cls, database=None) -> "CredentialVault":
        return cls.from_hex(os.getenv(KEY_ENV_VAR), database)

    @staticmethod
    def generate_key() -> str:
        """New random key, hex encoded, suitable for LINKEDIN_CREDENTIAL_KEY."""
        return secrets.token_hex(KEY_LENGTH)

    @staticmethod
    def hash_email(email: str) -> str:
        return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()

    # === Primitives ===

    def encrypt(self, text: str) -> EncryptedField:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, text.encode("utf-8"), None)
        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return EncryptedField(ciphertext=ciphertext.hex(), nonce=nonce.hex(), auth_tag=tag.hex())

    def decrypt(self, data: EncryptedField) -> str:
        try:
            ciphertext = bytes.fromhex(data.ciphertext)
            nonce = bytes.fromhex(data.nonce)
            tag = bytes.fromhex(data.auth_tag)
            if len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
                raise DecryptionError("Malformed nonce or authentication tag")
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
            return plaintext.decode("utf-8")
        except InvalidTag:
            raise DecryptionError("Authentication tag mismatch") from None
        except (ValueError, UnicodeDecodeError) as e:
            raise DecryptionError(f"Malformed encrypted field: {type(e).__name__}") from None

    # === Persistence ===

    def _require_database(self):
        if self.database is None:
            raise ConfigurationError("CredentialVault has no database attached")
        return self.database

    async def store(self, user_id: str, email: str, password: str) -> str:
        """Encrypt and upsert the credential for a user. Returns the credential id."""
        db = self._require_database()
        enc_email = self.encrypt(email)
        enc_password = self.encrypt(password)

        credential_id = await db.upsert_credential(user_id, {
            "email_hash": self.hash_email(email),
            "encrypted_email": enc_email.ciphertext,
            "email_iv": enc_email.nonce,
            "email_auth_tag": enc_email.auth_tag,
            "encrypted_password": enc_password.ciphertext,
            "password_iv": enc_password.nonce,
            "password_auth_tag": enc_password.auth_tag,
        })
        logger.info(f"Stored LinkedIn credential {credential_id} for user {user_id}")
        return credential_id

    async def retrieve(self, user_id: str) -> Optional[DecryptedCredential]:
        db = self._require_database()
        row = await db.get_credential(user_id)
        if not row:
            return None

        email = self.decrypt(EncryptedField(row["encrypted_email"], row["email_iv"], row["email_auth_tag"]))
        password = self.decrypt(
            EncryptedField(row["encrypted_password"], row["password_iv"], row["password_auth_tag"])
        )
        return DecryptedCredential(email=email, password=password, credential_id=row["id"])

    async def credential_id_for(self, email: str) -> Optional[str]:
        """Credential id linked to an identity, without decrypting anything."""
        db = self._require_database()
        row = await db.get_credential_by_email_hash(self.hash_email(email))
        return row["id"] if row else None

    async def revoke(self, user_id: str) -> bool:
        db = self._require_database()
        revoked = await db.deactivate_credential(user_id)
        if revoked:
            logger.info(f"Revoked LinkedIn credential for user {user_id}")
        return revoked
