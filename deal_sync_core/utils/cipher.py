"""
Symmetric encryption for stored OAuth tokens.

Implements AES-256-GCM with a process-wide key. Every call to ``encrypt`` uses
a fresh random IV, so the same token encrypted twice yields different
ciphertext. The key must be configured; there is no ephemeral fallback key,
because tokens encrypted with one would be unreadable after a restart.

Usage:
    cipher = TokenCipher.from_config()
    encrypted = cipher.encrypt(access_token)
    stored = encrypted.to_json()

    plaintext = cipher.decrypt(EncryptedValue.from_json(stored))
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import SecurityConfig, get_config
from ..constants import EnvironmentVariable
from ..exceptions import ConfigurationError, DecryptionError

IV_SIZE = 12  # 96 bits, recommended for AES-GCM
KEY_SIZE = 32  # 256 bits for AES-256


@dataclass(frozen=True)
class EncryptedValue:
    """Ciphertext (with GCM tag appended) and the IV it was produced with."""

    ciphertext: bytes
    iv: bytes

    def to_json(self) -> str:
        """Serialize with base64-encoded fields for text column storage."""
        return json.dumps(
            {
                "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
                "iv": base64.b64encode(self.iv).decode("ascii"),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "EncryptedValue":
        """
        Parse a stored value.

        Raises:
            DecryptionError: If the stored value is not a well-formed envelope
        """
        try:
            data = json.loads(raw)
            return cls(
                ciphertext=base64.b64decode(data["ciphertext"], validate=True),
                iv=base64.b64decode(data["iv"], validate=True),
            )
        except (TypeError, ValueError, KeyError, binascii.Error) as e:
            raise DecryptionError("Stored token envelope is malformed", cause=e) from e


class TokenCipher:
    """AES-256-GCM cipher bound to a single key for the life of the process."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ConfigurationError(
                f"Token encryption key must be {KEY_SIZE} bytes, got {len(key)}",
                setting=EnvironmentVariable.TOKEN_ENCRYPTION_KEY.value,
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: Optional[str]) -> "TokenCipher":
        """
        Build a cipher from a 64 character hex key.

        Raises:
            ConfigurationError: If the key is missing or malformed
        """
        if not hex_key or not hex_key.strip():
            raise ConfigurationError(
                f"{EnvironmentVariable.TOKEN_ENCRYPTION_KEY.value} is required for token storage",
                setting=EnvironmentVariable.TOKEN_ENCRYPTION_KEY.value,
            )
        try:
            key = bytes.fromhex(hex_key.strip())
        except ValueError as e:
            raise ConfigurationError(
                "Token encryption key must be hex encoded",
                setting=EnvironmentVariable.TOKEN_ENCRYPTION_KEY.value,
                cause=e,
            ) from e
        return cls(key)

    @classmethod
    def from_config(cls, security_config: Optional[SecurityConfig] = None) -> "TokenCipher":
        """Build a cipher from the security configuration (fails fast when absent)."""
        security_config = security_config or get_config().security
        return cls.from_hex(security_config.encryption_key)

    @staticmethod
    def generate_key() -> str:
        """Return a new random key as hex, for operators provisioning an environment."""
        return os.urandom(KEY_SIZE).hex()

    def encrypt(self, plaintext: str) -> EncryptedValue:
        """Encrypt a token. Any string, including the empty one, round-trips."""
        iv = os.urandom(IV_SIZE)
        ciphertext = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        return EncryptedValue(ciphertext=ciphertext, iv=iv)

    def decrypt(self, encrypted: EncryptedValue) -> str:
        """
        Decrypt a token. The returned value must never be logged.

        Raises:
            DecryptionError: If the key is wrong or the data is corrupted
        """
        try:
            plaintext = self._aesgcm.decrypt(encrypted.iv, encrypted.ciphertext, None)
        except (InvalidTag, ValueError) as e:
            raise DecryptionError(
                "Token decryption failed. Token may be corrupted or encryption key changed.",
                cause=e,
            ) from e
        return plaintext.decode("utf-8")

    def encrypt_to_json(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt and serialize, passing None through for optional tokens."""
        if plaintext is None:
            return None
        return self.encrypt(plaintext).to_json()

    def decrypt_from_json(self, stored: Optional[str]) -> Optional[str]:
        """Parse and decrypt, passing None through for optional tokens."""
        if stored is None:
            return None
        return self.decrypt(EncryptedValue.from_json(stored))
