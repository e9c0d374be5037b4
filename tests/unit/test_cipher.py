"""
Tests for token encryption.

Covers AES-256-GCM round trips, IV randomness, key validation and the
storage envelope.
"""

import json

import pytest

from deal_sync_core.config import SecurityConfig
from deal_sync_core.exceptions import ConfigurationError, DecryptionError
from deal_sync_core.utils.cipher import IV_SIZE, EncryptedValue, TokenCipher


class TestTokenCipherRoundTrip:
    """Encrypt and decrypt."""

    @pytest.mark.parametrize(
        "plaintext",
        ["a", "access-token-123", "ünïcødé tøkén ✓", "x" * 4096],
    )
    def test_decrypt_returns_original(self, cipher, plaintext):
        """Decrypting an encrypted value yields the plaintext."""
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_same_plaintext_encrypts_differently(self, cipher):
        """Every encryption uses a fresh IV."""
        first = cipher.encrypt("same-token")
        second = cipher.encrypt("same-token")

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext
        assert len(first.iv) == IV_SIZE

    def test_empty_plaintext_round_trips(self, cipher):
        """The empty string is a valid plaintext."""
        encrypted = cipher.encrypt("")

        assert len(encrypted.iv) == IV_SIZE
        assert cipher.decrypt(encrypted) == ""
        assert cipher.decrypt_from_json(cipher.encrypt_to_json("")) == ""

    def test_optional_helpers_pass_none_through(self, cipher):
        """None stays None through the JSON helpers."""
        assert cipher.encrypt_to_json(None) is None
        assert cipher.decrypt_from_json(None) is None
        assert cipher.decrypt_from_json(cipher.encrypt_to_json("refresh")) == "refresh"


class TestTokenCipherFailures:
    """Decryption failures surface as DecryptionError."""

    def test_wrong_key(self, cipher):
        """A value encrypted under another key cannot be read."""
        other = TokenCipher.from_hex(TokenCipher.generate_key())
        encrypted = other.encrypt("token")

        with pytest.raises(DecryptionError):
            cipher.decrypt(encrypted)

    def test_tampered_ciphertext(self, cipher):
        """GCM authentication catches modified ciphertext."""
        encrypted = cipher.encrypt("token")
        tampered = EncryptedValue(
            ciphertext=bytes([encrypted.ciphertext[0] ^ 0x01]) + encrypted.ciphertext[1:],
            iv=encrypted.iv,
        )

        with pytest.raises(DecryptionError):
            cipher.decrypt(tampered)

    @pytest.mark.parametrize(
        "raw",
        ["not json", "{}", '{"ciphertext": "@@@", "iv": "AAAA"}', "[]"],
    )
    def test_malformed_envelope(self, raw):
        """Malformed stored values raise DecryptionError."""
        with pytest.raises(DecryptionError):
            EncryptedValue.from_json(raw)


class TestEncryptedValueEnvelope:
    """Storage format."""

    def test_json_envelope_fields(self, cipher):
        """The envelope is JSON with base64 ciphertext and iv."""
        stored = cipher.encrypt("token").to_json()
        data = json.loads(stored)

        assert set(data) == {"ciphertext", "iv"}
        assert "token" not in stored

    def test_envelope_round_trip(self, cipher):
        """from_json restores the same value."""
        encrypted = cipher.encrypt("token")
        assert EncryptedValue.from_json(encrypted.to_json()) == encrypted


class TestTokenCipherKeys:
    """Key configuration fails fast."""

    def test_generate_key_is_64_hex_chars(self):
        """Generated keys are 32 random bytes in hex."""
        key = TokenCipher.generate_key()

        assert len(key) == 64
        assert bytes.fromhex(key)
        assert key != TokenCipher.generate_key()

    @pytest.mark.parametrize("key", [None, "", "   "])
    def test_missing_key(self, key):
        """A missing key is a configuration error."""
        with pytest.raises(ConfigurationError):
            TokenCipher.from_hex(key)

    def test_non_hex_key(self):
        """A key that is not hex is a configuration error."""
        with pytest.raises(ConfigurationError):
            TokenCipher.from_hex("z" * 64)

    def test_wrong_length_key(self):
        """A key that is not 32 bytes is a configuration error."""
        with pytest.raises(ConfigurationError):
            TokenCipher.from_hex("ab" * 16)

    def test_from_config(self, encryption_key):
        """from_config reads the security section."""
        cipher = TokenCipher.from_config(SecurityConfig(encryption_key=encryption_key))
        assert cipher.decrypt(cipher.encrypt("token")) == "token"

    def test_from_config_without_key(self):
        """from_config fails fast when no key is configured."""
        with pytest.raises(ConfigurationError):
            TokenCipher.from_config(SecurityConfig(encryption_key=None))
