"""
Tests for the encryption service and password utilities.
"""

import base64
import string

import pytest

from luxeledger.models.crypto import EncryptedEnvelope, PasswordStrength
from luxeledger.services.crypto import (
    CryptoService,
    CryptoUnavailableError,
    DecryptionFailedError,
    check_password_strength,
    generate_password,
)
from luxeledger.services.crypto.encryption import NONCE_LENGTH, SALT_LENGTH, TAG_LENGTH
from luxeledger.services.crypto import passwords
from luxeledger.services.crypto.passwords import SYMBOLS


class TestEncryptDecrypt:
    """Tests for the AES-GCM path."""

    @pytest.mark.asyncio
    async def test_round_trip_unicode(self, crypto):
        """Test decrypt(encrypt(s)) == s for non-ASCII text."""
        text = '{"note": "café ☕ 日本語"}'
        token = await crypto.encrypt(text, "correct horse")
        assert await crypto.decrypt(token, "correct horse") == text

    @pytest.mark.asyncio
    async def test_wire_format_length(self, crypto):
        """Test salt || nonce || ciphertext+tag layout."""
        token = await crypto.encrypt("abc", "pw")
        combined = base64.b64decode(token)
        assert len(combined) == SALT_LENGTH + NONCE_LENGTH + 3 + TAG_LENGTH

    @pytest.mark.asyncio
    async def test_fresh_salt_and_nonce_per_call(self, crypto):
        """Test that the same input never encrypts the same way twice."""
        first = await crypto.encrypt("same", "pw")
        second = await crypto.encrypt("same", "pw")
        assert first != second

    @pytest.mark.asyncio
    async def test_wrong_password_fails(self, crypto):
        """Test that a wrong password is always surfaced."""
        token = await crypto.encrypt("secret", "right")
        with pytest.raises(DecryptionFailedError):
            await crypto.decrypt(token, "wrong")

    @pytest.mark.asyncio
    async def test_tampered_ciphertext_fails(self, crypto):
        """Test that a flipped bit fails authentication."""
        token = await crypto.encrypt("secret", "pw")
        combined = bytearray(base64.b64decode(token))
        combined[-1] ^= 0x01
        with pytest.raises(DecryptionFailedError):
            await crypto.decrypt(base64.b64encode(bytes(combined)).decode(), "pw")

    @pytest.mark.asyncio
    async def test_malformed_input_fails(self, crypto):
        """Test short, non-base64 and empty payloads."""
        with pytest.raises(DecryptionFailedError):
            await crypto.decrypt(base64.b64encode(b"short").decode(), "pw")
        with pytest.raises(DecryptionFailedError):
            await crypto.decrypt("***not base64***", "pw")
        with pytest.raises(DecryptionFailedError):
            await crypto.decrypt("", "pw")

    @pytest.mark.asyncio
    async def test_empty_password_rejected(self, crypto):
        """Test that encrypt requires a password."""
        with pytest.raises(ValueError):
            await crypto.encrypt("text", "")


class TestEnvelope:
    """Tests for encrypt_data / decrypt_data."""

    @pytest.mark.asyncio
    async def test_envelope_round_trip(self, crypto):
        """Test every accepted input shape."""
        envelope = await crypto.encrypt_data('{"a": 1}', "pw")
        assert isinstance(envelope, EncryptedEnvelope)
        assert crypto.is_encrypted_payload(envelope.to_dict())

        assert await crypto.decrypt_data(envelope, "pw") == '{"a": 1}'
        assert await crypto.decrypt_data(envelope.to_dict(), "pw") == '{"a": 1}'
        assert await crypto.decrypt_data(envelope.data, "pw") == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_unsupported_input_raises_type_error(self, crypto):
        """Test that other shapes are rejected."""
        with pytest.raises(TypeError):
            await crypto.decrypt_data(12345, "pw")
        with pytest.raises(TypeError):
            await crypto.decrypt_data({"isEncrypted": False, "data": "x"}, "pw")


class TestFallback:
    """Tests for capability gating of the insecure fallback."""

    def test_primitives_available_by_default(self, crypto):
        """Test the secure path is active."""
        assert crypto.is_secure is True

    def test_missing_primitives_are_fatal_by_default(self):
        """Test that absence of primitives refuses to start."""
        with pytest.raises(CryptoUnavailableError):
            CryptoService(primitives_available=False)

    @pytest.mark.asyncio
    async def test_opt_in_fallback(self):
        """Test the explicit opt-in obfuscation path."""
        service = CryptoService(primitives_available=False, allow_insecure_fallback=True)
        assert service.is_secure is False

        token = await service.encrypt("hello", "pw")
        assert base64.b64decode(token).decode() == "pw::hello"
        assert await service.decrypt(token, "pw") == "hello"
        with pytest.raises(DecryptionFailedError):
            await service.decrypt(token, "other")

    @pytest.mark.asyncio
    async def test_fallback_allowed_but_unused_when_primitives_exist(self):
        """Test that the opt-in never downgrades a working environment."""
        service = CryptoService(iterations=1_000, allow_insecure_fallback=True)
        token = await service.encrypt("hello", "pw")
        assert service.is_secure is True
        assert base64.b64decode(token) != b"pw::hello"


class TestPasswordStrength:
    """Tests for the rule-based strength check."""

    @pytest.mark.parametrize("password, expected", [
        ("", PasswordStrength.WEAK),
        ("abc", PasswordStrength.WEAK),
        ("abcdefgh", PasswordStrength.WEAK),
        ("abcdefgh1", PasswordStrength.FAIR),
        ("Abcdefgh1", PasswordStrength.GOOD),
        ("Abcdefgh1!", PasswordStrength.STRONG),
        ("abcdefghijkl", PasswordStrength.FAIR),
    ])
    def test_strength_buckets(self, password, expected):
        """Test scoring thresholds."""
        assert check_password_strength(password) == expected

    def test_service_delegates(self):
        """Test the static helper on the service."""
        assert CryptoService.check_password_strength("Abcdefgh1!xyz") == PasswordStrength.STRONG


class TestPasswordGenerator:
    """Tests for the password generator."""

    def test_length_and_classes(self):
        """Test every required class appears."""
        for _ in range(20):
            password = generate_password(16)
            assert len(password) == 16
            assert any(c in string.ascii_lowercase for c in password)
            assert any(c in string.ascii_uppercase for c in password)
            assert any(c in string.digits for c in password)
            assert any(c in SYMBOLS for c in password)

    def test_without_symbols(self):
        """Test the symbol switch."""
        for _ in range(20):
            password = generate_password(12, include_symbols=False)
            assert len(password) == 12
            assert not any(c in SYMBOLS for c in password)

    def test_short_lengths(self):
        """Test lengths below the number of classes."""
        assert generate_password(0) == ""
        assert len(generate_password(2)) == 2

    def test_seeding_starts_at_length_four(self, monkeypatch):
        """Test class seeding applies from length 4 regardless of symbols."""
        monkeypatch.setattr(passwords.secrets, "choice", lambda seq: seq[0])

        assert generate_password(3, include_symbols=False) == "aaa"
        assert sorted(generate_password(4, include_symbols=False)) == ["0", "A", "a", "a"]

    def test_negative_length_raises(self):
        """Test invalid length."""
        with pytest.raises(ValueError):
            generate_password(-1)

    def test_passwords_differ(self):
        """Test output is random."""
        assert len({generate_password() for _ in range(10)}) == 10
