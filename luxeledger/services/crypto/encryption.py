"""
Password-Based Encryption Service

Encryption Technology:
    - Key Derivation: PBKDF2-HMAC-SHA256, 100,000 iterations
    - Salt: 16 random bytes, fresh per call
    - Cipher: AES-256-GCM (authenticated), 12-byte random nonce per call
    - Wire format: base64(salt || nonce || ciphertext+tag)

DESIGN DECISION: "Primitive unavailable" and "operation failed" are kept
apart:
1. Capability detection runs once, when the service is constructed
2. If the primitives are missing, the service refuses to start unless
   the insecure fallback was explicitly allowed in configuration
3. Any failure on the secure path is a hard error; it never falls back

INSECURE FALLBACK: base64(password + "::" + plaintext). It is reversible
by anyone holding the output and provides NO confidentiality. It exists
only for environments without cryptographic primitives and is logged
loudly when enabled.
"""

import asyncio
import base64
import binascii
import os
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from luxeledger.config import CryptoSettings
from luxeledger.logs import get_logger
from luxeledger.models.crypto import (
    EncryptedEnvelope,
    PasswordStrength,
    is_encrypted_payload,
)
from luxeledger.services.crypto import passwords


logger = get_logger(__name__)

SALT_LENGTH = 16
NONCE_LENGTH = 12
KEY_LENGTH = 32
TAG_LENGTH = 16
DEFAULT_KDF_ITERATIONS = 100_000
FALLBACK_SEPARATOR = "::"


class CryptoError(Exception):
    """Base exception for encryption operations."""
    pass


class DecryptionFailedError(CryptoError):
    """Wrong password, tampered or malformed ciphertext."""
    pass


class CryptoUnavailableError(CryptoError):
    """Cryptographic primitives are missing and the fallback is not allowed."""
    pass


class PasswordRequiredError(CryptoError):
    """An encrypted payload was supplied without a password."""
    pass


def detect_primitives() -> bool:
    """
    Check that PBKDF2-SHA256 and AES-256-GCM work in this environment.

    Runs a throwaway derivation and encryption; any unsupported algorithm
    means the secure path is unavailable.
    """
    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=bytes(SALT_LENGTH),
            iterations=1,
        )
        key = kdf.derive(b"capability-probe")
        AESGCM(key).encrypt(bytes(NONCE_LENGTH), b"capability-probe", None)
    except UnsupportedAlgorithm as e:
        logger.error("crypto_primitives_unavailable", error=str(e))
        return False
    return True


class _AesGcmCipher:
    """PBKDF2-HMAC-SHA256 + AES-256-GCM."""

    secure = True

    def __init__(self, iterations: int):
        self._iterations = iterations

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(password.encode("utf-8"))

    def seal(self, plaintext: str, password: str) -> str:
        salt = os.urandom(SALT_LENGTH)
        nonce = os.urandom(NONCE_LENGTH)
        key = self._derive_key(password, salt)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(salt + nonce + ciphertext).decode("ascii")

    def open(self, token: str, password: str) -> str:
        try:
            combined = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionFailedError("Ciphertext is not valid base64") from e

        if len(combined) < SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionFailedError("Ciphertext is too short")

        salt = combined[:SALT_LENGTH]
        nonce = combined[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]
        ciphertext = combined[SALT_LENGTH + NONCE_LENGTH:]

        key = self._derive_key(password, salt)
        try:
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise DecryptionFailedError(
                "Decryption failed - invalid password or corrupted data"
            ) from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionFailedError("Decrypted payload is not UTF-8 text") from e


class _ObfuscationCipher:
    """Reversible NON-SECURE encoding used only by the opt-in fallback."""

    secure = False

    def seal(self, plaintext: str, password: str) -> str:
        combined = f"{password}{FALLBACK_SEPARATOR}{plaintext}"
        return base64.b64encode(combined.encode("utf-8")).decode("ascii")

    def open(self, token: str, password: str) -> str:
        try:
            decoded = base64.b64decode(token, validate=True).decode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise DecryptionFailedError("Payload is not valid fallback data") from e

        prefix = f"{password}{FALLBACK_SEPARATOR}"
        if not decoded.startswith(prefix):
            raise DecryptionFailedError(
                "Decryption failed - invalid password or corrupted data"
            )
        return decoded[len(prefix):]


class CryptoService:
    """
    Password-based encrypt/decrypt plus password utilities.

    Encryption work (the KDF is deliberately slow) runs in a worker thread
    so the event loop stays responsive.
    """

    def __init__(
        self,
        iterations: int = DEFAULT_KDF_ITERATIONS,
        allow_insecure_fallback: bool = False,
        primitives_available: Optional[bool] = None,
    ):
        """
        Args:
            iterations: PBKDF2 iteration count
            allow_insecure_fallback: Accept the obfuscation path when the
                primitives are missing instead of failing
            primitives_available: Override capability detection

        Raises:
            CryptoUnavailableError: Primitives missing and fallback not allowed
        """
        if primitives_available is None:
            primitives_available = detect_primitives()

        if primitives_available:
            self._cipher: Union[_AesGcmCipher, _ObfuscationCipher] = _AesGcmCipher(iterations)
        elif allow_insecure_fallback:
            logger.warning(
                "crypto_insecure_fallback_enabled",
                detail="Encrypted exports are only base64-obfuscated and provide no confidentiality",
            )
            self._cipher = _ObfuscationCipher()
        else:
            raise CryptoUnavailableError(
                "Cryptographic primitives are not available in this environment"
            )

    @classmethod
    def from_settings(cls, settings: CryptoSettings) -> "CryptoService":
        return cls(
            iterations=settings.kdf_iterations,
            allow_insecure_fallback=settings.allow_insecure_fallback,
        )

    @property
    def is_secure(self) -> bool:
        """False when running on the insecure fallback."""
        return self._cipher.secure

    async def encrypt(self, plaintext: str, password: str) -> str:
        """
        Encrypt text with a password.

        Returns:
            base64(salt || nonce || ciphertext+tag)

        Raises:
            ValueError: If the password is empty
        """
        if not password:
            raise ValueError("A non-empty password is required")
        return await asyncio.to_thread(self._cipher.seal, plaintext, password)

    async def decrypt(self, ciphertext: str, password: str) -> str:
        """
        Decrypt text produced by encrypt().

        Raises:
            DecryptionFailedError: Wrong password, tampered or malformed data
        """
        if not password:
            raise DecryptionFailedError("A non-empty password is required")
        if not isinstance(ciphertext, str) or not ciphertext:
            raise DecryptionFailedError("Ciphertext must be a non-empty string")
        return await asyncio.to_thread(self._cipher.open, ciphertext, password)

    async def encrypt_data(self, json_text: str, password: str) -> EncryptedEnvelope:
        """Encrypt and wrap in the {isEncrypted, data} envelope."""
        return EncryptedEnvelope(data=await self.encrypt(json_text, password))

    async def decrypt_data(
        self,
        payload: Union[EncryptedEnvelope, dict[str, Any], str],
        password: str,
    ) -> str:
        """
        Unwrap and decrypt.

        Accepts the envelope model, its dict form, or a raw ciphertext string.

        Raises:
            TypeError: If the payload is none of the accepted shapes
            DecryptionFailedError: If decryption fails
        """
        if isinstance(payload, EncryptedEnvelope):
            return await self.decrypt(payload.data, password)
        if is_encrypted_payload(payload):
            return await self.decrypt(payload["data"], password)
        if isinstance(payload, str):
            return await self.decrypt(payload, password)
        raise TypeError("Unsupported encrypted input format")

    @staticmethod
    def is_encrypted_payload(obj: Any) -> bool:
        return is_encrypted_payload(obj)

    @staticmethod
    def check_password_strength(password: str) -> PasswordStrength:
        return passwords.check_password_strength(password)

    @staticmethod
    def generate_password(length: int = 16, include_symbols: bool = True) -> str:
        return passwords.generate_password(length, include_symbols)
