"""Encryption services package."""

from luxeledger.services.crypto.encryption import (
    CryptoError,
    CryptoService,
    CryptoUnavailableError,
    DecryptionFailedError,
    PasswordRequiredError,
    detect_primitives,
)
from luxeledger.services.crypto.passwords import (
    check_password_strength,
    generate_password,
)

__all__ = [
    "CryptoError",
    "CryptoService",
    "CryptoUnavailableError",
    "DecryptionFailedError",
    "PasswordRequiredError",
    "check_password_strength",
    "detect_primitives",
    "generate_password",
]
