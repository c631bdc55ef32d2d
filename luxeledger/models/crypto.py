"""
Encryption Models

The envelope is self-describing: a JSON blob can always be told apart from
an encrypted one without external metadata.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class PasswordStrength(str, Enum):
    """Rule-based password strength buckets."""
    WEAK = "weak"
    FAIR = "fair"
    GOOD = "good"
    STRONG = "strong"


class EncryptedEnvelope(BaseModel):
    """
    Wrapper for an encrypted payload.

    Serialized form: {"isEncrypted": true, "data": "<base64>"}
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    is_encrypted: Literal[True] = Field(default=True, alias="isEncrypted")
    data: str = Field(
        ...,
        min_length=1,
        description="base64(salt || nonce || ciphertext+tag)"
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def is_encrypted_payload(obj: Any) -> bool:
    """Quick shape check used by import flows."""
    if isinstance(obj, EncryptedEnvelope):
        return True
    return (
        isinstance(obj, dict)
        and obj.get("isEncrypted") is True
        and isinstance(obj.get("data"), str)
        and len(obj["data"]) > 0
    )
