"""
Key Record Models
Wrapped master key records and encrypted search key material.
Every field is produced client-side; the server stores base64 ciphertext only.
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional
from datetime import datetime

from cipherdocs.core.crypto import b64decode


def _check_base64(v: str) -> str:
    try:
        b64decode(v)
    except ValueError:
        raise ValueError('Value must be base64 encoded')
    return v


# ==================== Wrapped Master Key ====================

class KeyRecordBase(BaseModel):
    salt: str = Field(..., description="Per-user PBKDF2 salt, base64")
    enc_key_pw: str = Field(..., description="Master key wrapped under the password key")
    iv_pw: str
    enc_key_recovery: str = Field(..., description="Master key wrapped under the recovery key")
    iv_recovery: str

    @field_validator('salt', 'enc_key_pw', 'iv_pw', 'enc_key_recovery', 'iv_recovery')
    @classmethod
    def validate_base64(cls, v):
        return _check_base64(v)


class KeyRecordCreate(KeyRecordBase):
    encrypted_search_key_material: Optional[str] = None


class KeyRecordResponse(KeyRecordBase):
    user_id: str
    encrypted_search_key_material: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PasswordWrapUpdate(BaseModel):
    """Password reset only replaces the password wrap."""
    enc_key_pw: str
    iv_pw: str

    @field_validator('enc_key_pw', 'iv_pw')
    @classmethod
    def validate_base64(cls, v):
        return _check_base64(v)


# ==================== Search Key Material ====================

class SearchKeyMaterialUpdate(BaseModel):
    encrypted_search_key_material: str = Field(..., min_length=1, description="base64(iv || ciphertext) under the master key")


class SearchKeyMaterialResponse(BaseModel):
    encrypted_search_key_material: Optional[str] = None
