"""
CipherDocs Cryptographic Primitives
Client-side key derivation, key generation and key wrapping

The master key is an AES-256-GCM key. It is wrapped twice, once under a
password-derived key and once under a recovery-key-derived key, both using
the same per-user salt.
"""

import base64
import binascii
import hashlib
import json
import secrets
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from cipherdocs.core.errors import (
    DecryptionError,
    KeyDerivationError,
    UnwrapError,
    ValidationError,
    WrapError,
)

PBKDF2_ITERATIONS = 100_000
SALT_LENGTH = 16
IV_LENGTH = 12
KEY_LENGTH = 32
RECOVERY_KEY_LENGTH = 32


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: Union[str, bytes]) -> bytes:
    """Strict base64 decode; raises ValueError on malformed input"""
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError("Invalid base64 data") from e


class WrappingKey:
    """
    Key derived from a password or recovery key.
    Only wraps and unwraps other keys; it has no data encryption methods.
    """

    __slots__ = ("_aead",)

    def __init__(self, raw: bytes):
        if len(raw) != KEY_LENGTH:
            raise KeyDerivationError("Derived key has an unexpected length")
        self._aead = AESGCM(raw)

    def wrap(self, raw_key: bytes, iv: bytes) -> bytes:
        return self._aead.encrypt(iv, raw_key, None)

    def unwrap(self, ciphertext: bytes, iv: bytes) -> bytes:
        return self._aead.decrypt(iv, ciphertext, None)

    def __repr__(self) -> str:
        return "WrappingKey(<redacted>)"


class SymmetricKey:
    """AES-256-GCM key usable for data encryption (the master key)"""

    __slots__ = ("_raw", "_aead")

    def __init__(self, raw: bytes):
        if len(raw) != KEY_LENGTH:
            raise ValidationError(f"Symmetric key must be {KEY_LENGTH} bytes")
        self._raw = bytes(raw)
        self._aead = AESGCM(self._raw)

    def export_raw(self) -> bytes:
        return self._raw

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt bytes; returns iv || ciphertext"""
        iv = secrets.token_bytes(IV_LENGTH)
        return iv + self._aead.encrypt(iv, plaintext, None)

    def decrypt(self, payload: bytes) -> bytes:
        if len(payload) <= IV_LENGTH:
            raise DecryptionError("Encrypted payload is too short")
        iv, ciphertext = payload[:IV_LENGTH], payload[IV_LENGTH:]
        try:
            return self._aead.decrypt(iv, ciphertext, None)
        except InvalidTag:
            raise DecryptionError("Failed to decrypt data with the provided key") from None

    def encrypt_string(self, data: str) -> str:
        """Encrypt a UTF-8 string; returns base64(iv || ciphertext)"""
        return b64encode(self.encrypt(data.encode("utf-8")))

    def decrypt_string(self, encrypted: str) -> str:
        try:
            payload = b64decode(encrypted)
        except ValueError:
            raise DecryptionError("Encrypted data is not valid base64") from None
        return self.decrypt(payload).decode("utf-8")

    def encrypt_json(self, data) -> str:
        return self.encrypt_string(json.dumps(data))

    def decrypt_json(self, encrypted: str):
        return json.loads(self.decrypt_string(encrypted))

    def __eq__(self, other) -> bool:
        if not isinstance(other, SymmetricKey):
            return NotImplemented
        return secrets.compare_digest(self._raw, other._raw)

    def __hash__(self) -> int:
        return hash(hashlib.sha256(self._raw).digest())

    def __repr__(self) -> str:
        return "SymmetricKey(<redacted>)"


@dataclass(frozen=True)
class WrappedKey:
    """Master key encrypted under a wrapping key"""
    ciphertext: bytes
    iv: bytes

    def to_dict(self) -> dict:
        return {"ciphertext": b64encode(self.ciphertext), "iv": b64encode(self.iv)}


class CryptoUtils:
    """Key hierarchy primitives"""

    @staticmethod
    def generate_salt() -> bytes:
        """16 cryptographically random bytes, generated once per user"""
        return secrets.token_bytes(SALT_LENGTH)

    @staticmethod
    def derive_key_from_password(password: str, salt: bytes) -> WrappingKey:
        """PBKDF2-HMAC-SHA256, 100k iterations"""
        if not password:
            raise KeyDerivationError("Password must not be empty")
        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=KEY_LENGTH,
                salt=salt,
                iterations=PBKDF2_ITERATIONS,
            )
            return WrappingKey(kdf.derive(password.encode("utf-8")))
        except (TypeError, ValueError):
            raise KeyDerivationError("Failed to derive key from password") from None

    @staticmethod
    def derive_key_from_recovery_string(recovery_string: str, salt: bytes) -> WrappingKey:
        """SHA-256 over recovery bytes followed by the salt"""
        try:
            recovery_bytes = b64decode(recovery_string.strip())
        except (ValueError, AttributeError):
            raise KeyDerivationError("Invalid recovery key format or derivation failed.") from None
        if not recovery_bytes:
            raise KeyDerivationError("Invalid recovery key format or derivation failed.")
        digest = hashlib.sha256(recovery_bytes + salt).digest()
        return WrappingKey(digest)

    @staticmethod
    def generate_random_symmetric_key() -> SymmetricKey:
        return SymmetricKey(AESGCM.generate_key(bit_length=256))

    @staticmethod
    def generate_recovery_key_string() -> str:
        """32 random bytes, base64. Shown to the user exactly once."""
        return b64encode(secrets.token_bytes(RECOVERY_KEY_LENGTH))

    @staticmethod
    def encrypt_key(key: SymmetricKey, wrapping_key: WrappingKey) -> WrappedKey:
        iv = secrets.token_bytes(IV_LENGTH)
        try:
            ciphertext = wrapping_key.wrap(key.export_raw(), iv)
        except (TypeError, ValueError):
            raise WrapError("Failed to encrypt key") from None
        return WrappedKey(ciphertext=ciphertext, iv=iv)

    @staticmethod
    def decrypt_key(ciphertext: bytes, iv: bytes, wrapping_key: WrappingKey) -> bytes:
        """
        Unwrap raw key bytes.
        Wrong key, corrupted ciphertext and malformed IV all raise the same UnwrapError.
        """
        try:
            return wrapping_key.unwrap(ciphertext, iv)
        except (InvalidTag, TypeError, ValueError):
            raise UnwrapError() from None

    @staticmethod
    def import_symmetric_key(raw: bytes) -> SymmetricKey:
        try:
            return SymmetricKey(raw)
        except ValidationError:
            raise UnwrapError() from None
