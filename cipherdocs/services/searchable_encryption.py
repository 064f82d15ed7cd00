"""
CipherDocs Searchable Encryption
Encryption of document content that still allows server-side search

- Text: AES-256-GCM with a random IV, so equal plaintexts differ.
- Metadata: AES-SIV, deterministic, so equal plaintexts give equal
  ciphertexts and the server can filter on equality.
- Vectors: scaled secret orthogonal rotation. Cosine similarity between
  encrypted vectors equals cosine similarity between plaintext vectors,
  so top-k ranking survives encryption.

The key material is generated once per account and stored encrypted
under the master key (see key_storage).
"""

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, AESSIV
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from cipherdocs.core.config import settings
from cipherdocs.core.crypto import IV_LENGTH, b64decode, b64encode
from cipherdocs.core.errors import DecryptionError, NotInitializedError, ValidationError

logger = logging.getLogger(__name__)

TAG_LENGTH = 16
MATERIAL_VERSION = 1
VECTOR_KDF_INFO = b"CipherDocs Vector Rotation v1"

# Nested JSON string encodings tolerated when reading legacy metadata
MAX_UNWRAP_DEPTH = 3


@dataclass(frozen=True)
class SearchKeyMaterial:
    """Secret keys for the three searchable encryption schemes"""
    text_key: bytes
    metadata_key: bytes
    vector_key: bytes
    scaling_factor: float = 1.0
    version: int = MATERIAL_VERSION

    @classmethod
    def generate(cls, scaling_factor: Optional[float] = None) -> "SearchKeyMaterial":
        return cls(
            text_key=AESGCM.generate_key(bit_length=256),
            metadata_key=AESSIV.generate_key(bit_length=512),
            vector_key=secrets.token_bytes(32),
            scaling_factor=scaling_factor if scaling_factor is not None else settings.VECTOR_SCALING_FACTOR,
        )

    def to_json(self) -> str:
        return json.dumps({
            "version": self.version,
            "text_key": b64encode(self.text_key),
            "metadata_key": b64encode(self.metadata_key),
            "vector_key": b64encode(self.vector_key),
            "scaling_factor": self.scaling_factor,
        })

    @classmethod
    def from_json(cls, data: str) -> "SearchKeyMaterial":
        try:
            parsed = json.loads(data)
            material = cls(
                text_key=b64decode(parsed["text_key"]),
                metadata_key=b64decode(parsed["metadata_key"]),
                vector_key=b64decode(parsed["vector_key"]),
                scaling_factor=float(parsed.get("scaling_factor", 1.0)),
                version=int(parsed.get("version", MATERIAL_VERSION)),
            )
        except (ValueError, KeyError, TypeError):
            raise ValidationError("Malformed search key material") from None

        if len(material.text_key) != 32 or len(material.metadata_key) != 64 or len(material.vector_key) != 32:
            raise ValidationError("Malformed search key material")
        if not material.scaling_factor > 0:
            raise ValidationError("Malformed search key material")
        return material

    def __repr__(self) -> str:
        return f"SearchKeyMaterial(version={self.version}, <redacted>)"


@dataclass
class BatchDecryptResult:
    index: int
    value: Any
    ok: bool
    error: Optional[str] = None


def _bytes_from_buffer_shape(value: Any) -> Optional[bytes]:
    """Byte arrays serialized as {"type": "Buffer", "data": [...]} or a plain int list"""
    if isinstance(value, dict) and isinstance(value.get("data"), list):
        value = value["data"]
    if isinstance(value, list) and all(isinstance(b, int) and 0 <= b <= 255 for b in value):
        return bytes(value)
    return None


def _coerce_field(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    as_buffer = _bytes_from_buffer_shape(value)
    if as_buffer is not None:
        return as_buffer
    if isinstance(value, str):
        return b64decode(value)
    raise ValueError("Unsupported ciphertext field")


class SearchableEncryptionProvider:
    """
    Deterministic, semantic and distance-preserving encryption.
    Every operation raises NotInitializedError until set_keys() is called.
    """

    def __init__(self, material: Optional[SearchKeyMaterial] = None):
        self._material: Optional[SearchKeyMaterial] = None
        self._text_aead: Optional[AESGCM] = None
        self._metadata_siv: Optional[AESSIV] = None
        self._rotations: Dict[int, np.ndarray] = {}
        if material is not None:
            self.set_keys(material)

    # ==================== Lifecycle ====================

    def set_keys(self, material: SearchKeyMaterial) -> None:
        self._material = material
        self._text_aead = AESGCM(material.text_key)
        self._metadata_siv = AESSIV(material.metadata_key)
        self._rotations = {}

    def clear(self) -> None:
        self._material = None
        self._text_aead = None
        self._metadata_siv = None
        self._rotations = {}

    @property
    def is_initialized(self) -> bool:
        return self._material is not None

    def _require_keys(self) -> SearchKeyMaterial:
        if self._material is None:
            raise NotInitializedError()
        return self._material

    # ==================== Text ====================

    def encrypt_text(self, plaintext: str) -> str:
        """Returns a JSON string {ciphertext, iv, tag}"""
        self._require_keys()
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = self._text_aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return json.dumps({
            "ciphertext": b64encode(ciphertext),
            "iv": b64encode(iv),
            "tag": b64encode(tag),
        })

    def decrypt_text(self, encrypted: Union[str, dict]) -> str:
        self._require_keys()
        payload: Any = encrypted
        for _ in range(MAX_UNWRAP_DEPTH):
            if not isinstance(payload, str):
                break
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                raise DecryptionError("Encrypted text is not a valid ciphertext object") from None

        if not isinstance(payload, dict):
            raise DecryptionError("Encrypted text is not a valid ciphertext object")

        try:
            ciphertext = _coerce_field(payload["ciphertext"])
            iv = _coerce_field(payload["iv"])
            tag = _coerce_field(payload["tag"])
        except (KeyError, ValueError):
            raise DecryptionError("Encrypted text is missing ciphertext, iv or tag") from None

        try:
            plaintext = self._text_aead.decrypt(iv, ciphertext + tag, None)
        except (InvalidTag, ValueError):
            raise DecryptionError("Failed to decrypt text") from None
        return plaintext.decode("utf-8")

    # ==================== Metadata ====================

    def encrypt_metadata(self, plaintext: str) -> str:
        """Deterministic: the same plaintext always yields the same base64 string"""
        self._require_keys()
        if not isinstance(plaintext, str):
            raise ValidationError("Metadata value must be a string")
        return b64encode(self._metadata_siv.encrypt(plaintext.encode("utf-8"), None))

    def _metadata_bytes(self, value: Any) -> Optional[bytes]:
        """Resolve the stored ciphertext shapes to raw bytes, or None if unrecognized"""
        for _ in range(MAX_UNWRAP_DEPTH):
            if isinstance(value, (bytes, bytearray)):
                return bytes(value)
            as_buffer = _bytes_from_buffer_shape(value)
            if as_buffer is not None:
                return as_buffer
            if not isinstance(value, str):
                return None

            stripped = value.strip()
            if stripped[:1] in ('{', '[', '"'):
                try:
                    value = json.loads(stripped)
                    continue
                except json.JSONDecodeError:
                    return None
            try:
                return b64decode(stripped)
            except ValueError:
                return None
        return None

    def decrypt_metadata(self, value: Any) -> Any:
        """
        Decrypt deterministic metadata.
        Accepts base64, byte-array-serialized and double-stringified shapes.
        Values that were never encrypted come back unchanged.
        """
        self._require_keys()
        raw = self._metadata_bytes(value)
        if not raw:
            return value
        try:
            return self._metadata_siv.decrypt(raw, None).decode("utf-8")
        except (InvalidTag, ValueError):
            # UnicodeDecodeError is a ValueError
            logger.debug("Metadata value is not decryptable, returning it unchanged")
            return value

    # ==================== Vectors ====================

    def _rotation(self, dimension: int) -> np.ndarray:
        rotation = self._rotations.get(dimension)
        if rotation is None:
            material = self._require_keys()
            seed = HKDF(
                algorithm=hashes.SHA256(),
                length=32,
                salt=None,
                info=VECTOR_KDF_INFO + f":{dimension}".encode(),
            ).derive(material.vector_key)
            rng = np.random.default_rng(int.from_bytes(seed, "big"))
            q, r = np.linalg.qr(rng.standard_normal((dimension, dimension)))
            rotation = q * np.sign(np.diag(r))
            self._rotations[dimension] = rotation
        return rotation

    @staticmethod
    def _as_vector(vector: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float64)
        if arr.ndim != 1 or arr.size == 0:
            raise ValidationError("Vector must be a non-empty one-dimensional sequence")
        if not np.all(np.isfinite(arr)):
            raise ValidationError("Vector contains non-finite values")
        return arr

    def encrypt_vector(self, vector: Sequence[float]) -> List[float]:
        material = self._require_keys()
        arr = self._as_vector(vector)
        return (material.scaling_factor * (self._rotation(arr.size) @ arr)).tolist()

    def decrypt_vector(self, vector: Sequence[float]) -> List[float]:
        material = self._require_keys()
        arr = self._as_vector(vector)
        return ((self._rotation(arr.size).T @ arr) / material.scaling_factor).tolist()

    # ==================== Batches ====================

    def decrypt_text_batch_detailed(self, items: Sequence[Union[str, dict]]) -> List[BatchDecryptResult]:
        """Decrypt each item independently and report per-item status"""
        self._require_keys()
        results = []
        for index, item in enumerate(items):
            try:
                results.append(BatchDecryptResult(index=index, value=self.decrypt_text(item), ok=True))
            except DecryptionError as e:
                logger.warning(f"⚠️ Failed to decrypt text item {index}: {e}")
                results.append(BatchDecryptResult(index=index, value="", ok=False, error=str(e)))
        return results

    def decrypt_text_batch(self, items: Sequence[Union[str, dict]]) -> List[str]:
        """Failed items are replaced with an empty string"""
        return [result.value for result in self.decrypt_text_batch_detailed(items)]

    def decrypt_metadata_batch(self, items: Sequence[Any]) -> List[Any]:
        """Undecryptable values pass through unchanged, as in decrypt_metadata"""
        self._require_keys()
        return [self.decrypt_metadata(item) for item in items]
