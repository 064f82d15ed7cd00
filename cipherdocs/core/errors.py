"""
CipherDocs Errors
Exception hierarchy shared by the key hierarchy, searchable encryption
and the document processing pipeline.

Messages never carry key material, plaintext or ciphertext.
"""

from typing import Optional


class CipherDocsError(Exception):
    """Base class for every error raised by cipherdocs."""


class ValidationError(CipherDocsError):
    """Input rejected before any work was done."""


# ============ Cryptography ============

class CryptoError(CipherDocsError):
    pass


class KeyDerivationError(CryptoError):
    pass


class WrapError(CryptoError):
    pass


class UnwrapError(CryptoError):
    """Raised for every unwrap failure with the same message."""

    def __init__(self, message: str = "Failed to decrypt key. Incorrect password, recovery key, or data corruption."):
        super().__init__(message)


class DecryptionError(CryptoError):
    pass


# ============ Key Hierarchy ============

class InvalidCredentialsError(CipherDocsError):
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class KeyRecordNotFoundError(CipherDocsError):
    def __init__(self, message: str = "Encryption keys not found"):
        super().__init__(message)


class KeyRecordExistsError(CipherDocsError):
    def __init__(self, message: str = "Keys already exist"):
        super().__init__(message)


class NotInitializedError(CipherDocsError):
    def __init__(self, message: str = "Encryption keys are not loaded. Please enter your password."):
        super().__init__(message)


class SearchKeyUnavailableError(CipherDocsError):
    """Search key material could not be loaded and regeneration is unsafe."""


class KeyPersistenceError(CipherDocsError):
    pass


class CredentialsTimeoutError(CipherDocsError):
    def __init__(self, message: str = "Timed out waiting for credentials"):
        super().__init__(message)


# ============ Collaborators ============

class StoreError(CipherDocsError):
    """The durable store answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# ============ Processing Pipeline ============

class PipelineError(CipherDocsError):
    stage = "processing"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ExtractionError(PipelineError):
    stage = "extracting"


class EmbeddingError(PipelineError):
    stage = "embedding"


class EncryptionError(PipelineError):
    stage = "encrypting"


class UploadError(PipelineError):
    stage = "uploading"


class ProcessingCancelledError(CipherDocsError):
    def __init__(self, message: str = "Operation cancelled by user"):
        super().__init__(message)
