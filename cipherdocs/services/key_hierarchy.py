"""
CipherDocs Key Hierarchy
Signup, login, recovery and password reset for the user's master key

The master key is generated once at signup and never regenerated.
It is persisted only in wrapped form: once under a password-derived key
and once under a recovery-key-derived key. Password reset re-wraps the
same master key, so the recovery path keeps working.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from cipherdocs.core.config import settings
from cipherdocs.core.crypto import CryptoUtils, SymmetricKey, WrappingKey, b64decode, b64encode
from cipherdocs.core.errors import (
    InvalidCredentialsError,
    KeyDerivationError,
    KeyRecordExistsError,
    KeyRecordNotFoundError,
    StoreError,
    UnwrapError,
    ValidationError,
)
from cipherdocs.models.keys import KeyRecordCreate, KeyRecordResponse, PasswordWrapUpdate
from cipherdocs.services.session import SessionKeyCache
from cipherdocs.utils.validators import validate_password_strength

logger = logging.getLogger(__name__)


class KeyRecordStore(Protocol):
    """Durable home of the wrapped key record"""

    async def fetch_key_record(self, user_id: str) -> Optional[KeyRecordResponse]: ...

    async def store_key_record(self, user_id: str, record: KeyRecordCreate) -> None: ...

    async def update_password_wrap(self, user_id: str, update: PasswordWrapUpdate) -> None: ...


@dataclass
class SignupResult:
    master_key: SymmetricKey
    # Shown to the user once, never persisted
    recovery_key: str
    record: KeyRecordCreate


class KeyHierarchyManager:
    def __init__(
        self,
        store: KeyRecordStore,
        session_cache: Optional[SessionKeyCache] = None,
        max_store_attempts: Optional[int] = None,
    ):
        self.store = store
        self.session_cache = session_cache
        self.max_store_attempts = max_store_attempts or settings.KEY_STORE_MAX_ATTEMPTS

    # ==================== Signup ====================

    async def signup(self, user_id: str, password: str) -> SignupResult:
        is_valid, error = validate_password_strength(password)
        if not is_valid:
            raise ValidationError(error)

        salt = CryptoUtils.generate_salt()
        password_key = await asyncio.to_thread(CryptoUtils.derive_key_from_password, password, salt)
        master_key = CryptoUtils.generate_random_symmetric_key()
        recovery_key = CryptoUtils.generate_recovery_key_string()
        recovery_wrapping_key = CryptoUtils.derive_key_from_recovery_string(recovery_key, salt)

        wrapped_pw = CryptoUtils.encrypt_key(master_key, password_key)
        wrapped_recovery = CryptoUtils.encrypt_key(master_key, recovery_wrapping_key)

        record = KeyRecordCreate(
            salt=b64encode(salt),
            enc_key_pw=b64encode(wrapped_pw.ciphertext),
            iv_pw=b64encode(wrapped_pw.iv),
            enc_key_recovery=b64encode(wrapped_recovery.ciphertext),
            iv_recovery=b64encode(wrapped_recovery.iv),
        )
        await self._store_with_retry(user_id, record)

        self._cache(master_key)
        logger.info(f"✅ Key hierarchy created for user {user_id}")
        return SignupResult(master_key=master_key, recovery_key=recovery_key, record=record)

    async def _store_with_retry(self, user_id: str, record: KeyRecordCreate) -> None:
        for attempt in range(1, self.max_store_attempts + 1):
            try:
                await self.store.store_key_record(user_id, record)
                return
            except KeyRecordExistsError:
                # An earlier attempt may have committed before its response was lost
                if attempt > 1 and await self._is_stored(user_id, record):
                    logger.info(f"🔑 Key record for user {user_id} was stored by an earlier attempt")
                    return
                raise
            except StoreError as e:
                if attempt == self.max_store_attempts:
                    logger.error(f"❌ Failed to store keys for user {user_id} after {attempt} attempts: {e}")
                    raise
                logger.warning(f"🔄 Storing keys failed (attempt {attempt}/{self.max_store_attempts}): {e}")

    async def _is_stored(self, user_id: str, record: KeyRecordCreate) -> bool:
        stored = await self.store.fetch_key_record(user_id)
        return (
            stored is not None
            and stored.salt == record.salt
            and stored.enc_key_pw == record.enc_key_pw
            and stored.enc_key_recovery == record.enc_key_recovery
        )

    # ==================== Unlock ====================

    async def _fetch_record(self, user_id: str) -> KeyRecordResponse:
        record = await self.store.fetch_key_record(user_id)
        if record is None:
            raise KeyRecordNotFoundError()
        return record

    @staticmethod
    def _unwrap(ciphertext: str, iv: str, wrapping_key: WrappingKey) -> SymmetricKey:
        try:
            raw = CryptoUtils.decrypt_key(b64decode(ciphertext), b64decode(iv), wrapping_key)
            return CryptoUtils.import_symmetric_key(raw)
        except (UnwrapError, ValueError):
            raise InvalidCredentialsError() from None

    async def login(self, user_id: str, password: str) -> SymmetricKey:
        record = await self._fetch_record(user_id)
        salt = b64decode(record.salt)
        password_key = await asyncio.to_thread(CryptoUtils.derive_key_from_password, password, salt)
        master_key = self._unwrap(record.enc_key_pw, record.iv_pw, password_key)
        self._cache(master_key)
        logger.info(f"🔓 Master key unlocked for user {user_id}")
        return master_key

    async def recover(self, user_id: str, recovery_key: str) -> SymmetricKey:
        record = await self._fetch_record(user_id)
        salt = b64decode(record.salt)
        try:
            recovery_wrapping_key = CryptoUtils.derive_key_from_recovery_string(recovery_key, salt)
        except KeyDerivationError:
            raise InvalidCredentialsError() from None
        master_key = self._unwrap(record.enc_key_recovery, record.iv_recovery, recovery_wrapping_key)
        self._cache(master_key)
        logger.info(f"🔓 Master key recovered for user {user_id}")
        return master_key

    # ==================== Password Reset ====================

    async def reset_password(self, user_id: str, master_key: SymmetricKey, new_password: str) -> None:
        """Re-wrap the existing master key under a new password. Salt and recovery wrap stay."""
        is_valid, error = validate_password_strength(new_password)
        if not is_valid:
            raise ValidationError(error)

        record = await self._fetch_record(user_id)
        salt = b64decode(record.salt)
        password_key = await asyncio.to_thread(CryptoUtils.derive_key_from_password, new_password, salt)
        wrapped = CryptoUtils.encrypt_key(master_key, password_key)

        await self.store.update_password_wrap(
            user_id,
            PasswordWrapUpdate(enc_key_pw=b64encode(wrapped.ciphertext), iv_pw=b64encode(wrapped.iv)),
        )
        logger.info(f"🔄 Password wrap replaced for user {user_id}")

    async def change_password(self, user_id: str, old_password: str, new_password: str) -> SymmetricKey:
        master_key = await self.login(user_id, old_password)
        await self.reset_password(user_id, master_key, new_password)
        return master_key

    # ==================== Session ====================

    def _cache(self, master_key: SymmetricKey) -> None:
        if self.session_cache is not None:
            self.session_cache.store_master_key(master_key)

    def restore_session(self) -> Optional[SymmetricKey]:
        if self.session_cache is None:
            return None
        return self.session_cache.get_master_key()

    def logout(self) -> None:
        if self.session_cache is not None:
            self.session_cache.clear()
