"""
CipherDocs Session
Per-login key context and the tab-scoped master key cache.

A KeyContext is built once per login and passed explicitly to whatever
needs keys. CredentialsGate lets work that starts before login wait for
a context, bounded by a timeout.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

from cipherdocs.core.config import settings
from cipherdocs.core.crypto import CryptoUtils, SymmetricKey, b64decode, b64encode
from cipherdocs.core.errors import CredentialsTimeoutError, UnwrapError
from cipherdocs.services.key_storage import KeyPersistence
from cipherdocs.services.searchable_encryption import SearchableEncryptionProvider

logger = logging.getLogger(__name__)

SESSION_KEY_NAME = "cc-session-sym-key"

CredentialsPrompt = Callable[[], Union[None, Awaitable[None]]]


@dataclass
class KeyContext:
    """Everything an authenticated session needs to encrypt"""
    user_id: str
    master_key: SymmetricKey
    encryption: SearchableEncryptionProvider = field(default_factory=SearchableEncryptionProvider)

    @property
    def is_ready(self) -> bool:
        return self.encryption.is_initialized

    def close(self) -> None:
        self.encryption.clear()


class SessionKeyCache:
    """
    Tab-scoped cache of the raw master key.
    Lives only as long as the process; cleared on logout.
    """

    def __init__(self):
        self._store: dict = {}

    def store_master_key(self, key: SymmetricKey) -> None:
        self._store[SESSION_KEY_NAME] = b64encode(key.export_raw())

    def get_master_key(self) -> Optional[SymmetricKey]:
        encoded = self._store.get(SESSION_KEY_NAME)
        if not encoded:
            return None
        try:
            return CryptoUtils.import_symmetric_key(b64decode(encoded))
        except (ValueError, UnwrapError):
            logger.warning("⚠️ Cached session key is invalid, clearing it")
            self.clear()
            return None

    def has_key(self) -> bool:
        return SESSION_KEY_NAME in self._store

    def clear(self) -> None:
        self._store.pop(SESSION_KEY_NAME, None)


class CredentialsGate:
    """
    Single-resolution wait for a KeyContext.

    Callers that need keys before the user has logged in await
    wait_for_context(). The first waiter triggers the prompt callback once;
    all waiters share the same future and fail with CredentialsTimeoutError
    when nobody provides credentials in time.
    """

    def __init__(self, prompt: Optional[CredentialsPrompt] = None, timeout: Optional[float] = None):
        self._prompt = prompt
        self._timeout = timeout if timeout is not None else settings.CREDENTIALS_WAIT_TIMEOUT
        self._context: Optional[KeyContext] = None
        self._waiter: Optional[asyncio.Future] = None

    @property
    def context(self) -> Optional[KeyContext]:
        return self._context

    def provide(self, context: KeyContext) -> None:
        self._context = context
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(context)
        self._waiter = None

    def clear(self) -> None:
        if self._context is not None:
            self._context.close()
        self._context = None

    async def request_credentials(self) -> None:
        """Signal that credentials are needed without waiting"""
        if self._prompt is None:
            return
        result = self._prompt()
        if inspect.isawaitable(result):
            await result

    async def wait_for_context(self, timeout: Optional[float] = None) -> KeyContext:
        if self._context is not None:
            return self._context

        if self._waiter is None or self._waiter.done():
            self._waiter = asyncio.get_running_loop().create_future()
            logger.info("🔑 Waiting for credentials")
            await self.request_credentials()
            # The prompt may have provided credentials synchronously
            if self._context is not None:
                return self._context

        # Shielded so one waiter timing out leaves the shared future pending
        try:
            return await asyncio.wait_for(
                asyncio.shield(self._waiter), timeout if timeout is not None else self._timeout
            )
        except asyncio.TimeoutError:
            raise CredentialsTimeoutError() from None


async def open_key_context(user_id: str, master_key: SymmetricKey, persistence: KeyPersistence) -> KeyContext:
    """Load the search keys for a freshly unlocked master key"""
    material = await persistence.load(user_id, master_key)
    return KeyContext(
        user_id=user_id,
        master_key=master_key,
        encryption=SearchableEncryptionProvider(material),
    )
