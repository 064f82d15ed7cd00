"""
CipherDocs Key Storage
Multi-source persistence for the encrypted search key material

Sources are tried in priority order (by default database, then local
files, then generation). A hit is decrypted with the master key and
written back into the sources that missed it. New material is generated
only when every source answered with a definite miss, since regenerating
after a transient failure would orphan everything encrypted so far.
"""

import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from cipherdocs.core.config import settings
from cipherdocs.core.crypto import SymmetricKey
from cipherdocs.core.errors import (
    CipherDocsError,
    DecryptionError,
    KeyPersistenceError,
    SearchKeyUnavailableError,
    ValidationError,
)
from cipherdocs.services.searchable_encryption import SearchKeyMaterial

logger = logging.getLogger(__name__)

GENERATE = "generate"
LOCAL_KEY_PREFIX = "encrypted_search_keys_"

ConfirmRekey = Callable[[str], Awaitable[bool]]


class SearchKeyMaterialStore(Protocol):
    async def fetch_search_key_material(self, user_id: str) -> Optional[str]: ...

    async def store_search_key_material(self, user_id: str, encrypted: str) -> None: ...

    async def clear_search_key_material(self, user_id: str) -> None: ...


# ==================== Storage Providers ====================

class KeyStorageProvider(ABC):
    """One place the encrypted search key material can live"""

    name: str = ""
    durable: bool = True

    @abstractmethod
    async def fetch_keys(self, user_id: str) -> Optional[str]:
        """Encrypted material, or None when this source definitely has none"""

    @abstractmethod
    async def store_keys(self, user_id: str, encrypted: str) -> None:
        pass

    @abstractmethod
    async def clear_keys(self, user_id: str) -> None:
        pass


class DatabaseKeyStorage(KeyStorageProvider):
    name = "database"

    def __init__(self, store: SearchKeyMaterialStore):
        self.store = store

    async def fetch_keys(self, user_id: str) -> Optional[str]:
        return await self.store.fetch_search_key_material(user_id)

    async def store_keys(self, user_id: str, encrypted: str) -> None:
        await self.store.store_search_key_material(user_id, encrypted)

    async def clear_keys(self, user_id: str) -> None:
        await self.store.clear_search_key_material(user_id)


class LocalFileKeyStorage(KeyStorageProvider):
    """One JSON file per user in a local directory"""

    name = "local"

    def __init__(self, directory: Optional[str] = None):
        self.directory = Path(os.path.expanduser(directory or settings.LOCAL_KEY_DIR))

    def _path(self, user_id: str) -> Path:
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
        return self.directory / f"{LOCAL_KEY_PREFIX}{digest}.json"

    async def fetch_keys(self, user_id: str) -> Optional[str]:
        path = self._path(user_id)
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        if data.get("user_id") != user_id:
            return None
        return data.get("encrypted_keys")

    async def store_keys(self, user_id: str, encrypted: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(user_id)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps({"user_id": user_id, "encrypted_keys": encrypted}), encoding="utf-8")
        os.replace(tmp_path, path)

    async def clear_keys(self, user_id: str) -> None:
        self._path(user_id).unlink(missing_ok=True)

    def cleanup_stale_keys(self, current_user_id: str) -> int:
        """Remove key files left behind by other users. Returns count removed."""
        if not self.directory.exists():
            return 0
        keep = self._path(current_user_id).name
        removed = 0
        for path in self.directory.glob(f"{LOCAL_KEY_PREFIX}*.json"):
            if path.name != keep:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info(f"🧹 Removed {removed} stale local key files")
        return removed


class SessionKeyStorage(KeyStorageProvider):
    """In-memory, scoped to this process"""

    name = "session"
    durable = False

    def __init__(self):
        self._keys: Dict[str, str] = {}

    async def fetch_keys(self, user_id: str) -> Optional[str]:
        return self._keys.get(user_id)

    async def store_keys(self, user_id: str, encrypted: str) -> None:
        self._keys[user_id] = encrypted

    async def clear_keys(self, user_id: str) -> None:
        self._keys.pop(user_id, None)


# ==================== Strategy ====================

@dataclass
class KeyLoadStrategy:
    priority_order: List[str] = field(default_factory=lambda: list(settings.KEY_SOURCE_PRIORITY))

    @property
    def allows_generation(self) -> bool:
        return GENERATE in self.priority_order

    @property
    def source_names(self) -> List[str]:
        return [name for name in self.priority_order if name != GENERATE]


@dataclass
class KeyLoadReport:
    """What happened during one load, for logging and tests"""
    source: Optional[str] = None
    generated: bool = False
    backfilled: List[str] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)


class KeyPersistence:
    def __init__(
        self,
        providers: Sequence[KeyStorageProvider],
        strategy: Optional[KeyLoadStrategy] = None,
        confirm_rekey: Optional[ConfirmRekey] = None,
    ):
        self.providers = {provider.name: provider for provider in providers}
        self.strategy = strategy or KeyLoadStrategy()
        self.confirm_rekey = confirm_rekey
        self.last_report: Optional[KeyLoadReport] = None

        unknown = [name for name in self.strategy.source_names if name not in self.providers]
        if unknown:
            raise ValueError(f"No storage provider registered for: {', '.join(unknown)}")

    def _ordered(self) -> List[KeyStorageProvider]:
        return [self.providers[name] for name in self.strategy.source_names]

    async def load(self, user_id: str, master_key: SymmetricKey) -> SearchKeyMaterial:
        report = KeyLoadReport()
        self.last_report = report
        ordered = self._ordered()
        uncertain = False

        for index, provider in enumerate(ordered):
            try:
                encrypted = await provider.fetch_keys(user_id)
            except Exception as e:
                logger.warning(f"⚠️ Key source '{provider.name}' failed: {e}")
                report.failed_sources.append(provider.name)
                uncertain = True
                continue

            if not encrypted:
                continue

            try:
                material = SearchKeyMaterial.from_json(master_key.decrypt_string(encrypted))
            except (DecryptionError, ValidationError, UnicodeDecodeError) as e:
                logger.warning(f"⚠️ Key material from '{provider.name}' could not be decrypted: {e}")
                report.failed_sources.append(provider.name)
                uncertain = True
                continue

            report.source = provider.name
            logger.info(f"🔑 Search keys loaded from {provider.name}")
            others = ordered[:index] + ordered[index + 1:]
            report.backfilled = await self._write_through(user_id, encrypted, others)
            return material

        if not self.strategy.allows_generation:
            raise SearchKeyUnavailableError("Search keys not found in any configured source")
        if uncertain:
            raise SearchKeyUnavailableError(
                "Search keys could not be loaded and a key source failed; refusing to generate new keys"
            )
        if self.confirm_rekey is not None and not await self.confirm_rekey(user_id):
            raise SearchKeyUnavailableError("Generating new search keys was declined")

        material = await self.initialize_with_new_keys(user_id, master_key)
        report.generated = True
        return material

    async def initialize_with_new_keys(self, user_id: str, master_key: SymmetricKey) -> SearchKeyMaterial:
        """Generate fresh material and write it to every source. Used at signup."""
        material = SearchKeyMaterial.generate()
        encrypted = master_key.encrypt_string(material.to_json())
        ordered = self._ordered()
        written = await self._write_through(user_id, encrypted, ordered)

        durable = [p.name for p in ordered if p.durable]
        if durable and not any(name in written for name in durable):
            raise KeyPersistenceError("New search keys could not be stored in any durable source")
        logger.info(f"✅ Generated new search keys for user {user_id}")
        return material

    async def _write_through(self, user_id: str, encrypted: str, providers: Sequence[KeyStorageProvider]) -> List[str]:
        written = []
        for provider in providers:
            try:
                await provider.store_keys(user_id, encrypted)
                written.append(provider.name)
            except (CipherDocsError, OSError) as e:
                logger.warning(f"⚠️ Could not store search keys in '{provider.name}': {e}")
        return written

    async def clear(self, user_id: str) -> None:
        for provider in self._ordered():
            try:
                await provider.clear_keys(user_id)
            except (CipherDocsError, OSError) as e:
                logger.warning(f"⚠️ Could not clear search keys in '{provider.name}': {e}")
