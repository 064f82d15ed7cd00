"""
Tests for multi-source search key persistence
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from cipherdocs.core.errors import KeyPersistenceError, SearchKeyUnavailableError, StoreError
from cipherdocs.services.key_storage import (
    KeyLoadStrategy,
    KeyPersistence,
    KeyStorageProvider,
    LocalFileKeyStorage,
    SessionKeyStorage,
)


class MemoryDurableStorage(SessionKeyStorage):
    """Stands in for the remote database"""
    name = "database"
    durable = True


class FailingStorage(KeyStorageProvider):
    name = "database"

    async def fetch_keys(self, user_id):
        raise StoreError("connection reset", status_code=503)

    async def store_keys(self, user_id, encrypted):
        raise StoreError("connection reset", status_code=503)

    async def clear_keys(self, user_id):
        raise StoreError("connection reset", status_code=503)


@pytest.fixture
def local(tmp_path):
    return LocalFileKeyStorage(str(tmp_path / "keys"))


@pytest.fixture
def database():
    return MemoryDurableStorage()


def make_persistence(database, local, **kwargs):
    return KeyPersistence(
        [database, local],
        strategy=KeyLoadStrategy(["database", "local", "generate"]),
        **kwargs,
    )


class TestLoad:
    def test_first_load_generates_and_stores_everywhere(self, database, local, master_key):
        persistence = make_persistence(database, local)
        material = asyncio.run(persistence.load("alice", master_key))

        assert persistence.last_report.generated is True
        assert asyncio.run(database.fetch_keys("alice")) is not None
        assert asyncio.run(local.fetch_keys("alice")) is not None

        again = asyncio.run(persistence.load("alice", master_key))
        assert again == material
        assert persistence.last_report.source == "database"

    def test_lower_priority_hit_backfills_higher_sources(self, database, local, master_key):
        original = asyncio.run(make_persistence(database, local).initialize_with_new_keys("alice", master_key))
        asyncio.run(database.clear_keys("alice"))

        persistence = make_persistence(database, local)
        loaded = asyncio.run(persistence.load("alice", master_key))

        assert loaded == original
        assert persistence.last_report.source == "local"
        assert "database" in persistence.last_report.backfilled
        assert asyncio.run(database.fetch_keys("alice")) is not None

    def test_stored_material_is_encrypted(self, database, local, master_key):
        material = asyncio.run(make_persistence(database, local).initialize_with_new_keys("alice", master_key))
        stored = asyncio.run(database.fetch_keys("alice"))
        assert material.to_json() not in stored
        assert "text_key" not in stored

    def test_transient_failure_never_regenerates(self, local, master_key):
        persistence = make_persistence(FailingStorage(), local)
        with pytest.raises(SearchKeyUnavailableError, match="refusing to generate"):
            asyncio.run(persistence.load("alice", master_key))
        assert asyncio.run(local.fetch_keys("alice")) is None

    def test_undecryptable_material_never_regenerates(self, database, local, master_key):
        from cipherdocs.core.crypto import CryptoUtils

        other_key = CryptoUtils.generate_random_symmetric_key()
        asyncio.run(make_persistence(database, local).initialize_with_new_keys("alice", other_key))

        with pytest.raises(SearchKeyUnavailableError):
            asyncio.run(make_persistence(database, local).load("alice", master_key))

    def test_declined_rekey(self, database, local, master_key):
        confirm = AsyncMock(return_value=False)
        persistence = make_persistence(database, local, confirm_rekey=confirm)
        with pytest.raises(SearchKeyUnavailableError, match="declined"):
            asyncio.run(persistence.load("alice", master_key))
        confirm.assert_awaited_once_with("alice")

    def test_generation_disabled(self, database, local, master_key):
        persistence = KeyPersistence([database, local], strategy=KeyLoadStrategy(["database", "local"]))
        with pytest.raises(SearchKeyUnavailableError):
            asyncio.run(persistence.load("alice", master_key))

    def test_unknown_source_in_strategy(self, database):
        with pytest.raises(ValueError, match="local"):
            KeyPersistence([database], strategy=KeyLoadStrategy(["database", "local", "generate"]))

    def test_generation_fails_when_no_durable_write_succeeds(self, master_key):
        persistence = KeyPersistence([FailingStorage()], strategy=KeyLoadStrategy(["database"]))
        with pytest.raises(KeyPersistenceError):
            asyncio.run(persistence.initialize_with_new_keys("alice", master_key))


class TestLocalFileStorage:
    def test_cleanup_stale_keys(self, local):
        asyncio.run(local.store_keys("alice", "a"))
        asyncio.run(local.store_keys("bob", "b"))

        assert local.cleanup_stale_keys("alice") == 1
        assert asyncio.run(local.fetch_keys("alice")) == "a"
        assert asyncio.run(local.fetch_keys("bob")) is None

    def test_similar_user_ids_do_not_share_a_file(self, local):
        asyncio.run(local.store_keys("a.b", "first"))
        asyncio.run(local.store_keys("a_b", "second"))

        assert asyncio.run(local.fetch_keys("a.b")) == "first"
        assert asyncio.run(local.fetch_keys("a_b")) == "second"

    def test_clear(self, local):
        asyncio.run(local.store_keys("alice", "a"))
        asyncio.run(local.clear_keys("alice"))
        assert asyncio.run(local.fetch_keys("alice")) is None


class TestPersistenceClear:
    def test_clear_removes_from_all_sources(self, database, local, master_key):
        persistence = make_persistence(database, local)
        asyncio.run(persistence.initialize_with_new_keys("alice", master_key))
        asyncio.run(persistence.clear("alice"))
        assert asyncio.run(database.fetch_keys("alice")) is None
        assert asyncio.run(local.fetch_keys("alice")) is None
