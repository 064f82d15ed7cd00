"""
Tests for key contexts, the session cache and the credentials gate
"""

import asyncio

import pytest

from cipherdocs.core.errors import CredentialsTimeoutError
from cipherdocs.services.key_storage import KeyLoadStrategy, KeyPersistence, SessionKeyStorage
from cipherdocs.services.session import SESSION_KEY_NAME, CredentialsGate, SessionKeyCache, open_key_context


class TestSessionKeyCache:
    def test_store_and_restore(self, master_key):
        cache = SessionKeyCache()
        assert cache.get_master_key() is None

        cache.store_master_key(master_key)
        assert cache.has_key()
        assert cache.get_master_key() == master_key

        cache.clear()
        assert not cache.has_key()

    def test_invalid_cached_key_is_cleared(self):
        cache = SessionKeyCache()
        cache._store[SESSION_KEY_NAME] = "c2hvcnQ="
        assert cache.get_master_key() is None
        assert not cache.has_key()


class TestKeyContext:
    def test_close_clears_keys(self, key_context):
        assert key_context.is_ready
        key_context.close()
        assert not key_context.is_ready

    def test_open_key_context(self, master_key):
        persistence = KeyPersistence([SessionKeyStorage()], strategy=KeyLoadStrategy(["session", "generate"]))
        context = asyncio.run(open_key_context("alice", master_key, persistence))
        assert context.is_ready
        assert context.user_id == "alice"


class TestCredentialsGate:
    def test_times_out_without_credentials(self):
        prompts = []
        gate = CredentialsGate(prompt=lambda: prompts.append(1), timeout=0.05)

        with pytest.raises(CredentialsTimeoutError):
            asyncio.run(gate.wait_for_context())
        assert prompts == [1]

    def test_zero_timeout_is_not_the_default(self):
        gate = CredentialsGate(timeout=30)
        with pytest.raises(CredentialsTimeoutError):
            asyncio.run(gate.wait_for_context(timeout=0))

    def test_waiters_share_one_prompt(self, key_context):
        prompts = []

        async def scenario():
            gate = CredentialsGate(prompt=lambda: prompts.append(1), timeout=2)
            first = asyncio.create_task(gate.wait_for_context())
            second = asyncio.create_task(gate.wait_for_context())
            await asyncio.sleep(0.01)
            gate.provide(key_context)
            return await asyncio.gather(first, second)

        results = asyncio.run(scenario())
        assert results == [key_context, key_context]
        assert prompts == [1]

    def test_prompt_can_provide_synchronously(self, key_context):
        gate = CredentialsGate(timeout=1)
        gate._prompt = lambda: gate.provide(key_context)
        assert asyncio.run(gate.wait_for_context()) is key_context

    def test_existing_context_returned_immediately(self, key_context):
        gate = CredentialsGate(timeout=0.01)
        gate.provide(key_context)
        assert asyncio.run(gate.wait_for_context()) is key_context

        gate.clear()
        assert gate.context is None
        assert not key_context.is_ready
