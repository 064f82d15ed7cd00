"""
Tests for searchable encryption: text, metadata and vectors
"""

import base64
import json

import numpy as np
import pytest

from cipherdocs.core.errors import DecryptionError, NotInitializedError, ValidationError
from cipherdocs.services.embedding import cosine_similarity
from cipherdocs.services.searchable_encryption import SearchableEncryptionProvider, SearchKeyMaterial


class TestKeyMaterial:
    def test_json_round_trip(self, material):
        assert SearchKeyMaterial.from_json(material.to_json()) == material

    def test_malformed_material_rejected(self):
        with pytest.raises(ValidationError):
            SearchKeyMaterial.from_json('{"text_key": "abc"}')

    def test_uninitialized_provider(self):
        provider = SearchableEncryptionProvider()
        assert not provider.is_initialized
        with pytest.raises(NotInitializedError):
            provider.encrypt_text("hello")
        with pytest.raises(NotInitializedError):
            provider.decrypt_metadata("hello")

    def test_clear(self, provider):
        provider.clear()
        with pytest.raises(NotInitializedError):
            provider.encrypt_vector([1.0, 2.0])


class TestTextEncryption:
    def test_round_trip(self, provider):
        encrypted = provider.encrypt_text("The quick brown fox")
        assert set(json.loads(encrypted)) == {"ciphertext", "iv", "tag"}
        assert provider.decrypt_text(encrypted) == "The quick brown fox"

    def test_same_plaintext_differs(self, provider):
        assert provider.encrypt_text("same") != provider.encrypt_text("same")

    def test_byte_array_fields_accepted(self, provider):
        encrypted = json.loads(provider.encrypt_text("legacy"))
        as_buffers = {
            key: {"type": "Buffer", "data": list(base64.b64decode(value))}
            for key, value in encrypted.items()
        }
        assert provider.decrypt_text(json.dumps(as_buffers)) == "legacy"
        assert provider.decrypt_text(as_buffers) == "legacy"

    def test_tampered_ciphertext(self, provider):
        encrypted = json.loads(provider.encrypt_text("secret"))
        encrypted["tag"] = base64.b64encode(b"\x00" * 16).decode()
        with pytest.raises(DecryptionError):
            provider.decrypt_text(json.dumps(encrypted))

    def test_other_keys_cannot_decrypt(self, provider):
        other = SearchableEncryptionProvider(SearchKeyMaterial.generate())
        with pytest.raises(DecryptionError):
            other.decrypt_text(provider.encrypt_text("secret"))

    def test_batch_isolates_failures(self, provider):
        good = provider.encrypt_text("one")
        results = provider.decrypt_text_batch([good, "garbage", provider.encrypt_text("three")])
        assert results == ["one", "", "three"]

        detailed = provider.decrypt_text_batch_detailed([good, "garbage"])
        assert detailed[0].ok and not detailed[1].ok
        assert detailed[1].error


class TestMetadataEncryption:
    def test_deterministic(self, provider):
        assert provider.encrypt_metadata("report.pdf") == provider.encrypt_metadata("report.pdf")
        assert provider.encrypt_metadata("report.pdf") != provider.encrypt_metadata("report2.pdf")

    def test_round_trip(self, provider):
        assert provider.decrypt_metadata(provider.encrypt_metadata("report.pdf")) == "report.pdf"

    def test_buffer_shape_decrypts_like_base64(self, provider):
        encrypted = provider.encrypt_metadata("report.pdf")
        buffer_shape = {"type": "Buffer", "data": list(base64.b64decode(encrypted))}

        assert provider.decrypt_metadata(buffer_shape) == "report.pdf"
        assert provider.decrypt_metadata(json.dumps(buffer_shape)) == "report.pdf"

    def test_double_stringified(self, provider):
        encrypted = provider.encrypt_metadata("report.pdf")
        assert provider.decrypt_metadata(json.dumps(encrypted)) == "report.pdf"

    def test_never_encrypted_values_pass_through(self, provider):
        assert provider.decrypt_metadata("plain name.txt") == "plain name.txt"
        assert provider.decrypt_metadata(42) == 42
        assert provider.decrypt_metadata({"title": "x"}) == {"title": "x"}

    def test_batch(self, provider):
        values = [provider.encrypt_metadata("a"), "not encrypted", provider.encrypt_metadata("c")]
        assert provider.decrypt_metadata_batch(values) == ["a", "not encrypted", "c"]


class TestVectorEncryption:
    def test_round_trip(self, provider):
        vector = np.random.default_rng(1).standard_normal(32).tolist()
        decrypted = provider.decrypt_vector(provider.encrypt_vector(vector))
        assert np.allclose(decrypted, vector)

    def test_ciphertext_differs_from_plaintext(self, provider):
        vector = [1.0, 0.0, 0.0, 0.0]
        assert not np.allclose(provider.encrypt_vector(vector), vector)

    def test_cosine_similarity_preserved(self, provider):
        rng = np.random.default_rng(7)
        a, b = rng.standard_normal(64), rng.standard_normal(64)
        plain = cosine_similarity(a, b)
        encrypted = cosine_similarity(provider.encrypt_vector(a), provider.encrypt_vector(b))
        assert encrypted == pytest.approx(plain, abs=1e-9)

    def test_top_k_ranking_preserved(self, provider):
        rng = np.random.default_rng(11)
        query = rng.standard_normal(48)
        corpus = [rng.standard_normal(48) for _ in range(20)]

        plain_rank = sorted(range(20), key=lambda i: cosine_similarity(query, corpus[i]), reverse=True)[:5]
        enc_query = provider.encrypt_vector(query)
        enc_corpus = [provider.encrypt_vector(v) for v in corpus]
        enc_rank = sorted(range(20), key=lambda i: cosine_similarity(enc_query, enc_corpus[i]), reverse=True)[:5]

        assert enc_rank == plain_rank

    def test_same_keys_same_transform(self, material):
        a = SearchableEncryptionProvider(material)
        b = SearchableEncryptionProvider(SearchKeyMaterial.from_json(material.to_json()))
        assert np.allclose(a.encrypt_vector([0.1, 0.2, 0.3]), b.encrypt_vector([0.1, 0.2, 0.3]))

    def test_invalid_vectors(self, provider):
        with pytest.raises(ValidationError):
            provider.encrypt_vector([])
        with pytest.raises(ValidationError):
            provider.encrypt_vector([1.0, float("nan")])
