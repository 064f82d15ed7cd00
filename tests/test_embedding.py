"""
Tests for batch embedding generation
"""

import asyncio

import pytest

from cipherdocs.core.errors import EmbeddingError
from cipherdocs.services.embedding import (
    cosine_similarity,
    generate_batch_embeddings,
    normalize_vector,
)

from conftest import FakeEmbeddingModel


class ShortModel(FakeEmbeddingModel):
    async def embed_documents(self, texts):
        vectors = await super().embed_documents(texts)
        return vectors[:-1]


class WrongDimensionModel(FakeEmbeddingModel):
    async def embed_documents(self, texts):
        return [[0.0] * 8 for _ in texts]


class BrokenModel(FakeEmbeddingModel):
    async def embed_documents(self, texts):
        raise RuntimeError("model crashed")


def test_batches_and_progress(embedding_model):
    texts = [f"chunk {i}" for i in range(25)]
    seen = []

    vectors = asyncio.run(generate_batch_embeddings(embedding_model, texts, batch_size=10, on_progress=seen.append))

    assert len(vectors) == 25
    assert [len(call) for call in embedding_model.calls] == [10, 10, 5]
    assert seen == [40, 80, 100]
    assert vectors[3] == embedding_model.vector_for("chunk 3")


def test_async_progress_callback(embedding_model):
    seen = []

    async def on_progress(percent):
        seen.append(percent)

    asyncio.run(generate_batch_embeddings(embedding_model, ["a", "b"], batch_size=1, on_progress=on_progress))
    assert seen == [50, 100]


def test_count_mismatch():
    with pytest.raises(EmbeddingError, match="vectors for"):
        asyncio.run(generate_batch_embeddings(ShortModel(), ["a", "b"], batch_size=10))


def test_dimension_mismatch():
    with pytest.raises(EmbeddingError, match="16-dimensional"):
        asyncio.run(generate_batch_embeddings(WrongDimensionModel(), ["a"]))


def test_model_failure_becomes_embedding_error():
    with pytest.raises(EmbeddingError, match="model crashed"):
        asyncio.run(generate_batch_embeddings(BrokenModel(), ["a"]))


def test_vector_helpers():
    assert normalize_vector([3.0, 4.0]) == pytest.approx([0.6, 0.8])
    assert normalize_vector([0.0, 0.0]) == [0.0, 0.0]
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 1], [2, 2]) == pytest.approx(1.0)
    with pytest.raises(ValueError):
        cosine_similarity([1, 0], [1, 0, 0])
