"""
Embeddings
Batch embedding generation plus small vector helpers.
The model itself is a collaborator; any object with `dimension` and
`embed_documents` will do.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, Union

import numpy as np

from cipherdocs.core.config import settings
from cipherdocs.core.errors import EmbeddingError

logger = logging.getLogger(__name__)

BatchProgress = Callable[[int], Union[None, Awaitable[None]]]


class EmbeddingModel(Protocol):
    dimension: int

    async def embed_documents(self, texts: List[str]) -> List[List[float]]: ...


class SentenceTransformerEmbedder:
    """all-MiniLM-L6-v2 by default (384 dimensions); needs the `embeddings` extra"""

    def __init__(self, model_name: Optional[str] = None, dimension: Optional[int] = None):
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.dimension = dimension or settings.EMBEDDING_DIMENSION
        self._model = None

    def _load(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise EmbeddingError(
                    "Embedding support requires sentence-transformers (pip install cipherdocs[embeddings])"
                ) from e
            logger.info(f"🔄 Loading embedding model {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        vectors = self._load().encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return np.asarray(vectors, dtype=np.float32).tolist()

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return await asyncio.to_thread(self._encode, texts)


async def generate_batch_embeddings(
    model: EmbeddingModel,
    texts: Sequence[str],
    batch_size: Optional[int] = None,
    on_progress: Optional[BatchProgress] = None,
) -> List[List[float]]:
    """
    Embed texts in batches, reporting percent complete after each batch.
    Raises EmbeddingError when the model returns the wrong count or dimension.
    """
    batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
    total = len(texts)
    embeddings: List[List[float]] = []

    for start in range(0, total, batch_size):
        batch = list(texts[start:start + batch_size])
        try:
            vectors = await model.embed_documents(batch)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding model failed: {e}") from e

        if len(vectors) != len(batch):
            raise EmbeddingError(f"Embedding model returned {len(vectors)} vectors for {len(batch)} texts")
        for vector in vectors:
            if len(vector) != model.dimension:
                raise EmbeddingError(f"Expected {model.dimension}-dimensional embeddings, got {len(vector)}")
        embeddings.extend(list(map(float, v)) for v in vectors)

        if on_progress is not None:
            percent = min(100, round((start + len(batch)) / total * 100))
            result = on_progress(percent)
            if asyncio.iscoroutine(result):
                await result

    return embeddings


def normalize_vector(vector: Sequence[float]) -> List[float]:
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr.tolist()
    return (arr / norm).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError("Vectors must have the same dimension")
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)
