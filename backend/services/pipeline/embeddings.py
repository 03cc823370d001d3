"""Text embeddings for profile similarity features.

Two backends:
    - "hashing": scikit-learn HashingVectorizer into a fixed number of signed
      buckets. No model download, no network, identical output on every machine.
    - any other value is treated as a sentence-transformers model id
      (e.g. "TechWolf/JobBERT-v2") and loaded lazily on first use.
"""

import asyncio
import logging
from collections import OrderedDict

import numpy as np
from sklearn.feature_extraction.text import HashingVectorizer

from services.pipeline.errors import EmbeddingTimeoutError, FeatureExtractionError

logger = logging.getLogger(__name__)

HASHING_MODEL = "hashing"

TOKEN_PATTERN = r"[a-z0-9+#.]+"

# Lazy-loaded sentence-transformers models, keyed by model id
_st_models: dict[str, object] = {}


def _get_st_model(model_name: str):
    """Load a SentenceTransformer lazily on first call."""
    if model_name not in _st_models:
        try:
            from sentence_transformers import SentenceTransformer

            _st_models[model_name] = SentenceTransformer(model_name)
            logger.info("Embedding model %s loaded successfully", model_name)
        except Exception as e:
            raise FeatureExtractionError(
                f"Failed to load embedding model {model_name}: {e}"
            ) from e
    return _st_models[model_name]


class HashingEmbedder:
    """Deterministic bag-of-tokens embedding via the hashing trick."""

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension
        self._vectorizer = HashingVectorizer(
            n_features=dimension,
            token_pattern=TOKEN_PATTERN,
            lowercase=True,
            alternate_sign=True,
            norm=None,
        )

    def encode(self, text: str) -> np.ndarray:
        # stateless transform, no fit needed
        return self._vectorizer.transform([text]).toarray()[0].astype(np.float64)


class SentenceTransformerEmbedder:
    def __init__(self, model_name: str, dimension: int) -> None:
        self.model_name = model_name
        self.dimension = dimension

    def encode(self, text: str) -> np.ndarray:
        model = _get_st_model(self.model_name)
        vec = np.asarray(model.encode([text], convert_to_numpy=True)[0], dtype=np.float64)
        if vec.shape[0] != self.dimension:
            raise FeatureExtractionError(
                f"Embedding model {self.model_name} produces {vec.shape[0]} dims, "
                f"configured embedding_dimension is {self.dimension}"
            )
        return vec


def create_embedder(model_name: str, dimension: int):
    if dimension <= 0:
        raise FeatureExtractionError("embedding_dimension must be positive")
    if model_name == HASHING_MODEL:
        return HashingEmbedder(dimension)
    return SentenceTransformerEmbedder(model_name, dimension)


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        return vec
    return vec / norm


class EmbeddingService:
    """Timeout-bounded, memoized access to an embedder.

    Memoization is keyed by the full text, so a cached vector is always the
    vector the backend would have returned.
    """

    def __init__(
        self,
        model_name: str,
        dimension: int,
        timeout: float,
        cache_size: int = 2048,
        embedder=None,
    ) -> None:
        self.model_name = model_name
        self.dimension = dimension
        self.timeout = timeout
        self._embedder = embedder or create_embedder(model_name, dimension)
        self._cache: OrderedDict[str, np.ndarray] = OrderedDict()
        self._cache_size = cache_size

    async def embed(self, text: str) -> np.ndarray:
        cached = self._cache.get(text)
        if cached is not None:
            self._cache.move_to_end(text)
            return cached

        try:
            vec = await asyncio.wait_for(
                asyncio.to_thread(self._embedder.encode, text), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingTimeoutError(
                f"Embedding call exceeded {self.timeout:.2f}s ({self.model_name})"
            ) from e

        self._cache[text] = vec
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return vec

    def clear(self) -> None:
        self._cache.clear()
