"""Model server: loads scorers on demand and runs bounded inference.

Loaded scorers live in an LRU of ``model_cache_size`` entries. A miss reads
the artifact from the ArtifactStore. Inference runs in a worker thread under
``prediction_timeout``; there is no fallback score on failure.
"""

import asyncio
import logging
import time
from collections import OrderedDict

import numpy as np

from models.schemas.features import FeatureVector
from models.schemas.ml_model import MLModel
from models.schemas.prediction import ScoreResult
from services.pipeline.artifact_store import ArtifactStore
from services.pipeline.base import BaseScorer
from services.pipeline.errors import (
    FeatureDimensionError,
    ModelNotFoundError,
    PredictionError,
    PredictionTimeoutError,
)

logger = logging.getLogger(__name__)


def confidence_for(score: float) -> float:
    return max(score, 1.0 - score)


class ModelServer:
    def __init__(
        self,
        artifact_store: ArtifactStore,
        cache_size: int = 10,
        prediction_timeout: float = 5.0,
        batch_size: int = 32,
    ) -> None:
        self.artifact_store = artifact_store
        self.cache_size = cache_size
        self.prediction_timeout = prediction_timeout
        self.batch_size = batch_size
        self._scorers: OrderedDict[str, BaseScorer] = OrderedDict()
        self._requests = 0
        self._errors = 0
        self._latency_total_ms = 0.0
        self._cache_hits = 0
        self._cache_misses = 0

    @classmethod
    def from_settings(cls, settings, artifact_store: ArtifactStore) -> "ModelServer":
        return cls(
            artifact_store,
            cache_size=settings.model_cache_size,
            prediction_timeout=settings.prediction_timeout,
            batch_size=settings.batch_size,
        )

    def add(self, model_id: str, scorer: BaseScorer) -> None:
        """Put a freshly trained scorer into the cache."""
        self._scorers[model_id] = scorer
        self._scorers.move_to_end(model_id)
        while len(self._scorers) > self.cache_size:
            evicted, _ = self._scorers.popitem(last=False)
            logger.debug("Evicted scorer %s", evicted)

    def is_loaded(self, model_id: str) -> bool:
        return model_id in self._scorers

    async def get_scorer(self, model_id: str) -> BaseScorer:
        scorer = self._scorers.get(model_id)
        if scorer is not None:
            self._cache_hits += 1
            self._scorers.move_to_end(model_id)
            return scorer
        self._cache_misses += 1
        scorer = await asyncio.to_thread(self.artifact_store.load, model_id)
        self.add(model_id, scorer)
        logger.info("Loaded scorer %s (%s)", model_id, scorer.algorithm)
        return scorer

    async def predict(self, model: MLModel, features: FeatureVector) -> ScoreResult:
        results = await self._run(model, [features])
        return results[0]

    async def predict_batch(self, model: MLModel, vectors: list[FeatureVector]) -> list[ScoreResult]:
        """Score many vectors, ``batch_size`` rows per inference call."""
        results: list[ScoreResult] = []
        for i in range(0, len(vectors), self.batch_size):
            results.extend(await self._run(model, vectors[i:i + self.batch_size]))
        return results

    async def _run(self, model: MLModel, vectors: list[FeatureVector]) -> list[ScoreResult]:
        if not vectors:
            return []
        start = time.perf_counter()
        self._requests += len(vectors)
        try:
            scorer = await self.get_scorer(model.id)
            for fv in vectors:
                if fv.dimension != scorer.n_features:
                    raise FeatureDimensionError(scorer.n_features, fv.dimension)
            matrix = np.asarray([fv.values for fv in vectors], dtype=np.float64)
            try:
                scores = await asyncio.wait_for(
                    asyncio.to_thread(scorer.score, matrix),
                    timeout=self.prediction_timeout,
                )
            except asyncio.TimeoutError as e:
                raise PredictionTimeoutError(
                    f"Model {model.id} exceeded {self.prediction_timeout}s"
                ) from e
        except (ModelNotFoundError, FeatureDimensionError, PredictionTimeoutError):
            self._errors += len(vectors)
            raise
        except Exception as e:
            self._errors += len(vectors)
            logger.exception("Inference failed for model %s", model.id)
            raise PredictionError(f"Inference failed for model {model.id}: {e}") from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._latency_total_ms += elapsed_ms
        per_row_ms = elapsed_ms / len(vectors)
        out = []
        for value in np.clip(np.asarray(scores, dtype=np.float64), 0.0, 1.0):
            score = float(value)
            out.append(ScoreResult(score=score, confidence=confidence_for(score), processing_time_ms=per_row_ms))
        return out

    def stats(self) -> dict[str, float]:
        lookups = self._cache_hits + self._cache_misses
        return {
            "total_predictions": self._requests,
            "average_latency_ms": self._latency_total_ms / self._requests if self._requests else 0.0,
            "error_rate": self._errors / self._requests if self._requests else 0.0,
            "cache_hit_rate": self._cache_hits / lookups if lookups else 0.0,
            "loaded_models": len(self._scorers),
        }
