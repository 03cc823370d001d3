"""Pipeline façade: wires extraction, training, serving, A/B and monitoring.

Flow:
    train_model(data, config)
      ├─ FeatureExtractor.extract_sample(each sample)   → FeatureVector
      ├─ split_dataset()                                → DatasetSplit (60/20/20)
      ├─ ModelTrainer.train()         [worker thread]   → TrainingResult
      ├─ calculate_metrics(test set)                    → ModelMetrics
      └─ ArtifactStore.save() + ModelRegistry.save()    → MLModel (inactive)

    predict(candidate, job, model_id=None)
      ├─ model_id given       → that model, no A/B
      ├─ select_best_model()  → reference model
      ├─ ABTestingFramework   → control / challenger arm
      └─ _predict_with()      → PredictionCache ─miss→ ModelServer.predict()

The façade is the only owner of the PipelineCache. The registry remains the
durable source of truth for which model is active.
"""

import asyncio
import inspect
import logging
import time
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import numpy as np
from pydantic import ValidationError

from models.schemas.features import FeatureVector, TrainingData, TrainingSample
from models.schemas.ml_model import MLModel, ModelConfig, ModelMetadata, ModelMetrics
from models.schemas.monitoring import MonitoringReport
from models.schemas.prediction import ABGroup, PredictionMetadata, PredictionResult
from services.pipeline import events
from services.pipeline.ab_testing import ABTestingFramework
from services.pipeline.artifact_store import ArtifactStore
from services.pipeline.caches import PipelineCache, PredictionCache
from services.pipeline.errors import (
    DeploymentError,
    ModelNotFoundError,
    NoActiveModelError,
    TrainingError,
)
from services.pipeline.evaluation import calculate_metrics
from services.pipeline.events import EventBus
from services.pipeline.feature_extractor import FeatureExtractor, coerce_profiles
from services.pipeline.model_registry import ModelRegistry
from services.pipeline.model_server import ModelServer
from services.pipeline.model_trainer import ModelTrainer, split_dataset
from services.pipeline.monitoring import ModelMonitor

logger = logging.getLogger(__name__)

TrainingDataSource = Callable[[str], "TrainingData | Awaitable[TrainingData]"]


def _next_version(existing: list[MLModel]) -> str:
    """1.0.0 for a new name, then bump the minor version."""
    if not existing:
        return "1.0.0"
    minors = []
    for m in existing:
        parts = m.version.split(".")
        minors.append(int(parts[1]) if len(parts) == 3 and parts[1].isdigit() else 0)
    return f"1.{max(minors) + 1}.0"


class MatchingPipeline:
    def __init__(
        self,
        settings,
        registry: ModelRegistry | None = None,
        artifact_store: ArtifactStore | None = None,
        prediction_cache: PredictionCache | None = None,
        event_bus: EventBus | None = None,
        training_data_source: TrainingDataSource | None = None,
        feature_extractor: FeatureExtractor | None = None,
        ab_testing: ABTestingFramework | None = None,
    ) -> None:
        self.settings = settings
        self.events = event_bus or EventBus()
        self.cache = PipelineCache()
        self.prediction_cache = prediction_cache or PredictionCache(ttl_seconds=settings.prediction_cache_ttl)
        self.monitor = ModelMonitor()

        self._registry = registry
        self._artifact_store = artifact_store
        self._feature_extractor = feature_extractor
        self._ab_testing = ab_testing
        self._trainer: ModelTrainer | None = None
        self._server: ModelServer | None = None
        self._training_data_source = training_data_source

        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._deploy_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._retrain_tasks: set[asyncio.Task] = set()

    # -- lazily built components ------------------------------------------

    @property
    def registry(self) -> ModelRegistry:
        if self._registry is None:
            self._registry = ModelRegistry(self.settings.database_url)
        return self._registry

    @property
    def artifact_store(self) -> ArtifactStore:
        if self._artifact_store is None:
            self._artifact_store = ArtifactStore(self.settings.model_dir)
        return self._artifact_store

    @property
    def feature_extractor(self) -> FeatureExtractor:
        if self._feature_extractor is None:
            self._feature_extractor = FeatureExtractor.from_settings(self.settings)
        return self._feature_extractor

    @property
    def trainer(self) -> ModelTrainer:
        if self._trainer is None:
            self._trainer = ModelTrainer.from_settings(self.settings)
        return self._trainer

    @property
    def server(self) -> ModelServer:
        if self._server is None:
            self._server = ModelServer.from_settings(self.settings, self.artifact_store)
        return self._server

    @property
    def ab_testing(self) -> ABTestingFramework:
        if self._ab_testing is None:
            self._ab_testing = ABTestingFramework.from_settings(
                self.settings, self._predict_with, self._find_model, event_bus=self.events,
            )
        return self._ab_testing

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self) -> None:
        """Load active models and their last metrics from the registry."""
        async with self._init_lock:
            if self._initialized:
                return
            active = await asyncio.to_thread(self.registry.list_models, None, True)
            for model in active:
                self.cache.active_models[model.id] = model
                if model.metadata.metrics is not None:
                    self.cache.model_metrics[model.id] = model.metadata.metrics
            self._initialized = True
            logger.info("Matching pipeline initialized with %d active models", len(active))

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def shutdown(self) -> None:
        """Wait for in-flight retraining jobs."""
        if self._retrain_tasks:
            logger.info("Waiting for %d retraining jobs", len(self._retrain_tasks))
            await asyncio.gather(*self._retrain_tasks, return_exceptions=True)

    # -- features ----------------------------------------------------------

    async def extract_features(self, candidate: Any, job: Any) -> FeatureVector:
        return await self.feature_extractor.extract_pair(candidate, job)

    # -- training ----------------------------------------------------------

    async def train_model(
        self,
        training_data: TrainingData | dict,
        model_config: ModelConfig | dict,
        name: str | None = None,
        retrained_from: str | None = None,
    ) -> MLModel:
        await self._ensure_initialized()
        try:
            if isinstance(training_data, dict):
                training_data = TrainingData.model_validate(training_data)
            if isinstance(model_config, dict):
                model_config = ModelConfig.model_validate(model_config)
        except ValidationError as e:
            raise TrainingError(f"Invalid training request: {e}") from e
        if not training_data.samples:
            raise TrainingError("Training data is empty")

        # TrainingData is consumed here and never read again
        vectors = [await self.feature_extractor.extract_sample(s) for s in training_data.samples]
        labels = [s.label for s in training_data.samples]
        split = split_dataset(
            [v.values for v in vectors],
            labels,
            self.settings.validation_split,
            self.settings.test_split,
            feature_names=self.feature_extractor.feature_names,
        )

        result = await asyncio.to_thread(self.trainer.train, split, model_config)

        holdout = next(
            (p for p in (split.test, split.validation, split.train) if len(p) > 0), split.train
        )
        scores = await asyncio.to_thread(result.scorer.score, np.asarray(holdout.features, dtype=np.float64))
        metrics = calculate_metrics(scores, holdout.labels)

        now = datetime.now(timezone.utc)
        name = name or f"{model_config.type}_{model_config.algorithm}"
        same_name = [
            m for m in await asyncio.to_thread(self.registry.list_models, model_config.type)
            if m.name == name
        ]
        model = MLModel(
            id=uuid.uuid4().hex,
            name=name,
            version=_next_version(same_name),
            type=model_config.type,
            algorithm=model_config.algorithm,
            accuracy=metrics.accuracy,
            parameters=result.parameters,
            active=False,
            created_at=now,
            updated_at=now,
            metadata=ModelMetadata(
                training_time_ms=result.training_time_ms,
                training_samples=len(split.train),
                feature_count=split.feature_count,
                best_iteration=result.best_iteration,
                early_stopped=result.early_stopped,
                tuned_parameters=result.parameters if result.parameters != model_config.parameters else {},
                cross_validation_scores=result.cross_validation_scores,
                metrics=metrics,
                retrained_from=retrained_from,
            ),
        )

        await asyncio.to_thread(self.artifact_store.save, model.id, result.scorer)
        try:
            await asyncio.to_thread(self.registry.save, model)
        except Exception as e:
            await asyncio.to_thread(self.artifact_store.delete, model.id)
            raise TrainingError(f"Could not register model {model.id}: {e}") from e

        self.server.add(model.id, result.scorer)
        self.cache.model_metrics[model.id] = metrics
        logger.info(
            "Trained model %s (%s v%s) accuracy=%.4f f1=%.4f auc=%.4f on %d holdout samples",
            model.id, model.name, model.version,
            metrics.accuracy, metrics.f1_score, metrics.auc_roc, metrics.sample_count,
        )
        await self.events.publish(events.MODEL_TRAINED, {"model": model, "metrics": metrics})
        return model

    async def evaluate_model(
        self,
        model: MLModel | str,
        test_samples: list[TrainingSample | dict],
    ) -> ModelMetrics:
        if isinstance(model, str):
            model = await self._require_model(model)
        vectors = [await self.feature_extractor.extract_sample(s) for s in test_samples]
        labels = [
            s.label if isinstance(s, TrainingSample) else int(s["label"]) for s in test_samples
        ]
        scored = await self.server.predict_batch(model, vectors)
        metrics = calculate_metrics([r.score for r in scored], labels)
        if metrics.sample_count == 0:
            logger.warning("Evaluation of model %s had no samples, keeping previous metrics", model.id)
            return metrics

        self.cache.model_metrics[model.id] = metrics
        metadata = model.metadata.model_copy(update={"metrics": metrics})
        await asyncio.to_thread(self.registry.update_accuracy, model.id, metrics.accuracy, metadata)
        if model.id in self.cache.active_models:
            self.cache.active_models[model.id] = model.model_copy(
                update={"accuracy": metrics.accuracy, "metadata": metadata}
            )
        logger.info(
            "Evaluated model %s on %d samples: accuracy=%.4f", model.id, len(labels), metrics.accuracy
        )
        return metrics

    # -- serving -----------------------------------------------------------

    async def predict(self, candidate: Any, job: Any, model_id: str | None = None) -> PredictionResult:
        await self._ensure_initialized()
        candidate, job = coerce_profiles(candidate, job)

        if model_id is not None:
            return await self._predict_with(model_id, candidate, job, "control", None)

        reference = self.select_best_model()
        if reference is None:
            raise NoActiveModelError("No active model available for prediction")
        if self.settings.ab_testing_enabled:
            return await self.ab_testing.predict(candidate, job, reference.id)
        return await self._predict_with(reference.id, candidate, job, "control", None)

    async def predict_batch(self, pairs: list[tuple[Any, Any]], model_id: str | None = None) -> list[PredictionResult]:
        """Score many pairs with one model. A/B assignment does not apply."""
        await self._ensure_initialized()
        if model_id is None:
            reference = self.select_best_model()
            if reference is None:
                raise NoActiveModelError("No active model available for prediction")
            model = reference
        else:
            model = await self._require_model(model_id)

        start = time.perf_counter()
        vectors = [await self.feature_extractor.extract_pair(c, j) for c, j in pairs]
        scored = await self.server.predict_batch(model, vectors)
        elapsed_ms = (time.perf_counter() - start) * 1000
        return [
            PredictionResult(
                model_id=model.id,
                model_name=model.name,
                model_version=model.version,
                prediction=s.score,
                confidence=s.confidence,
                features=fv,
                metadata=PredictionMetadata(
                    processing_time_ms=elapsed_ms / max(len(vectors), 1),
                    request_id=uuid.uuid4().hex,
                ),
            )
            for fv, s in zip(vectors, scored)
        ]

    async def _predict_with(
        self,
        model_id: str,
        candidate,
        job,
        ab_group: ABGroup,
        ab_test_id: str | None,
    ) -> PredictionResult:
        start = time.perf_counter()
        model = await self._require_model(model_id)
        features = await self.feature_extractor.extract_pair(candidate, job)
        cache_key = PredictionCache.key(model.id, features.feature_hash())

        cached = self.prediction_cache.get(cache_key)
        if cached is not None:
            result = cached.model_copy(update={
                "features": features,
                "timestamp": datetime.now(timezone.utc),
                "metadata": PredictionMetadata(
                    processing_time_ms=(time.perf_counter() - start) * 1000,
                    request_id=uuid.uuid4().hex,
                    ab_group=ab_group,
                    ab_test_id=ab_test_id,
                    cache_hit=True,
                ),
            })
            await self._log_prediction(result)
            return result

        scored = await self.server.predict(model, features)
        result = PredictionResult(
            model_id=model.id,
            model_name=model.name,
            model_version=model.version,
            prediction=scored.score,
            confidence=scored.confidence,
            features=features,
            metadata=PredictionMetadata(
                processing_time_ms=(time.perf_counter() - start) * 1000,
                request_id=uuid.uuid4().hex,
                ab_group=ab_group,
                ab_test_id=ab_test_id,
            ),
        )
        self.prediction_cache.put(cache_key, result, tags=(f"model:{model.id}", f"type:{model.type}"))
        await self._log_prediction(result)
        return result

    async def _log_prediction(self, result: PredictionResult) -> None:
        try:
            await asyncio.to_thread(self.registry.log_prediction, {
                "model_id": result.model_id,
                "candidate_id": result.features.candidate_id,
                "job_id": result.features.job_id,
                "prediction": result.prediction,
                "confidence": result.confidence,
                "timestamp": result.timestamp,
                "metadata": result.metadata.model_dump(mode="json"),
            })
        except Exception as e:
            logger.warning("Failed to log prediction for model %s: %s", result.model_id, e)

    def record_outcome(self, prediction: PredictionResult, converted: bool) -> None:
        self.ab_testing.record_outcome(prediction, converted)

    # -- registry views ----------------------------------------------------

    async def _find_model(self, model_id: str) -> MLModel | None:
        model = self.cache.active_models.get(model_id)
        if model is not None:
            return model
        return await asyncio.to_thread(self.registry.get, model_id)

    async def _require_model(self, model_id: str) -> MLModel:
        model = await self._find_model(model_id)
        if model is None:
            raise ModelNotFoundError(model_id)
        return model

    async def get_model_metrics(self, model_id: str) -> ModelMetrics | None:
        metrics = self.cache.model_metrics.get(model_id)
        if metrics is not None:
            return metrics
        model = await self._find_model(model_id)
        if model is None or model.metadata.metrics is None:
            return None
        self.cache.model_metrics[model_id] = model.metadata.metrics
        return model.metadata.metrics

    async def get_active_models(self) -> list[MLModel]:
        await self._ensure_initialized()
        return list(self.cache.active_models.values())

    def select_best_model(self, model_type: str | None = None) -> MLModel | None:
        """Highest accuracy among active models; ties go to the latest deployment."""
        candidates = [
            m for m in self.cache.active_models.values()
            if model_type is None or m.type == model_type
        ]
        if not candidates:
            return None
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return max(candidates, key=lambda m: (m.accuracy, m.deployed_at or epoch))

    # -- deployment --------------------------------------------------------

    async def deploy_model(self, model_id: str) -> MLModel:
        await self._ensure_initialized()
        model = await self._require_model(model_id)

        async with self._deploy_locks[model.type]:
            if not self.server.is_loaded(model_id) and not self.artifact_store.exists(model_id):
                raise ModelNotFoundError(model_id, "No artifact for model")
            try:
                activated = await asyncio.to_thread(
                    self.registry.activate, model_id, datetime.now(timezone.utc)
                )
            except ModelNotFoundError:
                raise
            except Exception as e:
                logger.exception("Deployment of %s failed", model_id)
                raise DeploymentError(f"Deployment of {model_id} failed: {e}") from e

            self.cache.set_active(activated)
            if activated.metadata.metrics is not None:
                self.cache.model_metrics.setdefault(activated.id, activated.metadata.metrics)
            dropped = self.prediction_cache.invalidate_tag(f"type:{activated.type}")

        logger.info(
            "Deployed model %s (%s v%s) for type %s, dropped %d cached predictions",
            activated.id, activated.name, activated.version, activated.type, dropped,
        )
        await self.events.publish(events.MODEL_DEPLOYED, {"model": activated})
        return activated

    # -- monitoring --------------------------------------------------------

    def _metrics_for_monitoring(self, model_id: str) -> ModelMetrics | None:
        metrics = self.cache.model_metrics.get(model_id)
        if metrics is None:
            model = self.cache.active_models.get(model_id)
            metrics = model.metadata.metrics if model is not None else None
        return metrics

    async def monitor_models(self, now: datetime | None = None) -> MonitoringReport:
        """One monitoring cycle. Never raises."""
        now = now or datetime.now(timezone.utc)
        try:
            await self._ensure_initialized()
            models = list(self.cache.active_models.values())
            report = self.monitor.evaluate(models, self._metrics_for_monitoring, now)
        except Exception:
            logger.exception("Monitoring cycle failed")
            return MonitoringReport(checked_at=now)

        by_id = {m.id: m for m in models}
        for check in report.checks:
            if check.model_id in report.retrain:
                await self.events.publish(events.MODEL_DEGRADED, {"model": by_id[check.model_id], "check": check})

        for model_id in report.retrain:
            model = by_id[model_id]
            await self.events.publish(events.RETRAINING_TRIGGERED, {"model": model})
            task = asyncio.create_task(self._retrain(model))
            self._retrain_tasks.add(task)
            task.add_done_callback(self._retrain_tasks.discard)

        if self.settings.ab_testing_enabled:
            try:
                await self.ab_testing.evaluate_tests(now)
            except Exception:
                logger.exception("A/B test evaluation failed")

        logger.info(
            "Monitoring cycle: %d checked, %d retraining, %d in flight, %d skipped",
            len(report.checks), len(report.retrain), len(report.in_flight), len(report.skipped),
        )
        return report

    async def _collect_training_data(self, model_type: str) -> TrainingData:
        if self._training_data_source is None:
            raise TrainingError(f"No training data source configured for {model_type}")
        data = self._training_data_source(model_type)
        if inspect.isawaitable(data):
            data = await data
        return data

    async def _retrain(self, model: MLModel) -> None:
        logger.info("Retraining model %s (%s)", model.id, model.name)
        try:
            data = await self._collect_training_data(model.type)
            retrained = await self.train_model(
                data,
                ModelConfig(type=model.type, algorithm=model.algorithm, parameters=model.parameters),
                name=f"{model.name}_retrained",
                retrained_from=model.id,
            )
            await self.deploy_model(retrained.id)
        except Exception as e:
            logger.exception("Retraining of model %s failed", model.id)
            self.monitor.mark_retrain_failed(model.id)
            await self.events.publish(events.RETRAINING_FAILED, {"model": model, "error": str(e)})
            return
        self.monitor.mark_retrained(model.id)
        logger.info("Model %s replaced by retrained model %s", model.id, retrained.id)

    # -- status ------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        active = len(self.cache.active_models)
        if not self._initialized:
            health = "unhealthy"
        elif active == 0:
            health = "degraded"
        else:
            health = "healthy"
        return {
            "initialized": self._initialized,
            "active_models": active,
            "health": health,
            "retraining_jobs": len(self._retrain_tasks),
            "server": self.server.stats(),
            "prediction_cache": self.prediction_cache.stats(),
        }

