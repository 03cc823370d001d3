"""Model trainer: fits a scorer on a pre-split dataset.

Flow:
    DatasetSplit + ModelConfig
      ├─ validate split (non-empty train, matching lengths, both classes)
      ├─ fit base parameters          (early stopping on the validation set)
      ├─ [tuning] fit each grid point, keep best validation score
      ├─ [cv] contiguous k-fold over the train set
      └─ TrainingResult(scorer, history, tuned parameters, cv scores)

The trainer never touches the registry; a failed run leaves nothing behind.
"""

import logging
import math
import threading
import time
from typing import Any

import numpy as np
from sklearn.model_selection import KFold

from models.schemas.features import DatasetSplit, SplitPart
from models.schemas.ml_model import ModelConfig, ModelMetrics
from services.pipeline.base import BaseScorer
from services.pipeline.errors import TrainingError
from services.pipeline.estimators import PARAMETER_GRIDS, SUPPORTED_ALGORITHMS, FitOutcome, fit
from services.pipeline.evaluation import auc_roc, calculate_metrics

logger = logging.getLogger(__name__)


class TrainingResult:
    def __init__(
        self,
        scorer: BaseScorer,
        parameters: dict[str, Any],
        best_iteration: int | None,
        early_stopped: bool,
        history: list[float],
        validation_score: float | None,
        cross_validation_scores: list[float],
        training_time_ms: float,
    ) -> None:
        self.scorer = scorer
        self.parameters = parameters
        self.best_iteration = best_iteration
        self.early_stopped = early_stopped
        self.history = history
        self.validation_score = validation_score
        self.cross_validation_scores = cross_validation_scores
        self.training_time_ms = training_time_ms


def split_dataset(
    features: list[list[float]],
    labels: list[int],
    validation_split: float,
    test_split: float,
    feature_names: list[str] | None = None,
) -> DatasetSplit:
    """Contiguous train/validation/test partition in input order.

    train = floor(n * (1 - v - t)), validation = floor(n * v), the
    remainder is test.
    """
    if len(features) != len(labels):
        raise TrainingError(f"{len(features)} feature rows for {len(labels)} labels")
    if validation_split < 0 or test_split < 0 or validation_split + test_split >= 1:
        raise TrainingError(
            f"Invalid split fractions: validation={validation_split} test={test_split}"
        )
    n = len(labels)
    n_train = math.floor(round(n * (1 - validation_split - test_split), 9))
    n_val = math.floor(round(n * validation_split, 9))
    bounds = (0, n_train, n_train + n_val, n)
    parts = [
        SplitPart(features=features[lo:hi], labels=labels[lo:hi])
        for lo, hi in zip(bounds, bounds[1:])
    ]
    return DatasetSplit(
        train=parts[0],
        validation=parts[1],
        test=parts[2],
        feature_count=len(features[0]) if features else 0,
        feature_names=feature_names or [],
    )


def _as_arrays(part) -> tuple[np.ndarray, np.ndarray]:
    X = np.asarray(part.features, dtype=np.float64)
    y = np.asarray(part.labels, dtype=np.int64)
    if X.ndim == 1:
        X = X.reshape(0, 0) if X.size == 0 else X.reshape(1, -1)
    return X, y


class ModelTrainer:
    def __init__(
        self,
        cross_validation_folds: int = 5,
        hyperparameter_tuning: bool = True,
        max_iterations: int = 1000,
        early_stopping_patience: int = 50,
        random_seed: int = 42,
    ) -> None:
        self.cross_validation_folds = cross_validation_folds
        self.hyperparameter_tuning = hyperparameter_tuning
        self.max_iterations = max_iterations
        self.early_stopping_patience = early_stopping_patience
        self.random_seed = random_seed
        self._lock = threading.Lock()
        self._in_progress: set[str] = set()

    @classmethod
    def from_settings(cls, settings) -> "ModelTrainer":
        return cls(
            cross_validation_folds=settings.cross_validation_folds,
            hyperparameter_tuning=settings.hyperparameter_tuning,
            max_iterations=settings.max_iterations,
            early_stopping_patience=settings.early_stopping_patience,
            random_seed=settings.random_seed,
        )

    def is_training(self, model_type: str) -> bool:
        with self._lock:
            return model_type in self._in_progress

    def train(self, split: DatasetSplit, model_config: ModelConfig) -> TrainingResult:
        """Fit a model. Blocking; callers on the event loop use a worker thread."""
        with self._lock:
            if model_config.type in self._in_progress:
                raise TrainingError(f"Training already in progress for type {model_config.type}")
            self._in_progress.add(model_config.type)

        start = time.perf_counter()
        try:
            logger.info(
                "Training %s/%s: train=%d val=%d test=%d features=%d",
                model_config.type, model_config.algorithm,
                len(split.train), len(split.validation), len(split.test), split.feature_count,
            )
            self._validate(split, model_config)
            X_train, y_train = _as_arrays(split.train)
            X_val, y_val = _as_arrays(split.validation)

            params = dict(model_config.parameters)
            outcome = self._fit(model_config.algorithm, params, X_train, y_train, X_val, y_val)
            val_score = self._validation_score(outcome.scorer, X_val, y_val)

            if self.hyperparameter_tuning:
                params, outcome, val_score = self._tune(
                    model_config.algorithm, params, outcome, val_score,
                    X_train, y_train, X_val, y_val,
                )

            cv_scores = self._cross_validate_arrays(model_config.algorithm, params, X_train, y_train)
        except TrainingError:
            raise
        except Exception as e:
            logger.exception("Training failed for %s/%s", model_config.type, model_config.algorithm)
            raise TrainingError(f"Training failed: {e}") from e
        finally:
            with self._lock:
                self._in_progress.discard(model_config.type)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Training finished %s/%s in %.0fms (best_iteration=%s, val=%.4f)",
            model_config.type, model_config.algorithm, elapsed_ms,
            outcome.best_iteration, val_score if val_score is not None else float("nan"),
        )
        return TrainingResult(
            scorer=outcome.scorer,
            parameters=params,
            best_iteration=outcome.best_iteration,
            early_stopped=outcome.early_stopped,
            history=outcome.history,
            validation_score=val_score,
            cross_validation_scores=cv_scores,
            training_time_ms=elapsed_ms,
        )

    def cross_validate(self, split: DatasetSplit, model_config: ModelConfig) -> list[ModelMetrics]:
        """Per-fold metrics over contiguous folds of the training set."""
        self._validate(split, model_config)
        X_train, y_train = _as_arrays(split.train)
        return self._fold_metrics(model_config.algorithm, dict(model_config.parameters), X_train, y_train)

    def _validate(self, split: DatasetSplit, model_config: ModelConfig) -> None:
        if model_config.algorithm not in SUPPORTED_ALGORITHMS:
            raise TrainingError(f"Unsupported algorithm: {model_config.algorithm}")
        if len(split.train) == 0:
            raise TrainingError("Training set cannot be empty")
        for name, part in (("train", split.train), ("validation", split.validation), ("test", split.test)):
            if len(part.features) != len(part.labels):
                raise TrainingError(f"{name} features and labels must have the same length")
            widths = {len(row) for row in part.features}
            if widths and widths != {split.feature_count}:
                raise TrainingError(
                    f"{name} rows have dimensions {sorted(widths)}, expected {split.feature_count}"
                )
        if len(set(split.train.labels)) < 2:
            raise TrainingError("Training set must contain both positive and negative samples")

    def _fit(self, algorithm, params, X_train, y_train, X_val, y_val) -> FitOutcome:
        return fit(
            algorithm, params, X_train, y_train, X_val, y_val,
            max_iterations=self.max_iterations,
            early_stopping_patience=self.early_stopping_patience,
            random_seed=self.random_seed,
        )

    def _validation_score(self, scorer: BaseScorer, X_val: np.ndarray, y_val: np.ndarray) -> float | None:
        """ROC AUC on the validation set, accuracy if it holds one class only."""
        if len(y_val) == 0:
            return None
        scores = scorer.score(X_val)
        if len(set(y_val.tolist())) > 1:
            return auc_roc(scores, y_val)
        return calculate_metrics(scores, y_val).accuracy

    def _tune(self, algorithm, base_params, base_outcome, base_score, X_train, y_train, X_val, y_val):
        if base_score is None:
            logger.info("Skipping hyperparameter tuning: empty validation set")
            return base_params, base_outcome, base_score

        best = (base_params, base_outcome, base_score)
        for overrides in PARAMETER_GRIDS.get(algorithm, []):
            candidate = {**base_params, **overrides}
            outcome = self._fit(algorithm, candidate, X_train, y_train, X_val, y_val)
            score = self._validation_score(outcome.scorer, X_val, y_val)
            logger.debug("Tuning %s %s -> %.4f", algorithm, overrides, score)
            # strict improvement keeps the caller's parameters on ties
            if score is not None and score > best[2]:
                best = (candidate, outcome, score)

        if best[0] is not base_params:
            logger.info("Tuning selected %s (val=%.4f)", best[0], best[2])
        return best

    def _cross_validate_arrays(self, algorithm, params, X_train, y_train) -> list[float]:
        if self.cross_validation_folds < 2 or len(y_train) < self.cross_validation_folds:
            return []
        return [m.f1_score for m in self._fold_metrics(algorithm, params, X_train, y_train)]

    def _fold_metrics(self, algorithm, params, X_train, y_train) -> list[ModelMetrics]:
        if len(y_train) < self.cross_validation_folds:
            raise TrainingError(
                f"{len(y_train)} training samples cannot form {self.cross_validation_folds} folds"
            )
        folds = KFold(n_splits=self.cross_validation_folds, shuffle=False)
        fold_metrics: list[ModelMetrics] = []
        for i, (train_idx, val_idx) in enumerate(folds.split(X_train)):
            if len(set(y_train[train_idx].tolist())) < 2:
                logger.warning("Skipping fold %d/%d: single-class training fold", i + 1, self.cross_validation_folds)
                continue
            outcome = self._fit(
                algorithm, params,
                X_train[train_idx], y_train[train_idx],
                X_train[val_idx], y_train[val_idx],
            )
            fold_metrics.append(calculate_metrics(outcome.scorer.score(X_train[val_idx]), y_train[val_idx]))

        if fold_metrics:
            logger.info(
                "Cross-validation %s: %d folds, mean accuracy %.4f",
                algorithm, len(fold_metrics), float(np.mean([m.accuracy for m in fold_metrics])),
            )
        return fold_metrics
