"""Algorithm factory and scorer wrappers.

Each supported ``algorithm`` tag maps to a fit function returning a
``BaseScorer``. Library imports are deferred so that only the algorithms
actually used get loaded.
"""

import logging
from typing import Any

import numpy as np

from services.pipeline.base import BaseScorer
from services.pipeline.errors import TrainingError

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("logistic_regression", "random_forest", "gradient_boosting", "lightgbm")

# Candidate overrides evaluated on the validation set when tuning is enabled
PARAMETER_GRIDS: dict[str, list[dict[str, Any]]] = {
    "logistic_regression": [{"C": 0.1}, {"C": 1.0}, {"C": 10.0}],
    "random_forest": [
        {"n_estimators": 50, "max_depth": 5},
        {"n_estimators": 100, "max_depth": 10},
        {"n_estimators": 200, "max_depth": None},
    ],
    "lightgbm": [
        {"num_leaves": 15, "learning_rate": 0.1},
        {"num_leaves": 31, "learning_rate": 0.05},
        {"num_leaves": 63, "learning_rate": 0.01},
    ],
}
PARAMETER_GRIDS["gradient_boosting"] = PARAMETER_GRIDS["lightgbm"]


class SklearnScorer(BaseScorer):
    def __init__(self, estimator: Any, n_features: int, algorithm: str) -> None:
        super().__init__(estimator, n_features)
        self.algorithm = algorithm

    def score(self, matrix: np.ndarray) -> np.ndarray:
        proba = self.estimator.predict_proba(matrix)
        positive = list(self.estimator.classes_).index(1)
        return proba[:, positive]


class LightGBMScorer(BaseScorer):
    def __init__(self, booster: Any, n_features: int, algorithm: str = "lightgbm") -> None:
        super().__init__(booster, n_features)
        self.algorithm = algorithm

    def score(self, matrix: np.ndarray) -> np.ndarray:
        return np.asarray(self.estimator.predict(matrix), dtype=np.float64)


class FitOutcome:
    """What a single fit produced, before evaluation."""

    def __init__(
        self,
        scorer: BaseScorer,
        best_iteration: int | None = None,
        early_stopped: bool = False,
        history: list[float] | None = None,
    ) -> None:
        self.scorer = scorer
        self.best_iteration = best_iteration
        self.early_stopped = early_stopped
        self.history = history or []


def fit(
    algorithm: str,
    params: dict[str, Any],
    X_train: np.ndarray,
    y_train: np.ndarray,
    X_val: np.ndarray,
    y_val: np.ndarray,
    max_iterations: int,
    early_stopping_patience: int,
    random_seed: int,
) -> FitOutcome:
    """Fit one model of the given algorithm."""
    if algorithm == "logistic_regression":
        from sklearn.linear_model import LogisticRegression

        est = LogisticRegression(
            C=float(params.get("C", 1.0)),
            max_iter=max_iterations,
            random_state=random_seed,
        )
        est.fit(X_train, y_train)
        n_iter = int(np.max(est.n_iter_))
        return FitOutcome(
            SklearnScorer(est, X_train.shape[1], algorithm),
            best_iteration=n_iter,
        )

    elif algorithm == "random_forest":
        from sklearn.ensemble import RandomForestClassifier

        est = RandomForestClassifier(
            n_estimators=min(int(params.get("n_estimators", 100)), max_iterations),
            max_depth=params.get("max_depth", 10),
            min_samples_split=int(params.get("min_samples_split", 2)),
            min_samples_leaf=int(params.get("min_samples_leaf", 1)),
            random_state=random_seed,
        )
        est.fit(X_train, y_train)
        return FitOutcome(SklearnScorer(est, X_train.shape[1], algorithm))

    elif algorithm in ("lightgbm", "gradient_boosting"):
        return _fit_lightgbm(
            algorithm, params, X_train, y_train, X_val, y_val,
            max_iterations, early_stopping_patience, random_seed,
        )

    else:
        raise TrainingError(f"Unsupported algorithm: {algorithm}")


def _fit_lightgbm(
    algorithm: str,
    params: dict[str, Any],
    X_train: np.ndarray,
    y_train: np.ndarray,
    X_val: np.ndarray,
    y_val: np.ndarray,
    max_iterations: int,
    early_stopping_patience: int,
    random_seed: int,
) -> FitOutcome:
    import lightgbm as lgb

    lgb_params = {
        "objective": "binary",
        "metric": "binary_logloss",
        "learning_rate": float(params.get("learning_rate", 0.05)),
        "num_leaves": int(params.get("num_leaves", 31)),
        "max_depth": int(params.get("max_depth", -1)),
        "min_data_in_leaf": int(params.get("min_data_in_leaf", 5)),
        "subsample": float(params.get("subsample", 1.0)),
        "colsample_bytree": float(params.get("colsample_bytree", 1.0)),
        "seed": random_seed,
        "deterministic": True,
        "verbose": -1,
    }

    train_data = lgb.Dataset(X_train, label=y_train)
    valid_sets = []
    callbacks = []
    eval_result: dict = {}
    if len(y_val) > 0:
        valid_sets.append(lgb.Dataset(X_val, label=y_val, reference=train_data))
        callbacks.append(lgb.early_stopping(early_stopping_patience, verbose=False))
        callbacks.append(lgb.record_evaluation(eval_result))

    booster = lgb.train(
        lgb_params,
        train_data,
        num_boost_round=max_iterations,
        valid_sets=valid_sets or None,
        callbacks=callbacks,
    )

    history = list(eval_result.get("valid_0", {}).get("binary_logloss", []))
    best = int(booster.best_iteration or booster.current_iteration())
    return FitOutcome(
        LightGBMScorer(booster, X_train.shape[1], algorithm),
        best_iteration=best,
        early_stopped=bool(history) and len(history) < max_iterations,
        history=history,
    )
