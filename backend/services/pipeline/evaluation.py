"""Binary classification metrics for match models.

All ratios are derived from the confusion-matrix counts so the reported
numbers are always consistent with each other. A zero denominator yields
0.0, never NaN.
"""

from __future__ import annotations

import logging
from typing import Sequence, Union

import numpy as np
from sklearn.metrics import roc_auc_score

from models.schemas.ml_model import ConfusionMatrix, ModelMetrics

logger = logging.getLogger(__name__)

_ArrayLike = Union[Sequence[float], "np.ndarray"]

THRESHOLD = 0.5


def _ratio(num: float, den: float) -> float:
    return float(num / den) if den else 0.0


def confusion_counts(predictions: _ArrayLike, labels: _ArrayLike) -> ConfusionMatrix:
    pred = np.asarray(predictions, dtype=np.float64) >= THRESHOLD
    actual = np.asarray(labels, dtype=np.int64) == 1
    return ConfusionMatrix(
        tp=int(np.sum(pred & actual)),
        fp=int(np.sum(pred & ~actual)),
        fn=int(np.sum(~pred & actual)),
        tn=int(np.sum(~pred & ~actual)),
    )


def auc_roc(predictions: _ArrayLike, labels: _ArrayLike) -> float:
    """ROC AUC, or 0.0 when only one class is present."""
    y = np.asarray(labels, dtype=np.int64)
    if y.size == 0 or np.unique(y).size < 2:
        return 0.0
    return float(roc_auc_score(y, np.asarray(predictions, dtype=np.float64)))


def calculate_metrics(predictions: _ArrayLike, labels: _ArrayLike) -> ModelMetrics:
    """Compute accuracy/precision/recall/F1/AUC for scores against 0/1 labels.

    Parameters
    ----------
    predictions:
        Match probabilities in [0, 1]; ``>= 0.5`` counts as a positive.
    labels:
        Ground-truth 0/1 labels with the same length.

    Raises
    ------
    ValueError
        If the lengths differ.
    """
    pred_arr = np.asarray(predictions, dtype=np.float64)
    label_arr = np.asarray(labels, dtype=np.int64)
    if pred_arr.shape != label_arr.shape:
        raise ValueError(f"Shape mismatch: {pred_arr.shape} vs {label_arr.shape}")

    cm = confusion_counts(pred_arr, label_arr)
    n = cm.tp + cm.fp + cm.fn + cm.tn
    precision = _ratio(cm.tp, cm.tp + cm.fp)
    recall = _ratio(cm.tp, cm.tp + cm.fn)

    return ModelMetrics(
        accuracy=_ratio(cm.tp + cm.tn, n),
        precision=precision,
        recall=recall,
        f1_score=_ratio(2 * precision * recall, precision + recall),
        auc_roc=auc_roc(pred_arr, label_arr),
        confusion_matrix=cm,
        sample_count=n,
    )
