"""Model registry record, training configuration and evaluation metrics."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_MODEL_TYPE = "candidate_job_match"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfusionMatrix(BaseModel):
    tp: int = 0
    fp: int = 0
    fn: int = 0
    tn: int = 0


class ModelMetrics(BaseModel):
    """Binary classification metrics for one evaluation run."""
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    auc_roc: float = 0.0
    confusion_matrix: ConfusionMatrix = ConfusionMatrix()
    sample_count: int = 0
    evaluated_at: datetime = Field(default_factory=_utcnow)


class ModelConfig(BaseModel):
    type: str = DEFAULT_MODEL_TYPE
    algorithm: str = "logistic_regression"
    parameters: dict[str, Any] = {}


class ModelMetadata(BaseModel):
    """Known metadata keys. Unknown keys are rejected."""
    training_time_ms: float = 0.0
    training_samples: int = 0
    feature_count: int = 0
    best_iteration: int | None = None
    early_stopped: bool = False
    tuned_parameters: dict[str, Any] = {}
    cross_validation_scores: list[float] = []
    metrics: ModelMetrics | None = None
    retrained_from: str | None = None

    model_config = {"extra": "forbid"}


class MLModel(BaseModel):
    id: str
    name: str
    version: str = "1.0.0"
    type: str = DEFAULT_MODEL_TYPE
    algorithm: str
    accuracy: float = 0.0
    parameters: dict[str, Any] = {}
    active: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    deployed_at: datetime | None = None
    metadata: ModelMetadata = ModelMetadata()
