"""Per-request prediction outputs."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from models.schemas.features import FeatureVector

ABGroup = Literal["control", "challenger"]


class ScoreResult(BaseModel):
    """Raw model server output for one feature vector."""
    score: float
    confidence: float
    processing_time_ms: float = 0.0


class PredictionMetadata(BaseModel):
    processing_time_ms: float = 0.0
    request_id: str = ""
    ab_group: ABGroup = "control"
    ab_test_id: str | None = None
    cache_hit: bool = False

    model_config = {"extra": "forbid"}


class PredictionResult(BaseModel):
    """Immutable result of one served prediction."""
    model_id: str
    model_name: str
    model_version: str
    prediction: float  # 0.0-1.0 match probability
    confidence: float
    features: FeatureVector
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: PredictionMetadata = PredictionMetadata()

    model_config = {"frozen": True, "protected_namespaces": ()}
