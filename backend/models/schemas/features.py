"""Feature vectors and labelled training data."""

import hashlib
import struct
from datetime import datetime, timezone

from pydantic import BaseModel, Field, model_validator

from models.schemas.profiles import CandidateProfile, JobProfile


class FeatureVector(BaseModel):
    """Named numeric fields followed by a fixed-dimension embedding block.

    Length is a pure function of the extractor configuration.
    """
    values: list[float]
    names: list[str] = []
    embedding_dimension: int = 0
    candidate_id: str | None = None
    job_id: str | None = None

    @model_validator(mode="after")
    def _names_match_values(self) -> "FeatureVector":
        if self.names and len(self.names) != len(self.values):
            raise ValueError(
                f"{len(self.names)} feature names for {len(self.values)} values"
            )
        return self

    @property
    def dimension(self) -> int:
        return len(self.values)

    def feature_hash(self) -> str:
        """Stable digest of the raw float64 values (used as a cache key)."""
        packed = struct.pack(f"<{len(self.values)}d", *self.values)
        return hashlib.sha256(packed).hexdigest()[:32]


class TrainingSample(BaseModel):
    """One labelled row: either precomputed features or a profile pair."""
    label: int = Field(..., ge=0, le=1)
    features: list[float] | None = None
    candidate: CandidateProfile | None = None
    job: JobProfile | None = None

    @model_validator(mode="after")
    def _has_input(self) -> "TrainingSample":
        if self.features is None and (self.candidate is None or self.job is None):
            raise ValueError("sample needs either features or a candidate/job pair")
        return self


class TrainingData(BaseModel):
    samples: list[TrainingSample] = []
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SplitPart(BaseModel):
    features: list[list[float]] = []
    labels: list[int] = []

    def __len__(self) -> int:
        return len(self.labels)


class DatasetSplit(BaseModel):
    """Index-based train/validation/test partition of extracted features."""
    train: SplitPart
    validation: SplitPart
    test: SplitPart
    feature_count: int = 0
    feature_names: list[str] = []
