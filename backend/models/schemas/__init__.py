"""Pydantic contracts shared by the matching pipeline components."""

from models.schemas.profiles import CandidateProfile, JobProfile
from models.schemas.features import DatasetSplit, FeatureVector, TrainingData, TrainingSample
from models.schemas.ml_model import MLModel, ModelConfig, ModelMetadata, ModelMetrics
from models.schemas.prediction import PredictionResult, ScoreResult
from models.schemas.experiment import ABTest, ABTestResult, ExperimentOutcome
from models.schemas.monitoring import ModelHealth, MonitoringReport

__all__ = [
    "CandidateProfile",
    "JobProfile",
    "FeatureVector",
    "TrainingSample",
    "TrainingData",
    "DatasetSplit",
    "MLModel",
    "ModelConfig",
    "ModelMetadata",
    "ModelMetrics",
    "PredictionResult",
    "ScoreResult",
    "ABTest",
    "ABTestResult",
    "ExperimentOutcome",
    "ModelHealth",
    "MonitoringReport",
]
