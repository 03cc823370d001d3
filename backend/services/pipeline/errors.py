"""Exception taxonomy for the matching pipeline.

Component errors propagate to the façade caller unchanged. Monitoring and
prediction-log failures are the only ones handled inside the pipeline.
"""


class PipelineError(Exception):
    """Base class for all matching pipeline errors."""


class FeatureExtractionError(PipelineError):
    """A profile is missing a required field or cannot be encoded."""


class EmbeddingTimeoutError(FeatureExtractionError):
    """The embedding backend did not answer within ``embedding_timeout``."""


class TrainingError(PipelineError):
    """Training data is unusable or the fit failed. Nothing is registered."""


class PredictionError(PipelineError):
    """A single prediction request could not be served."""


class DeploymentError(PipelineError):
    """Deployment could not be completed; the active set is unchanged."""


class ModelNotFoundError(PredictionError, DeploymentError):
    """No model (or no stored artifact) exists for the requested id.

    Raised from both the prediction and the deployment path.
    """

    def __init__(self, model_id: str, detail: str = "Model not found"):
        self.model_id = model_id
        super().__init__(f"{detail}: {model_id}")


class NoActiveModelError(PredictionError):
    """No model is active for the requested scoring type."""


class FeatureDimensionError(PredictionError):
    """Feature vector length does not match what the model was trained on."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Feature dimension mismatch: expected {expected}, got {actual}")


class PredictionTimeoutError(PredictionError):
    """Inference exceeded ``prediction_timeout``."""


class MonitoringError(PipelineError):
    """Metrics for a model could not be obtained during a monitoring cycle."""
