import os
from pydantic_settings import BaseSettings


def _parse_cors_origins() -> list[str] | None:
    """Parse CORS_ORIGINS env var as comma-separated string or JSON list."""
    raw = os.environ.get("CORS_ORIGINS")
    if not raw:
        return None
    if raw.startswith("["):
        import json
        return json.loads(raw)
    return [o.strip() for o in raw.split(",") if o.strip()]


class Settings(BaseSettings):
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    debug: bool = False

    # Feature extraction
    embedding_model: str = "hashing"  # "hashing" | any sentence-transformers model id
    embedding_dimension: int = 32
    embedding_timeout: float = 2.0  # seconds
    use_text_embeddings: bool = True
    use_categorical_encoding: bool = True
    use_numerical_normalization: bool = True
    max_text_length: int = 5000

    # Training
    validation_split: float = 0.2
    test_split: float = 0.2
    cross_validation_folds: int = 5
    hyperparameter_tuning: bool = True
    max_iterations: int = 1000
    early_stopping_patience: int = 50
    random_seed: int = 42

    # Serving
    model_cache_size: int = 10
    prediction_timeout: float = 5.0  # seconds
    batch_size: int = 32
    prediction_cache_ttl: int = 300  # seconds, 0 disables

    # A/B testing
    ab_testing_enabled: bool = True
    traffic_split: float = 0.1  # fraction of traffic sent to the challenger
    min_sample_size: int = 1000
    confidence_level: float = 0.95
    sticky_assignment: bool = False
    max_test_duration_days: int = 30

    # Storage + monitoring
    database_url: str = "sqlite:///matching_pipeline.db"
    model_dir: str = "training/models"  # directory for trained model artifacts
    monitoring_interval: int = 3600  # seconds
    monitoring_enabled: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "protected_namespaces": ("settings_",)}


_cors_override = _parse_cors_origins()
settings = Settings(**{"cors_origins": _cors_override} if _cors_override else {})
