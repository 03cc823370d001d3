"""On-disk store for fitted scorers, one joblib file per model id."""

import logging
from pathlib import Path

import joblib

from services.pipeline.base import BaseScorer
from services.pipeline.errors import ModelNotFoundError

logger = logging.getLogger(__name__)


class ArtifactStore:
    def __init__(self, model_dir: str | Path) -> None:
        self.model_dir = Path(model_dir)

    def path_for(self, model_id: str) -> Path:
        return self.model_dir / f"{model_id}.joblib"

    def save(self, model_id: str, scorer: BaseScorer) -> Path:
        self.model_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(model_id)
        joblib.dump(scorer, path)
        logger.info("Saved artifact for %s to %s", model_id, path)
        return path

    def load(self, model_id: str) -> BaseScorer:
        path = self.path_for(model_id)
        if not path.exists():
            raise ModelNotFoundError(model_id, "No artifact for model")
        scorer = joblib.load(path)
        logger.debug("Loaded artifact %s", path)
        return scorer

    def exists(self, model_id: str) -> bool:
        return self.path_for(model_id).exists()

    def delete(self, model_id: str) -> None:
        path = self.path_for(model_id)
        if path.exists():
            path.unlink()
            logger.info("Deleted artifact %s", path)
