"""Train the candidate-job match model offline.

Reads labelled pairs as JSON lines ({"candidate": {...}, "job": {...}, "label": 0|1}),
trains through the matching pipeline, registers the model and optionally
deploys it.

Usage:
    python training/scripts/train_matcher.py --data pairs.jsonl \
        [--config training/configs/matcher.yaml] [--deploy]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "backend"))

from config import Settings  # noqa: E402
from models.schemas.features import TrainingData, TrainingSample  # noqa: E402
from models.schemas.ml_model import ModelConfig  # noqa: E402
from services.pipeline.orchestrator import MatchingPipeline  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def load_config(path: str) -> dict:
    with open(path) as f:
        return yaml.safe_load(f)


def load_pairs(path: str) -> TrainingData:
    samples = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                samples.append(TrainingSample.model_validate(json.loads(line)))
            except Exception:
                logger.exception("Skipping invalid line %d", line_no)
    return TrainingData(samples=samples)


async def run(config: dict, data_path: str, deploy: bool) -> int:
    settings = Settings(**config.get("settings", {}))
    pipeline = MatchingPipeline(settings)

    data = load_pairs(data_path)
    positives = sum(s.label for s in data.samples)
    logger.info(
        "Loaded %d samples (%d positive, %d negative) from %s",
        len(data.samples), positives, len(data.samples) - positives, data_path,
    )
    if not data.samples:
        logger.error("No samples loaded -- aborting.")
        return 1

    model_cfg = config["model"]
    model = await pipeline.train_model(
        data,
        ModelConfig(
            type=model_cfg.get("type", "candidate_job_match"),
            algorithm=model_cfg["algorithm"],
            parameters=model_cfg.get("parameters") or {},
        ),
        name=model_cfg.get("name"),
    )
    metrics = model.metadata.metrics
    logger.info("Registered model %s (%s v%s)", model.id, model.name, model.version)
    logger.info(
        "Holdout: accuracy=%.4f precision=%.4f recall=%.4f f1=%.4f auc=%.4f (n=%d)",
        metrics.accuracy, metrics.precision, metrics.recall,
        metrics.f1_score, metrics.auc_roc, metrics.sample_count,
    )
    if model.metadata.cross_validation_scores:
        logger.info("Cross-validation F1: %s", ", ".join(f"{s:.4f}" for s in model.metadata.cross_validation_scores))

    # Check targets
    for name, target in config.get("evaluation", {}).get("targets", {}).items():
        value = getattr(metrics, name)
        if value >= target:
            logger.info("%s target %.2f ACHIEVED", name, target)
        else:
            logger.warning("%s target %.2f NOT MET (got %.4f)", name, target, value)

    if deploy:
        await pipeline.deploy_model(model.id)
        logger.info("Model %s deployed", model.id)
    return 0


def main(config_path: str, data_path: str, deploy: bool = False) -> int:
    config = load_config(config_path)
    logger.info("Training matcher with config: %s", config["model"]["name"])
    return asyncio.run(run(config, data_path, deploy))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Train the candidate-job match model")
    parser.add_argument("--config", default="training/configs/matcher.yaml")
    parser.add_argument("--data", required=True, help="JSON lines of {candidate, job, label}")
    parser.add_argument("--deploy", action="store_true", help="Activate the model after training")
    args = parser.parse_args()
    sys.exit(main(args.config, args.data, args.deploy))
