"""Tests for dataset splitting and model training."""

import numpy as np
import pytest

from models.schemas.ml_model import ModelConfig
from services.pipeline.errors import TrainingError
from services.pipeline.model_trainer import ModelTrainer, split_dataset


def _dataset(n: int = 100, dims: int = 6, seed: int = 0):
    rng = np.random.default_rng(seed)
    labels = [i % 2 for i in range(n)]
    features = []
    for label in labels:
        row = rng.normal(0.0, 0.3, size=dims)
        row[0] += 2.0 if label else -2.0
        features.append(row.tolist())
    return features, labels


def _trainer(**kwargs) -> ModelTrainer:
    defaults = dict(cross_validation_folds=3, hyperparameter_tuning=False, max_iterations=200, early_stopping_patience=10)
    defaults.update(kwargs)
    return ModelTrainer(**defaults)


class TestSplitDataset:
    def test_sixty_twenty_twenty(self):
        features, labels = _dataset(100)
        split = split_dataset(features, labels, 0.2, 0.2)
        assert (len(split.train), len(split.validation), len(split.test)) == (60, 20, 20)
        assert split.feature_count == 6

    def test_index_based_order(self):
        features, labels = _dataset(10)
        split = split_dataset(features, labels, 0.2, 0.2)
        assert split.train.features == features[:6]
        assert split.validation.features == features[6:8]
        assert split.test.features == features[8:]

    def test_floor_rounding_remainder_goes_to_test(self):
        features, labels = _dataset(7)
        split = split_dataset(features, labels, 0.2, 0.2)
        # floor(4.2)=4, floor(1.4)=1, rest 2
        assert (len(split.train), len(split.validation), len(split.test)) == (4, 1, 2)

    def test_invalid_fractions(self):
        features, labels = _dataset(10)
        with pytest.raises(TrainingError):
            split_dataset(features, labels, 0.6, 0.5)

    def test_length_mismatch(self):
        features, labels = _dataset(10)
        with pytest.raises(TrainingError):
            split_dataset(features, labels[:5], 0.2, 0.2)


@pytest.mark.training
class TestModelTrainer:
    @pytest.mark.parametrize("algorithm", ["logistic_regression", "random_forest", "lightgbm", "gradient_boosting"])
    def test_trains_each_algorithm(self, algorithm):
        split = split_dataset(*_dataset(), 0.2, 0.2)
        result = _trainer().train(split, ModelConfig(algorithm=algorithm))
        scores = result.scorer.score(np.asarray(split.test.features))
        assert scores.shape == (20,)
        assert np.all((scores >= 0) & (scores <= 1))
        predicted = (scores >= 0.5).astype(int)
        assert (predicted == np.asarray(split.test.labels)).mean() >= 0.9
        assert result.scorer.n_features == 6
        assert result.training_time_ms > 0

    def test_lightgbm_early_stopping_respects_iterations(self):
        split = split_dataset(*_dataset(), 0.2, 0.2)
        result = _trainer(max_iterations=50, early_stopping_patience=5).train(
            split, ModelConfig(algorithm="lightgbm")
        )
        assert 1 <= result.best_iteration <= 50
        assert len(result.history) <= 50

    def test_cross_validation_scores(self):
        split = split_dataset(*_dataset(), 0.2, 0.2)
        result = _trainer(cross_validation_folds=3).train(split, ModelConfig())
        assert len(result.cross_validation_scores) == 3

    def test_cross_validate_returns_metrics(self):
        split = split_dataset(*_dataset(), 0.2, 0.2)
        folds = _trainer(cross_validation_folds=4).cross_validate(split, ModelConfig())
        assert len(folds) == 4
        assert all(m.sample_count == 15 for m in folds)

    def test_tuning_keeps_parameters_from_grid(self):
        split = split_dataset(*_dataset(), 0.2, 0.2)
        result = _trainer(hyperparameter_tuning=True).train(split, ModelConfig(parameters={"C": 1.0}))
        assert result.parameters["C"] in (0.1, 1.0, 10.0)
        assert result.validation_score is not None

    def test_empty_train_set(self):
        split = split_dataset([], [], 0.2, 0.2)
        with pytest.raises(TrainingError, match="empty"):
            _trainer().train(split, ModelConfig())

    def test_single_class(self):
        features, _ = _dataset(20)
        split = split_dataset(features, [1] * 20, 0.2, 0.2)
        with pytest.raises(TrainingError, match="both"):
            _trainer().train(split, ModelConfig())

    def test_unknown_algorithm(self):
        split = split_dataset(*_dataset(), 0.2, 0.2)
        with pytest.raises(TrainingError, match="Unsupported"):
            _trainer().train(split, ModelConfig(algorithm="svm"))

    def test_one_job_per_type(self):
        trainer = _trainer()
        split = split_dataset(*_dataset(), 0.2, 0.2)
        trainer._in_progress.add("candidate_job_match")
        with pytest.raises(TrainingError, match="in progress"):
            trainer.train(split, ModelConfig())
        # another type is unaffected
        result = trainer.train(split, ModelConfig(type="job_recommendation"))
        assert result.scorer is not None
        assert not trainer.is_training("job_recommendation")
